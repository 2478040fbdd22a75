from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from raboard.errors import DirectoryUnavailableError, RecordNameCollisionError
from raboard.io import append_line, dumps_line, write_json_atomic
from raboard.naming import (
    filename_timestamp,
    format_instant,
    parse_instant,
    parse_record_name,
    random_token,
    record_name,
)


def test_record_name_matches_documented_format():
    ts = datetime(2025, 11, 12, 3, 21, 45, 123456, tzinfo=timezone.utc)
    assert record_name(ts, "0a1b2c3d") == "2025-11-12T03-21-45-123Z_0a1b2c3d.json"
    assert format_instant(ts) == "2025-11-12T03:21:45.123Z"


def test_record_name_normalises_other_zones_to_utc():
    jst = timezone(timedelta(hours=9))
    ts = datetime(2025, 11, 12, 12, 21, 45, 123000, tzinfo=jst)
    assert filename_timestamp(ts) == "2025-11-12T03-21-45-123Z"


def test_names_sort_chronologically_then_by_token():
    base = datetime(2025, 1, 1, 23, 59, 59, 999000, tzinfo=timezone.utc)
    names = [
        record_name(base, "ffffffff"),
        record_name(base + timedelta(milliseconds=1), "00000000"),
        record_name(base, "00000000"),
        record_name(base - timedelta(days=400), "aaaaaaaa"),
    ]
    decoded = [parse_record_name(n) for n in sorted(names)]
    assert [(d.instant, d.token) for d in decoded] == sorted((d.instant, d.token) for d in decoded)


def test_parse_record_name_roundtrip_and_rejects_foreign_names():
    parsed = parse_record_name("2025-11-12T03-21-45-123Z_0a1b2c3d.json")
    assert parsed is not None
    assert parsed.instant == datetime(2025, 11, 12, 3, 21, 45, 123000, tzinfo=timezone.utc)
    assert parsed.token == "0a1b2c3d"
    assert parse_record_name("notes.json") is None
    assert parse_record_name("2025-13-12T03-21-45-123Z_x.json") is None


def test_random_token_is_at_least_four_bytes_hex():
    token = random_token()
    assert len(token) == 8
    int(token, 16)


def test_parse_instant_accepts_z_and_naive_as_utc():
    assert parse_instant("2025-11-12T03:21:45.123Z") == datetime(
        2025, 11, 12, 3, 21, 45, 123000, tzinfo=timezone.utc
    )
    assert parse_instant("2025-11-12T03:21:45") == datetime(2025, 11, 12, 3, 21, 45, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        parse_instant("yesterday")


def test_dumps_line_is_compact_single_line():
    line = dumps_line({"text": "two\nlines", "n": 1})
    assert line == '{"text":"two\\nlines","n":1}\n'
    assert line.count("\n") == 1


def test_write_json_atomic_leaves_only_final_file(tmp_path: Path):
    write_json_atomic(tmp_path, "a.json", {"k": "v"})
    assert [p.name for p in tmp_path.iterdir()] == ["a.json"]
    assert (tmp_path / "a.json").read_bytes() == b'{"k":"v"}\n'


def test_write_json_atomic_replace_overwrites(tmp_path: Path):
    write_json_atomic(tmp_path, "a.json", {"v": 1})
    write_json_atomic(tmp_path, "a.json", {"v": 2})
    assert json.loads((tmp_path / "a.json").read_text()) == {"v": 2}


def test_exclusive_write_refuses_to_overwrite(tmp_path: Path):
    write_json_atomic(tmp_path, "a.json", {"v": 1}, exclusive=True)
    with pytest.raises(RecordNameCollisionError):
        write_json_atomic(tmp_path, "a.json", {"v": 2}, exclusive=True)
    assert json.loads((tmp_path / "a.json").read_text()) == {"v": 1}
    # no temp files left behind
    assert [p.name for p in tmp_path.iterdir()] == ["a.json"]


def test_write_into_missing_directory_is_directory_unavailable(tmp_path: Path):
    with pytest.raises(DirectoryUnavailableError):
        write_json_atomic(tmp_path / "nope", "a.json", {})
    assert not (tmp_path / "nope").exists()


def test_append_line_adds_newline(tmp_path: Path):
    path = tmp_path / "log.ndjson"
    append_line(path, "{}")
    append_line(path, "{}\n")
    assert path.read_text() == "{}\n{}\n"
