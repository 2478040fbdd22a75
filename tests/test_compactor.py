from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from raboard.compactor import (
    CompactionPreset,
    Compactor,
    cutoff_for_date,
    date_key,
    format_summary,
    reference_zone,
    resolve_scope,
)
from raboard.errors import LockUnavailableError, RoomNotReadyError, ValidationError
from raboard.listing import list_files
from raboard.readiness import lock_path, logs_dir, msgs_dir
from raboard.spool import Spool

JST = reference_zone(9)

# UTC instants and the JST day they fall on
POSTS = [
    (datetime(2025, 11, 10, 10, 0, tzinfo=timezone.utc), "2025-11-10"),
    (datetime(2025, 11, 10, 16, 0, tzinfo=timezone.utc), "2025-11-11"),
    (datetime(2025, 11, 11, 12, 0, tzinfo=timezone.utc), "2025-11-11"),
    (datetime(2025, 11, 12, 1, 0, tzinfo=timezone.utc), "2025-11-12"),
]


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _seed(root: Path) -> dict:
    clock = _Clock(POSTS[0][0])
    spool = Spool(root, clock=clock)
    for i, (instant, _) in enumerate(POSTS):
        clock.now = instant
        spool.post("general", "alice", f"m{i}")
    directory = msgs_dir(root, "general")
    return {name: (directory / name).read_text(encoding="utf-8") for name in list_files(directory)}


def _log_lines(root: Path) -> dict:
    out = {}
    for path in sorted(logs_dir(root, "general").glob("*.ndjson")):
        out[path.stem] = path.read_text(encoding="utf-8").splitlines(keepends=True)
    return out


def test_full_compaction_moves_every_record_into_its_day(board_root: Path, clock):
    originals = _seed(board_root)
    summary = Compactor(board_root, tz=JST, clock=clock).compact(
        "general", datetime(2025, 11, 13, tzinfo=timezone.utc)
    )

    assert (summary.considered, summary.appended, summary.skipped) == (4, 4, 0)
    assert summary.days_touched == ["2025-11-10", "2025-11-11", "2025-11-12"]
    assert list_files(msgs_dir(board_root, "general")) == []

    logs = _log_lines(board_root)
    assert {day: len(lines) for day, lines in logs.items()} == {
        "2025-11-10": 1,
        "2025-11-11": 2,
        "2025-11-12": 1,
    }
    # lines are the spool bytes, in name order within each day
    assert [line for day in sorted(logs) for line in logs[day]] == list(originals.values())
    assert not lock_path(board_root, "general").exists()


def test_records_at_or_after_cutoff_stay_in_spool(board_root: Path, clock):
    _seed(board_root)
    summary = Compactor(board_root, tz=JST, clock=clock).compact(
        "general", datetime(2025, 11, 11, 12, 0, tzinfo=timezone.utc)
    )
    assert summary.appended == 2
    remaining = [json.loads((msgs_dir(board_root, "general") / n).read_text())["text"]
                 for n in list_files(msgs_dir(board_root, "general"))]
    assert remaining == ["m2", "m3"]


def test_compaction_is_idempotent(board_root: Path, clock):
    _seed(board_root)
    compactor = Compactor(board_root, tz=JST, clock=clock)
    cutoff = datetime(2025, 11, 13, tzinfo=timezone.utc)
    compactor.compact("general", cutoff)
    before = _log_lines(board_root)
    summary = compactor.compact("general", cutoff)
    assert (summary.considered, summary.appended, summary.skipped) == (0, 0, 0)
    assert _log_lines(board_root) == before


def test_crash_between_append_and_delete_duplicates_but_never_loses(board_root: Path, clock, monkeypatch):
    originals = _seed(board_root)
    cutoff = datetime(2025, 11, 13, tzinfo=timezone.utc)

    def fail_delete(path):
        raise PermissionError(f"cannot delete {path}")

    monkeypatch.setattr(Compactor, "_delete_source", staticmethod(fail_delete))
    first = Compactor(board_root, tz=JST, clock=clock).compact("general", cutoff)
    assert (first.considered, first.appended, first.skipped) == (4, 0, 4)
    assert sorted(list_files(msgs_dir(board_root, "general"))) == sorted(originals)
    monkeypatch.undo()

    second = Compactor(board_root, tz=JST, clock=clock).compact("general", cutoff)
    assert second.appended == 4
    assert list_files(msgs_dir(board_root, "general")) == []

    all_lines = [line for lines in _log_lines(board_root).values() for line in lines]
    for payload in originals.values():
        assert all_lines.count(payload) == 2


def test_unusable_files_are_skipped_and_left_alone(board_root: Path, clock):
    directory = msgs_dir(board_root, "general")
    bad = {
        "2025-11-10T00-00-00-000Z_00000001.json": "",
        "2025-11-10T00-00-00-000Z_00000002.json": "{broken",
        "2025-11-10T00-00-00-000Z_00000003.json": json.dumps({"text": "no ts"}),
        "2025-11-10T00-00-00-000Z_00000004.json": json.dumps({"ts": "last tuesday"}),
    }
    for name, body in bad.items():
        (directory / name).write_text(body, encoding="utf-8")

    summary = Compactor(board_root, tz=JST, clock=clock).compact(
        "general", datetime(2025, 11, 13, tzinfo=timezone.utc)
    )
    assert (summary.considered, summary.appended, summary.skipped) == (0, 0, 4)
    assert sorted(list_files(directory)) == sorted(bad)


def test_multiline_record_is_folded_onto_one_line(board_root: Path, clock):
    directory = msgs_dir(board_root, "general")
    record = {"id": "x", "ts": "2025-11-10T00:00:00.000Z", "text": "hi"}
    (directory / "2025-11-10T00-00-00-000Z_0000000x.json").write_text(
        json.dumps(record, indent=2), encoding="utf-8"
    )
    Compactor(board_root, tz=JST, clock=clock).compact("general", datetime(2025, 11, 13, tzinfo=timezone.utc))
    lines = _log_lines(board_root)["2025-11-10"]
    assert len(lines) == 1
    assert json.loads(lines[0]) == record


def test_held_lock_blocks_compaction(board_root: Path, clock):
    _seed(board_root)
    lock_path(board_root, "general").write_text(
        json.dumps(
            {
                "createdAt": "2025-11-12T03:00:00.000Z",
                "expiresAt": "2025-11-12T04:00:00.000Z",
                "detail": "Compacting general",
            }
        ),
        encoding="utf-8",
    )
    with pytest.raises(LockUnavailableError):
        Compactor(board_root, tz=JST, clock=clock).compact("general", datetime(2025, 11, 13, tzinfo=timezone.utc))
    assert len(list_files(msgs_dir(board_root, "general"))) == 4
    assert _log_lines(board_root) == {}


def test_unprovisioned_room_is_not_ready(board_root: Path, clock):
    with pytest.raises(RoomNotReadyError):
        Compactor(board_root, clock=clock).compact("random", datetime(2025, 11, 13, tzinfo=timezone.utc))


def test_date_key_uses_reference_zone():
    instant = datetime(2025, 11, 10, 16, 0, tzinfo=timezone.utc)
    assert date_key(instant, JST) == "2025-11-11"
    assert date_key(instant, timezone.utc) == "2025-11-10"


def test_presets_resolve_against_reference_zone(clock):
    now = clock()  # Wednesday 2025-11-12 12:21 JST
    day_start = datetime(2025, 11, 11, 15, 0, tzinfo=timezone.utc)
    assert resolve_scope("through_yesterday", now=now, tz=JST).cutoff == day_start
    assert resolve_scope(CompactionPreset.EXCLUDE_TODAY, now=now, tz=JST).cutoff == day_start
    assert resolve_scope("last_week", now=now, tz=JST).cutoff == day_start - timedelta(days=2)
    scope = resolve_scope("until_date", now=now, until="2025-11-10", tz=JST)
    assert scope.cutoff == datetime(2025, 11, 10, 15, 0, tzinfo=timezone.utc)
    assert scope.label == "through 2025-11-10"


@pytest.mark.parametrize("value", ["2025/11/10", "2025-02-30", "", "tomorrow"])
def test_cutoff_for_date_rejects_bad_input(value):
    with pytest.raises(ValidationError):
        cutoff_for_date(value, JST)


def test_until_date_requires_a_date(clock):
    with pytest.raises(ValidationError):
        resolve_scope("until_date", now=clock(), tz=JST)
    with pytest.raises(ValidationError):
        resolve_scope("someday", now=clock(), tz=JST)


def test_compact_preset_and_summary_text(board_root: Path, clock):
    _seed(board_root)
    scope, summary = Compactor(board_root, tz=JST, clock=clock).compact_preset("general", "through_yesterday")
    assert summary.appended == 3
    text = format_summary("general", scope.label, summary)
    assert text == (
        'Compacted logs for "general" (through yesterday): considered 3, appended 3, '
        "skipped 0, days touched: 2025-11-10, 2025-11-11."
    )


def test_non_utf8_file_is_skipped_and_run_continues(board_root: Path, clock):
    directory = msgs_dir(board_root, "general")
    bad = directory / "2025-11-10T00-00-00-000Z_badbadba.json"
    bad.write_bytes(b"\xff\xfe garbage\n")
    Spool(board_root, clock=clock).post("general", "alice", "fine")

    summary = Compactor(board_root, tz=JST, clock=clock).compact(
        "general", datetime(2025, 11, 13, tzinfo=timezone.utc)
    )
    assert (summary.appended, summary.skipped) == (1, 1)
    assert list_files(directory) == [bad.name]


def test_crlf_record_is_logged_byte_for_byte(board_root: Path, clock):
    directory = msgs_dir(board_root, "general")
    raw = b'{"id":"x","ts":"2025-11-10T00:00:00.000Z","text":"hi"}\r\n'
    (directory / "2025-11-10T00-00-00-000Z_0000000x.json").write_bytes(raw)
    Compactor(board_root, tz=JST, clock=clock).compact("general", datetime(2025, 11, 13, tzinfo=timezone.utc))
    assert (logs_dir(board_root, "general") / "2025-11-10.ndjson").read_bytes() == raw
