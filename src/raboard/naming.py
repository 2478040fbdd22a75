"""Record file names: the only ordering oracle of the board.

A record name looks like ``2025-11-12T03-21-45-123Z_1a2b3c4d.json``. Every
field is fixed width and the time zone is always UTC, so plain string
comparison of two names equals chronological-then-suffix comparison.
"""
from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional

RECORD_SUFFIX = ".json"
TOKEN_BYTES = 4

_RECORD_NAME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})-(\d{2})-(\d{3})Z_([A-Za-z0-9_-]+)\.json$"
)


class RecordName(NamedTuple):
    instant: datetime
    token: str


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_millis(dt: datetime) -> datetime:
    """Return ``dt`` in UTC, truncated to whole milliseconds (naive means UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def format_instant(dt: datetime) -> str:
    """ISO-8601 instant with millisecond precision and a ``Z`` suffix."""
    dt = to_utc_millis(dt)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 instant into an aware UTC datetime.

    Accepts a trailing ``Z``. Values without an offset are taken as UTC.
    Raises ``ValueError`` for anything else.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("timestamp must be a non-empty string")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def filename_timestamp(dt: datetime) -> str:
    """Colon-free, fixed-width UTC timestamp usable inside a file name."""
    dt = to_utc_millis(dt)
    return dt.strftime("%Y-%m-%dT%H-%M-%S-") + f"{dt.microsecond // 1000:03d}Z"


def random_token(nbytes: int = TOKEN_BYTES) -> str:
    return secrets.token_hex(max(TOKEN_BYTES, nbytes))


def record_name(ts: datetime, token: str) -> str:
    if not token or not re.fullmatch(r"[A-Za-z0-9_-]+", token):
        raise ValueError(f"invalid record token: {token!r}")
    return f"{filename_timestamp(ts)}_{token}{RECORD_SUFFIX}"


def parse_record_name(name: str) -> Optional[RecordName]:
    """Decode a record name; returns None for names this module did not produce."""
    m = _RECORD_NAME_RE.match(name)
    if not m:
        return None
    year, month, day, hour, minute, second, millis, token = m.groups()
    try:
        instant = datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second),
            int(millis) * 1000, tzinfo=timezone.utc,
        )
    except ValueError:
        return None
    return RecordName(instant=instant, token=token)


def next_millisecond(dt: datetime) -> datetime:
    return to_utc_millis(dt) + timedelta(milliseconds=1)
