"""Fold a room's spool into date-partitioned NDJSON logs.

Each due record is appended to ``logs/YYYY-MM-DD.ndjson`` and only then is
the spool file deleted. A crash between the two steps leaves the record in
both places and the next run appends it again: delivery into the log is
at-least-once, and a record is never in neither place.
"""
from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Set, Tuple, Union

from .errors import ValidationError
from .io import append_line, dumps_line, ensure_dir, read_text
from .listing import list_files
from .lock import FileLock
from .models import CompactionSummary
from .naming import parse_instant, utc_now
from .readiness import ensure_room_ready, lock_path, logs_dir, msgs_dir, validate_room

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_UTC_OFFSET_HOURS = 9
LOCK_TTL_SECONDS = 15 * 60
LOG_SUFFIX = ".ndjson"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class CompactionPreset(str, enum.Enum):
    THROUGH_YESTERDAY = "through_yesterday"
    EXCLUDE_TODAY = "exclude_today"
    LAST_WEEK = "last_week"
    UNTIL_DATE = "until_date"


_PRESET_LABELS = {
    CompactionPreset.THROUGH_YESTERDAY: "through yesterday",
    CompactionPreset.EXCLUDE_TODAY: "all but today",
    CompactionPreset.LAST_WEEK: "through last week",
    CompactionPreset.UNTIL_DATE: "through",
}


@dataclass(frozen=True)
class CompactionScope:
    cutoff: datetime
    label: str


# -----------------------------
# Reference time zone helpers
# -----------------------------
def reference_zone(utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS) -> timezone:
    return timezone(timedelta(hours=utc_offset_hours))


def date_key(instant: datetime, tz: timezone) -> str:
    """Calendar date of ``instant`` in the reference zone, as ``YYYY-MM-DD``."""
    return instant.astimezone(tz).strftime("%Y-%m-%d")


def start_of_day(now: datetime, tz: timezone) -> datetime:
    local = now.astimezone(tz)
    return datetime(local.year, local.month, local.day, tzinfo=tz).astimezone(timezone.utc)


def start_of_week(now: datetime, tz: timezone) -> datetime:
    """Monday 00:00 of the week containing ``now``, in the reference zone."""
    day_start = start_of_day(now, tz)
    return day_start - timedelta(days=now.astimezone(tz).weekday())


def cutoff_for_date(value: str, tz: timezone) -> datetime:
    """Start of the day after ``value`` (``YYYY-MM-DD``) in the reference zone."""
    text = (value or "").strip()
    if not _DATE_RE.match(text):
        raise ValidationError("Please enter a date in YYYY-MM-DD format.")
    try:
        day = date.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(f"Invalid date specified: {text}") from e
    nxt = day + timedelta(days=1)
    return datetime(nxt.year, nxt.month, nxt.day, tzinfo=tz).astimezone(timezone.utc)


def resolve_scope(
    preset: Union[CompactionPreset, str],
    *,
    now: Optional[datetime] = None,
    until: Optional[str] = None,
    tz: Optional[timezone] = None,
) -> CompactionScope:
    try:
        preset = CompactionPreset(preset)
    except ValueError as e:
        raise ValidationError(f"Unknown compaction preset: {preset!r}") from e
    tz = tz or reference_zone()
    now = now or utc_now()
    label = _PRESET_LABELS[preset]
    if preset is CompactionPreset.LAST_WEEK:
        return CompactionScope(start_of_week(now, tz), label)
    if preset is CompactionPreset.UNTIL_DATE:
        if until is None:
            raise ValidationError("A cutoff date is required for until_date.")
        return CompactionScope(cutoff_for_date(until, tz), f"{label} {until.strip()}")
    # through_yesterday and exclude_today share the cutoff
    return CompactionScope(start_of_day(now, tz), label)


def format_summary(room: str, label: str, summary: CompactionSummary) -> str:
    days = ", ".join(summary.days_touched) if summary.days_touched else "none"
    return (
        f'Compacted logs for "{room}" ({label}): considered {summary.considered}, '
        f"appended {summary.appended}, skipped {summary.skipped}, days touched: {days}."
    )


# -----------------------------
# Compactor
# -----------------------------
class Compactor:
    """Single-writer compaction of one room at a time, under the room's lock."""

    def __init__(
        self,
        root: PathLike,
        *,
        tz: Optional[timezone] = None,
        lock_ttl_seconds: float = LOCK_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.root = Path(root)
        self.tz = tz or reference_zone()
        self.lock_ttl_seconds = lock_ttl_seconds
        self._clock = clock

    def compact(self, room: str, cutoff: datetime) -> CompactionSummary:
        """Move every record with ``ts < cutoff`` into the daily logs.

        Raises ``LockUnavailableError`` if another run holds the room, and
        ``OSError`` if the spool cannot be listed. Per-file problems only
        bump ``skipped``.
        """
        room = validate_room(room)
        ensure_room_ready(self.root, room)
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)

        lock = FileLock(
            lock_path(self.root, room),
            ttl_seconds=self.lock_ttl_seconds,
            detail=f"Compacting {room}",
            clock=self._clock,
        )
        with lock:
            summary = self._process(msgs_dir(self.root, room), logs_dir(self.root, room), cutoff)
        logger.info(
            "Compacted %s: considered=%d appended=%d skipped=%d days=%s",
            room, summary.considered, summary.appended, summary.skipped, summary.days_touched,
        )
        return summary

    def compact_preset(
        self,
        room: str,
        preset: Union[CompactionPreset, str],
        *,
        until: Optional[str] = None,
    ) -> Tuple[CompactionScope, CompactionSummary]:
        scope = resolve_scope(preset, now=self._clock(), until=until, tz=self.tz)
        return scope, self.compact(room, scope.cutoff)

    def _process(self, spool: Path, logs: Path, cutoff: datetime) -> CompactionSummary:
        names = list_files(spool)
        ensure_dir(logs)
        summary = CompactionSummary()
        days: Set[str] = set()

        for name in names:
            path = spool / name
            try:
                payload = read_text(path)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to read %s: %s", path, e)
                summary.skipped += 1
                continue

            instant = self._due_instant(path, payload)
            if instant is None:
                summary.skipped += 1
                continue
            if instant >= cutoff:
                continue

            summary.considered += 1
            key = date_key(instant, self.tz)
            try:
                append_line(logs / f"{key}{LOG_SUFFIX}", self._as_line(payload))
            except OSError as e:
                logger.warning("Failed to append %s to %s%s: %s", path, key, LOG_SUFFIX, e)
                summary.skipped += 1
                continue

            try:
                self._delete_source(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                # already in the log; the next run appends it again
                logger.warning("Failed to delete %s: %s", path, e)
                summary.skipped += 1
                continue

            summary.appended += 1
            days.add(key)

        summary.days_touched = sorted(days)
        return summary

    @staticmethod
    def _due_instant(path: Path, payload: str) -> Optional[datetime]:
        if not payload.strip():
            logger.warning("Skipping empty spool file %s", path)
            return None
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in %s: %s", path, e)
            return None
        if not isinstance(data, dict) or not isinstance(data.get("ts"), str):
            logger.warning("Skipping %s: no ts field", path)
            return None
        try:
            return parse_instant(data["ts"])
        except ValueError as e:
            logger.warning("Skipping %s: unparsable ts %r (%s)", path, data["ts"], e)
            return None

    @staticmethod
    def _as_line(payload: str) -> str:
        line = payload[:-1] if payload.endswith("\n") else payload
        if "\n" in line:
            # hand-written multi-line file; NDJSON needs it on one line
            return dumps_line(json.loads(line))
        return line + "\n"

    @staticmethod
    def _delete_source(path: Path) -> None:
        path.unlink()
