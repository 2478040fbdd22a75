"""Heartbeat / TTL presence on the same atomic-write + listing substrate.

Liveness comes from freshness, never from explicit leave events. Freshness
is the presence file's modification time by default (``freshness="mtime"``);
``freshness="ts"`` uses the ``ts`` written into the file instead, falling
back to the modification time when that field is unusable. The TTL window is
inclusive: age == ttl is still alive.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from pydantic import ValidationError as SchemaError

from .errors import DirectoryUnavailableError, PresenceUnavailableError, ValidationError
from .io import read_text, write_json_atomic
from .listing import list_files
from .models import PresenceEntry
from .naming import format_instant, parse_instant, utc_now
from .readiness import presence_dir

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Freshness = Literal["mtime", "ts"]

HEARTBEAT_INTERVAL_SECONDS = 30
PRESENCE_SCAN_INTERVAL_SECONDS = 5
DEFAULT_TTL_SECONDS = 60

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_user(user: str) -> str:
    """File-system-safe token for ``user`` (``ValidationError`` if nothing is left)."""
    token = _UNSAFE_RE.sub("_", (user or "").strip()).strip("_")
    if not token:
        raise ValidationError("Presence user name must contain at least one valid character.")
    return token


def heartbeat(root: PathLike, user: str, now: Optional[datetime] = None) -> Path:
    """Rewrite ``presence/<token>.json`` with ``{user, ts: now}``."""
    token = sanitize_user(user)
    entry = PresenceEntry(user=user.strip(), ts=format_instant(now or utc_now()))
    try:
        return write_json_atomic(presence_dir(root), f"{token}.json", entry.model_dump())
    except DirectoryUnavailableError as e:
        raise PresenceUnavailableError(e.errno, "Presence directory is unavailable.", e.filename) from e


def _read_entry(path: Path) -> Optional[PresenceEntry]:
    try:
        return PresenceEntry.model_validate(json.loads(read_text(path)))
    except (OSError, ValueError, SchemaError) as e:
        logger.warning("Failed to parse presence entry %s: %s", path, e)
        return None


def _entry_instant(entry: Optional[PresenceEntry]) -> Optional[datetime]:
    if entry is None:
        return None
    try:
        return parse_instant(entry.ts)
    except ValueError:
        return None


def is_fresh(freshness: datetime, now: datetime, ttl_seconds: float) -> bool:
    return (now - freshness).total_seconds() <= ttl_seconds


def scan(
    root: PathLike,
    ttl_seconds: float = DEFAULT_TTL_SECONDS,
    now: Optional[datetime] = None,
    *,
    freshness: Freshness = "mtime",
) -> List[str]:
    """Display names of live users, case-insensitively deduplicated and sorted.

    Raises ``PresenceUnavailableError`` when ``presence/`` is missing; other
    listing failures propagate as ``OSError``. Problems with a single entry
    are logged and never fail the scan.
    """
    if freshness not in ("mtime", "ts"):
        raise ValueError(f"freshness must be 'mtime' or 'ts', not {freshness!r}")
    now = now or utc_now()
    directory = presence_dir(root)
    try:
        names = list_files(directory, ".json")
    except DirectoryUnavailableError as e:
        raise PresenceUnavailableError(e.errno, "Presence directory is unavailable.", e.filename) from e

    users: List[str] = []
    for name in names:
        path = directory / name
        try:
            st = path.stat()
        except OSError as e:
            logger.warning("Failed to read presence entry %s: %s", path, e)
            continue
        mtime = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)

        entry: Optional[PresenceEntry] = None
        if freshness == "ts":
            entry = _read_entry(path)
            seen = _entry_instant(entry) or mtime
        else:
            seen = mtime
        if not is_fresh(seen, now, ttl_seconds):
            continue
        if freshness == "mtime":
            entry = _read_entry(path)

        label = entry.user.strip() if entry is not None else ""
        if entry is not None and not label:
            label = "unknown"
        users.append(label or name[: -len(".json")])

    unique: Dict[str, str] = {}
    for user in users:
        user = user.strip()
        if user and user.casefold() not in unique:
            unique[user.casefold()] = user
    return sorted(unique.values(), key=lambda u: (u.casefold(), u))
