"""Unread counting across rooms, driven by the same ``since`` listing.

Presentation (toasts, badges, status bars) belongs to whoever consumes
``UnreadSummary``.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from raboard.errors import DirectoryUnavailableError, ValidationError
from raboard.listing import since, tail
from raboard.readiness import is_room_ready, list_rooms, msgs_dir

from .config import BoardSettings
from .state import CursorStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoomUnread:
    room: str
    count: int


@dataclass(frozen=True)
class RoomDelta:
    room: str
    count: int
    increment: int


@dataclass
class UnreadSummary:
    total: int = 0
    rooms: List[RoomUnread] = field(default_factory=list)


class UnreadMonitor:
    """Track how many records each room gained past its last-seen cursor.

    The first scan of a room only records a baseline; counting starts with
    the next record after it.
    """

    def __init__(
        self,
        settings: BoardSettings,
        cursors: CursorStore,
        *,
        active_room: Callable[[], Optional[str]] = lambda: None,
    ) -> None:
        self.settings = settings
        self.cursors = cursors
        self._active_room = active_room
        self._unread: Dict[str, int] = {}
        self._observed: Dict[str, str] = {}
        self._lock = threading.RLock()

    @property
    def interval(self) -> float:
        """Seconds between scans (``notifications.throttle_ms``)."""
        return self.settings.notification_throttle_ms / 1000.0

    def target_rooms(self) -> List[str]:
        if self.settings.notification_rooms:
            seen: Dict[str, None] = {}
            for room in self.settings.notification_rooms:
                seen.setdefault(room.strip(), None)
            return [r for r in seen if r]
        return list_rooms(self.settings.share_root)

    def scan(self) -> List[RoomDelta]:
        """One pass over the target rooms; returns the rooms that grew."""
        if not self.settings.notifications_enabled:
            with self._lock:
                self._unread.clear()
                self._observed.clear()
            return []

        root = self.settings.share_root
        rooms = self.target_rooms()
        active = self._active_room()
        deltas: List[RoomDelta] = []
        with self._lock:
            for room in rooms:
                if room == active and not self.settings.include_active_room:
                    continue
                try:
                    ready = is_room_ready(root, room)
                except ValidationError:
                    ready = False
                if not ready:
                    self._forget(room)
                    continue
                delta = self._scan_room(room)
                if delta is not None and delta.increment > 0:
                    deltas.append(delta)
            for room in list(self._unread):
                if room not in rooms:
                    self._forget(room)
        return deltas

    def _scan_room(self, room: str) -> Optional[RoomDelta]:
        directory = msgs_dir(self.settings.share_root, room)
        baseline = self._observed.get(room)
        last_seen = self.cursors.get(room)
        if last_seen and (not baseline or last_seen > baseline):
            baseline = last_seen

        try:
            if baseline is None:
                # "" marks a room that was empty when first seen
                latest = tail(directory, 1)
                self._observed[room] = latest[-1] if latest else ""
                return None
            files = since(directory, baseline or None).files
        except DirectoryUnavailableError:
            return None
        except OSError as e:
            logger.warning('Failed to enumerate messages for room "%s": %s', room, e)
            return None

        if not files:
            return None
        self._observed[room] = files[-1]
        count = self._unread.get(room, 0) + len(files)
        self._unread[room] = count
        return RoomDelta(room=room, count=count, increment=len(files))

    def _forget(self, room: str) -> None:
        self._unread.pop(room, None)
        self._observed.pop(room, None)

    def mark_read(self, room: str) -> None:
        with self._lock:
            self._unread.pop(room, None)
            last_seen = self.cursors.get(room)
            if last_seen:
                self._observed[room] = last_seen
            else:
                self._observed.pop(room, None)

    def summary(self) -> UnreadSummary:
        with self._lock:
            entries = [RoomUnread(r, c) for r, c in self._unread.items() if c > 0]
        entries.sort(key=lambda e: (-e.count, e.room))
        return UnreadSummary(total=sum(e.count for e in entries), rooms=entries)
