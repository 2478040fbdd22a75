"""Per-room last-seen cursors, persisted by the host (never by the engine)."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from raboard.io import ensure_dir, read_json, write_json_atomic

logger = logging.getLogger(__name__)


class CursorStore:
    """``{room: last seen record name}`` kept in one small JSON file.

    With ``path=None`` the cursors live in memory only.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        self._cursors: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cursor state %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str) and v}

    def _save(self) -> None:
        if self.path is None:
            return
        ensure_dir(self.path.parent)
        write_json_atomic(self.path.parent, self.path.name, dict(sorted(self._cursors.items())))

    def get(self, room: str) -> Optional[str]:
        with self._lock:
            return self._cursors.get(room)

    def set(self, room: str, cursor: Optional[str]) -> None:
        """Store ``cursor`` for ``room``; ``None`` forgets the room."""
        with self._lock:
            if self._cursors.get(room) == cursor:
                return
            if cursor:
                self._cursors[room] = cursor
            elif room in self._cursors:
                del self._cursors[room]
            else:
                return
            try:
                self._save()
            except OSError as e:
                logger.warning("Failed to persist last seen message for %s: %s", room, e)

    def clear(self, room: str) -> None:
        self.set(room, None)

    def as_dict(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._cursors)
