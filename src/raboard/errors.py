"""Exception taxonomy for the board engine.

I/O failures stay ``OSError`` (``IOError``) so callers can treat them as
transient; the two I/O flavours worth telling apart get their own subclasses.
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union


class BoardError(Exception):
    """Base class for non-I/O board conditions."""


class ValidationError(BoardError, ValueError):
    """Bad caller input (empty text, empty user, bad attachment path...)."""


class CorruptRecordError(BoardError):
    """A single record file could not be decoded into its schema."""

    def __init__(self, path: Union[str, Path], reason: str) -> None:
        super().__init__(f"Corrupt record {path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class LockUnavailableError(BoardError):
    """Another holder owns the lock (or acquisition kept racing)."""

    def __init__(
        self,
        lock_path: Union[str, Path],
        expires_at: Optional[str] = None,
        detail: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        if message is None:
            message = f"Lock at {lock_path} is held until {expires_at}"
            if detail:
                message += f" ({detail})"
            message += "."
        super().__init__(message)
        self.lock_path = Path(lock_path)
        self.expires_at = expires_at
        self.detail = detail


class RoomNotReadyError(BoardError):
    """The room folder or one of its required subdirectories is missing."""

    def __init__(self, room: str, missing: List[str], room_root: Union[str, Path]) -> None:
        super().__init__(f'Room "{room}" is missing required directories: {", ".join(missing)}')
        self.room = room
        self.missing = list(missing)
        self.room_root = Path(room_root)


class DirectoryUnavailableError(FileNotFoundError):
    """Directory absent: feature unavailable for now, retry on a later tick."""


class PresenceUnavailableError(DirectoryUnavailableError):
    """The shared ``presence/`` directory does not exist."""


class RecordNameCollisionError(FileExistsError):
    """Exclusive publish found the final record name already taken."""
