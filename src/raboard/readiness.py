"""Share layout and the room readiness checks every writer relies on."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Union

from .errors import RoomNotReadyError, ValidationError
from .io import ensure_dir

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

REQUIRED_ROOM_SUBDIRS = ("msgs", "attachments", "logs")
ROOM_FOLDER = "room folder"

_BAD_ROOM_RE = re.compile(r"[\\/\x00]")


def validate_room(room: str) -> str:
    """Room names are one non-empty path segment."""
    name = (room or "").strip()
    if not name or name in {".", ".."} or _BAD_ROOM_RE.search(name):
        raise ValidationError(f"Invalid room name: {room!r}")
    return name


def rooms_dir(root: PathLike) -> Path:
    return Path(root) / "rooms"


def room_dir(root: PathLike, room: str) -> Path:
    return rooms_dir(root) / validate_room(room)


def msgs_dir(root: PathLike, room: str) -> Path:
    return room_dir(root, room) / "msgs"


def attachments_dir(root: PathLike, room: str) -> Path:
    return room_dir(root, room) / "attachments"


def logs_dir(root: PathLike, room: str) -> Path:
    return room_dir(root, room) / "logs"


def lock_path(root: PathLike, room: str) -> Path:
    return logs_dir(root, room) / ".lock"


def presence_dir(root: PathLike) -> Path:
    return Path(root) / "presence"


def missing_room_parts(root: PathLike, room: str) -> List[str]:
    base = room_dir(root, room)
    missing: List[str] = []
    if not base.is_dir():
        missing.append(ROOM_FOLDER)
    for sub in REQUIRED_ROOM_SUBDIRS:
        if not (base / sub).is_dir():
            missing.append(sub)
    return missing


def is_room_ready(root: PathLike, room: str) -> bool:
    return not missing_room_parts(root, room)


def ensure_room_ready(root: PathLike, room: str) -> None:
    """Raise ``RoomNotReadyError`` unless the room and its subdirectories exist.

    Never creates anything; provisioning is ``init_room``'s job.
    """
    missing = missing_room_parts(root, room)
    if missing:
        raise RoomNotReadyError(room, missing, room_dir(root, room))


def init_room(root: PathLike, room: str) -> Path:
    """Administrative provisioning of a room (idempotent)."""
    base = room_dir(root, room)
    for sub in REQUIRED_ROOM_SUBDIRS:
        ensure_dir(base / sub)
    logger.info("Provisioned room %s at %s", room, base)
    return base


def init_presence(root: PathLike) -> Path:
    return ensure_dir(presence_dir(root))


def check_presence_root(root: PathLike) -> bool:
    """True when ``presence/`` exists; presence features are off otherwise."""
    path = presence_dir(root)
    if path.is_dir():
        return True
    logger.warning("Presence root missing at %s. Presence features are disabled.", path)
    return False


def list_rooms(root: PathLike) -> List[str]:
    """Sorted room directory names; a missing ``rooms/`` yields ``[]``."""
    base = rooms_dir(root)
    try:
        return sorted(p.name for p in base.iterdir() if p.is_dir() and not p.name.startswith("."))
    except FileNotFoundError:
        return []
