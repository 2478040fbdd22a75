"""File-share message board engine.

Multiple clients exchange messages and presence through nothing but a shared
directory tree:

    rooms/<room>/msgs/<YYYY-MM-DDTHH-MM-SS-sssZ>_<token>.json
    rooms/<room>/attachments/...
    rooms/<room>/logs/YYYY-MM-DD.ndjson
    rooms/<room>/logs/.lock
    presence/<user>.json

Typical usage
-------------
from raboard import Spool, Tailer, msgs_dir
Spool(root).post("general", "alice", "hello")
event = Tailer(msgs_dir(root, "general")).poll()
"""
from __future__ import annotations

from .compactor import CompactionPreset, CompactionScope, Compactor, format_summary, resolve_scope
from .errors import (
    BoardError,
    CorruptRecordError,
    DirectoryUnavailableError,
    LockUnavailableError,
    PresenceUnavailableError,
    RecordNameCollisionError,
    RoomNotReadyError,
    ValidationError,
)
from .listing import SinceResult, since, tail
from .lock import FileLock, with_file_lock
from .models import Attachment, CompactionSummary, LockMetadata, MessageRecord, PresenceEntry
from .presence import heartbeat, scan
from .readiness import (
    check_presence_root,
    ensure_room_ready,
    init_presence,
    init_room,
    list_rooms,
    msgs_dir,
)
from .spool import Spool
from .tailer import TailEvent, Tailer, TailerState

__version__ = "0.1.0"

__all__ = [
    "Attachment",
    "BoardError",
    "CompactionPreset",
    "CompactionScope",
    "CompactionSummary",
    "Compactor",
    "CorruptRecordError",
    "DirectoryUnavailableError",
    "FileLock",
    "LockMetadata",
    "LockUnavailableError",
    "MessageRecord",
    "PresenceEntry",
    "PresenceUnavailableError",
    "RecordNameCollisionError",
    "RoomNotReadyError",
    "SinceResult",
    "Spool",
    "TailEvent",
    "Tailer",
    "TailerState",
    "ValidationError",
    "__version__",
    "check_presence_root",
    "ensure_room_ready",
    "format_summary",
    "heartbeat",
    "init_presence",
    "init_room",
    "list_rooms",
    "msgs_dir",
    "resolve_scope",
    "scan",
    "since",
    "tail",
    "with_file_lock",
]
