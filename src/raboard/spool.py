"""Per-room message spool: one brand-new file per post, never mutated."""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as SchemaError

from .errors import CorruptRecordError, RecordNameCollisionError, ValidationError
from .io import read_text, write_json_atomic
from .models import Attachment, MessageRecord
from .naming import format_instant, next_millisecond, random_token, record_name, to_utc_millis, utc_now
from .readiness import ensure_room_ready, msgs_dir, validate_room

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

MAX_POST_ATTEMPTS = 3


# -----------------------------
# Attachments
# -----------------------------
def normalize_attachment_path(raw: str) -> str:
    """Canonical ``attachments/...`` relative path, or ``ValidationError``."""
    candidate = (raw or "").strip().replace("\\", "/")
    while candidate.startswith("./"):
        candidate = candidate[2:]
    if not candidate or candidate.startswith("/") or ":" in candidate.split("/", 1)[0]:
        raise ValidationError(f"Attachment path must be relative: {raw!r}")

    segments = [s.strip() for s in candidate.split("/") if s.strip()]
    if any(s in {".", ".."} for s in segments):
        raise ValidationError(f"Attachment path may not contain '.' or '..': {raw!r}")
    if len(segments) < 2 or segments[0].lower() != "attachments":
        raise ValidationError(f"Attachment path must live under attachments/: {raw!r}")
    segments[0] = "attachments"
    return "/".join(segments)


def _coerce_attachment(item: Union[Attachment, Dict[str, Any]]) -> Attachment:
    try:
        att = item if isinstance(item, Attachment) else Attachment.model_validate(item)
    except SchemaError as e:
        raise ValidationError(f"Invalid attachment: {e}") from e
    return att.model_copy(update={"rel_path": normalize_attachment_path(att.rel_path)})


# -----------------------------
# Reading records back
# -----------------------------
def decode_record(payload: str, path: PathLike = "<memory>") -> MessageRecord:
    """Strictly decode one spool payload; any failure is ``CorruptRecordError``."""
    if not payload.strip():
        raise CorruptRecordError(path, "empty file")
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise CorruptRecordError(path, f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CorruptRecordError(path, "payload is not an object")
    try:
        return MessageRecord.model_validate(data)
    except SchemaError as e:
        raise CorruptRecordError(path, f"schema mismatch: {e.error_count()} error(s)") from e


def read_record(path: PathLike) -> MessageRecord:
    try:
        payload = read_text(path)
    except UnicodeDecodeError as e:
        raise CorruptRecordError(path, "invalid UTF-8") from e
    return decode_record(payload, path)


def load_records(directory: PathLike, names: Iterable[str]) -> List[MessageRecord]:
    """Hydrate listed names, skipping (and logging) unreadable or corrupt files."""
    directory = Path(directory)
    out: List[MessageRecord] = []
    for name in names:
        path = directory / name
        try:
            out.append(read_record(path))
        except CorruptRecordError as e:
            logger.warning("Skipping %s", e)
        except OSError as e:
            # e.g. compacted away between listing and reading
            logger.warning("Failed to read %s: %s", path, e)
    return out


# -----------------------------
# Spool
# -----------------------------
class Spool:
    """Posts messages under ``<root>/rooms/<room>/msgs``.

    Instants issued by one Spool are strictly increasing, so names produced by
    successive posts sort strictly increasing even within one millisecond.
    """

    def __init__(
        self,
        root: PathLike,
        *,
        clock: Callable[[], datetime] = utc_now,
        token_factory: Callable[[], str] = random_token,
        max_attempts: int = MAX_POST_ATTEMPTS,
    ) -> None:
        self.root = Path(root)
        self._clock = clock
        self._token_factory = token_factory
        self._max_attempts = max(1, int(max_attempts))
        self._last_instant: Optional[datetime] = None
        self._lock = threading.Lock()

    def _next_instant(self) -> datetime:
        with self._lock:
            now = to_utc_millis(self._clock())
            if self._last_instant is not None and now <= self._last_instant:
                now = next_millisecond(self._last_instant)
            self._last_instant = now
            return now

    def post(
        self,
        room: str,
        sender: str,
        text: str,
        attachments: Optional[Iterable[Union[Attachment, Dict[str, Any]]]] = None,
        *,
        reply_to: Optional[str] = None,
    ) -> MessageRecord:
        """Validate, then publish one new record file; returns the record.

        Raises ``ValidationError`` for bad input, ``RoomNotReadyError`` when the
        room is not provisioned, and ``OSError`` for share failures.
        """
        body = (text or "").strip()
        if not body:
            raise ValidationError("Message text cannot be empty.")
        author = (sender or "").strip()
        if not author:
            raise ValidationError("Sender name cannot be empty.")
        room = validate_room(room)
        reply = (reply_to or "").strip() or None
        atts = [_coerce_attachment(a) for a in (attachments or [])]

        ensure_room_ready(self.root, room)
        directory = msgs_dir(self.root, room)

        last_error: Optional[RecordNameCollisionError] = None
        for attempt in range(1, self._max_attempts + 1):
            instant = self._next_instant()
            token = self._token_factory()
            record = MessageRecord(
                id=token,
                ts=format_instant(instant),
                room=room,
                from_=author,
                text=body,
                reply_to=reply,
                attachments=atts,
            )
            name = record_name(instant, token)
            try:
                write_json_atomic(directory, name, record.to_wire(), exclusive=True)
            except RecordNameCollisionError as e:
                last_error = e
                logger.warning("Record name collision on %s (attempt %d), retrying", name, attempt)
                continue
            logger.debug("Posted %s to room %s", name, room)
            return record

        assert last_error is not None
        raise last_error
