"""TTL-based mutual exclusion built on exclusive file creation.

The lock is held iff the lock file exists and ``now < expiresAt``. An
expired or unreadable lock file counts as absent and is removed before the
next attempt. The TTL is a crash safety net, not a lease to renew: pick one
longer than the worst-case critical section.
"""
from __future__ import annotations

import errno
import json
import logging
import os
import secrets
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

from pydantic import ValidationError as SchemaError

from .errors import DirectoryUnavailableError, LockUnavailableError
from .io import dumps_line, read_text
from .models import LockMetadata
from .naming import format_instant, parse_instant, utc_now

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
T = TypeVar("T")

DEFAULT_TTL_SECONDS = 10 * 60
# stale-lock cleanup races are retried this many times in total, then give up
MAX_ACQUIRE_ATTEMPTS = 3


def read_lock_metadata(path: PathLike) -> Optional[LockMetadata]:
    """Metadata of an existing lock file, or None if missing/unreadable/invalid."""
    try:
        data = json.loads(read_text(path))
        meta = LockMetadata.model_validate(data)
        parse_instant(meta.created_at)
        parse_instant(meta.expires_at)
    except FileNotFoundError:
        return None
    except (OSError, ValueError, SchemaError) as e:
        # JSONDecodeError is a ValueError
        logger.debug("Unreadable lock metadata at %s: %s", path, e)
        return None
    return meta


def is_expired(meta: LockMetadata, now: datetime) -> bool:
    return parse_instant(meta.expires_at) <= now


class FileLock:
    """Context manager around one acquisition of a lock file.

    >>> with FileLock(path, ttl_seconds=900, detail="Compacting general"):
    ...     ...
    """

    def __init__(
        self,
        path: PathLike,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        detail: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
        max_attempts: int = MAX_ACQUIRE_ATTEMPTS,
    ) -> None:
        self.path = Path(path)
        self.ttl_seconds = float(ttl_seconds)
        self.detail = detail
        self._clock = clock
        self._max_attempts = max(1, int(max_attempts))
        self._owner = secrets.token_hex(8)
        self._held: Optional[LockMetadata] = None

    @property
    def held(self) -> bool:
        return self._held is not None

    def _metadata(self) -> LockMetadata:
        now = self._clock()
        return LockMetadata(
            created_at=format_instant(now),
            expires_at=format_instant(now + timedelta(seconds=self.ttl_seconds)),
            detail=self.detail,
            owner=self._owner,
        )

    def _create(self, meta: LockMetadata) -> None:
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except (FileNotFoundError, NotADirectoryError) as e:
            raise DirectoryUnavailableError(
                errno.ENOENT, f"Lock directory unavailable: {self.path.parent}", str(self.path.parent)
            ) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(dumps_line(meta.to_wire()))
                f.flush()
                os.fsync(f.fileno())
        except OSError:
            self._remove()
            raise

    def _remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def acquire(self) -> LockMetadata:
        """Take the lock or raise ``LockUnavailableError``."""
        if self._held is not None:
            raise RuntimeError(f"Lock {self.path} already held by this instance")

        for attempt in range(1, self._max_attempts + 1):
            meta = self._metadata()
            try:
                self._create(meta)
            except FileExistsError:
                pass
            else:
                self._held = meta
                logger.debug("Acquired lock %s until %s", self.path, meta.expires_at)
                return meta

            existing = read_lock_metadata(self.path)
            if existing is not None and not is_expired(existing, self._clock()):
                raise LockUnavailableError(self.path, existing.expires_at, existing.detail)

            logger.info(
                "Removing stale lock %s (attempt %d/%d)", self.path, attempt, self._max_attempts
            )
            self._remove()

        raise LockUnavailableError(
            self.path,
            message=f"Could not acquire lock at {self.path} after {self._max_attempts} attempts.",
        )

    def release(self) -> None:
        """Delete the lock file if it is still ours."""
        if self._held is None:
            return
        try:
            current = read_lock_metadata(self.path)
            if current is not None and current.owner not in (None, self._owner):
                logger.warning(
                    "Lock %s was taken over by another holder (%s); leaving it in place",
                    self.path,
                    current.detail or current.owner,
                )
                return
            self._remove()
        finally:
            self._held = None

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def with_file_lock(
    lock_path: PathLike,
    fn: Callable[[], T],
    *,
    ttl_seconds: float = DEFAULT_TTL_SECONDS,
    detail: Optional[str] = None,
    clock: Callable[[], datetime] = utc_now,
) -> T:
    """Run ``fn`` while holding the lock; the lock is released however ``fn`` exits."""
    with FileLock(lock_path, ttl_seconds=ttl_seconds, detail=detail, clock=clock):
        return fn()
