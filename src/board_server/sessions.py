"""Host-side polling loops: one explicit session object per room / user.

Nothing here is global: the host owns its sessions, and switching rooms is
just stopping one ``RoomSession`` and starting another.
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional, Union

from raboard.errors import DirectoryUnavailableError, PresenceUnavailableError
from raboard.presence import heartbeat, scan
from raboard.readiness import ensure_room_ready, msgs_dir
from raboard.tailer import DEFAULT_INITIAL_LIMIT, TailEvent, Tailer

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class PeriodicTask:
    """Fire ``fn`` every ``interval`` seconds on a worker thread.

    A slow tick never delays the schedule, and a tick that comes due while
    the previous one is still running is dropped (``coalesced`` counts them).
    ``stop()`` ends scheduling; it does not interrupt a tick in flight.
    """

    def __init__(self, interval: float, fn: Callable[[], None], name: str = "task") -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = float(interval)
        self.name = name
        self._fn = fn
        self._stop = threading.Event()
        self._in_flight = threading.Lock()
        self._scheduler: Optional[threading.Thread] = None
        self._worker: Optional[threading.Thread] = None
        self.ticks = 0
        self.coalesced = 0

    @property
    def running(self) -> bool:
        return self._scheduler is not None and not self._stop.is_set()

    def start(self, *, immediate: bool = True) -> None:
        if self._scheduler is not None:
            return
        self._stop.clear()
        self._scheduler = threading.Thread(target=self._loop, name=f"{self.name}-timer", daemon=True)
        self._scheduler.start()
        if immediate:
            self.trigger()

    def stop(self) -> None:
        self._stop.set()
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None and scheduler is not threading.current_thread():
            scheduler.join(timeout=self.interval + 1)

    def trigger(self) -> bool:
        """Fire one tick now unless stopped or one is already running."""
        if self._stop.is_set():
            return False
        if not self._in_flight.acquire(blocking=False):
            self.coalesced += 1
            logger.debug("%s: tick still in flight, coalescing", self.name)
            return False
        self.ticks += 1
        self._worker = threading.Thread(target=self._run, name=f"{self.name}-tick", daemon=True)
        self._worker.start()
        return True

    def join_tick(self, timeout: Optional[float] = None) -> None:
        """Wait for the most recent tick to finish (handy for tests and shutdown)."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.trigger()

    def _run(self) -> None:
        try:
            self._fn()
        except Exception:
            logger.exception("%s: tick failed", self.name)
        finally:
            self._in_flight.release()


# -----------------------------
# Room polling
# -----------------------------
class RoomSession:
    """Polls one room and hands ``TailEvent``s to ``on_event``.

    ``cursor`` is the host's to persist (``on_cursor`` is called whenever it
    moves); pass it back in to resume without a fresh snapshot.
    """

    def __init__(
        self,
        root: PathLike,
        room: str,
        on_event: Callable[[TailEvent], None],
        *,
        interval: float = 5.0,
        max_initial: int = DEFAULT_INITIAL_LIMIT,
        cursor: Optional[str] = None,
        on_cursor: Optional[Callable[[str, Optional[str]], None]] = None,
    ) -> None:
        self.root = Path(root)
        self.room = room
        self._on_event = on_event
        self._on_cursor = on_cursor
        self._stopped = threading.Event()
        self.tailer = Tailer(msgs_dir(self.root, room), max_initial=max_initial, cursor=cursor)
        self.task = PeriodicTask(interval, self.tick, name=f"room-{room}")

    @property
    def cursor(self) -> Optional[str]:
        return self.tailer.cursor

    def start(self) -> None:
        """Check readiness (``RoomNotReadyError`` propagates) and start polling."""
        ensure_room_ready(self.root, self.room)
        self._stopped.clear()
        self.task.start(immediate=True)
        logger.info("Watching room %s", self.room)

    def stop(self) -> None:
        self._stopped.set()
        self.task.stop()

    def tick(self) -> None:
        try:
            event = self.tailer.poll()
        except DirectoryUnavailableError as e:
            logger.info("Room %s unavailable, retrying next cycle: %s", self.room, e)
            return
        except OSError as e:
            logger.warning("Failed to poll room %s: %s", self.room, e)
            return
        if event is None or self._stopped.is_set():
            return
        self._on_event(event)
        if self._on_cursor is not None:
            self._on_cursor(self.room, event.cursor)


# -----------------------------
# Presence
# -----------------------------
class PresenceSession:
    """Heartbeat for ``user`` and keep the live user list fresh.

    ``on_users`` only fires when the list changes. A missing presence folder
    publishes ``[]`` and both loops keep retrying on later ticks.
    """

    def __init__(
        self,
        root: PathLike,
        user: str,
        on_users: Callable[[List[str]], None],
        *,
        ttl_seconds: float = 60,
        heartbeat_interval: float = 30,
        scan_interval: float = 5,
        freshness: str = "mtime",
    ) -> None:
        self.root = Path(root)
        self.user = user
        self.ttl_seconds = ttl_seconds
        self.freshness = freshness
        self._on_users = on_users
        self._stopped = threading.Event()
        self._last_users: Optional[List[str]] = None
        self.available = True
        self.heartbeat_task = PeriodicTask(heartbeat_interval, self.beat, name="heartbeat")
        self.scan_task = PeriodicTask(scan_interval, self.refresh, name="presence-scan")

    @property
    def users(self) -> List[str]:
        return list(self._last_users or [])

    def start(self) -> None:
        self._stopped.clear()
        self.heartbeat_task.start(immediate=True)
        self.scan_task.start(immediate=True)

    def stop(self) -> None:
        self._stopped.set()
        self.heartbeat_task.stop()
        self.scan_task.stop()

    def beat(self) -> None:
        try:
            heartbeat(self.root, self.user)
        except PresenceUnavailableError as e:
            self._unavailable(e)
        except OSError as e:
            logger.warning("Failed to write presence heartbeat: %s", e)

    def refresh(self) -> None:
        try:
            users = scan(self.root, self.ttl_seconds, freshness=self.freshness)  # type: ignore[arg-type]
        except PresenceUnavailableError as e:
            self._unavailable(e)
            return
        except OSError as e:
            logger.warning("Failed to scan presence: %s", e)
            return
        if not self.available:
            logger.info("Presence directory is back; presence re-enabled")
        self.available = True
        self._publish(users)

    def _unavailable(self, error: Exception) -> None:
        if self.available:
            logger.warning("Presence features are disabled: %s", error)
        self.available = False
        self._publish([])

    def _publish(self, users: List[str]) -> None:
        if self._stopped.is_set() or users == self._last_users:
            return
        self._last_users = list(users)
        self._on_users(list(users))
