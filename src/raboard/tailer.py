"""Cursor-driven incremental reader that turns a spool directory into events."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Literal, Optional, Union

from .listing import since, tail
from .models import MessageRecord
from .spool import load_records

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_INITIAL_LIMIT = 200


class TailerState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIAL_LOAD = "initial_load"
    STEADY = "steady"


@dataclass
class TailEvent:
    """``reset`` replaces the consumer's view; ``append`` extends it."""

    kind: Literal["reset", "append"]
    records: List[MessageRecord] = field(default_factory=list)
    names: List[str] = field(default_factory=list)
    cursor: Optional[str] = None


class Tailer:
    """Per-directory polling state machine.

    The first ``poll()`` loads the newest ``max_initial`` records and emits a
    reset; later polls emit appends for names after the cursor, or nothing.
    The cursor always advances to the last *listed* name, so a corrupt file
    is skipped once and never retried.

    Passing ``cursor`` resumes a previous reader: the first poll then goes
    straight to incremental mode.
    """

    def __init__(
        self,
        directory: PathLike,
        *,
        max_initial: int = DEFAULT_INITIAL_LIMIT,
        cursor: Optional[str] = None,
    ) -> None:
        self.directory = Path(directory)
        self.max_initial = max(1, int(max_initial))
        self._cursor = cursor or None
        self._state = TailerState.STEADY if self._cursor else TailerState.UNINITIALIZED

    @property
    def state(self) -> TailerState:
        return self._state

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    def reset(self) -> None:
        """Forget the cursor; the next poll reloads the initial snapshot."""
        self._cursor = None
        self._state = TailerState.UNINITIALIZED

    def poll(self) -> Optional[TailEvent]:
        """Run one cycle. Listing errors propagate and leave the state unchanged."""
        if self._state is not TailerState.STEADY:
            return self._initial_load()
        return self._incremental()

    def _initial_load(self) -> TailEvent:
        self._state = TailerState.INITIAL_LOAD
        try:
            names = tail(self.directory, self.max_initial)
        except BaseException:
            self._state = TailerState.UNINITIALIZED
            raise
        records = load_records(self.directory, names)
        if names:
            self._cursor = names[-1]
        self._state = TailerState.STEADY
        return TailEvent(kind="reset", records=records, names=names, cursor=self._cursor)

    def _incremental(self) -> Optional[TailEvent]:
        result = since(self.directory, self._cursor)
        if not result.files:
            return None
        logger.debug(
            "%d new of %d examined in %s", len(result.files), result.examined, self.directory
        )
        records = load_records(self.directory, result.files)
        self._cursor = result.files[-1]
        return TailEvent(kind="append", records=records, names=result.files, cursor=self._cursor)
