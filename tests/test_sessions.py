from __future__ import annotations

import shutil
import threading
from pathlib import Path

import pytest

from board_server.sessions import PeriodicTask, PresenceSession, RoomSession
from raboard.errors import RoomNotReadyError
from raboard.readiness import msgs_dir
from raboard.spool import Spool


def test_periodic_task_coalesces_overlapping_ticks():
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow():
        calls.append(1)
        started.set()
        release.wait(5)

    task = PeriodicTask(3600, slow, name="slow")
    task.start(immediate=True)
    try:
        assert started.wait(5)
        assert task.trigger() is False
        assert task.trigger() is False
        assert task.coalesced == 2
    finally:
        release.set()
        task.join_tick(5)
        task.stop()
    assert calls == [1]
    assert task.ticks == 1


def test_periodic_task_runs_again_after_tick_finishes():
    calls = []
    task = PeriodicTask(3600, lambda: calls.append(1))
    task.start(immediate=True)
    task.join_tick(5)
    assert task.trigger() is True
    task.join_tick(5)
    task.stop()
    assert calls == [1, 1]
    assert not task.running
    assert task.trigger() is False


def test_periodic_task_survives_failing_tick(caplog):
    def boom():
        raise RuntimeError("boom")

    task = PeriodicTask(3600, boom, name="boom")
    with caplog.at_level("ERROR"):
        task.start(immediate=True)
        task.join_tick(5)
    assert task.trigger() is True
    task.join_tick(5)
    task.stop()
    assert any("tick failed" in r.message for r in caplog.records)


def test_periodic_task_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        PeriodicTask(0, lambda: None)


def test_room_session_tick_delivers_events_and_cursor(board_root: Path, clock):
    events = []
    cursors = []
    session = RoomSession(
        board_root, "general", events.append, on_cursor=lambda room, c: cursors.append((room, c))
    )
    Spool(board_root, clock=clock).post("general", "alice", "hi")

    session.tick()
    session.tick()
    assert [e.kind for e in events] == ["reset"]
    assert cursors == [("general", session.cursor)]
    assert session.cursor is not None


def test_room_session_start_requires_ready_room(board_root: Path):
    session = RoomSession(board_root, "random", lambda e: None)
    with pytest.raises(RoomNotReadyError):
        session.start()
    assert not session.task.running


def test_room_session_missing_spool_is_retried(board_root: Path, clock):
    events = []
    session = RoomSession(board_root, "general", events.append)
    shutil.rmtree(msgs_dir(board_root, "general"))
    session.tick()
    assert events == []

    msgs_dir(board_root, "general").mkdir()
    Spool(board_root, clock=clock).post("general", "alice", "back")
    session.tick()
    assert [r.text for r in events[0].records] == ["back"]


def test_room_session_drops_events_after_stop(board_root: Path):
    events = []
    session = RoomSession(board_root, "general", events.append)
    session.stop()
    session.tick()
    assert events == []


def test_presence_session_publishes_only_changes(board_root: Path):
    seen = []
    session = PresenceSession(board_root, "alice", seen.append)
    session.beat()
    session.refresh()
    session.refresh()
    assert seen == [["alice"]]
    assert session.users == ["alice"]


def test_presence_session_reports_unavailable_and_recovers(board_root: Path):
    seen = []
    session = PresenceSession(board_root, "alice", seen.append)
    session.beat()
    session.refresh()

    shutil.rmtree(board_root / "presence")
    session.beat()
    session.refresh()
    assert session.available is False
    assert seen[-1] == []

    (board_root / "presence").mkdir()
    session.beat()
    session.refresh()
    assert session.available is True
    assert seen == [["alice"], [], ["alice"]]
