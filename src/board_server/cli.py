"""Command line host for the board: post, read, watch, presence, compaction."""
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

import uvicorn

from raboard.compactor import CompactionPreset, Compactor, format_summary, reference_zone
from raboard.errors import (
    BoardError,
    LockUnavailableError,
    PresenceUnavailableError,
    RoomNotReadyError,
    ValidationError,
)
from raboard.listing import tail
from raboard.models import MessageRecord
from raboard.presence import heartbeat, scan
from raboard.readiness import check_presence_root, ensure_room_ready, init_presence, init_room, msgs_dir
from raboard.spool import Spool, load_records
from raboard.tailer import TailEvent

from .config import BoardSettings, load_config
from .notifications import UnreadMonitor
from .server import create_app
from .sessions import PeriodicTask, PresenceSession, RoomSession
from .state import CursorStore

logger = logging.getLogger("raboard.cli")


def _format_record(record: MessageRecord) -> str:
    line = f"[{record.ts}] {record.from_}: {record.text}"
    for att in record.attachments:
        line += f"\n    ({att.display}) {att.rel_path}"
    return line


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="raboard", description="File-share message board.")
    parser.add_argument("--config", default=None, help="Path to a YAML config file.")
    parser.add_argument("--root", default=None, help="Override share_root from the config.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("post", help="Post a message to a room.")
    p.add_argument("text")
    p.add_argument("--room", default=None)
    p.add_argument("--user", default=None)
    p.add_argument("--reply-to", default=None)
    p.add_argument(
        "--attach", action="append", default=[], metavar="RELPATH",
        help="attachments/... path to reference (repeatable).",
    )

    p = sub.add_parser("tail", help="Print the newest messages of a room.")
    p.add_argument("--room", default=None)
    p.add_argument("-n", type=int, default=20)

    p = sub.add_parser("watch", help="Follow a room until interrupted.")
    p.add_argument("--room", default=None)
    p.add_argument("--state", default=None, help="Cursor state file to resume from and update.")
    p.add_argument("--presence", action="store_true", help="Also heartbeat and show who is online.")

    p = sub.add_parser("who", help="List users seen within the presence TTL.")
    p.add_argument("--ttl", type=float, default=None)

    p = sub.add_parser("heartbeat", help="Write one presence heartbeat.")
    p.add_argument("--user", default=None)

    p = sub.add_parser("compact", help="Fold a room's spool into daily logs.")
    p.add_argument("room")
    p.add_argument(
        "--preset",
        choices=[c.value for c in CompactionPreset],
        default=CompactionPreset.THROUGH_YESTERDAY.value,
    )
    p.add_argument("--until", default=None, help="YYYY-MM-DD for --preset until_date.")

    p = sub.add_parser("init-room", help="Provision a room's folders (administrative).")
    p.add_argument("room")
    p.add_argument("--presence", action="store_true", help="Also create the presence folder.")

    p = sub.add_parser("serve", help="Run the HTTP server.")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    return parser


def _cmd_post(args: argparse.Namespace, settings: BoardSettings) -> int:
    room = args.room or settings.default_room
    user = args.user or settings.effective_user
    attachments = [{"relPath": rel, "mime": "", "display": "inline"} for rel in args.attach]
    record = Spool(settings.share_root).post(
        room, user, args.text, attachments, reply_to=args.reply_to
    )
    print(f"{record.id} {record.ts}")
    return 0


def _cmd_tail(args: argparse.Namespace, settings: BoardSettings) -> int:
    room = args.room or settings.default_room
    ensure_room_ready(settings.share_root, room)
    directory = msgs_dir(settings.share_root, room)
    for record in load_records(directory, tail(directory, args.n)):
        print(_format_record(record))
    return 0


def _cmd_watch(args: argparse.Namespace, settings: BoardSettings) -> int:
    room = args.room or settings.default_room
    cursors = CursorStore(args.state) if args.state else None

    def on_event(event: TailEvent) -> None:
        if event.kind == "reset":
            print(f"--- #{room} ({len(event.records)} recent) ---")
        for record in event.records:
            print(_format_record(record))
        sys.stdout.flush()

    session = RoomSession(
        settings.share_root,
        room,
        on_event,
        interval=settings.poll_interval_sec,
        max_initial=settings.initial_load_limit,
        cursor=cursors.get(room) if cursors else None,
        on_cursor=cursors.set if cursors else None,
    )
    presence: Optional[PresenceSession] = None
    if args.presence and check_presence_root(settings.share_root):
        presence = PresenceSession(
            settings.share_root,
            settings.effective_user,
            lambda users: print(f"--- online: {', '.join(users) or 'nobody'} ---"),
            ttl_seconds=settings.presence_ttl_sec,
            heartbeat_interval=settings.heartbeat_interval_sec,
            scan_interval=settings.scan_interval_sec,
            freshness=settings.presence_freshness,
        )
    unread: Optional[PeriodicTask] = None
    if settings.notifications_enabled:
        monitor = UnreadMonitor(settings, cursors or CursorStore(), active_room=lambda: room)

        def report() -> None:
            for delta in monitor.scan():
                print(f"--- new activity in #{delta.room} ({delta.count} unread) ---")
            sys.stdout.flush()

        unread = PeriodicTask(monitor.interval, report, name="unread")

    session.start()
    if presence is not None:
        presence.start()
    if unread is not None:
        unread.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        session.stop()
        if presence is not None:
            presence.stop()
        if unread is not None:
            unread.stop()
    return 0


def _cmd_who(args: argparse.Namespace, settings: BoardSettings) -> int:
    ttl = args.ttl or settings.presence_ttl_sec
    users = scan(settings.share_root, ttl, freshness=settings.presence_freshness)  # type: ignore[arg-type]
    for user in users:
        print(user)
    return 0


def _cmd_heartbeat(args: argparse.Namespace, settings: BoardSettings) -> int:
    heartbeat(settings.share_root, args.user or settings.effective_user)
    return 0


def _cmd_compact(args: argparse.Namespace, settings: BoardSettings) -> int:
    compactor = Compactor(
        settings.share_root,
        tz=reference_zone(settings.utc_offset_hours),
        lock_ttl_seconds=settings.lock_ttl_sec,
    )
    try:
        scope, summary = compactor.compact_preset(args.room, args.preset, until=args.until)
    except LockUnavailableError as e:
        print(str(e), file=sys.stderr)
        return 3
    print(format_summary(args.room, scope.label, summary))
    return 0


def _cmd_init_room(args: argparse.Namespace, settings: BoardSettings) -> int:
    path = init_room(settings.share_root, args.room)
    if args.presence:
        init_presence(settings.share_root)
    print(path)
    return 0


def _cmd_serve(args: argparse.Namespace, settings: BoardSettings) -> int:
    uvicorn.run(create_app(settings=settings), host=args.host, port=args.port, log_level="info")
    return 0


_COMMANDS = {
    "post": _cmd_post,
    "tail": _cmd_tail,
    "watch": _cmd_watch,
    "who": _cmd_who,
    "heartbeat": _cmd_heartbeat,
    "compact": _cmd_compact,
    "init-room": _cmd_init_room,
    "serve": _cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = BoardSettings.from_config(load_config(args.config))
    if args.root:
        settings.share_root = Path(args.root)

    try:
        return _COMMANDS[args.command](args, settings)
    except ValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except RoomNotReadyError as e:
        print(
            f"error: {e}. Ask your board administrator to provision them "
            f"(raboard init-room {e.room}).",
            file=sys.stderr,
        )
        return 2
    except PresenceUnavailableError as e:
        print(f"error: presence is disabled: {e}", file=sys.stderr)
        return 4
    except (BoardError, OSError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
