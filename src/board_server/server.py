"""FastAPI application exposing the board engine over HTTP.

Every endpoint is stateless with respect to "current room": readers pass
their own cursor and get the next one back.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from raboard import __version__
from raboard.compactor import CompactionPreset, Compactor, format_summary, reference_zone
from raboard.errors import (
    DirectoryUnavailableError,
    LockUnavailableError,
    RoomNotReadyError,
    ValidationError,
)
from raboard.listing import since, tail
from raboard.models import Attachment
from raboard.presence import heartbeat, scan
from raboard.readiness import ensure_room_ready, init_room, list_rooms, msgs_dir, presence_dir
from raboard.spool import Spool, load_records

from .config import BoardSettings, load_config

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class PostRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(default="", alias="from", description="Display name of the author.")
    text: str = Field(default="")
    reply_to: Optional[str] = Field(default=None, alias="replyTo")
    attachments: List[Attachment] = Field(default_factory=list)


class HeartbeatRequest(BaseModel):
    user: str = Field(default="")


class CompactRequest(BaseModel):
    preset: CompactionPreset = CompactionPreset.THROUGH_YESTERDAY
    until: Optional[str] = Field(default=None, description="YYYY-MM-DD, for until_date.")


class TimelineResponse(BaseModel):
    room: str
    cursor: Optional[str] = None
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    examined: Optional[int] = None


# -----------------------------
# Error mapping
# -----------------------------
def _error(status: int, exc: Exception, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status, content={"detail": str(exc), **extra})


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(RoomNotReadyError)
    async def _not_ready(request: Request, exc: RoomNotReadyError) -> JSONResponse:
        return _error(409, exc, missing=exc.missing)

    @app.exception_handler(LockUnavailableError)
    async def _locked(request: Request, exc: LockUnavailableError) -> JSONResponse:
        return _error(409, exc, expires_at=exc.expires_at, holder=exc.detail)

    @app.exception_handler(DirectoryUnavailableError)
    async def _unavailable(request: Request, exc: DirectoryUnavailableError) -> JSONResponse:
        return _error(503, exc)

    @app.exception_handler(OSError)
    async def _io(request: Request, exc: OSError) -> JSONResponse:
        logger.warning("I/O failure on %s: %s", request.url.path, exc)
        return _error(503, exc)


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    settings: Optional[BoardSettings] = None,
) -> FastAPI:
    settings = settings or BoardSettings.from_config(load_config(config_path))
    root = settings.share_root
    spool = Spool(root)
    compactor = Compactor(
        root,
        tz=reference_zone(settings.utc_offset_hours),
        lock_ttl_seconds=settings.lock_ttl_sec,
    )

    app = FastAPI(title="raBoard Share Server", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "share_root": str(root),
            "share_reachable": root.is_dir(),
            "presence_enabled": presence_dir(root).is_dir(),
        }

    @app.get("/rooms")
    def rooms() -> Dict[str, Any]:
        return {"rooms": list_rooms(root)}

    @app.post("/rooms/{room}", status_code=201)
    def provision_room(room: str) -> Dict[str, Any]:
        init_room(root, room)
        return {"room": room, "ready": True}

    @app.post("/rooms/{room}/messages", status_code=201)
    def post_message(room: str, req: PostRequest) -> Dict[str, Any]:
        record = spool.post(room, req.from_, req.text, req.attachments, reply_to=req.reply_to)
        return record.to_wire()

    @app.get("/rooms/{room}/messages", response_model=TimelineResponse)
    def recent_messages(
        room: str,
        limit: int = Query(default=settings.initial_load_limit, ge=0, le=5000),
    ) -> TimelineResponse:
        ensure_room_ready(root, room)
        directory = msgs_dir(root, room)
        names = tail(directory, limit)
        return TimelineResponse(
            room=room,
            cursor=names[-1] if names else None,
            messages=[r.to_wire() for r in load_records(directory, names)],
        )

    @app.get("/rooms/{room}/messages/since", response_model=TimelineResponse)
    def messages_since(room: str, cursor: Optional[str] = None) -> TimelineResponse:
        ensure_room_ready(root, room)
        directory = msgs_dir(root, room)
        result = since(directory, cursor)
        return TimelineResponse(
            room=room,
            cursor=result.files[-1] if result.files else cursor,
            messages=[r.to_wire() for r in load_records(directory, result.files)],
            examined=result.examined,
        )

    @app.post("/presence/heartbeat")
    def presence_heartbeat(req: HeartbeatRequest) -> Dict[str, Any]:
        heartbeat(root, req.user)
        return {"ok": True}

    @app.get("/presence")
    def presence(ttl: Optional[float] = Query(default=None, gt=0)) -> Dict[str, Any]:
        users = scan(
            root,
            ttl or settings.presence_ttl_sec,
            freshness=settings.presence_freshness,  # type: ignore[arg-type]
        )
        return {"users": users}

    @app.post("/rooms/{room}/compact")
    def compact(room: str, req: CompactRequest) -> Dict[str, Any]:
        scope, summary = compactor.compact_preset(room, req.preset, until=req.until)
        message = format_summary(room, scope.label, summary)
        logger.info(message)
        return {
            "room": room,
            "cutoff": scope.cutoff.isoformat(),
            "considered": summary.considered,
            "appended": summary.appended,
            "skipped": summary.skipped,
            "daysTouched": summary.days_touched,
            "message": message,
        }

    return app
