"""Wire schemas for everything the board keeps on the share."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .naming import parse_instant


class Attachment(BaseModel):
    """Reference to a file stored under ``rooms/<room>/attachments``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    rel_path: str = Field(alias="relPath", min_length=1)
    mime: str = ""
    display: Literal["inline", "link"] = "inline"


class MessageRecord(BaseModel):
    """One posted message; immutable once published to the spool."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(min_length=1)
    ts: str
    room: str = Field(min_length=1)
    from_: str = Field(alias="from", min_length=1)
    type: Literal["msg"] = "msg"
    text: str = Field(min_length=1)
    reply_to: Optional[str] = Field(default=None, alias="replyTo")
    attachments: List[Attachment] = Field(default_factory=list)

    @field_validator("ts")
    @classmethod
    def _ts_is_instant(cls, v: str) -> str:
        parse_instant(v)
        return v

    def to_wire(self) -> Dict[str, Any]:
        """Dict in on-disk key order and key names."""
        return self.model_dump(by_alias=True, mode="json")


class PresenceEntry(BaseModel):
    user: str
    ts: str


class LockMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    created_at: str = Field(alias="createdAt")
    expires_at: str = Field(alias="expiresAt")
    detail: Optional[str] = None
    owner: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class CompactionSummary:
    considered: int = 0
    appended: int = 0
    skipped: int = 0
    days_touched: List[str] = field(default_factory=list)
