from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator

from ..ids import utc_now
from .base import CamelModel, _clean_non_empty_str


class AuditRecordType(StrEnum):
    MODEL = "model"
    TOOL = "tool"
    APPROVAL = "approval"
    POLICY = "policy"


class AuditRecord(CamelModel):
    """
    One append-only audit event.

    Stored as JSONL (one JSON object per line) by AuditLog.
    """

    ts: datetime = Field(default_factory=utc_now)
    type: AuditRecordType
    actor: str
    message: str
    data: dict[str, Any] | None = None

    @field_validator("actor", "message")
    @classmethod
    def _validate_required(cls, v: str, info) -> str:
        return _clean_non_empty_str(v, field_name=str(info.field_name))
