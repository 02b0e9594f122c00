from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field, field_validator

from .base import CamelModel, _clean_non_empty_str


class ApprovalRecord(CamelModel):
    tool: str
    expires_at: datetime

    @field_validator("tool")
    @classmethod
    def _validate_tool(cls, v: str) -> str:
        return _clean_non_empty_str(v, field_name="tool")

    @field_validator("expires_at")
    @classmethod
    def _require_tz(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("expiresAt must carry a timezone.")
        return v


class ApprovalIndex(CamelModel):
    version: Literal[1] = 1
    approvals: list[ApprovalRecord] = Field(default_factory=list)
