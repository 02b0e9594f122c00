from __future__ import annotations

from datetime import datetime

from pydantic import Field

from ..ids import new_trace_id, utc_now
from .base import CamelModel
from .tool_spec import ToolCall, ToolResult


class ModelTrace(CamelModel):
    provider: str
    model: str
    duration_ms: int = 0


class RunStep(CamelModel):
    index: int = Field(ge=1)
    response: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    duration_ms: int = 0


class RunTrace(CamelModel):
    trace_id: str = Field(default_factory=new_trace_id)
    started_at: datetime = Field(default_factory=utc_now)
    model: ModelTrace
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    steps: list[RunStep] = Field(default_factory=list)
    memory_tokens: int = 0
