from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal, Protocol

from ..models.tool_spec import ToolCall


class ProviderKind(StrEnum):
    HTTP = "http"
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"


@dataclass(frozen=True, slots=True)
class ModelMessage:
    role: Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class ModelCapabilities:
    context_window: int
    supports_tools: bool = False
    supports_streaming: bool = False


@dataclass(frozen=True, slots=True)
class ModelResponse:
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    raw: Any = None
    duration_ms: int = 0


class ModelProvider(Protocol):
    kind: str
    model: str

    def capabilities(self) -> ModelCapabilities: ...

    def estimate_tokens(self, text: str) -> int: ...

    def generate(
        self,
        messages: list[ModelMessage],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ModelResponse: ...
