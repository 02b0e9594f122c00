from __future__ import annotations

import httpx

from ...config import DEFAULT_LMSTUDIO_URL, DEFAULT_TIMEOUT_MS
from ..types import ModelCapabilities, ModelMessage, ModelResponse, ProviderKind
from .http import HttpModelProvider


class LmStudioModelProvider:
    """LM Studio serves an OpenAI-compatible API; requests go through HttpModelProvider."""

    kind: str = ProviderKind.LMSTUDIO.value

    def __init__(
        self,
        *,
        model: str,
        base_url: str = DEFAULT_LMSTUDIO_URL,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        self._http = HttpModelProvider(
            base_url=base_url,
            model=model,
            timeout_ms=timeout_ms,
            transport=transport,
            kind=self.kind,
        )

    def capabilities(self) -> ModelCapabilities:
        return self._http.capabilities()

    def estimate_tokens(self, text: str) -> int:
        return self._http.estimate_tokens(text)

    def generate(
        self,
        messages: list[ModelMessage],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ModelResponse:
        return self._http.generate(messages, max_tokens=max_tokens, temperature=temperature)
