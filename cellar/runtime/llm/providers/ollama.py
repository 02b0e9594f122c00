from __future__ import annotations

import time
from typing import Any

import httpx
import structlog

from ...config import DEFAULT_OLLAMA_URL, DEFAULT_TIMEOUT_MS
from ...error_codes import ErrorCode
from ...memory.tokens import estimate_tokens
from ..client_httpx_errors import _wrap_httpx_exception
from ..errors import LLMRequestError
from ..types import ModelCapabilities, ModelMessage, ModelResponse, ProviderKind
from ._common import parse_native_tool_calls

logger = structlog.get_logger(__name__)

OLLAMA_CONTEXT_WINDOW = 8192


class OllamaModelProvider:
    kind: str = ProviderKind.OLLAMA.value

    def __init__(
        self,
        *,
        model: str,
        base_url: str = DEFAULT_OLLAMA_URL,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        self._base_url = base_url
        self._timeout_s = timeout_ms / 1000
        self._transport = transport

    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(context_window=OLLAMA_CONTEXT_WINDOW, supports_tools=False, supports_streaming=False)

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    def generate(
        self,
        messages: list[ModelMessage],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ModelResponse:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": False,
        }
        options: dict[str, Any] = {}
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if temperature is not None:
            options["temperature"] = temperature
        if options:
            body["options"] = options

        started = time.monotonic()
        url = httpx.URL(self._base_url).join("/api/chat")
        try:
            with httpx.Client(timeout=self._timeout_s, transport=self._transport) as client:
                resp = client.post(url, json=body)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPError as e:
            raise _wrap_httpx_exception(e, provider_kind=self.kind, model=self.model, operation="generate") from e
        except ValueError as e:
            raise LLMRequestError(
                "Model response is not valid JSON.",
                code=ErrorCode.BAD_REQUEST,
                provider_kind=self.kind,
                model=self.model,
                retryable=False,
                cause=e,
            ) from e

        message = payload.get("message") if isinstance(payload, dict) else None
        message = message if isinstance(message, dict) else {}
        content = message.get("content")
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.debug("model_generate_finished", provider=self.kind, model=self.model, duration_ms=duration_ms)
        return ModelResponse(
            content=content if isinstance(content, str) else "",
            tool_calls=parse_native_tool_calls(message.get("tool_calls")),
            raw=payload,
            duration_ms=duration_ms,
        )
