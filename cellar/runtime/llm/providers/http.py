from __future__ import annotations

import time
from typing import Any

import httpx
import structlog

from ...config import DEFAULT_TIMEOUT_MS
from ...error_codes import ErrorCode
from ...memory.tokens import estimate_tokens
from ..client_httpx_errors import _wrap_httpx_exception
from ..errors import LLMRequestError
from ..types import ModelCapabilities, ModelMessage, ModelResponse, ProviderKind
from ._common import parse_native_tool_calls

logger = structlog.get_logger(__name__)

HTTP_CONTEXT_WINDOW = 16_384


def _ensure_trailing_slash(url: str) -> str:
    return url if url.endswith("/") else f"{url}/"


class HttpModelProvider:
    """OpenAI-compatible `chat/completions` endpoint."""

    kind: str = ProviderKind.HTTP.value

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        headers: dict[str, str] | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        transport: httpx.BaseTransport | None = None,
        kind: str | None = None,
    ) -> None:
        self.model = model
        if kind is not None:
            self.kind = kind
        self._base_url = _ensure_trailing_slash(base_url)
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._timeout_s = timeout_ms / 1000
        self._transport = transport

    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(context_window=HTTP_CONTEXT_WINDOW, supports_tools=False, supports_streaming=False)

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    def generate(
        self,
        messages: list[ModelMessage],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ModelResponse:
        body: dict[str, Any] = {"model": self.model, "messages": [m.to_dict() for m in messages]}
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        if temperature is not None:
            body["temperature"] = temperature

        started = time.monotonic()
        url = httpx.URL(self._base_url).join("chat/completions")
        try:
            with httpx.Client(timeout=self._timeout_s, transport=self._transport) as client:
                resp = client.post(url, headers=self._headers, json=body)
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

        message = _first_message(payload)
        content = message.get("content")
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.debug("model_generate_finished", provider=self.kind, model=self.model, duration_ms=duration_ms)
        return ModelResponse(
            content=content if isinstance(content, str) else "",
            tool_calls=parse_native_tool_calls(message.get("tool_calls")),
            raw=payload,
            duration_ms=duration_ms,
        )


def _first_message(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        return {}
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    message = choices[0].get("message")
    return message if isinstance(message, dict) else {}
