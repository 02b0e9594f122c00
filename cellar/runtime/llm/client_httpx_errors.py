from __future__ import annotations

import json

import httpx

from ..error_codes import ErrorCode
from .errors import LLMRequestError, is_retryable_error_code

_BODY_SNIPPET_CHARS = 2000


def _status_code_to_error_code(status_code: int) -> ErrorCode:
    if status_code == 400:
        return ErrorCode.BAD_REQUEST
    if status_code == 401:
        return ErrorCode.AUTH
    if status_code == 403:
        return ErrorCode.PERMISSION
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 429:
        return ErrorCode.RATE_LIMIT
    if 500 <= status_code <= 599:
        return ErrorCode.SERVER_ERROR
    return ErrorCode.UNKNOWN


def provider_error_detail(response: httpx.Response) -> str:
    """
    Human-readable detail for a failed response.

    OpenAI-style `{"error": {"message", "type", "code"}}` bodies are condensed to
    `message type=... code=...`; anything else is returned as (truncated) text.
    """

    try:
        raw = response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return ""
    raw = (raw or "").strip()
    if not raw:
        return ""
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return raw[:_BODY_SNIPPET_CHARS]
    error = parsed.get("error") if isinstance(parsed, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
        parts = [error["message"]]
        if error.get("type"):
            parts.append(f"type={error['type']}")
        if error.get("code"):
            parts.append(f"code={error['code']}")
        return " ".join(parts)
    if isinstance(error, str) and error:
        return error
    return raw[:_BODY_SNIPPET_CHARS]


def _wrap_httpx_exception(
    exc: httpx.HTTPError,
    *,
    provider_kind: str,
    model: str | None,
    operation: str,
) -> LLMRequestError:
    status_code: int | None = None
    if isinstance(exc, httpx.TimeoutException):
        code = ErrorCode.TIMEOUT
        message = "Model request timed out"
    elif isinstance(exc, httpx.HTTPStatusError):
        status_code = int(exc.response.status_code)
        code = _status_code_to_error_code(status_code)
        detail = provider_error_detail(exc.response)
        message = f"Model HTTP error: {status_code}" + (f": {detail}" if detail else "")
    elif isinstance(exc, httpx.TransportError):
        code = ErrorCode.NETWORK_ERROR
        message = str(exc) or exc.__class__.__name__
    else:
        code = ErrorCode.UNKNOWN
        message = str(exc) or exc.__class__.__name__

    return LLMRequestError(
        message,
        code=code,
        provider_kind=provider_kind,
        model=model,
        status_code=status_code,
        retryable=is_retryable_error_code(code),
        details={"operation": operation},
        cause=exc,
    )
