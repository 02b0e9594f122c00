from __future__ import annotations

from typing import Any

from ..error_codes import ErrorCode
from ..errors import CellarError


class LLMRequestError(CellarError):
    """
    Transport-level failure talking to a model provider. Fatal to the current run.

    `code` distinguishes timeouts (ErrorCode.TIMEOUT) from other failures.
    """

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        provider_kind: str | None = None,
        model: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.provider_kind = provider_kind
        self.model = model
        self.status_code = status_code
        self.retryable = retryable
        self.details = details
        self.__cause__ = cause


ProviderError = LLMRequestError


def is_retryable_error_code(code: ErrorCode) -> bool:
    return code in {
        ErrorCode.TIMEOUT,
        ErrorCode.RATE_LIMIT,
        ErrorCode.SERVER_ERROR,
        ErrorCode.NETWORK_ERROR,
    }
