from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    BAD_REQUEST = "bad_request"
    VALIDATION_FAILED = "validation_failed"
    TOOL_UNKNOWN = "tool_unknown"
    TOOL_FAILED = "tool_failed"
    HANDLER_MISSING = "handler_missing"
    PERMISSION = "permission"
    APPROVAL_DENIED = "approval_denied"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    SERVER_ERROR = "server_error"
    CANCELLED = "cancelled"
    STEP_LIMIT = "step_limit"
    UNKNOWN = "unknown"
