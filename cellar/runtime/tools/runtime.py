from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import structlog

from ..approval import ApprovalProvider, ApprovalRequest
from ..config import CellarConfig
from ..error_codes import ErrorCode
from ..models.tool_spec import ToolCall, ToolDefinition, ToolResult
from ..policy.tool_policy import InspectionResult, evaluate_tool_policy
from .registry import ToolRegistry

logger = structlog.get_logger(__name__)


class ToolRuntimeError(RuntimeError):
    """Raised by handlers for an expected, user-facing failure."""


class ToolHandler(Protocol):
    definition: ToolDefinition

    def execute(self, *, args: dict[str, Any], config: CellarConfig | None, timeout_s: float | None = None) -> Any: ...


@dataclass(frozen=True, slots=True)
class ToolContext:
    config: CellarConfig | None
    registry: ToolRegistry
    approvals: ApprovalProvider
    handlers: Mapping[str, ToolHandler] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolExecution:
    """A terminal result plus the decisions that led to it."""

    result: ToolResult
    inspection: InspectionResult | None = None
    approval_requested: bool = False
    approved: bool | None = None


def _classify_tool_exception(exc: BaseException) -> ErrorCode:
    if isinstance(exc, ToolRuntimeError):
        return ErrorCode.TOOL_FAILED
    if isinstance(exc, PermissionError):
        return ErrorCode.PERMISSION
    if isinstance(exc, FileNotFoundError):
        return ErrorCode.NOT_FOUND
    if isinstance(exc, (TimeoutError, subprocess.TimeoutExpired)):
        return ErrorCode.TIMEOUT
    if isinstance(exc, (ValueError, json.JSONDecodeError)):
        return ErrorCode.BAD_REQUEST
    return ErrorCode.TOOL_FAILED


def execute_tool_call(call: ToolCall, context: ToolContext) -> ToolExecution:
    """
    Run one call to a terminal `success`, `error` or `denied` result.

    Order: registry lookup, input validation, policy, approval, handler lookup,
    handler execution, output validation. Never raises for per-call failures and
    never writes audit records; the caller does that.
    """

    tool = context.registry.get(call.name)
    if tool is None:
        return ToolExecution(ToolResult.failure(call, "Unknown tool.", code=ErrorCode.TOOL_UNKNOWN))

    if not context.registry.validate_input(call.name, call.arguments):
        logger.info("tool_input_invalid", tool=call.name, errors=context.registry.input_errors(call.name, call.arguments))
        return ToolExecution(ToolResult.failure(call, "Tool input validation failed.", code=ErrorCode.VALIDATION_FAILED))

    inspection = evaluate_tool_policy(tool, context.config)
    if not inspection.allowed:
        return ToolExecution(
            ToolResult.denied(call, inspection.reason, code=inspection.error_code or ErrorCode.PERMISSION),
            inspection=inspection,
        )

    approved: bool | None = None
    if inspection.requires_approval:
        approved = bool(
            context.approvals.request_approval(
                ApprovalRequest(tool=tool, call=call, reason=inspection.reason)
            )
        )
        if not approved:
            return ToolExecution(
                ToolResult.denied(call, "Approval denied.", code=ErrorCode.APPROVAL_DENIED),
                inspection=inspection,
                approval_requested=True,
                approved=False,
            )

    def _done(result: ToolResult) -> ToolExecution:
        return ToolExecution(result, inspection=inspection, approval_requested=approved is not None, approved=approved)

    handler = context.handlers.get(call.name)
    if handler is None:
        return _done(ToolResult.failure(call, "Tool handler missing.", code=ErrorCode.HANDLER_MISSING))

    timeout_s = call.timeout_ms / 1000 if call.timeout_ms else None
    try:
        output = handler.execute(args=dict(call.arguments), config=context.config, timeout_s=timeout_s)
    except Exception as e:
        code = _classify_tool_exception(e)
        logger.info("tool_handler_failed", tool=call.name, error_code=code.value, error=str(e))
        return _done(ToolResult.failure(call, str(e) or e.__class__.__name__, code=code))

    if not context.registry.validate_output(call.name, output):
        return _done(ToolResult.failure(call, "Tool output validation failed.", code=ErrorCode.VALIDATION_FAILED))

    return _done(ToolResult.success(call, output))
