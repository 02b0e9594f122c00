from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Protocol

import structlog
from pydantic import ValidationError

from .errors import StoreError
from .ids import utc_now
from .models.approval import ApprovalIndex, ApprovalRecord
from .models.tool_spec import ToolCall, ToolDefinition
from .storage import read_json_or_none, safe_write_json

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


class ApprovalStore:
    """
    Time-bounded approvals persisted as `{"version": 1, "approvals": [{tool, expiresAt}]}`.

    At most one record per tool. Expired records are purged lazily when read.
    """

    def __init__(self, path: Path, *, clock: Clock = utc_now) -> None:
        self._path = path
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> ApprovalIndex:
        data = read_json_or_none(self._path)
        if data is None:
            return ApprovalIndex()
        try:
            return ApprovalIndex.model_validate(data)
        except ValidationError as e:
            raise StoreError(f"Invalid approvals index: {e}", path=str(self._path)) from e

    def _write(self, index: ApprovalIndex) -> None:
        safe_write_json(self._path, index.to_json_dict())

    def grant(self, tool: str, ttl_seconds: int) -> ApprovalRecord:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0.")
        record = ApprovalRecord(tool=tool, expires_at=self._clock() + timedelta(seconds=ttl_seconds))
        index = self._read()
        approvals = [a for a in index.approvals if a.tool != record.tool]
        approvals.append(record)
        self._write(ApprovalIndex(approvals=approvals))
        logger.info("approval_granted", tool=record.tool, expires_at=record.expires_at.isoformat())
        return record

    def live(self) -> list[ApprovalRecord]:
        index = self._read()
        now = self._clock()
        valid = [a for a in index.approvals if a.expires_at > now]
        if len(valid) != len(index.approvals):
            self._write(ApprovalIndex(approvals=valid))
            logger.debug("approvals_purged", purged=len(index.approvals) - len(valid))
        return valid

    def has_valid(self, tool: str) -> bool:
        return any(a.tool == tool for a in self.live())


@dataclass(frozen=True, slots=True)
class ApprovalRequest:
    tool: ToolDefinition
    call: ToolCall
    reason: str


class ApprovalProvider(Protocol):
    def request_approval(self, request: ApprovalRequest) -> bool: ...


def _is_interactive() -> bool:
    try:
        return bool(sys.stdin.isatty() and sys.stdout.isatty())
    except (AttributeError, ValueError):
        return False


class TerminalApprovalProvider:
    """Asks on the attached terminal. Without one, every request is denied."""

    def __init__(self, *, interactive: Callable[[], bool] = _is_interactive) -> None:
        self._interactive = interactive

    def request_approval(self, request: ApprovalRequest) -> bool:
        if not self._interactive():
            logger.info("approval_auto_denied", tool=request.tool.name, reason="non_interactive")
            return False

        from prompt_toolkit import prompt

        text = (
            f"Approve tool {request.tool.name} ({request.tool.side_effect_class.value})? "
            f"{request.reason} (y/N) "
        )
        try:
            answer = prompt(text)
        except (EOFError, KeyboardInterrupt):
            return False
        return answer.strip().lower().startswith("y")


class StaticApprovalProvider:
    def __init__(self, approve: bool) -> None:
        self._approve = approve

    def request_approval(self, request: ApprovalRequest) -> bool:
        return self._approve


class StoredApprovalProvider:
    """
    Consults live stored approvals before asking `delegate`.

    A positive answer from the delegate is remembered for `ttl_seconds` when that is > 0.
    """

    def __init__(self, store: ApprovalStore, delegate: ApprovalProvider, *, ttl_seconds: int | None = None) -> None:
        self._store = store
        self._delegate = delegate
        self._ttl_seconds = ttl_seconds

    def request_approval(self, request: ApprovalRequest) -> bool:
        if self._store.has_valid(request.tool.name):
            return True
        approved = self._delegate.request_approval(request)
        if approved and self._ttl_seconds:
            self._store.grant(request.tool.name, self._ttl_seconds)
        return approved
