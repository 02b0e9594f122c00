from __future__ import annotations

import json
from typing import Any

import pytest

from cellar.runtime.audit import AuditLog
from cellar.runtime.llm.types import ModelCapabilities, ModelMessage, ModelResponse
from cellar.runtime.memory.store import MemoryStore
from cellar.runtime.memory.tokens import estimate_tokens
from cellar.runtime.paths import RuntimePaths


class ScriptedModelProvider:
    """Replays canned replies; an exception reply is raised instead of returned."""

    def __init__(self, replies: list[Any], *, kind: str = "http", model: str = "fake-model", context_window: int = 8192) -> None:
        self.kind = kind
        self.model = model
        self._replies = list(replies)
        self._context_window = context_window
        self.calls: list[list[ModelMessage]] = []

    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(context_window=self._context_window)

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    def generate(self, messages, *, max_tokens=None, temperature=None) -> ModelResponse:
        self.calls.append(list(messages))
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, ModelResponse):
            return reply
        if isinstance(reply, (dict, list)):
            reply = json.dumps(reply)
        return ModelResponse(content=reply, duration_ms=5)


@pytest.fixture
def paths(tmp_path) -> RuntimePaths:
    return RuntimePaths.for_home(tmp_path / "home")


@pytest.fixture
def store(paths) -> MemoryStore:
    return MemoryStore(paths)


@pytest.fixture
def audit(paths) -> AuditLog:
    return AuditLog(paths.audit_log_path)


@pytest.fixture
def scripted_provider():
    return ScriptedModelProvider
