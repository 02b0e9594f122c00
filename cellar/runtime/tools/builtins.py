from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

from ..config import CellarConfig
from ..models.tool_spec import ToolDefinition
from ..policy.engine import is_domain_allowed, is_path_allowed, is_within
from .runtime import ToolHandler, ToolRuntimeError

DEFAULT_EXEC_TIMEOUT_S = 60.0
DEFAULT_FETCH_TIMEOUT_S = 30.0
MAX_FETCH_BODY_CHARS = 200_000
GIT_LOG_LIMIT = 20


def _require_str(args: dict[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing or invalid '{key}' (expected non-empty string).")
    return value


def _workspace_root(config: CellarConfig | None) -> Path:
    if config is not None:
        return config.resolved_workspace_root()
    return Path.cwd().resolve()


def _contained_path(raw: str, config: CellarConfig | None) -> Path:
    root = _workspace_root(config)
    candidate = Path(raw).expanduser()
    resolved = (candidate if candidate.is_absolute() else root / candidate).resolve()
    if not is_within(resolved, root):
        raise PermissionError("Path is outside workspace scope.")
    decision = is_path_allowed(resolved, config)
    if not decision.allowed:
        raise PermissionError(decision.reason)
    return resolved


def _check_domain(url: str, config: CellarConfig | None) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ValueError(f"Unsupported URL: {url!r}")
    host = parsed.hostname
    decision = is_domain_allowed(host, config)
    if not decision.allowed:
        raise PermissionError(decision.reason)
    allowed = config.network.allow_domains if config is not None else []
    if host not in allowed:
        raise PermissionError("Network domain not allowlisted.")


def _definition(spec: dict[str, Any]) -> ToolDefinition:
    return ToolDefinition.model_validate(spec)


_TEXT_OUTPUT = {
    "type": "object",
    "properties": {"output": {"type": "string"}},
    "required": ["output"],
    "additionalProperties": False,
}

_NO_ARGS = {"type": "object", "properties": {}, "additionalProperties": False}


@dataclass(frozen=True, slots=True)
class FsReadTool:
    definition: ToolDefinition = field(
        default_factory=lambda: _definition(
            {
                "name": "fs.read",
                "description": "Read a text file inside the workspace.",
                "sideEffectClass": "read_only",
                "inputSchema": {
                    "type": "object",
                    "properties": {"path": {"type": "string"}, "encoding": {"type": "string"}},
                    "required": ["path"],
                    "additionalProperties": False,
                },
                "outputSchema": {
                    "type": "object",
                    "properties": {"content": {"type": "string"}},
                    "required": ["content"],
                    "additionalProperties": False,
                },
            }
        )
    )

    def execute(self, *, args: dict[str, Any], config: CellarConfig | None, timeout_s: float | None = None) -> dict[str, Any]:
        del timeout_s
        path = _contained_path(_require_str(args, "path"), config)
        encoding = args.get("encoding") or "utf-8"
        return {"content": path.read_text(encoding=encoding)}


@dataclass(frozen=True, slots=True)
class FsWriteTool:
    definition: ToolDefinition = field(
        default_factory=lambda: _definition(
            {
                "name": "fs.write",
                "description": "Write a text file inside the workspace, replacing any existing content.",
                "sideEffectClass": "writes_files",
                "inputSchema": {
                    "type": "object",
                    "properties": {"path": {"type": "string"}, "content": {"type": "string"}},
                    "required": ["path", "content"],
                    "additionalProperties": False,
                },
                "outputSchema": {
                    "type": "object",
                    "properties": {"bytes": {"type": "integer", "minimum": 0}},
                    "required": ["bytes"],
                    "additionalProperties": False,
                },
            }
        )
    )

    def execute(self, *, args: dict[str, Any], config: CellarConfig | None, timeout_s: float | None = None) -> dict[str, Any]:
        del timeout_s
        path = _contained_path(_require_str(args, "path"), config)
        content = args.get("content")
        if not isinstance(content, str):
            raise ValueError("Missing or invalid 'content' (expected string).")
        data = content.encode("utf-8")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return {"bytes": len(data)}


@dataclass(frozen=True, slots=True)
class NetFetchTool:
    transport: httpx.BaseTransport | None = None
    definition: ToolDefinition = field(
        default_factory=lambda: _definition(
            {
                "name": "net.fetch",
                "description": "Fetch a URL from an allowlisted domain.",
                "sideEffectClass": "network",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "url": {"type": "string"},
                        "method": {"type": "string"},
                        "headers": {"type": "object", "additionalProperties": {"type": "string"}},
                        "body": {"type": "string"},
                    },
                    "required": ["url"],
                    "additionalProperties": False,
                },
                "outputSchema": {
                    "type": "object",
                    "properties": {"status": {"type": "integer"}, "body": {"type": "string"}},
                    "required": ["status", "body"],
                    "additionalProperties": False,
                },
            }
        )
    )

    def execute(self, *, args: dict[str, Any], config: CellarConfig | None, timeout_s: float | None = None) -> dict[str, Any]:
        url = _require_str(args, "url")
        _check_domain(url, config)
        method = str(args.get("method") or "GET").upper()
        headers = args.get("headers") or {}
        body = args.get("body")
        try:
            with httpx.Client(timeout=timeout_s or DEFAULT_FETCH_TIMEOUT_S, transport=self.transport) as client:
                resp = client.request(method, url, headers=headers, content=body)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Request to {url} timed out.") from e
        except httpx.HTTPError as e:
            raise ToolRuntimeError(f"Request to {url} failed: {e}") from e
        return {"status": resp.status_code, "body": resp.text[:MAX_FETCH_BODY_CHARS]}


@dataclass(frozen=True, slots=True)
class ExecRunTool:
    definition: ToolDefinition = field(
        default_factory=lambda: _definition(
            {
                "name": "exec.run",
                "description": "Run a command (no shell) inside the workspace.",
                "sideEffectClass": "exec",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "command": {"type": "string"},
                        "args": {"type": "array", "items": {"type": "string"}},
                        "cwd": {"type": "string"},
                    },
                    "required": ["command"],
                    "additionalProperties": False,
                },
                "outputSchema": {
                    "type": "object",
                    "properties": {
                        "stdout": {"type": "string"},
                        "stderr": {"type": "string"},
                        "code": {"type": "integer"},
                    },
                    "required": ["stdout", "stderr", "code"],
                    "additionalProperties": False,
                },
            }
        )
    )

    def execute(self, *, args: dict[str, Any], config: CellarConfig | None, timeout_s: float | None = None) -> dict[str, Any]:
        command = _require_str(args, "command")
        extra = args.get("args") or []
        cwd_raw = args.get("cwd")
        cwd = _contained_path(cwd_raw, config) if isinstance(cwd_raw, str) and cwd_raw.strip() else _workspace_root(config)
        proc = subprocess.run(
            [command, *[str(a) for a in extra]],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout_s or DEFAULT_EXEC_TIMEOUT_S,
            check=False,
        )
        return {"stdout": proc.stdout, "stderr": proc.stderr, "code": proc.returncode}


@dataclass(frozen=True, slots=True)
class GitTool:
    name: str
    description: str
    git_args: tuple[str, ...]

    @property
    def definition(self) -> ToolDefinition:
        return _definition(
            {
                "name": self.name,
                "description": self.description,
                "sideEffectClass": "read_only",
                "inputSchema": _NO_ARGS,
                "outputSchema": _TEXT_OUTPUT,
            }
        )

    def execute(self, *, args: dict[str, Any], config: CellarConfig | None, timeout_s: float | None = None) -> dict[str, Any]:
        del args
        proc = subprocess.run(
            ["git", *self.git_args],
            cwd=str(_workspace_root(config)),
            capture_output=True,
            text=True,
            timeout=timeout_s or DEFAULT_EXEC_TIMEOUT_S,
            check=False,
        )
        if proc.returncode != 0:
            raise ToolRuntimeError(proc.stderr.strip() or f"git exited with code {proc.returncode}")
        return {"output": proc.stdout}


def builtin_handlers() -> list[ToolHandler]:
    return [
        FsReadTool(),
        FsWriteTool(),
        NetFetchTool(),
        ExecRunTool(),
        GitTool("git.status", "Run git status --short in the workspace.", ("status", "--short")),
        GitTool("git.diff", "Run git diff in the workspace.", ("diff",)),
        GitTool("git.log", f"Run git log -n {GIT_LOG_LIMIT} in the workspace.", ("log", "-n", str(GIT_LOG_LIMIT), "--oneline")),
    ]


def builtin_definitions() -> list[ToolDefinition]:
    return [h.definition for h in builtin_handlers()]
