from __future__ import annotations

import sys

import httpx
import pytest

from cellar.runtime.approval import StaticApprovalProvider
from cellar.runtime.config import CellarConfig
from cellar.runtime.error_codes import ErrorCode
from cellar.runtime.models.tool_spec import ToolCall, ToolResultStatus
from cellar.runtime.tools.builtins import (
    ExecRunTool,
    FsReadTool,
    FsWriteTool,
    NetFetchTool,
    builtin_definitions,
    builtin_handlers,
)
from cellar.runtime.tools.registry import ToolRegistry
from cellar.runtime.tools.runtime import ToolContext, execute_tool_call


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "ws"
    root.mkdir()
    return root


def _config(root, **data) -> CellarConfig:
    return CellarConfig.model_validate({"workspaceRoot": str(root), **data})


def test_builtin_side_effect_classes():
    definitions = {d.name: d.side_effect_class.value for d in builtin_definitions()}

    assert definitions == {
        "fs.read": "read_only",
        "fs.write": "writes_files",
        "net.fetch": "network",
        "exec.run": "exec",
        "git.status": "read_only",
        "git.diff": "read_only",
        "git.log": "read_only",
    }


def test_fs_write_then_read(workspace):
    config = _config(workspace)

    written = FsWriteTool().execute(args={"path": "notes/a.txt", "content": "héllo"}, config=config)
    read = FsReadTool().execute(args={"path": "notes/a.txt"}, config=config)

    assert written == {"bytes": len("héllo".encode("utf-8"))}
    assert read == {"content": "héllo"}
    assert (workspace / "notes" / "a.txt").is_file()


def test_fs_paths_stay_inside_workspace(workspace):
    config = _config(workspace)
    (workspace.parent / "outside.txt").write_text("secret", encoding="utf-8")

    with pytest.raises(PermissionError, match="outside workspace"):
        FsReadTool().execute(args={"path": "../outside.txt"}, config=config)
    with pytest.raises(PermissionError, match="outside workspace"):
        FsWriteTool().execute(args={"path": str(workspace.parent / "x.txt"), "content": ""}, config=config)


def test_fs_respects_path_policy(workspace):
    (workspace / "private").mkdir()
    (workspace / "private" / "key.txt").write_text("k", encoding="utf-8")
    config = _config(workspace, policy={"denyPaths": [str(workspace / "private")]})

    with pytest.raises(PermissionError, match="Path denied by policy."):
        FsReadTool().execute(args={"path": "private/key.txt"}, config=config)


def test_missing_file_surfaces_as_not_found(workspace):
    config = _config(workspace)
    handlers = {h.definition.name: h for h in builtin_handlers()}
    context = ToolContext(
        config=config,
        registry=ToolRegistry(h.definition for h in handlers.values()),
        approvals=StaticApprovalProvider(False),
        handlers=handlers,
    )

    execution = execute_tool_call(ToolCall(name="fs.read", arguments={"path": "nope.txt"}), context)

    assert execution.result.status is ToolResultStatus.ERROR
    assert execution.result.error_code is ErrorCode.NOT_FOUND
    assert execution.approval_requested is False


def test_fetch_requires_allowlisted_domain(workspace):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="hello"))
    tool = NetFetchTool(transport=transport)

    with pytest.raises(PermissionError, match="Network domain not allowlisted."):
        tool.execute(args={"url": "https://example.com/"}, config=_config(workspace))

    allowed = _config(workspace, network={"allowDomains": ["example.com"]})
    assert tool.execute(args={"url": "https://example.com/"}, config=allowed) == {"status": 200, "body": "hello"}


def test_fetch_policy_deny_wins_over_allowlist(workspace):
    tool = NetFetchTool(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    config = _config(
        workspace,
        network={"allowDomains": ["example.com"]},
        policy={"denyDomains": ["example.com"]},
    )

    with pytest.raises(PermissionError, match="Domain denied by policy."):
        tool.execute(args={"url": "https://example.com/"}, config=config)


def test_fetch_rejects_non_http_urls(workspace):
    with pytest.raises(ValueError, match="Unsupported URL"):
        NetFetchTool().execute(args={"url": "file:///etc/passwd"}, config=_config(workspace))


def test_fetch_sends_method_and_body(workspace):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, text="created")

    tool = NetFetchTool(transport=httpx.MockTransport(handler))
    config = _config(workspace, network={"allowDomains": ["api.test"]})

    out = tool.execute(
        args={"url": "https://api.test/items", "method": "post", "headers": {"X-Token": "t"}, "body": "{}"},
        config=config,
    )

    assert out == {"status": 201, "body": "created"}
    assert seen[0].method == "POST"
    assert seen[0].headers["X-Token"] == "t"
    assert seen[0].content == b"{}"


def test_exec_runs_without_shell_in_workspace(workspace):
    out = ExecRunTool().execute(
        args={"command": sys.executable, "args": ["-c", "import os; print(os.getcwd())"]},
        config=_config(workspace),
    )

    assert out["code"] == 0
    assert out["stdout"].strip() == str(workspace.resolve())


def test_exec_is_denied_by_default_through_the_pipeline(workspace):
    handlers = {h.definition.name: h for h in builtin_handlers()}
    context = ToolContext(
        config=_config(workspace),
        registry=ToolRegistry(h.definition for h in handlers.values()),
        approvals=StaticApprovalProvider(True),
        handlers=handlers,
    )

    execution = execute_tool_call(ToolCall(name="exec.run", arguments={"command": "true"}), context)

    assert execution.result.status is ToolResultStatus.DENIED
    assert execution.approval_requested is False
