from __future__ import annotations

import pytest

from cellar.runtime.approval import StaticApprovalProvider
from cellar.runtime.config import CellarConfig
from cellar.runtime.engine import RunOptions, RunStatus, parse_model_output, run_task
from cellar.runtime.error_codes import ErrorCode
from cellar.runtime.errors import ConfigurationError
from cellar.runtime.llm.errors import LLMRequestError
from cellar.runtime.llm.types import ModelResponse
from cellar.runtime.memory.operations import add_memory_card
from cellar.runtime.memory.retrieval import RetrievalBudget
from cellar.runtime.models.audit_event import AuditRecordType
from cellar.runtime.models.tool_spec import ToolCall, ToolDefinition, ToolResultStatus
from cellar.runtime.tools.registry import ToolRegistry


def _definition(name: str, side_effect: str) -> ToolDefinition:
    return ToolDefinition.model_validate(
        {
            "name": name,
            "description": f"{name} tool",
            "sideEffectClass": side_effect,
            "inputSchema": {
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            },
        }
    )


class EchoHandler:
    def __init__(self, name: str = "echo", side_effect: str = "read_only") -> None:
        self.definition = _definition(name, side_effect)
        self.seen: list[str] = []

    def execute(self, *, args, config, timeout_s=None):
        self.seen.append(args["text"])
        return {"text": args["text"]}


def _options(provider, store, audit, *handlers, config=None, approvals=None, **kwargs) -> RunOptions:
    return RunOptions(
        model_provider=provider,
        tool_registry=ToolRegistry(h.definition for h in handlers),
        store=store,
        audit=audit,
        approvals=approvals or StaticApprovalProvider(False),
        handlers={h.definition.name: h for h in handlers},
        config=config or CellarConfig(workspace_root="/work"),
        actor="tester",
        **kwargs,
    )


def _call(call_id: str, text: str, name: str = "echo") -> dict:
    return {"id": call_id, "name": name, "arguments": {"text": text}}


def test_malformed_output_becomes_raw_response(scripted_provider, store, audit):
    provider = scripted_provider(["I could not produce JSON, sorry."])

    outcome = run_task("say hi", _options(provider, store, audit))

    assert outcome.response == "I could not produce JSON, sorry."
    assert outcome.tool_results == []
    assert outcome.status is RunStatus.COMPLETED
    assert len(provider.calls) == 1


def test_parse_accepts_fenced_json():
    parsed = parse_model_output('Sure!\n```json\n{"response": "done", "toolCalls": []}\n```')

    assert parsed.response == "done"
    assert parsed.tool_calls == []


def test_parse_keeps_raw_text_when_response_missing():
    parsed = parse_model_output('{"toolCalls": "not a list"}')

    assert parsed.response == '{"toolCalls": "not a list"}'
    assert parsed.tool_calls == []


def test_parse_falls_back_to_native_tool_calls():
    native = [ToolCall(id="n1", name="echo", arguments={"text": "x"})]

    parsed = parse_model_output("plain text", native)

    assert parsed.response == "plain text"
    assert [c.id for c in parsed.tool_calls] == ["n1"]


def test_tool_results_feed_the_next_step(scripted_provider, store, audit):
    handler = EchoHandler()
    provider = scripted_provider(
        [
            {"response": "working", "toolCalls": [_call("c1", "first"), _call("c2", "second")]},
            {"response": "all done", "toolCalls": []},
        ]
    )

    outcome = run_task("echo twice", _options(provider, store, audit, handler))

    assert outcome.response == "all done"
    assert outcome.status is RunStatus.COMPLETED
    assert handler.seen == ["first", "second"]
    assert [r.id for r in outcome.tool_results] == ["c1", "c2"]
    assert all(r.status is ToolResultStatus.SUCCESS for r in outcome.tool_results)

    second_prompt = provider.calls[1][1].content
    assert "Results of your previous tool calls" in second_prompt
    assert second_prompt.index('"c1"') < second_prompt.index('"c2"')
    assert "Results of your previous tool calls" not in provider.calls[0][1].content

    types = [r.type for r in audit.read()]
    assert types == [AuditRecordType.MODEL, AuditRecordType.TOOL, AuditRecordType.TOOL, AuditRecordType.MODEL]
    assert outcome.trace.model.provider == "http"
    assert len(outcome.trace.steps) == 2


def test_step_limit_is_reported(scripted_provider, store, audit):
    handler = EchoHandler()
    provider = scripted_provider([{"response": "", "toolCalls": [_call("c1", "again")]}])

    outcome = run_task("loop forever", _options(provider, store, audit, handler))

    assert outcome.status is RunStatus.STEP_LIMIT_REACHED
    assert outcome.response == ""
    assert len(provider.calls) == 2
    assert len(outcome.tool_results) == 2
    last = audit.read()[-1]
    assert last.type is AuditRecordType.MODEL
    assert last.data["maxSteps"] == 2
    assert last.data["errorCode"] == "step_limit"


def test_denied_model_provider_aborts_before_invocation(scripted_provider, store, audit):
    provider = scripted_provider(["never"])
    config = CellarConfig(approved_model_providers=["ollama"])

    with pytest.raises(ConfigurationError):
        run_task("anything", _options(provider, store, audit, config=config))

    assert provider.calls == []
    records = audit.read()
    assert len(records) == 1
    assert records[0].type is AuditRecordType.POLICY
    assert records[0].data["reason"] == "Model provider not approved."


def test_refused_approval_is_audited(scripted_provider, store, audit):
    writer = EchoHandler("write", "writes_files")
    provider = scripted_provider(
        [
            {"response": "writing", "toolCalls": [_call("w1", "data", name="write")]},
            {"response": "gave up", "toolCalls": []},
        ]
    )

    outcome = run_task("write something", _options(provider, store, audit, writer))

    assert outcome.tool_results[0].status is ToolResultStatus.DENIED
    assert outcome.tool_results[0].error == "Approval denied."
    assert writer.seen == []
    types = [r.type for r in audit.read()]
    assert types == [AuditRecordType.MODEL, AuditRecordType.APPROVAL, AuditRecordType.POLICY, AuditRecordType.MODEL]
    approval = audit.read()[1]
    assert approval.data == {
        "tool": "write",
        "callId": "w1",
        "sideEffectClass": "writes_files",
        "approved": False,
        "reason": "Requires approval.",
    }


def test_unknown_tool_call_does_not_abort_the_run(scripted_provider, store, audit):
    provider = scripted_provider(
        [
            {"response": "", "toolCalls": [_call("u1", "x", name="does.not.exist")]},
            {"response": "ok", "toolCalls": []},
        ]
    )

    outcome = run_task("try", _options(provider, store, audit))

    assert outcome.response == "ok"
    assert outcome.tool_results[0].status is ToolResultStatus.ERROR
    assert outcome.tool_results[0].error_code is ErrorCode.TOOL_UNKNOWN


def test_provider_failure_is_audited_and_raised(scripted_provider, store, audit):
    provider = scripted_provider([LLMRequestError("Model request timed out", code=ErrorCode.TIMEOUT)])

    with pytest.raises(LLMRequestError) as excinfo:
        run_task("slow", _options(provider, store, audit))

    assert excinfo.value.code is ErrorCode.TIMEOUT
    records = audit.read()
    assert [r.type for r in records] == [AuditRecordType.MODEL]
    assert records[0].data["errorCode"] == "timeout"


def test_prompt_carries_workspace_memory_and_tools(scripted_provider, store, audit):
    card = add_memory_card(store, "The build uses make.")
    provider = scripted_provider([{"response": "ok", "toolCalls": []}])

    run_task("how do I build?", _options(provider, store, audit, EchoHandler()))

    system, user = provider.calls[0]
    assert system.role == "system"
    assert "Workspace root: /work" in user.content
    assert f"Memory ({card.id}):\nThe build uses make." in user.content
    assert '"name": "echo"' in user.content
    assert "how do I build?" in user.content


def test_explicit_budget_limits_memory(scripted_provider, store, audit):
    add_memory_card(store, "x" * 400)
    provider = scripted_provider([{"response": "ok", "toolCalls": []}])

    outcome = run_task("x", _options(provider, store, audit, budget=RetrievalBudget(10, 10, 10)))

    assert outcome.trace.memory_tokens == 0
    assert "Memory (" not in provider.calls[0][1].content


def test_native_tool_calls_are_executed(scripted_provider, store, audit):
    handler = EchoHandler()
    native = ModelResponse(content="", tool_calls=[ToolCall(id="n1", name="echo", arguments={"text": "native"})])
    provider = scripted_provider([native, {"response": "done", "toolCalls": []}])

    outcome = run_task("native", _options(provider, store, audit, handler))

    assert handler.seen == ["native"]
    assert outcome.response == "done"


def test_completed_run_is_logged_to_sessions(scripted_provider, store, audit, paths):
    provider = scripted_provider([{"response": "logged answer", "toolCalls": []}])

    run_task("remember this run", _options(provider, store, audit))

    files = list(paths.sessions_dir.glob("*.md"))
    assert len(files) == 1
    text = files[0].read_text(encoding="utf-8")
    assert "Task: remember this run" in text
    assert "Response: logged answer" in text


def test_unreadable_tool_calls_are_reported_back_to_the_model(scripted_provider, store, audit):
    handler = EchoHandler()
    provider = scripted_provider(
        [
            {
                "response": "",
                "toolCalls": [
                    {"id": 7, "name": "echo", "arguments": {"text": "a"}},
                    {"id": "c2", "name": "echo", "arguments": "{\"text\": \"b\"}"},
                    {"id": "c3", "arguments": {}},
                    {"id": "c4", "name": "echo", "arguments": "{not json"},
                ],
            },
            {"response": "done", "toolCalls": []},
        ]
    )

    outcome = run_task("mixed", _options(provider, store, audit, handler))

    assert outcome.response == "done"
    assert handler.seen == ["a", "b"]
    assert [r.id for r in outcome.tool_results] == ["7", "c2", "c3", "c4"]
    assert [r.status for r in outcome.tool_results] == [
        ToolResultStatus.SUCCESS,
        ToolResultStatus.SUCCESS,
        ToolResultStatus.ERROR,
        ToolResultStatus.ERROR,
    ]
    assert outcome.tool_results[2].error_code is ErrorCode.VALIDATION_FAILED
    assert outcome.tool_results[3].error_code is ErrorCode.VALIDATION_FAILED
    assert "not valid JSON" in outcome.tool_results[3].error

    records = audit.read()
    assert [r.type for r in records] == [AuditRecordType.MODEL] + [AuditRecordType.TOOL] * 4 + [AuditRecordType.MODEL]
    assert records[3].data["errorCode"] == "validation_failed"
    second_prompt = provider.calls[1][1].content
    assert '"c3"' in second_prompt
    assert "validation_failed" in second_prompt


def test_parse_keeps_unreadable_calls_in_order():
    parsed = parse_model_output('{"response": "", "toolCalls": ["nope", {"id": "ok", "name": "echo"}]}')

    assert [c.name for c in parsed.tool_calls] == ["(unnamed)", "echo"]
    assert list(parsed.rejected) == [parsed.tool_calls[0].id]
    assert "expected an object" in parsed.rejected[parsed.tool_calls[0].id]


def test_interrupted_model_call_is_audited_as_cancelled(scripted_provider, store, audit):
    provider = scripted_provider([KeyboardInterrupt()])

    with pytest.raises(KeyboardInterrupt):
        run_task("stop", _options(provider, store, audit))

    records = audit.read()
    assert [r.type for r in records] == [AuditRecordType.MODEL]
    assert records[0].data["errorCode"] == "cancelled"
