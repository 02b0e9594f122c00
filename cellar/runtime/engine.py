from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping

import structlog
from pydantic import ValidationError

from .approval import ApprovalProvider, ApprovalRequest
from .audit import AuditLog, resolve_actor
from .config import CellarConfig
from .error_codes import ErrorCode
from .errors import ConfigurationError
from .ids import new_tool_call_id
from .llm.errors import LLMRequestError
from .llm.types import ModelMessage, ModelProvider
from .memory.retrieval import RetrievalBudget, RetrievedMemory, retrieve_memory
from .memory.sessions import append_session_log
from .memory.store import MemoryStore
from .models.audit_event import AuditRecordType
from .models.memory import MemoryScope
from .models.run_trace import ModelTrace, RunStep, RunTrace
from .models.tool_spec import ToolCall, ToolResult, ToolResultStatus
from .policy.engine import is_model_allowed
from .prompts.template import load_prompt, render_prompt_template
from .tools.registry import ToolRegistry
from .tools.runtime import ToolContext, ToolHandler, execute_tool_call

logger = structlog.get_logger(__name__)

MAX_STEPS = 2
DEFAULT_TEMPERATURE = 0.2


class RunStatus(StrEnum):
    COMPLETED = "completed"
    STEP_LIMIT_REACHED = "step_limit_reached"


@dataclass(frozen=True, slots=True)
class RunOptions:
    model_provider: ModelProvider
    tool_registry: ToolRegistry
    store: MemoryStore
    audit: AuditLog
    approvals: ApprovalProvider
    handlers: Mapping[str, ToolHandler] = field(default_factory=dict)
    config: CellarConfig | None = None
    scope: MemoryScope = MemoryScope.PROJECT
    budget: RetrievalBudget | None = None
    max_steps: int = MAX_STEPS
    actor: str | None = None
    record_session: bool = True


@dataclass(frozen=True, slots=True)
class RunOutcome:
    response: str
    trace: RunTrace
    tool_results: list[ToolResult]
    status: RunStatus


@dataclass(frozen=True, slots=True)
class ParsedModelOutput:
    response: str
    tool_calls: list[ToolCall]
    # call id -> why the requested call could not be read; such calls are never executed
    rejected: dict[str, str] = field(default_factory=dict)


def _extract_json_object(text: str) -> dict[str, Any] | None:
    s = (text or "").strip()
    if not s:
        return None
    decoder = json.JSONDecoder()
    # Find the first '{' that starts a decodable object.
    for i, ch in enumerate(s):
        if ch != "{":
            continue
        try:
            obj, _ = decoder.raw_decode(s[i:])
        except json.JSONDecodeError:
            continue
        return obj if isinstance(obj, dict) else None
    return None


def _normalize_tool_call(item: dict[str, Any]) -> dict[str, Any]:
    data = dict(item)
    raw_id = data.get("id")
    if isinstance(raw_id, (int, float)) and not isinstance(raw_id, bool):
        data["id"] = str(raw_id)
    args = data.get("arguments")
    if args is None:
        data.pop("arguments", None)
    elif isinstance(args, str):
        data["arguments"] = json.loads(args) if args.strip() else {}
    return data


def _validation_summary(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "call"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def _placeholder_call(item: Any, seen_ids: set[str]) -> ToolCall:
    raw = item if isinstance(item, dict) else {}
    raw_id = raw.get("id")
    call_id = str(raw_id) if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) and str(raw_id).strip() else ""
    if not call_id or call_id in seen_ids:
        call_id = new_tool_call_id()
    name = raw.get("name")
    return ToolCall(id=call_id, name=name if isinstance(name, str) and name.strip() else "(unnamed)")


def _coerce_tool_calls(raw: Any) -> tuple[list[ToolCall], dict[str, str]]:
    """
    Read the model's `toolCalls` array in emission order.

    Scalar ids are stringified and JSON-encoded `arguments` are decoded. Items that
    still cannot be read are kept as placeholder calls, with the reason recorded in
    the returned mapping, so each one yields a result the model sees next step.
    """

    if not isinstance(raw, list):
        return [], {}
    calls: list[ToolCall] = []
    rejected: dict[str, str] = {}
    seen_ids: set[str] = set()
    for item in raw:
        reason: str | None = None
        if not isinstance(item, dict):
            reason = "Tool call could not be read: expected an object."
        else:
            try:
                call = ToolCall.model_validate(_normalize_tool_call(item))
            except json.JSONDecodeError:
                reason = "Tool call could not be read: arguments is not valid JSON."
            except ValidationError as e:
                reason = f"Tool call could not be read: {_validation_summary(e)}"
        if reason is not None:
            call = _placeholder_call(item, seen_ids)
            rejected[call.id] = reason
            logger.info("model_tool_call_unreadable", call_id=call.id, reason=reason)
        seen_ids.add(call.id)
        calls.append(call)
    return calls, rejected


def parse_model_output(content: str, native_calls: list[ToolCall] | None = None) -> ParsedModelOutput:
    """
    Read `{"response": str, "toolCalls": [...]}` from model output.

    A bare JSON object is tried first, then the first object embedded in surrounding
    text or code fences. Anything else is returned verbatim as the response with no
    tool calls. Native provider tool calls fill in when the content carries none.
    Requested calls that cannot be read are listed in `rejected` by call id.
    """

    obj: Any = None
    try:
        obj = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        obj = None
    if not isinstance(obj, dict):
        obj = _extract_json_object(content)

    if isinstance(obj, dict):
        response = obj.get("response")
        calls, rejected = _coerce_tool_calls(obj.get("toolCalls"))
        parsed = ParsedModelOutput(
            response=response if isinstance(response, str) else content,
            tool_calls=calls,
            rejected=rejected,
        )
    else:
        parsed = ParsedModelOutput(response=content, tool_calls=[])

    if not parsed.tool_calls and native_calls:
        return ParsedModelOutput(response=parsed.response, tool_calls=list(native_calls))
    return parsed


class _AuditedApprovals:
    """Forwards approval requests and records one audit entry per decision."""

    def __init__(self, delegate: ApprovalProvider, audit: AuditLog, actor: str) -> None:
        self._delegate = delegate
        self._audit = audit
        self._actor = actor

    def request_approval(self, request: ApprovalRequest) -> bool:
        approved = bool(self._delegate.request_approval(request))
        self._audit.record(
            AuditRecordType.APPROVAL,
            actor=self._actor,
            message=f"Approval {'granted' if approved else 'denied'} for {request.tool.name}.",
            data={
                "tool": request.tool.name,
                "callId": request.call.id,
                "sideEffectClass": request.tool.side_effect_class.value,
                "approved": approved,
                "reason": request.reason,
            },
        )
        return approved


def _budget_for(options: RunOptions) -> RetrievalBudget:
    if options.budget is not None:
        return options.budget
    configured = options.config.token_budgets if options.config is not None else None
    if configured is not None:
        return RetrievalBudget(
            bootstrap_max=configured.bootstrap_max,
            hot_max=configured.hot_max,
            warm_max=configured.warm_max,
        )
    return RetrievalBudget.for_context_window(options.model_provider.capabilities().context_window)


def _render_tool_catalog(registry: ToolRegistry) -> str:
    entries = [d.catalog_entry() for d in registry.list()]
    if not entries:
        return "(none)"
    return json.dumps(entries, ensure_ascii=False, indent=2)


def _render_tool_results(results: list[ToolResult]) -> str:
    if not results:
        return ""
    payload = json.dumps([r.to_json_dict() for r in results], ensure_ascii=False, indent=2)
    return f"Results of your previous tool calls (in execution order):\n{payload}\n"


def build_task_prompt(
    task: str,
    *,
    memory: RetrievedMemory,
    registry: ToolRegistry,
    workspace_root: str,
    previous_results: list[ToolResult],
) -> str:
    return render_prompt_template(
        load_prompt("task.md"),
        vars={
            "WORKSPACE_ROOT": workspace_root,
            "MEMORY": "\n".join(memory.items) if memory.items else "(none)",
            "TOOLS": _render_tool_catalog(registry),
            "TASK": task,
            "TOOL_RESULTS": _render_tool_results(previous_results),
        },
    )


def _audit_tool_result(audit: AuditLog, actor: str, call: ToolCall, result: ToolResult, *, side_effect: str | None) -> None:
    denied = result.status is ToolResultStatus.DENIED
    audit.record(
        AuditRecordType.POLICY if denied else AuditRecordType.TOOL,
        actor=actor,
        message=f"Tool {call.name} {result.status.value}.",
        data={
            "callId": call.id,
            "tool": call.name,
            "status": result.status.value,
            "sideEffectClass": side_effect,
            "error": result.error,
            "errorCode": result.error_code.value if result.error_code else None,
        },
    )


def run_task(task: str, options: RunOptions) -> RunOutcome:
    """
    Run one task: retrieve memory, prompt the model, execute requested tools, repeat.

    The loop stops when the model requests no tools or after `max_steps` model turns.
    Tool calls within a step run sequentially in the order the model emitted them.
    Configuration and provider failures raise; per-call failures become ToolResults.
    """

    provider = options.model_provider
    config = options.config
    audit = options.audit
    actor = resolve_actor(config, options.actor)

    model_policy = is_model_allowed(provider.kind, config)
    if not model_policy.allowed:
        audit.record(
            AuditRecordType.POLICY,
            actor=actor,
            message=f"Model provider {provider.kind} denied.",
            data={"provider": provider.kind, "model": provider.model, "reason": model_policy.reason},
        )
        raise ConfigurationError(model_policy.reason)

    budget = _budget_for(options)
    memory = retrieve_memory(
        options.store,
        task,
        scope=options.scope,
        budget=budget,
        estimate=provider.estimate_tokens,
    )

    trace = RunTrace(model=ModelTrace(provider=provider.kind, model=provider.model), memory_tokens=memory.tokens_used)
    context = ToolContext(
        config=config,
        registry=options.tool_registry,
        approvals=_AuditedApprovals(options.approvals, audit, actor),
        handlers=options.handlers,
    )
    workspace_root = str(config.resolved_workspace_root()) if config is not None else "(unset)"
    system_prompt = render_prompt_template(load_prompt("system_main.md"))
    log = logger.bind(trace_id=trace.trace_id, provider=provider.kind, model=provider.model)

    response = ""
    previous_results: list[ToolResult] = []
    status = RunStatus.STEP_LIMIT_REACHED

    for step_index in range(1, max(options.max_steps, 1) + 1):
        prompt = build_task_prompt(
            task,
            memory=memory,
            registry=options.tool_registry,
            workspace_root=workspace_root,
            previous_results=previous_results,
        )
        messages = [ModelMessage("system", system_prompt), ModelMessage("user", prompt)]

        started = time.monotonic()
        try:
            model_response = provider.generate(messages, temperature=DEFAULT_TEMPERATURE)
        except LLMRequestError as e:
            audit.record(
                AuditRecordType.MODEL,
                actor=actor,
                message="Model invocation failed.",
                data={
                    "traceId": trace.trace_id,
                    "step": step_index,
                    "provider": provider.kind,
                    "model": provider.model,
                    "errorCode": e.code.value,
                    "error": str(e),
                },
            )
            log.warning("model_invocation_failed", step=step_index, error_code=e.code.value)
            raise
        except KeyboardInterrupt:
            audit.record(
                AuditRecordType.MODEL,
                actor=actor,
                message="Model invocation cancelled.",
                data={
                    "traceId": trace.trace_id,
                    "step": step_index,
                    "provider": provider.kind,
                    "model": provider.model,
                    "errorCode": ErrorCode.CANCELLED.value,
                },
            )
            raise

        duration_ms = model_response.duration_ms or int((time.monotonic() - started) * 1000)
        trace.model.duration_ms += duration_ms
        parsed = parse_model_output(model_response.content, model_response.tool_calls)
        response = parsed.response
        audit.record(
            AuditRecordType.MODEL,
            actor=actor,
            message="Model invoked.",
            data={
                "traceId": trace.trace_id,
                "step": step_index,
                "provider": provider.kind,
                "model": provider.model,
                "durationMs": duration_ms,
                "toolCalls": len(parsed.tool_calls),
            },
        )

        step = RunStep(index=step_index, response=response, tool_calls=parsed.tool_calls, duration_ms=duration_ms)
        trace.steps.append(step)
        trace.tool_calls.extend(parsed.tool_calls)

        if not parsed.tool_calls:
            status = RunStatus.COMPLETED
            break

        results: list[ToolResult] = []
        for call in parsed.tool_calls:
            rejection = parsed.rejected.get(call.id)
            if rejection is not None:
                result = ToolResult.failure(call, rejection, code=ErrorCode.VALIDATION_FAILED)
            else:
                result = execute_tool_call(call, context).result
            definition = options.tool_registry.get(call.name)
            _audit_tool_result(
                audit,
                actor,
                call,
                result,
                side_effect=definition.side_effect_class.value if definition is not None else None,
            )
            log.info("tool_call_finished", tool=call.name, status=result.status.value)
            results.append(result)

        step.tool_results.extend(results)
        trace.tool_results.extend(results)
        previous_results = results

    if status is RunStatus.STEP_LIMIT_REACHED:
        audit.record(
            AuditRecordType.MODEL,
            actor=actor,
            message="Step limit reached before the model finished requesting tools.",
            data={"traceId": trace.trace_id, "maxSteps": options.max_steps, "errorCode": ErrorCode.STEP_LIMIT.value},
        )
        log.warning("run_step_limit_reached", max_steps=options.max_steps)

    if options.record_session:
        stamp = trace.started_at.isoformat(timespec="seconds")
        append_session_log(
            options.store.paths,
            f"## {stamp} {trace.trace_id}\n\nTask: {task.strip()}\n\nResponse: {response.strip()}\n\n",
        )

    log.info("run_completed", status=status.value, steps=len(trace.steps), tool_calls=len(trace.tool_results))
    return RunOutcome(response=response, trace=trace, tool_results=list(trace.tool_results), status=status)
