from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

from . import __version__
from .runtime.approval import ApprovalStore, StoredApprovalProvider, TerminalApprovalProvider
from .runtime.audit import AuditLog, resolve_actor
from .runtime.config import CellarConfig, init_config_if_missing, load_config, require_config
from .runtime.engine import RunOptions, run_task
from .runtime.errors import ConfigurationError, StoreError
from .runtime.llm.errors import LLMRequestError
from .runtime.llm.factory import provider_from_config
from .runtime.llm.secrets import ChainedSecretsProvider, DotenvSecretsProvider, MappingSecretsProvider
from .runtime.memory.compaction import compact_hot_summary, compact_sessions_to_card, gc_memory
from .runtime.memory.operations import add_memory_card, search_memory
from .runtime.memory.store import MemoryStore
from .runtime.models.audit_event import AuditRecordType
from .runtime.models.memory import MemoryScope, MemoryType
from .runtime.observability import setup_logging
from .runtime.paths import RuntimePaths
from .runtime.policy import (
    PolicyResult,
    evaluate_tool_policy,
    is_domain_allowed,
    is_model_allowed,
    is_path_allowed,
    is_tool_allowed,
    is_ui_allowed,
)
from .runtime.storage import ensure_dir
from .runtime.tools.builtins import builtin_handlers
from .runtime.tools.registry import ToolRegistry

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DENIED = 2
EXIT_CONFIG_ERROR = 5

DEFAULT_APPROVAL_TTL_S = 3600
DEFAULT_HOT_MAX_TOKENS = 512


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, default=str))


def _paths(args: argparse.Namespace) -> RuntimePaths:
    home = getattr(args, "home", None)
    if home:
        return RuntimePaths.for_home(home)
    return RuntimePaths.discover()


def _builtin_registry() -> tuple[ToolRegistry, dict[str, Any]]:
    handlers = {h.definition.name: h for h in builtin_handlers()}
    return ToolRegistry(h.definition for h in handlers.values()), handlers


def _print_policy(result: PolicyResult) -> int:
    _print_json({"allowed": result.allowed, "reason": result.reason})
    return EXIT_OK if result.allowed else EXIT_DENIED


def _cmd_version(_: argparse.Namespace) -> int:
    print(__version__)
    return EXIT_OK


def _cmd_init(args: argparse.Namespace) -> int:
    paths = _paths(args)
    for d in (paths.home, paths.bootstrap_dir, paths.cards_dir, paths.sessions_dir, paths.audit_dir):
        ensure_dir(d)
    _, created = init_config_if_missing(paths)
    state = "Created" if created else "Found existing"
    print(f"{state} config at {paths.config_path}")
    return EXIT_OK


def _cmd_run(args: argparse.Namespace) -> int:
    paths = _paths(args)
    config = require_config(paths)
    # Secrets come from the home .env first, then the invoking process environment.
    secrets = ChainedSecretsProvider([DotenvSecretsProvider(paths.env_path), MappingSecretsProvider(os.environ)])
    provider = provider_from_config(config, secrets)
    registry, handlers = _builtin_registry()
    approvals = StoredApprovalProvider(
        ApprovalStore(paths.approvals_path),
        TerminalApprovalProvider(),
        ttl_seconds=config.approvals.ttl_seconds,
    )
    outcome = run_task(
        args.task,
        RunOptions(
            model_provider=provider,
            tool_registry=registry,
            store=MemoryStore(paths),
            audit=AuditLog(paths.audit_log_path),
            approvals=approvals,
            handlers=handlers,
            config=config,
            scope=MemoryScope(args.scope),
        ),
    )
    if args.json_output:
        _print_json(
            {
                "response": outcome.response,
                "status": outcome.status.value,
                "toolResults": [r.to_json_dict() for r in outcome.tool_results],
                "trace": outcome.trace.to_json_dict(),
            }
        )
    else:
        print(outcome.response)
        if outcome.status.value != "completed":
            print(f"[{outcome.status.value}]", file=sys.stderr)
    return EXIT_OK


def _cmd_memory_add(args: argparse.Namespace) -> int:
    store = MemoryStore(_paths(args))
    tags = [t for t in (args.tags or "").split(",") if t.strip()]
    card = add_memory_card(
        store,
        args.content,
        tags=tags,
        scope=MemoryScope(args.scope),
        type=MemoryType(args.type),
        importance=args.importance,
    )
    print(card.id)
    return EXIT_OK


def _cmd_memory_search(args: argparse.Namespace) -> int:
    store = MemoryStore(_paths(args))
    scope = MemoryScope(args.scope) if args.scope else None
    hits = search_memory(store, args.query, scope=scope, limit=args.limit)
    if not hits:
        print("No matches.")
        return EXIT_OK
    for entry in hits:
        print(f"{entry.id} [{entry.scope.value}/{entry.type.value}] {entry.excerpt}")
    return EXIT_OK


def _cmd_memory_compact(args: argparse.Namespace) -> int:
    paths = _paths(args)
    store = MemoryStore(paths)
    if args.sessions:
        card = compact_sessions_to_card(store)
        print(f"Session card: {card.id}" if card else "No session content to compact.")
    max_tokens = args.max_tokens
    if max_tokens is None:
        config = load_config(paths)
        budgets = config.token_budgets if config is not None else None
        max_tokens = budgets.hot_max if budgets is not None else DEFAULT_HOT_MAX_TOKENS
    summary = compact_hot_summary(store, max_tokens)
    print(f"Hot summary: {len(summary.splitlines())} lines")
    return EXIT_OK


def _cmd_memory_gc(args: argparse.Namespace) -> int:
    result = gc_memory(MemoryStore(_paths(args)))
    _print_json({"removed": result.removed, "remaining": result.remaining})
    return EXIT_OK


def _cmd_memory_hot(args: argparse.Namespace) -> int:
    summary = MemoryStore(_paths(args)).read_hot_summary()
    print(summary if summary else "(empty)")
    return EXIT_OK


def _config_or_none(args: argparse.Namespace) -> CellarConfig | None:
    return load_config(_paths(args))


def _cmd_policy_check_tool(args: argparse.Namespace) -> int:
    config = _config_or_none(args)
    registry, _ = _builtin_registry()
    definition = registry.get(args.name)
    if definition is None:
        return _print_policy(is_tool_allowed(args.name, config))
    inspection = evaluate_tool_policy(definition, config)
    _print_json(
        {
            "allowed": inspection.allowed,
            "requiresApproval": inspection.requires_approval,
            "reason": inspection.reason,
        }
    )
    return EXIT_OK if inspection.allowed else EXIT_DENIED


def _cmd_policy_check_path(args: argparse.Namespace) -> int:
    return _print_policy(is_path_allowed(args.path, _config_or_none(args)))


def _cmd_policy_check_domain(args: argparse.Namespace) -> int:
    return _print_policy(is_domain_allowed(args.domain, _config_or_none(args)))


def _cmd_policy_check_ui(args: argparse.Namespace) -> int:
    return _print_policy(is_ui_allowed(_config_or_none(args)))


def _cmd_policy_check_model(args: argparse.Namespace) -> int:
    return _print_policy(is_model_allowed(args.kind, _config_or_none(args)))


def _cmd_approve(args: argparse.Namespace) -> int:
    paths = _paths(args)
    config = load_config(paths)
    ttl = args.ttl
    if ttl is None:
        configured = config.approvals.ttl_seconds if config is not None else None
        ttl = configured if configured is not None else DEFAULT_APPROVAL_TTL_S
    record = ApprovalStore(paths.approvals_path).grant(args.tool, ttl)
    AuditLog(paths.audit_log_path).record(
        AuditRecordType.APPROVAL,
        actor=resolve_actor(config),
        message=f"Approval granted for {record.tool}.",
        data={"tool": record.tool, "expiresAt": record.expires_at.isoformat(), "ttlSeconds": ttl},
    )
    print(f"Approved {record.tool} until {record.expires_at.isoformat()}")
    return EXIT_OK


def _cmd_audit_tail(args: argparse.Namespace) -> int:
    for record in AuditLog(_paths(args).audit_log_path).read(limit=args.n):
        print(json.dumps(record.to_json_dict(), ensure_ascii=False))
    return EXIT_OK


def _cmd_tool_list(_: argparse.Namespace) -> int:
    registry, _ = _builtin_registry()
    for definition in registry.list():
        print(f"{definition.name:<12} {definition.side_effect_class.value:<14} {definition.description}")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cellar",
        description="Local-first, policy-gated model/tool gateway.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--home", default=None, help="Home directory (default: $CELLAR_DOOR_HOME or ~/.cellar-door).")
    parser.add_argument("--json", dest="log_json", action="store_true", help="Emit logs as JSON.")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING).")

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create the home directory and a default config.")
    init_parser.set_defaults(func=_cmd_init)

    version_parser = subparsers.add_parser("version", help="Print the version.")
    version_parser.set_defaults(func=_cmd_version)

    run_parser = subparsers.add_parser("run", help="Run a task through the model.")
    run_parser.add_argument("task", help="Task description.")
    run_parser.add_argument("--scope", default=MemoryScope.PROJECT.value, choices=[s.value for s in MemoryScope])
    run_parser.add_argument("--json", dest="json_output", action="store_true", help="Print the outcome as JSON.")
    run_parser.set_defaults(func=_cmd_run)

    memory_parser = subparsers.add_parser("memory", help="Manage memory.")
    memory_subparsers = memory_parser.add_subparsers(dest="memory_command", required=True)

    memory_add = memory_subparsers.add_parser("add", help="Add a memory card.")
    memory_add.add_argument("content")
    memory_add.add_argument("--tags", default="", help="Comma-separated tags.")
    memory_add.add_argument("--scope", default=MemoryScope.PROJECT.value, choices=[s.value for s in MemoryScope])
    memory_add.add_argument("--type", default=MemoryType.FACT.value, choices=[t.value for t in MemoryType])
    memory_add.add_argument("--importance", type=float, default=0.5)
    memory_add.set_defaults(func=_cmd_memory_add)

    memory_search = memory_subparsers.add_parser("search", help="Search memory cards.")
    memory_search.add_argument("query")
    memory_search.add_argument("--scope", default=None, choices=[s.value for s in MemoryScope])
    memory_search.add_argument("--limit", type=int, default=5)
    memory_search.set_defaults(func=_cmd_memory_search)

    memory_compact = memory_subparsers.add_parser("compact", help="Rebuild the hot summary.")
    memory_compact.add_argument("--max-tokens", type=int, default=None)
    memory_compact.add_argument("--sessions", action="store_true", help="Fold the latest session log into a card first.")
    memory_compact.set_defaults(func=_cmd_memory_compact)

    memory_gc = memory_subparsers.add_parser("gc", help="Drop index entries without a card record.")
    memory_gc.set_defaults(func=_cmd_memory_gc)

    memory_hot = memory_subparsers.add_parser("hot", help="Print the hot summary.")
    memory_hot.set_defaults(func=_cmd_memory_hot)

    policy_parser = subparsers.add_parser("policy", help="Evaluate policy decisions.")
    policy_subparsers = policy_parser.add_subparsers(dest="policy_command", required=True)

    check_tool = policy_subparsers.add_parser("check-tool")
    check_tool.add_argument("name")
    check_tool.set_defaults(func=_cmd_policy_check_tool)

    check_path = policy_subparsers.add_parser("check-path")
    check_path.add_argument("path")
    check_path.set_defaults(func=_cmd_policy_check_path)

    check_domain = policy_subparsers.add_parser("check-domain")
    check_domain.add_argument("domain")
    check_domain.set_defaults(func=_cmd_policy_check_domain)

    check_ui = policy_subparsers.add_parser("check-ui")
    check_ui.set_defaults(func=_cmd_policy_check_ui)

    check_model = policy_subparsers.add_parser("check-model")
    check_model.add_argument("kind")
    check_model.set_defaults(func=_cmd_policy_check_model)

    approve_parser = subparsers.add_parser("approve", help="Grant a time-bounded approval for a tool.")
    approve_parser.add_argument("tool")
    approve_parser.add_argument("--ttl", type=int, default=None, help="Seconds (default: config or 3600).")
    approve_parser.set_defaults(func=_cmd_approve)

    audit_parser = subparsers.add_parser("audit", help="Read the audit log.")
    audit_subparsers = audit_parser.add_subparsers(dest="audit_command", required=True)
    audit_tail = audit_subparsers.add_parser("tail", help="Print the most recent audit records.")
    audit_tail.add_argument("-n", type=int, default=20)
    audit_tail.set_defaults(func=_cmd_audit_tail)

    tool_parser = subparsers.add_parser("tool", help="Inspect registered tools.")
    tool_subparsers = tool_parser.add_subparsers(dest="tool_command", required=True)
    tool_list = tool_subparsers.add_parser("list", help="List built-in tools.")
    tool_list.set_defaults(func=_cmd_tool_list)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, json=args.log_json)

    try:
        func = getattr(args, "func")
        return int(func(args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except (StoreError, LLMRequestError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
