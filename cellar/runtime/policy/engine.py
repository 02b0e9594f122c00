from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from ..config import CellarConfig, PolicyConfig


@dataclass(frozen=True, slots=True)
class PolicyResult:
    allowed: bool
    reason: str


def _policy(config: CellarConfig | None) -> PolicyConfig:
    return config.policy if config is not None else PolicyConfig()


def _resolve(path: str | os.PathLike[str]) -> Path:
    return Path(os.path.abspath(os.path.expanduser(os.fspath(path))))


def is_within(target: Path, prefix: Path) -> bool:
    return target == prefix or prefix in target.parents


def is_tool_allowed(tool_name: str, config: CellarConfig | None) -> PolicyResult:
    policy = _policy(config)
    if tool_name in policy.deny_tools:
        return PolicyResult(False, f"Tool {tool_name} denied by policy.")
    if policy.allow_tools and tool_name not in policy.allow_tools:
        return PolicyResult(False, f"Tool {tool_name} not in allowlist.")
    return PolicyResult(True, "Tool allowed by policy.")


def is_path_allowed(target: str | os.PathLike[str], config: CellarConfig | None) -> PolicyResult:
    """
    Paths are made absolute before comparison. Deny entries match as plain string
    prefixes, so `/tmp/secret` also denies `/tmp/secret2`. Allow entries match per
    path component, so `/work` covers `/work/a.txt` but not `/workspace`.
    """

    policy = _policy(config)
    resolved = _resolve(target)
    if any(str(resolved).startswith(str(_resolve(p))) for p in policy.deny_paths):
        return PolicyResult(False, "Path denied by policy.")
    if policy.allow_paths and not any(is_within(resolved, _resolve(p)) for p in policy.allow_paths):
        return PolicyResult(False, "Path not in allowlist.")
    return PolicyResult(True, "Path allowed by policy.")


def is_domain_allowed(domain: str, config: CellarConfig | None) -> PolicyResult:
    policy = _policy(config)
    if domain in policy.deny_domains:
        return PolicyResult(False, "Domain denied by policy.")
    if policy.allow_domains and domain not in policy.allow_domains:
        return PolicyResult(False, "Domain not in allowlist.")
    return PolicyResult(True, "Domain allowed by policy.")


def is_ui_allowed(config: CellarConfig | None) -> PolicyResult:
    if not _policy(config).allow_ui:
        return PolicyResult(False, "UI control denied by policy.")
    return PolicyResult(True, "UI control allowed by policy.")


def is_model_allowed(provider_kind: str, config: CellarConfig | None) -> PolicyResult:
    approved = config.approved_model_providers if config is not None else []
    if not approved:
        return PolicyResult(True, "No approved provider list; allowing.")
    if provider_kind not in approved:
        return PolicyResult(False, "Model provider not approved.")
    return PolicyResult(True, "Model provider approved.")
