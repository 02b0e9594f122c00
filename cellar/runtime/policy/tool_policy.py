from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from ..config import CellarConfig
from ..error_codes import ErrorCode
from ..models.tool_spec import SideEffectClass, ToolDefinition, is_risky
from .engine import is_tool_allowed, is_ui_allowed


class InspectionDecision(StrEnum):
    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_APPROVAL = "require_approval"


@dataclass(frozen=True, slots=True)
class InspectionResult:
    decision: InspectionDecision
    reason: str
    error_code: ErrorCode | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is not InspectionDecision.DENY

    @property
    def requires_approval(self) -> bool:
        return self.decision is InspectionDecision.REQUIRE_APPROVAL


def _deny(reason: str) -> InspectionResult:
    return InspectionResult(InspectionDecision.DENY, reason, ErrorCode.PERMISSION)


def evaluate_tool_policy(tool: ToolDefinition, config: CellarConfig | None) -> InspectionResult:
    """
    Tool-level decision.

    The allow/deny tool lists are consulted first. Read-only tools are then allowed
    outright. Risky tools must pass their capability flag and are never auto-allowed:
    the best they get is REQUIRE_APPROVAL.
    """

    base = is_tool_allowed(tool.name, config)
    if not base.allowed:
        return _deny(base.reason)

    side_effect = tool.side_effect_class
    if not is_risky(side_effect):
        return InspectionResult(InspectionDecision.ALLOW, "Read-only tool.")

    tools_cfg = config.tools if config is not None else None
    exec_enabled = bool(tools_cfg and tools_cfg.exec_enabled)
    browser_enabled = bool(tools_cfg and tools_cfg.browser_enabled)

    if side_effect is SideEffectClass.EXEC and not exec_enabled:
        return _deny("exec is disabled by default.")

    if side_effect in {SideEffectClass.UI_CONTROL, SideEffectClass.SCREEN_CAPTURE}:
        ui = is_ui_allowed(config)
        if not ui.allowed:
            return _deny(ui.reason)
        if not browser_enabled:
            if side_effect is SideEffectClass.UI_CONTROL:
                return _deny("browser automation is disabled by default.")
            return _deny("screen capture is disabled by default.")

    return InspectionResult(InspectionDecision.REQUIRE_APPROVAL, "Requires approval.")
