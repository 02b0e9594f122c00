from __future__ import annotations

from .engine import (
    PolicyResult,
    is_domain_allowed,
    is_model_allowed,
    is_path_allowed,
    is_tool_allowed,
    is_ui_allowed,
)
from .tool_policy import InspectionDecision, InspectionResult, evaluate_tool_policy

__all__ = [
    "InspectionDecision",
    "InspectionResult",
    "PolicyResult",
    "evaluate_tool_policy",
    "is_domain_allowed",
    "is_model_allowed",
    "is_path_allowed",
    "is_tool_allowed",
    "is_ui_allowed",
]
