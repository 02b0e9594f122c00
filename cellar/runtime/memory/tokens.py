from __future__ import annotations

import math
import re
from typing import Callable

TokenEstimator = Callable[[str], int]

EXCERPT_MAX_CHARS = 160
_WS_RE = re.compile(r"\s+")


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""

    return math.ceil(len(text) / 4)


def make_excerpt(content: str, *, max_chars: int = EXCERPT_MAX_CHARS) -> str:
    single_line = _WS_RE.sub(" ", content).strip()
    if len(single_line) <= max_chars:
        return single_line
    return single_line[:max_chars] + "…"


def cap_by_budget(text: str, budget: int, estimate: TokenEstimator) -> str:
    """
    Truncate `text` so that `estimate(result) <= budget`.

    The first cut is proportional (`floor(len * budget / estimated)`); further cuts
    shrink the slice until the estimator agrees.
    """

    if budget <= 0 or not text:
        return ""
    estimated = estimate(text)
    if estimated <= budget:
        return text
    slice_len = math.floor(len(text) * budget / max(estimated, 1))
    capped = text[:slice_len].strip()
    while capped and estimate(capped) > budget:
        slice_len = min(slice_len - 1, math.floor(len(capped) * budget / max(estimate(capped), 1)))
        capped = text[: max(slice_len, 0)].strip()
    return capped
