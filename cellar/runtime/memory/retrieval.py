from __future__ import annotations

import math
from dataclasses import dataclass, field

import structlog

from ..models.memory import MemoryIndexEntry, MemoryScope
from .store import MemoryStore
from .tokens import TokenEstimator, cap_by_budget

logger = structlog.get_logger(__name__)

MAX_TOTAL_BUDGET = 4096
CONTEXT_WINDOW_SHARE = 0.25


@dataclass(frozen=True, slots=True)
class RetrievalBudget:
    bootstrap_max: int
    hot_max: int
    warm_max: int

    @property
    def total(self) -> int:
        return self.bootstrap_max + self.hot_max + self.warm_max

    @classmethod
    def for_context_window(cls, context_window: int) -> "RetrievalBudget":
        total = min(MAX_TOTAL_BUDGET, math.floor(context_window * CONTEXT_WINDOW_SHARE))
        bootstrap = math.floor(total * 0.25)
        hot = math.floor(total * 0.25)
        return cls(bootstrap_max=bootstrap, hot_max=hot, warm_max=max(total - bootstrap - hot, 0))


@dataclass(frozen=True, slots=True)
class RetrievedMemory:
    items: list[str] = field(default_factory=list)
    tokens_used: int = 0


def score_entry(entry: MemoryIndexEntry, query_tokens: list[str], scope: MemoryScope) -> float:
    excerpt = entry.excerpt.lower()
    tag_matches = sum(1 for tag in entry.tags if tag.lower() in query_tokens)
    word_matches = sum(1 for tok in query_tokens if tok in excerpt)
    scope_boost = 1 if entry.scope == scope else 0
    return tag_matches * 3 + word_matches + entry.importance + scope_boost


def rank_entries(entries: list[MemoryIndexEntry], query: str, scope: MemoryScope) -> list[MemoryIndexEntry]:
    query_tokens = query.lower().split()
    # sorted() is stable: equal scores keep index order.
    return sorted(entries, key=lambda e: score_entry(e, query_tokens, scope), reverse=True)


def retrieve_memory(
    store: MemoryStore,
    task: str,
    *,
    scope: MemoryScope,
    budget: RetrievalBudget,
    estimate: TokenEstimator,
) -> RetrievedMemory:
    """
    Assemble bounded context in three tiers: bootstrap, hot summary, ranked warm entries.

    Each tier is capped by its own budget. A warm entry that would overflow the remaining
    warm budget is skipped and the next-ranked entry is tried.
    """

    items: list[str] = []
    tokens_used = 0

    bootstrap = store.read_bootstrap()
    if bootstrap:
        capped = cap_by_budget(bootstrap, budget.bootstrap_max, estimate)
        if capped:
            items.append(f"Bootstrap:\n{capped}")
            tokens_used += estimate(capped)

    hot = store.read_hot_summary()
    if hot:
        capped = cap_by_budget(hot, budget.hot_max, estimate)
        if capped:
            items.append(f"Hot Summary:\n{capped}")
            tokens_used += estimate(capped)

    warm_tokens = 0
    for entry in rank_entries(store.read_index().cards, task, scope):
        if warm_tokens + entry.tokens > budget.warm_max:
            continue
        items.append(f"Memory ({entry.id}):\n{entry.excerpt}")
        warm_tokens += entry.tokens
    tokens_used += warm_tokens

    logger.debug("memory_retrieved", items=len(items), tokens_used=tokens_used, budget=budget.total)
    return RetrievedMemory(items=items, tokens_used=tokens_used)
