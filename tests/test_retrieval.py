from __future__ import annotations

from datetime import date

import pytest

from cellar.runtime.memory.operations import add_memory_card, save_card
from cellar.runtime.memory.retrieval import RetrievalBudget, retrieve_memory
from cellar.runtime.memory.tokens import cap_by_budget, estimate_tokens
from cellar.runtime.models.memory import MemoryCard, MemoryScope


def _seed(store, paths):
    paths.bootstrap_dir.mkdir(parents=True)
    (paths.bootstrap_dir / "01-team.md").write_text("Team rules. " * 40, encoding="utf-8")
    (paths.bootstrap_dir / "02-project.md").write_text("Project notes. " * 30, encoding="utf-8")
    store.write_hot_summary("\n".join(f"- hot item {i}" for i in range(50)))
    for i in range(12):
        add_memory_card(store, f"card {i} " + "detail " * (i * 3), tags=[f"t{i}"], importance=i / 12)


@pytest.mark.parametrize(
    "budget",
    [
        RetrievalBudget(1, 1, 1),
        RetrievalBudget(5, 3, 10),
        RetrievalBudget(50, 50, 50),
        RetrievalBudget(0, 0, 0),
        RetrievalBudget(100, 1, 7),
        RetrievalBudget(1000, 1000, 1000),
    ],
)
def test_tokens_used_never_exceeds_budget(store, paths, budget):
    _seed(store, paths)

    result = retrieve_memory(store, "card detail t3", scope=MemoryScope.PROJECT, budget=budget, estimate=estimate_tokens)

    assert result.tokens_used <= budget.total


def test_tiers_are_labelled_and_ordered(store, paths):
    paths.bootstrap_dir.mkdir(parents=True)
    (paths.bootstrap_dir / "rules.md").write_text("Always run tests.", encoding="utf-8")
    store.write_hot_summary("- recent thing")
    card = add_memory_card(store, "Some warm fact")

    result = retrieve_memory(
        store, "warm", scope=MemoryScope.PROJECT, budget=RetrievalBudget(100, 100, 100), estimate=estimate_tokens
    )

    assert result.items == [
        "Bootstrap:\nAlways run tests.",
        "Hot Summary:\n- recent thing",
        f"Memory ({card.id}):\nSome warm fact",
    ]
    assert result.tokens_used == estimate_tokens("Always run tests.") + estimate_tokens("- recent thing") + 4


def test_warm_overflow_is_skipped_not_truncated(store):
    big_first = MemoryCard(id="mem_a", importance=1.0, created_at=date(2025, 1, 1), content="a" * 40)
    too_big = MemoryCard(id="mem_b", importance=0.9, created_at=date(2025, 1, 1), content="b" * 80)
    small = MemoryCard(id="mem_c", importance=0.1, created_at=date(2025, 1, 1), content="c" * 12)
    for card in (big_first, too_big, small):
        save_card(store, card)

    result = retrieve_memory(store, "", scope=MemoryScope.PROJECT, budget=RetrievalBudget(0, 0, 15), estimate=estimate_tokens)

    assert [item.split(":")[0] for item in result.items] == ["Memory (mem_a)", "Memory (mem_c)"]
    assert result.tokens_used == 13


def test_tag_matches_outrank_importance(store):
    tagged = add_memory_card(store, "rollout checklist", tags=["deploy"], importance=0.1)
    add_memory_card(store, "important but unrelated", importance=0.9)

    result = retrieve_memory(
        store, "Deploy now", scope=MemoryScope.PROJECT, budget=RetrievalBudget(0, 0, 100), estimate=estimate_tokens
    )

    assert result.items[0] == f"Memory ({tagged.id}):\nrollout checklist"


def test_equal_scores_keep_index_order(store):
    ids = [add_memory_card(store, f"same {i}").id for i in range(4)]

    result = retrieve_memory(store, "zzz", scope=MemoryScope.PROJECT, budget=RetrievalBudget(0, 0, 100), estimate=estimate_tokens)

    assert [item.split("\n")[0] for item in result.items] == [f"Memory ({i}):" for i in ids]


def test_budget_from_context_window():
    assert RetrievalBudget.for_context_window(16_384) == RetrievalBudget(1024, 1024, 2048)
    assert RetrievalBudget.for_context_window(8192) == RetrievalBudget(512, 512, 1024)
    assert RetrievalBudget.for_context_window(1_000_000).total == 4096


def test_cap_by_budget_proportional_slice():
    assert cap_by_budget("short", 10, estimate_tokens) == "short"
    assert cap_by_budget("x" * 100, 10, estimate_tokens) == "x" * 40
    assert cap_by_budget("anything", 0, estimate_tokens) == ""


def test_cap_by_budget_holds_for_pessimistic_estimator():
    def estimate(text: str) -> int:
        return len(text) + 3

    capped = cap_by_budget("abcdefghij", 8, estimate)

    assert capped == "abcde"
    assert estimate(capped) <= 8
