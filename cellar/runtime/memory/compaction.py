from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from ..models.memory import MemoryCard, MemoryScope, MemoryType
from ..storage import read_text_or_none
from .operations import add_memory_card
from .store import MemoryStore
from .tokens import TokenEstimator, estimate_tokens

logger = structlog.get_logger(__name__)

SESSION_CARD_MAX_CHARS = 800


@dataclass(frozen=True, slots=True)
class GcResult:
    removed: int
    remaining: int


def compact_hot_summary(
    store: MemoryStore,
    max_tokens: int,
    estimate: TokenEstimator = estimate_tokens,
) -> str:
    """
    Rebuild the hot summary from the newest index entries.

    Lines are appended while the whole summary stays within `max_tokens`; the first
    line that would overflow ends the summary. The previous summary is replaced.
    """

    entries = sorted(store.read_index().cards, key=lambda e: e.created_at, reverse=True)
    lines: list[str] = []
    for entry in entries:
        candidate = "\n".join([*lines, f"- {entry.excerpt}"])
        if estimate(candidate) > max_tokens:
            break
        lines.append(f"- {entry.excerpt}")

    summary = "\n".join(lines)
    store.write_hot_summary(summary)
    logger.info("memory_hot_compacted", lines=len(lines), tokens=estimate(summary))
    return summary


def compact_sessions_to_card(store: MemoryStore) -> MemoryCard | None:
    files = store.list_session_files()
    if not files:
        return None
    latest = files[-1]
    content = (read_text_or_none(latest) or "").strip()[:SESSION_CARD_MAX_CHARS].strip()
    if not content:
        return None
    card = add_memory_card(
        store,
        content,
        tags=["session"],
        scope=MemoryScope.PROJECT,
        type=MemoryType.SNIPPET,
    )
    logger.info("memory_session_compacted", session=latest.name, card_id=card.id)
    return card


def gc_memory(store: MemoryStore) -> GcResult:
    """
    Drop index entries whose card record no longer exists.

    Never creates entries. The index is only rewritten when something was removed.
    """

    existing = {p.name for p in store.list_card_files()}
    index = store.read_index()
    kept = [entry for entry in index.cards if Path(entry.path).name in existing]
    removed = len(index.cards) - len(kept)
    if removed:
        store.write_index(index.model_copy(update={"cards": kept}))
    logger.info("memory_gc", removed=removed, remaining=len(kept))
    return GcResult(removed=removed, remaining=len(kept))
