from __future__ import annotations

import re

import structlog

from ..ids import new_memory_id, utc_now
from ..models.memory import MemoryCard, MemoryIndexEntry, MemoryScope, MemoryType, clamp_importance
from ..models.base import _dedupe_str_list
from .store import MemoryStore
from .tokens import TokenEstimator, estimate_tokens, make_excerpt

logger = structlog.get_logger(__name__)

DEFAULT_SEARCH_LIMIT = 5
_NON_WORD_RE = re.compile(r"\W+")


def index_entry_for(card: MemoryCard, *, path: str, estimate: TokenEstimator = estimate_tokens) -> MemoryIndexEntry:
    return MemoryIndexEntry(
        id=card.id,
        type=card.type,
        tags=list(card.tags),
        scope=card.scope,
        importance=card.importance,
        created_at=card.created_at,
        path=path,
        tokens=estimate(card.content),
        excerpt=make_excerpt(card.content),
    )


def save_card(store: MemoryStore, card: MemoryCard, *, estimate: TokenEstimator = estimate_tokens) -> MemoryIndexEntry:
    """Write the card record, then upsert its index entry (replacing any entry with the same id)."""

    path = store.write_card(card)
    entry = index_entry_for(card, path=str(path), estimate=estimate)
    store.upsert_index_entry(entry)
    return entry


def add_memory_card(
    store: MemoryStore,
    content: str,
    *,
    tags: list[str] | None = None,
    scope: MemoryScope = MemoryScope.PROJECT,
    type: MemoryType = MemoryType.FACT,
    importance: float = 0.5,
    card_id: str | None = None,
    estimate: TokenEstimator = estimate_tokens,
) -> MemoryCard:
    if not isinstance(content, str) or not content.strip():
        raise ValueError("Memory content must be a non-empty string.")

    now = utc_now()
    card = MemoryCard(
        id=card_id or new_memory_id(now),
        type=MemoryType(type),
        tags=_dedupe_str_list(tags),
        scope=MemoryScope(scope),
        importance=clamp_importance(importance),
        created_at=now.date(),
        content=content.strip(),
    )
    save_card(store, card, estimate=estimate)
    logger.info("memory_card_added", card_id=card.id, type=card.type.value, scope=card.scope.value)
    return card


def search_memory(
    store: MemoryStore,
    query: str,
    *,
    scope: MemoryScope | None = None,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> list[MemoryIndexEntry]:
    tokens = [t for t in _NON_WORD_RE.split(query.lower()) if t]
    if not tokens or limit <= 0:
        return []

    scored: list[tuple[float, MemoryIndexEntry]] = []
    for entry in store.read_index().cards:
        if scope is not None and entry.scope != scope:
            continue
        excerpt = entry.excerpt.lower()
        tags = [t.lower() for t in entry.tags]
        matches = sum(1 for tok in tokens if tok in excerpt or tok in tags)
        if matches == 0:
            continue
        scored.append((matches + entry.importance, entry))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [entry for _, entry in scored[:limit]]
