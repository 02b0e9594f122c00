from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Literal

from pydantic import ConfigDict, Field, field_validator

from .base import CamelModel, _clean_non_empty_str, _dedupe_str_list


class MemoryScope(StrEnum):
    ORG = "org"
    TEAM = "team"
    PROJECT = "project"
    USER = "user"


class MemoryType(StrEnum):
    FACT = "fact"
    LESSON = "lesson"
    DECISION = "decision"
    SNIPPET = "snippet"


def clamp_importance(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class MemoryCardMeta(CamelModel):
    id: str
    type: MemoryType = MemoryType.FACT
    tags: list[str] = Field(default_factory=list)
    scope: MemoryScope = MemoryScope.PROJECT
    importance: float = 0.5
    created_at: date

    @field_validator("id")
    @classmethod
    def _validate_id(cls, v: str) -> str:
        return _clean_non_empty_str(v, field_name="id")

    @field_validator("tags")
    @classmethod
    def _validate_tags(cls, v: list[str]) -> list[str]:
        tags = _dedupe_str_list(v)
        for tag in tags:
            # Frontmatter stores tags as an unquoted inline list.
            if any(ch in tag for ch in ",[]\n"):
                raise ValueError(f"tag {tag!r} may not contain commas, brackets or newlines.")
        return tags

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp_importance(cls, v: object) -> float:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("importance must be a number.")
        return clamp_importance(v)


class MemoryCard(MemoryCardMeta):
    """A card is immutable once written; superseding knowledge is recorded as a new card."""

    model_config = ConfigDict(frozen=True)

    content: str


class MemoryIndexEntry(MemoryCardMeta):
    path: str
    tokens: int = Field(ge=0)
    excerpt: str = ""


class MemoryIndex(CamelModel):
    version: Literal[1] = 1
    cards: list[MemoryIndexEntry] = Field(default_factory=list)

    def upsert(self, entry: MemoryIndexEntry) -> "MemoryIndex":
        cards = [c for c in self.cards if c.id != entry.id]
        cards.append(entry)
        return MemoryIndex(cards=cards)
