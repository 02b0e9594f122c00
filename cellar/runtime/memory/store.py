from __future__ import annotations

import re
from pathlib import Path

import structlog
from pydantic import ValidationError

from ..errors import StoreError
from ..models.memory import MemoryCard, MemoryIndex, MemoryIndexEntry
from ..paths import RuntimePaths
from ..storage import read_json_or_none, read_text_or_none, safe_write_json, safe_write_text

logger = structlog.get_logger(__name__)

_FRONTMATTER_RE = re.compile(r"\A---\n(?P<header>.*?)\n---\n?(?P<body>.*)\Z", re.DOTALL)


def render_card(card: MemoryCard) -> str:
    tags = ", ".join(card.tags)
    lines = [
        "---",
        f"id: {card.id}",
        f"type: {card.type.value}",
        f"tags: [{tags}]",
        f"scope: {card.scope.value}",
        f"importance: {card.importance}",
        f"created_at: {card.created_at.isoformat()}",
        "---",
        card.content.strip(),
        "",
    ]
    return "\n".join(lines)


def parse_card(text: str, *, source: str = "card") -> MemoryCard:
    match = _FRONTMATTER_RE.match(text.replace("\r\n", "\n"))
    if match is None:
        raise StoreError(f"Missing frontmatter in {source}.", path=source)

    fields: dict[str, object] = {}
    for line in match.group("header").splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == "tags":
            inner = value.removeprefix("[").removesuffix("]")
            fields["tags"] = [t.strip() for t in inner.split(",") if t.strip()]
        elif key == "importance":
            try:
                fields["importance"] = float(value)
            except ValueError as e:
                raise StoreError(f"Invalid importance in {source}: {value!r}", path=source) from e
        else:
            fields[key] = value

    fields["content"] = match.group("body").strip()
    try:
        return MemoryCard.model_validate(fields)
    except ValidationError as e:
        raise StoreError(f"Invalid card {source}: {e}", path=source) from e


class MemoryStore:
    """
    Durable memory records under the home directory.

    Missing resources read as their empty default (empty index, empty hot summary).
    Every write replaces the whole file.
    """

    def __init__(self, paths: RuntimePaths) -> None:
        self._paths = paths

    @property
    def paths(self) -> RuntimePaths:
        return self._paths

    def card_path(self, card_id: str) -> Path:
        return self._paths.cards_dir / f"{card_id}.md"

    def write_card(self, card: MemoryCard) -> Path:
        path = self.card_path(card.id)
        safe_write_text(path, render_card(card))
        logger.debug("memory_card_written", card_id=card.id, path=str(path))
        return path

    def read_card(self, card_id: str) -> MemoryCard | None:
        path = self.card_path(card_id)
        raw = read_text_or_none(path)
        if raw is None:
            return None
        return parse_card(raw, source=str(path))

    def list_card_files(self) -> list[Path]:
        cards_dir = self._paths.cards_dir
        if not cards_dir.is_dir():
            return []
        try:
            return sorted(p for p in cards_dir.iterdir() if p.is_file() and p.suffix == ".md")
        except OSError as e:
            raise StoreError(f"Failed to list {cards_dir}: {e}", path=str(cards_dir)) from e

    def read_index(self) -> MemoryIndex:
        data = read_json_or_none(self._paths.index_path)
        if data is None:
            return MemoryIndex()
        try:
            return MemoryIndex.model_validate(data)
        except ValidationError as e:
            raise StoreError(f"Invalid memory index: {e}", path=str(self._paths.index_path)) from e

    def write_index(self, index: MemoryIndex) -> None:
        safe_write_json(self._paths.index_path, index.to_json_dict())

    def upsert_index_entry(self, entry: MemoryIndexEntry) -> MemoryIndex:
        index = self.read_index().upsert(entry)
        self.write_index(index)
        return index

    def read_hot_summary(self) -> str:
        return read_text_or_none(self._paths.hot_path) or ""

    def write_hot_summary(self, text: str) -> None:
        safe_write_text(self._paths.hot_path, text)

    def read_bootstrap(self) -> str:
        bootstrap_dir = self._paths.bootstrap_dir
        if not bootstrap_dir.is_dir():
            return ""
        try:
            files = sorted(p for p in bootstrap_dir.iterdir() if p.is_file())
        except OSError as e:
            raise StoreError(f"Failed to list {bootstrap_dir}: {e}", path=str(bootstrap_dir)) from e
        parts: list[str] = []
        for path in files:
            text = read_text_or_none(path)
            if text:
                parts.append(text.strip())
        return "\n\n".join(p for p in parts if p)

    def list_session_files(self) -> list[Path]:
        sessions_dir = self._paths.sessions_dir
        if not sessions_dir.is_dir():
            return []
        try:
            return sorted(p for p in sessions_dir.iterdir() if p.is_file() and p.suffix == ".md")
        except OSError as e:
            raise StoreError(f"Failed to list {sessions_dir}: {e}", path=str(sessions_dir)) from e

