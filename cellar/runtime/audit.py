from __future__ import annotations

import getpass
import json
from collections import deque
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from .config import CellarConfig
from .errors import StoreError
from .models.audit_event import AuditRecord, AuditRecordType
from .storage import append_text

logger = structlog.get_logger(__name__)

DEFAULT_TAIL = 100


def resolve_actor(config: CellarConfig | None, fallback: str | None = None) -> str:
    if config is not None and config.user_identity and config.user_identity.strip():
        return config.user_identity.strip()
    if fallback:
        return fallback
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class AuditLog:
    """Append-only JSONL audit trail. Records are never rewritten."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: AuditRecord) -> None:
        line = json.dumps(record.to_json_dict(), ensure_ascii=False)
        append_text(self._path, line + "\n")

    def record(
        self,
        type: AuditRecordType,
        *,
        actor: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> AuditRecord:
        rec = AuditRecord(type=type, actor=actor, message=message, data=data)
        self.append(rec)
        return rec

    def read(self, limit: int = DEFAULT_TAIL) -> list[AuditRecord]:
        if limit <= 0:
            return []
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                lines = deque((ln for ln in fh if ln.strip()), maxlen=limit)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreError(f"Failed to read audit log: {e}", path=str(self._path)) from e

        records: list[AuditRecord] = []
        for line in lines:
            try:
                records.append(AuditRecord.model_validate_json(line))
            except ValidationError:
                logger.warning("audit_record_unreadable", path=str(self._path))
        return records
