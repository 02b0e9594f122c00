from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

ENV_HOME = "CELLAR_DOOR_HOME"
_DEFAULT_HOME_NAME = ".cellar-door"


@dataclass(frozen=True, slots=True)
class RuntimePaths:
    """
    Every on-disk location used by the runtime, derived from a single home directory.

    Layout:
      config.json, .env, approvals.json
      bootstrap/            curated files always offered to the model
      memory/cards/<id>.md  memory card records
      memory/index.json     card metadata index
      memory/hot.md         compacted hot summary
      sessions/<date>.md    per-day session logs
      audit/audit.log       JSONL audit trail
    """

    home: Path

    @classmethod
    def for_home(cls, home: Path | str) -> "RuntimePaths":
        return cls(home=Path(home).expanduser().resolve())

    @classmethod
    def discover(cls, environ: Mapping[str, str] | None = None) -> "RuntimePaths":
        env = os.environ if environ is None else environ
        override = env.get(ENV_HOME)
        if isinstance(override, str) and override.strip():
            return cls.for_home(override.strip())
        return cls.for_home(Path.home() / _DEFAULT_HOME_NAME)

    @property
    def config_path(self) -> Path:
        return self.home / "config.json"

    @property
    def env_path(self) -> Path:
        return self.home / ".env"

    @property
    def approvals_path(self) -> Path:
        return self.home / "approvals.json"

    @property
    def bootstrap_dir(self) -> Path:
        return self.home / "bootstrap"

    @property
    def memory_dir(self) -> Path:
        return self.home / "memory"

    @property
    def cards_dir(self) -> Path:
        return self.memory_dir / "cards"

    @property
    def index_path(self) -> Path:
        return self.memory_dir / "index.json"

    @property
    def hot_path(self) -> Path:
        return self.memory_dir / "hot.md"

    @property
    def sessions_dir(self) -> Path:
        return self.home / "sessions"

    @property
    def audit_dir(self) -> Path:
        return self.home / "audit"

    @property
    def audit_log_path(self) -> Path:
        return self.audit_dir / "audit.log"
