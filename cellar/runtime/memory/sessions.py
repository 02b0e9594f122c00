from __future__ import annotations

from datetime import datetime
from pathlib import Path

from ..ids import utc_now
from ..paths import RuntimePaths
from ..storage import append_text


def session_log_path(paths: RuntimePaths, now: datetime | None = None) -> Path:
    day = (now or utc_now()).date().isoformat()
    return paths.sessions_dir / f"{day}.md"


def append_session_log(paths: RuntimePaths, entry: str, *, now: datetime | None = None) -> Path:
    path = session_log_path(paths, now)
    append_text(path, entry if entry.endswith("\n") else entry + "\n")
    return path
