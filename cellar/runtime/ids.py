from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone


def new_id(prefix: str) -> str:
    ts = time.time_ns()
    rand = uuid.uuid4().hex
    return f"{prefix}_{ts:016x}_{rand}"


def new_memory_id(now: datetime | None = None) -> str:
    """
    Memory card ids sort by creation day: `mem_2026_10_19_1a2b3c4d`.
    """

    day = (now or utc_now()).strftime("%Y_%m_%d")
    return f"mem_{day}_{uuid.uuid4().hex[:8]}"


def new_trace_id() -> str:
    return new_id("trace")


def new_tool_call_id() -> str:
    # 37 chars, under the 40-char id limit some gateways enforce
    return f"call_{uuid.uuid4().hex}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
