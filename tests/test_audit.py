from __future__ import annotations

import json

from cellar.runtime.audit import AuditLog, resolve_actor
from cellar.runtime.config import CellarConfig
from cellar.runtime.models.audit_event import AuditRecordType


def test_records_are_appended_as_json_lines(audit):
    audit.record(AuditRecordType.TOOL, actor="dana", message="Tool fs.read success.", data={"tool": "fs.read"})
    audit.record(AuditRecordType.POLICY, actor="dana", message="Tool exec.run denied.")

    lines = audit.path.read_text(encoding="utf-8").splitlines()
    first = json.loads(lines[0])

    assert len(lines) == 2
    assert first["type"] == "tool"
    assert first["actor"] == "dana"
    assert first["data"] == {"tool": "fs.read"}
    assert "ts" in first


def test_read_returns_the_tail_in_order(audit):
    for i in range(5):
        audit.record(AuditRecordType.MODEL, actor="a", message=f"m{i}")

    assert [r.message for r in audit.read(limit=2)] == ["m3", "m4"]
    assert audit.read(limit=0) == []


def test_unreadable_lines_are_skipped(audit):
    audit.record(AuditRecordType.MODEL, actor="a", message="ok")
    with audit.path.open("a", encoding="utf-8") as fh:
        fh.write("{broken\n")

    assert [r.message for r in audit.read()] == ["ok"]


def test_missing_log_reads_empty(tmp_path):
    assert AuditLog(tmp_path / "none.log").read() == []


def test_actor_prefers_configured_identity():
    assert resolve_actor(CellarConfig(user_identity="  dana ")) == "dana"
    assert resolve_actor(CellarConfig(), "fallback") == "fallback"
    assert resolve_actor(None)
