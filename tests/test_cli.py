from __future__ import annotations

import json

import pytest

from cellar import __version__
from cellar.cli import EXIT_CONFIG_ERROR, EXIT_DENIED, EXIT_OK, main
from cellar.runtime.config import CellarConfig, write_config
from cellar.runtime.paths import RuntimePaths


@pytest.fixture
def home(tmp_path) -> str:
    return str(tmp_path / "home")


def _run(capsys, home: str, *argv: str) -> tuple[int, str, str]:
    code = main(["--home", home, *argv])
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def test_version(capsys, home):
    code, out, _ = _run(capsys, home, "version")

    assert code == EXIT_OK
    assert out.strip() == __version__


def test_init_creates_layout_once(capsys, home, tmp_path):
    code, out, _ = _run(capsys, home, "init")
    assert code == EXIT_OK
    assert out.startswith("Created config")
    assert (tmp_path / "home" / "memory" / "cards").is_dir()
    assert (tmp_path / "home" / "bootstrap").is_dir()

    code, out, _ = _run(capsys, home, "init")
    assert code == EXIT_OK
    assert out.startswith("Found existing config")


def test_memory_add_then_search(capsys, home):
    code, out, _ = _run(capsys, home, "memory", "add", "Deploys go through the staging cluster.", "--tags", "ops,deploy")
    assert code == EXIT_OK
    card_id = out.strip()
    assert card_id.startswith("mem_")

    code, out, _ = _run(capsys, home, "memory", "search", "staging")
    assert code == EXIT_OK
    assert card_id in out
    assert "[project/fact]" in out

    code, out, _ = _run(capsys, home, "memory", "search", "nothing-like-this")
    assert out.strip() == "No matches."


def test_memory_compact_and_hot(capsys, home):
    _run(capsys, home, "memory", "add", "Use ruff for linting.")

    code, out, _ = _run(capsys, home, "memory", "compact", "--max-tokens", "100")
    assert code == EXIT_OK
    assert out.strip() == "Hot summary: 1 lines"

    code, out, _ = _run(capsys, home, "memory", "hot")
    assert "Use ruff for linting." in out


def test_memory_gc_reports_counts(capsys, home):
    code, out, _ = _run(capsys, home, "memory", "gc")

    assert code == EXIT_OK
    assert json.loads(out) == {"removed": 0, "remaining": 0}


def test_exec_tool_is_denied_by_default(capsys, home):
    code, out, _ = _run(capsys, home, "policy", "check-tool", "exec.run")

    assert code == EXIT_DENIED
    assert json.loads(out)["allowed"] is False


def test_read_only_tool_is_allowed(capsys, home):
    code, out, _ = _run(capsys, home, "policy", "check-tool", "fs.read")

    assert code == EXIT_OK
    assert json.loads(out) == {"allowed": True, "requiresApproval": False, "reason": "Read-only tool."}


def test_check_model_uses_approved_list(capsys, home):
    write_config(RuntimePaths.for_home(home), CellarConfig(approved_model_providers=["ollama"]))

    code, out, _ = _run(capsys, home, "policy", "check-model", "http")
    assert code == EXIT_DENIED
    assert json.loads(out)["reason"] == "Model provider not approved."

    code, _, _ = _run(capsys, home, "policy", "check-model", "ollama")
    assert code == EXIT_OK


def test_run_without_config_is_a_config_error(capsys, home):
    code, _, err = _run(capsys, home, "run", "do something")

    assert code == EXIT_CONFIG_ERROR
    assert "cellar init" in err


def test_run_without_provider_is_a_config_error(capsys, home):
    _run(capsys, home, "init")

    code, _, err = _run(capsys, home, "run", "do something")

    assert code == EXIT_CONFIG_ERROR
    assert "modelProvider" in err


def test_approve_is_audited(capsys, home):
    code, out, _ = _run(capsys, home, "approve", "fs.write", "--ttl", "60")
    assert code == EXIT_OK
    assert out.startswith("Approved fs.write until ")

    code, out, _ = _run(capsys, home, "audit", "tail", "-n", "5")
    assert code == EXIT_OK
    lines = [json.loads(line) for line in out.splitlines()]
    assert len(lines) == 1
    assert lines[0]["type"] == "approval"
    assert lines[0]["data"]["tool"] == "fs.write"
    assert lines[0]["data"]["ttlSeconds"] == 60


def test_tool_list_names_builtins(capsys, home):
    code, out, _ = _run(capsys, home, "tool", "list")

    assert code == EXIT_OK
    names = [line.split()[0] for line in out.splitlines()]
    assert names == ["fs.read", "fs.write", "net.fetch", "exec.run", "git.status", "git.diff", "git.log"]
