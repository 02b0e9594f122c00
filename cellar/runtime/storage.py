from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .errors import StoreError

_DIR_MODE = 0o700
_FILE_MODE = 0o600


def _replace_surrogates(text: str) -> str:
    out: list[str] = []
    changed = False
    for ch in text:
        code = ord(ch)
        if 0xD800 <= code <= 0xDFFF:
            out.append("�")
            changed = True
        else:
            out.append(ch)
    return "".join(out) if changed else text


def _sanitize_json_value(value: Any) -> Any:
    if isinstance(value, str):
        return _replace_surrogates(value)
    if isinstance(value, list):
        return [_sanitize_json_value(v) for v in value]
    if isinstance(value, dict):
        out: dict[Any, Any] = {}
        for k, v in value.items():
            key = _replace_surrogates(k) if isinstance(k, str) else k
            out[key] = _sanitize_json_value(v)
        return out
    return value


def ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True, mode=_DIR_MODE)
    except OSError as e:
        raise StoreError(f"Failed to create directory {path}: {e}", path=str(path)) from e


def safe_write_text(path: Path, text: str) -> None:
    """
    Whole-file replace: write a sibling temp file, then rename it over the target.

    Readers observe either the previous content or the new content, never a partial write.
    """

    ensure_dir(path.parent)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(_replace_surrogates(text), encoding="utf-8", errors="backslashreplace")
        os.chmod(tmp, _FILE_MODE)
        tmp.replace(path)
    except OSError as e:
        raise StoreError(f"Failed to write {path}: {e}", path=str(path)) from e


def safe_write_json(path: Path, obj: Any) -> None:
    safe_write_text(path, json.dumps(_sanitize_json_value(obj), ensure_ascii=False, indent=2) + "\n")


def append_text(path: Path, text: str) -> None:
    ensure_dir(path.parent)
    try:
        with path.open("a", encoding="utf-8") as fh:
            fh.write(text)
        os.chmod(path, _FILE_MODE)
    except OSError as e:
        raise StoreError(f"Failed to append to {path}: {e}", path=str(path)) from e


def read_text_or_none(path: Path) -> str | None:
    """Return the file content, or None when it does not exist. Other I/O or decoding failures raise StoreError."""

    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StoreError(f"Failed to read {path}: {e}", path=str(path)) from e
    except UnicodeDecodeError as e:
        raise StoreError(f"Failed to decode {path} as UTF-8: {e}", path=str(path)) from e


def read_json_or_none(path: Path) -> Any | None:
    raw = read_text_or_none(path)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise StoreError(f"Invalid JSON in {path}: {e}", path=str(path)) from e
