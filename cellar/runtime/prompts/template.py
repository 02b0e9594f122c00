from __future__ import annotations

import re
from datetime import date, datetime
from functools import lru_cache
from importlib import resources
from typing import Mapping

_TOKEN_RE = re.compile(r"\{\{\s*([A-Z_]+)(?::([^}]+))?\s*\}\}")


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    return resources.files(__package__).joinpath(name).read_text(encoding="utf-8")


def _format_moment(value: date, fmt: str | None) -> str:
    default = value.isoformat(timespec="seconds") if isinstance(value, datetime) else value.isoformat()
    if not fmt or not fmt.strip():
        return default
    try:
        return value.strftime(fmt.strip())
    except ValueError:
        return default


def render_prompt_template(text: str, *, now: datetime | None = None, vars: Mapping[str, str] | None = None) -> str:
    """
    Substitute `{{NAME}}` tokens in a prompt.

    Keys of `vars` win over the built-ins `{{NOW}}` and `{{TODAY}}`, which accept an
    optional strftime suffix (`{{TODAY:%d %b %Y}}`). Unknown tokens are left alone.
    Substituted values are not re-scanned, so memory or tool output containing `{{...}}` is inert.
    """

    current = now or datetime.now().astimezone()
    values: Mapping[str, str] = vars or {}

    def _replace(m: re.Match[str]) -> str:
        name = m.group(1).upper()
        if name in values:
            return str(values[name] or "")
        if name == "NOW":
            return _format_moment(current, m.group(2))
        if name == "TODAY":
            return _format_moment(current.date(), m.group(2))
        return m.group(0)

    return _TOKEN_RE.sub(_replace, text)
