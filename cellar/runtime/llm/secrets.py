from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Mapping, Protocol

from dotenv import dotenv_values

from ..config import HttpProviderConfig, ModelProviderConfig
from ..errors import ConfigurationError

_SECRET_REF_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


class SecretsProvider(Protocol):
    def get(self, name: str) -> str | None: ...


class MappingSecretsProvider:
    def __init__(self, values: Mapping[str, str | None]) -> None:
        self._values = dict(values)

    def get(self, name: str) -> str | None:
        value = self._values.get(name)
        return value if value else None


class DotenvSecretsProvider:
    """Secrets from a `.env` file. The process environment is never read or modified."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._values: dict[str, str | None] | None = None

    def get(self, name: str) -> str | None:
        if self._values is None:
            self._values = dict(dotenv_values(self._path)) if self._path.is_file() else {}
        value = self._values.get(name)
        return value if value else None


class ChainedSecretsProvider:
    def __init__(self, providers: Iterable[SecretsProvider]) -> None:
        self._providers = list(providers)

    def get(self, name: str) -> str | None:
        for provider in self._providers:
            value = provider.get(name)
            if value:
                return value
        return None


def secret_refs(value: str) -> list[str]:
    refs: list[str] = []
    for match in _SECRET_REF_RE.finditer(value):
        name = match.group(1) or match.group(2)
        if name and name not in refs:
            refs.append(name)
    return refs


def find_missing_secrets(config: ModelProviderConfig, secrets: SecretsProvider) -> list[str]:
    if not isinstance(config, HttpProviderConfig) or not config.headers:
        return []
    missing: list[str] = []
    for value in config.headers.values():
        for name in secret_refs(value):
            if secrets.get(name) is None and name not in missing:
                missing.append(name)
    return missing


def resolve_secret_refs(value: str, secrets: SecretsProvider) -> str:
    missing: list[str] = []

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        resolved = secrets.get(name)
        if resolved is None:
            missing.append(name)
            return match.group(0)
        return resolved

    out = _SECRET_REF_RE.sub(_sub, value)
    if missing:
        raise ConfigurationError(f"Missing secrets: {', '.join(sorted(set(missing)))}")
    return out


def resolve_headers(headers: Mapping[str, str], secrets: SecretsProvider) -> dict[str, str]:
    return {key: resolve_secret_refs(value, secrets) for key, value in headers.items()}
