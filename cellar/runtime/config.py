from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import Field, ValidationError, field_validator

from .errors import ConfigurationError
from .models.base import CamelModel, _clean_non_empty_str, _dedupe_str_list
from .paths import RuntimePaths
from .storage import read_text_or_none, safe_write_text

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_LMSTUDIO_URL = "http://localhost:1234/v1"


class _ProviderBase(CamelModel):
    model: str
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)

    @field_validator("model")
    @classmethod
    def _validate_model(cls, v: str) -> str:
        return _clean_non_empty_str(v, field_name="model")


class HttpProviderConfig(_ProviderBase):
    kind: Literal["http"] = "http"
    base_url: str
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, v: str) -> str:
        return _clean_non_empty_str(v, field_name="baseUrl")


class OllamaProviderConfig(_ProviderBase):
    kind: Literal["ollama"] = "ollama"
    base_url: str = DEFAULT_OLLAMA_URL


class LmStudioProviderConfig(_ProviderBase):
    kind: Literal["lmstudio"] = "lmstudio"
    base_url: str = DEFAULT_LMSTUDIO_URL


ModelProviderConfig = Annotated[
    Union[HttpProviderConfig, OllamaProviderConfig, LmStudioProviderConfig],
    Field(discriminator="kind"),
]


class TeamConfig(CamelModel):
    name: str | None = None


class NetworkConfig(CamelModel):
    allow_domains: list[str] = Field(default_factory=list)

    @field_validator("allow_domains")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        return _dedupe_str_list(v)


class ToolsConfig(CamelModel):
    exec_enabled: bool = False
    browser_enabled: bool = False
    browser_headless: bool = True
    desktop_enabled: bool = False


class PolicyConfig(CamelModel):
    allow_tools: list[str] = Field(default_factory=list)
    deny_tools: list[str] = Field(default_factory=list)
    allow_paths: list[str] = Field(default_factory=list)
    deny_paths: list[str] = Field(default_factory=list)
    allow_domains: list[str] = Field(default_factory=list)
    deny_domains: list[str] = Field(default_factory=list)
    allow_ui: bool = True

    @field_validator("allow_tools", "deny_tools", "allow_paths", "deny_paths", "allow_domains", "deny_domains")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        return _dedupe_str_list(v)


class TokenBudgets(CamelModel):
    bootstrap_max: int = Field(gt=0)
    hot_max: int = Field(gt=0)
    warm_max: int = Field(gt=0)


class ApprovalsConfig(CamelModel):
    ttl_seconds: int | None = Field(default=None, ge=0)


class CellarConfig(CamelModel):
    version: Literal[1] = 1
    model_provider: ModelProviderConfig | None = None
    approved_model_providers: list[str] = Field(default_factory=list)
    user_identity: str | None = None
    team: TeamConfig = Field(default_factory=TeamConfig)
    workspace_root: str | None = None
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    token_budgets: TokenBudgets | None = None
    approvals: ApprovalsConfig = Field(default_factory=ApprovalsConfig)

    @field_validator("approved_model_providers")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        return _dedupe_str_list(v)

    def resolved_workspace_root(self) -> Path:
        root = self.workspace_root or "."
        return Path(root).expanduser().resolve()


def parse_config(data: object, *, source: str = "config") -> CellarConfig:
    try:
        return CellarConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {source}: {e}") from e


def load_config(paths: RuntimePaths) -> CellarConfig | None:
    """
    Load `config.json` from the home directory.

    Returns None when no config file exists yet. A file that is not JSON, or does not
    match the schema, raises ConfigurationError.
    """

    raw = read_text_or_none(paths.config_path)
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Config file is not valid JSON: {paths.config_path}: {e}") from e
    return parse_config(data, source=str(paths.config_path))


def require_config(paths: RuntimePaths) -> CellarConfig:
    config = load_config(paths)
    if config is None:
        raise ConfigurationError(f"No config found at {paths.config_path}. Run `cellar init` first.")
    return config


def write_config(paths: RuntimePaths, config: CellarConfig) -> None:
    validated = parse_config(config.model_dump(by_alias=True))
    safe_write_text(paths.config_path, json.dumps(validated.to_json_dict(), indent=2) + "\n")


def init_config_if_missing(paths: RuntimePaths) -> tuple[CellarConfig, bool]:
    existing = load_config(paths)
    if existing is not None:
        return existing, False
    config = CellarConfig()
    write_config(paths, config)
    return config, True
