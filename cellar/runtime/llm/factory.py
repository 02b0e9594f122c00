from __future__ import annotations

import httpx

from ..config import (
    CellarConfig,
    HttpProviderConfig,
    LmStudioProviderConfig,
    ModelProviderConfig,
    OllamaProviderConfig,
)
from ..errors import ConfigurationError
from .providers import HttpModelProvider, LmStudioModelProvider, OllamaModelProvider
from .secrets import SecretsProvider, find_missing_secrets, resolve_headers
from .types import ModelProvider


def build_model_provider(
    config: ModelProviderConfig,
    secrets: SecretsProvider,
    *,
    transport: httpx.BaseTransport | None = None,
) -> ModelProvider:
    if isinstance(config, HttpProviderConfig):
        missing = find_missing_secrets(config, secrets)
        if missing:
            raise ConfigurationError(f"Missing secrets for model provider headers: {', '.join(missing)}")
        return HttpModelProvider(
            base_url=config.base_url,
            model=config.model,
            headers=resolve_headers(config.headers, secrets),
            timeout_ms=config.timeout_ms,
            transport=transport,
        )
    if isinstance(config, OllamaProviderConfig):
        return OllamaModelProvider(
            model=config.model,
            base_url=config.base_url,
            timeout_ms=config.timeout_ms,
            transport=transport,
        )
    if isinstance(config, LmStudioProviderConfig):
        return LmStudioModelProvider(
            model=config.model,
            base_url=config.base_url,
            timeout_ms=config.timeout_ms,
            transport=transport,
        )
    raise ConfigurationError(f"Unsupported model provider: {getattr(config, 'kind', config)!r}")


def provider_from_config(config: CellarConfig, secrets: SecretsProvider) -> ModelProvider:
    if config.model_provider is None:
        raise ConfigurationError("No modelProvider configured. Set modelProvider in config.json.")
    return build_model_provider(config.model_provider, secrets)
