"""Provider lookup: endpoint, headers and API key for a provider name."""
from __future__ import annotations

from cosmo.config import PROVIDERS, ProviderConfig, settings
from cosmo.core.errors import CosmoError, CosmoErrorCode


def get_provider_config(provider: str) -> ProviderConfig:
    """Case-insensitive provider lookup; unknown providers are a config error."""
    config = PROVIDERS.get((provider or "").strip().lower())
    if config is None:
        raise CosmoError(
            CosmoErrorCode.CONFIG_MISSING,
            f"Unknown provider: {provider}",
        )
    return config


def get_provider_api_key(provider: str) -> str:
    """Return the bearer key for ``provider`` or raise CONFIG_MISSING."""
    config = get_provider_config(provider)
    key = getattr(settings, config.api_key_setting, None)
    if not key:
        raise CosmoError(
            CosmoErrorCode.CONFIG_MISSING,
            f"API key not configured for provider: {config.name}",
        )
    return str(key)


def has_provider_api_key(provider: str) -> bool:
    try:
        get_provider_api_key(provider)
    except CosmoError:
        return False
    return True


def get_provider_headers(provider: str) -> dict[str, str]:
    """Authorization plus any provider-specific attribution headers."""
    config = get_provider_config(provider)
    headers = {
        "Authorization": f"Bearer {get_provider_api_key(provider)}",
        "Content-Type": "application/json",
    }
    headers.update(config.extra_headers)
    return headers
