"""Resource providers."""

from pathlib import Path
from typing import Optional

from config import ApplySettings, ConfigError, ConfigurationRecord
from providers.base import (
    NotFoundError,
    Provider,
    ProviderError,
    ProviderResponse,
    TerminalError,
    TransientError,
)
from providers.memory import MemoryProvider
from providers.rest import RestProvider


def get_provider(
    settings: ApplySettings,
    record: ConfigurationRecord,
    state_dir: Optional[Path] = None,
) -> Provider:
    """Build the provider selected in settings.

    The memory provider persists its inventory next to the stack state
    when state_dir is given.
    """
    if settings.provider == 'rest':
        if not settings.endpoint:
            raise ConfigError("provider 'rest' requires settings.endpoint")
        return RestProvider(settings.endpoint, token=settings.token or None, verify=not settings.insecure)
    path = state_dir / record.resource_prefix / 'provider.json' if state_dir else None
    return MemoryProvider(region=record.region, path=path)


__all__ = [
    'get_provider',
    'MemoryProvider',
    'NotFoundError',
    'Provider',
    'ProviderError',
    'ProviderResponse',
    'RestProvider',
    'TerminalError',
    'TransientError',
]
