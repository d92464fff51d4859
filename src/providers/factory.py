"""
Provider registry and construction.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type

from config import AppConfig
from utils.shutdown import ShutdownRegistry

from .base import MediaSourceProvider, ProviderType
from .local import LocalMediaProvider
from .remote import RemoteMediaProvider


class ProviderSetupError(RuntimeError):
    """Raised when provider options are invalid or initialization fails."""


class ProviderFactory:
    """Create, validate and initialize providers by type."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("media_browser")
        self._providers: Dict[ProviderType, Type[MediaSourceProvider]] = {
            ProviderType.LOCAL: LocalMediaProvider,
            ProviderType.REMOTE: RemoteMediaProvider,
        }

    def register(self, provider_type: ProviderType, provider_cls: Type[MediaSourceProvider]) -> None:
        self._providers[provider_type] = provider_cls

    def available(self) -> list[str]:
        return [provider_type.value for provider_type in self._providers]

    def resolve_type(self, value: ProviderType | str) -> ProviderType:
        if isinstance(value, ProviderType):
            provider_type = value
        else:
            try:
                provider_type = ProviderType(str(value).strip().lower())
            except ValueError:
                raise ProviderSetupError(
                    f"Unknown provider '{value}'. Available: {', '.join(self.available())}"
                ) from None
        if provider_type not in self._providers:
            raise ProviderSetupError(f"Provider '{provider_type.value}' is not registered")
        return provider_type

    def config_schema(self, value: ProviderType | str) -> Dict[str, Any]:
        return self._providers[self.resolve_type(value)].config_schema()

    def options_from_config(self, config: AppConfig) -> Dict[str, Any]:
        """Collect constructor options for the configured provider type."""
        provider_type = self.resolve_type(config.get("provider", "type", default=ProviderType.LOCAL.value))
        if provider_type is ProviderType.REMOTE:
            return {"url": config.remote_url(), "api_key": config.remote_api_key()}
        return {"directory": config.get("local", "directory")}

    def create(
        self,
        value: ProviderType | str,
        options: Dict[str, Any],
        config: Optional[AppConfig] = None,
        shutdown: Optional[ShutdownRegistry] = None,
        **kwargs: Any,
    ) -> MediaSourceProvider:
        """Validate options, build the provider and initialize it."""
        provider_type = self.resolve_type(value)
        provider_cls = self._providers[provider_type]
        validation = provider_cls.validate_config(options)
        if not validation.success:
            raise ProviderSetupError(validation.error or f"Invalid {provider_type.value} provider options")

        provider = provider_cls(**validation.data, config=config, logger=self.logger, **kwargs)
        result = provider.initialize()
        if not result.success:
            provider.close()
            raise ProviderSetupError(result.error or f"Failed to initialize {provider_type.value} provider")
        if shutdown is not None:
            shutdown.register(provider)
        self.logger.info("Provider ready: %s", provider_type.value)
        return provider
