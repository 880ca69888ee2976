#!/usr/bin/env python3
"""
Provider Factory

Builds news provider adapters from configuration. The aggregator receives a
name -> adapter map and keeps its own priority order on top of it.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Type

from src.config.settings import DEFAULT_PROVIDER_ORDER, ProviderSettings, load_provider_settings
from src.services.gnews_adapter import GNewsAdapter
from src.services.guardian_adapter import GuardianAdapter
from src.services.newsapi_adapter import NewsAPIAdapter
from src.services.provider_adapter import ProviderAdapter


ADAPTER_TYPES: Dict[str, Type[ProviderAdapter]] = {
    "newsapi": NewsAPIAdapter,
    "gnews": GNewsAdapter,
    "guardian": GuardianAdapter,
}


@dataclass
class ProviderFactoryConfig:
    """Which providers to build and whether to skip those without credentials."""
    providers: List[str] = field(default_factory=lambda: list(DEFAULT_PROVIDER_ORDER))
    require_api_key: bool = False


class ProviderFactory:
    """
    Factory for news provider adapters.

    Supported provider names: "newsapi", "gnews", "guardian".
    """

    @staticmethod
    def create_adapter(name: str, settings: ProviderSettings) -> ProviderAdapter:
        """
        Create one adapter.

        Raises:
            ValueError: If the provider name is unknown
        """
        adapter_type = ADAPTER_TYPES.get(name.lower())
        if adapter_type is None:
            raise ValueError(f"Unknown provider: {name}. Supported: {', '.join(ADAPTER_TYPES)}")
        return adapter_type(settings)

    @staticmethod
    def create_from_environment(
        config: Optional[ProviderFactoryConfig] = None,
        provider_settings: Optional[Dict[str, ProviderSettings]] = None,
    ) -> Dict[str, ProviderAdapter]:
        """
        Build every configured adapter, skipping any whose construction fails.

        Returns:
            Mapping of provider name to adapter
        """
        config = config or ProviderFactoryConfig()
        provider_settings = provider_settings or load_provider_settings()
        logger = logging.getLogger(__name__)

        adapters: Dict[str, ProviderAdapter] = {}
        for name in config.providers:
            settings = provider_settings.get(name)
            if settings is None:
                logger.warning(f"No settings for provider '{name}', skipping")
                continue
            if config.require_api_key and not settings.api_key:
                logger.info(f"Provider '{name}' has no API key, skipping")
                continue
            try:
                adapters[name] = ProviderFactory.create_adapter(name, settings)
                logger.info(f"Created {adapters[name].__class__.__name__} for '{name}'")
            except Exception as e:
                logger.warning(f"Failed to create provider '{name}': {e}")

        if not adapters:
            logger.error("❌ No news providers could be created")
        return adapters

    @staticmethod
    def get_available_adapters() -> List[str]:
        return list(ADAPTER_TYPES)
