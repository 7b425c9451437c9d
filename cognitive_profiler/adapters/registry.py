"""
Adapter registry and factory for analysis providers.

Provides a centralized system for registering and creating the adapter
that fronts each provider.
"""

from typing import Dict, Optional, Type
import structlog

from cognitive_profiler.adapters.base import BaseProviderAdapter
from cognitive_profiler.core.llm_factory import LLMFactory
from cognitive_profiler.exceptions import ProviderNotConfiguredError
from cognitive_profiler.models.contracts import ProviderId
from cognitive_profiler.settings import Settings, settings

logger = structlog.get_logger(__name__)

# Global registry of adapter classes
ADAPTERS: Dict[ProviderId, Type[BaseProviderAdapter]] = {}


def register(provider: ProviderId):
    """
    Decorator to register an adapter class for a provider.

    Example:
        @register(ProviderId.OPENAI)
        class OpenAIAdapter(LangChainProviderAdapter):
            ...
    """
    def _wrap(cls: Type[BaseProviderAdapter]) -> Type[BaseProviderAdapter]:
        ADAPTERS[provider] = cls
        logger.debug("Registered adapter", provider=provider.value, class_name=cls.__name__)
        return cls
    return _wrap


def make_adapter(provider: ProviderId, **kwargs) -> BaseProviderAdapter:
    """
    Create an adapter instance for the specified provider.

    Args:
        provider: Provider to front
        **kwargs: Configuration parameters for the adapter

    Returns:
        Configured adapter instance

    Raises:
        ProviderNotConfiguredError: If no adapter is registered for the provider
    """
    if provider not in ADAPTERS:
        available = [p.value for p in ADAPTERS]
        raise ProviderNotConfiguredError(
            f"No adapter registered for {provider.value}. "
            f"Available providers: {available}"
        )

    adapter_class = ADAPTERS[provider]

    try:
        logger.info("Creating adapter", provider=provider.value, class_name=adapter_class.__name__)
        return adapter_class(**kwargs)
    except Exception as e:
        logger.error("Failed to create adapter", provider=provider.value, error=str(e))
        raise


def build_adapters(config: Optional[Settings] = None) -> Dict[ProviderId, BaseProviderAdapter]:
    """
    Create adapters for every provider that has credentials configured.

    Providers whose client cannot be built are logged and left out, so the
    orchestrator reports them as not configured.
    """
    config = config or settings
    adapters: Dict[ProviderId, BaseProviderAdapter] = {}
    for provider in LLMFactory.get_available_providers(config):
        try:
            adapters[provider] = make_adapter(provider, config=config)
        except ProviderNotConfiguredError as e:
            logger.warning("Provider unavailable at startup", provider=provider.value, error=str(e))
    return adapters


def list_available_adapters() -> Dict[str, str]:
    """Map registered providers to their adapter class names."""
    return {provider.value: cls.__name__ for provider, cls in ADAPTERS.items()}

