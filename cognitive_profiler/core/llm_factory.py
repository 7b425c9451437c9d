"""
LLM Factory for multi-provider support.

Builds one LangChain chat model per provider. DeepSeek and Perplexity expose
OpenAI-compatible APIs and are reached through ChatOpenAI with their own
base URLs.
"""

from typing import Dict, List, Optional
from langchain_core.language_models import BaseChatModel
import structlog

from cognitive_profiler.exceptions import ProviderNotConfiguredError
from cognitive_profiler.models.contracts import ProviderId
from cognitive_profiler.settings import Settings, settings

logger = structlog.get_logger(__name__)


class LLMFactory:
    """Factory for creating LLM instances across different providers."""

    _cached_llms: Dict[str, BaseChatModel] = {}

    @classmethod
    def create_llm(
        cls,
        provider: ProviderId,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        config: Optional[Settings] = None,
        **kwargs
    ) -> BaseChatModel:
        """
        Create (or reuse) the chat model for a provider.

        Args:
            provider: Provider to build a client for
            model: Model name, defaults to the provider's configured model
            temperature: Sampling temperature, defaults to settings
            config: Settings to read credentials from, defaults to global settings
            **kwargs: Additional provider-specific arguments

        Returns:
            Configured chat model

        Raises:
            ProviderNotConfiguredError: If the provider has no API key or its
                client library is missing
        """
        config = config or settings
        model = model or cls.default_model(provider, config)
        temperature = config.llm_temperature if temperature is None else temperature

        cache_key = f"{provider.value}:{model}:{temperature}"
        if cache_key in cls._cached_llms:
            return cls._cached_llms[cache_key]

        llm = cls._create_provider_llm(provider, model, temperature, config, **kwargs)
        if llm is None:
            raise ProviderNotConfiguredError(f"Provider {provider.value} is not configured")

        cls._cached_llms[cache_key] = llm
        logger.info("Created LLM instance", provider=provider.value, model=model)
        return llm

    @classmethod
    def default_model(cls, provider: ProviderId, config: Optional[Settings] = None) -> str:
        config = config or settings
        return getattr(config, f"{provider.value}_model")

    @classmethod
    def _create_provider_llm(
        cls,
        provider: ProviderId,
        model: str,
        temperature: float,
        config: Settings,
        **kwargs
    ) -> Optional[BaseChatModel]:
        """Create LLM for specific provider."""
        api_key = config.api_key_for(provider)
        if not api_key:
            logger.warning("Provider API key not configured", provider=provider.value)
            return None

        # Retries belong to the orchestrator, never to the client
        common = {
            "model": model,
            "temperature": temperature,
            "api_key": api_key,
            "max_retries": 0,
            "max_tokens": config.llm_max_tokens,
            "timeout": config.timeout_for(provider),
            **kwargs,
        }

        try:
            if provider == ProviderId.ANTHROPIC:
                from langchain_anthropic import ChatAnthropic
                return ChatAnthropic(**common)

            from langchain_openai import ChatOpenAI
            if provider == ProviderId.DEEPSEEK:
                return ChatOpenAI(base_url=config.deepseek_base_url, **common)
            if provider == ProviderId.PERPLEXITY:
                return ChatOpenAI(base_url=config.perplexity_base_url, **common)
            return ChatOpenAI(**common)

        except ImportError as e:
            logger.error("LLM provider library not installed",
                        provider=provider.value,
                        error=str(e))
            return None

    @classmethod
    def get_available_providers(cls, config: Optional[Settings] = None) -> List[ProviderId]:
        """Get list of providers that have an API key configured."""
        config = config or settings
        return [provider for provider in ProviderId if config.api_key_for(provider)]

    @classmethod
    def clear_cache(cls):
        """Clear the LLM cache."""
        cls._cached_llms.clear()
        logger.info("LLM cache cleared")
