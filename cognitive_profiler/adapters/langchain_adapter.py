"""
LangChain-based adapters for the chat-model providers.

Every provider is reached through a LangChain chat model built by the
LLMFactory; the response text is parsed as a JSON object.
"""

from typing import Any, Dict, Optional
import json
import re

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
import structlog

from cognitive_profiler.adapters.base import BaseProviderAdapter
from cognitive_profiler.adapters.registry import register
from cognitive_profiler.core.llm_factory import LLMFactory
from cognitive_profiler.core.prompts import system_prompt, user_prompt
from cognitive_profiler.exceptions import MalformedResponseError
from cognitive_profiler.models.contracts import AnalysisKind, ProviderId
from cognitive_profiler.settings import Settings

logger = structlog.get_logger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def message_text(content: Any) -> str:
    """Flatten chat message content (plain string or list of content blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


def parse_json_payload(raw: str) -> Dict[str, Any]:
    """
    Extract the JSON object from a model response.

    Models sometimes wrap the object in prose or code fences, so the first
    '{' through the last '}' is parsed.

    Raises:
        MalformedResponseError: If no JSON object can be parsed
    """
    if not raw or not raw.strip():
        raise MalformedResponseError("Empty response from provider")

    match = _JSON_OBJECT.search(raw)
    if not match:
        raise MalformedResponseError("No JSON object in provider response")

    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Invalid JSON in provider response: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedResponseError("Provider response is not a JSON object")
    return payload


class LangChainProviderAdapter(BaseProviderAdapter):
    """
    Adapter for any provider reachable through a LangChain chat model.
    """

    def __init__(
        self,
        provider: ProviderId,
        llm: Optional[BaseChatModel] = None,
        config: Optional[Settings] = None,
        **llm_kwargs
    ):
        """
        Initialize the adapter.

        Args:
            provider: Provider this adapter fronts
            llm: Pre-built chat model; built by the LLMFactory when omitted
            config: Settings used to build the chat model
            **llm_kwargs: Additional chat-model arguments
        """
        super().__init__(provider)
        self.llm = llm or LLMFactory.create_llm(provider, config=config, **llm_kwargs)

    async def _call(self, text: str, context: Optional[str], kind: AnalysisKind) -> Dict[str, Any]:
        messages = [
            SystemMessage(content=system_prompt(kind)),
            HumanMessage(content=user_prompt(text, context)),
        ]
        response = await self.llm.ainvoke(messages)
        raw = message_text(response.content)

        logger.debug(
            "Provider responded",
            provider=self.provider.value,
            response_chars=len(raw),
        )
        return parse_json_payload(raw)


@register(ProviderId.OPENAI)
class OpenAIAdapter(LangChainProviderAdapter):
    def __init__(self, **kwargs):
        kwargs.setdefault("provider", ProviderId.OPENAI)
        super().__init__(**kwargs)


@register(ProviderId.ANTHROPIC)
class AnthropicAdapter(LangChainProviderAdapter):
    def __init__(self, **kwargs):
        kwargs.setdefault("provider", ProviderId.ANTHROPIC)
        super().__init__(**kwargs)


@register(ProviderId.DEEPSEEK)
class DeepSeekAdapter(LangChainProviderAdapter):
    def __init__(self, **kwargs):
        kwargs.setdefault("provider", ProviderId.DEEPSEEK)
        super().__init__(**kwargs)


@register(ProviderId.PERPLEXITY)
class PerplexityAdapter(LangChainProviderAdapter):
    def __init__(self, **kwargs):
        kwargs.setdefault("provider", ProviderId.PERPLEXITY)
        super().__init__(**kwargs)
