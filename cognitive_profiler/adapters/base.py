"""
Base provider adapter interface.

Defines the protocol every analysis provider must implement so that the
orchestrator can treat all external backends uniformly.
"""

from typing import Any, Dict, Optional, Protocol, runtime_checkable
import asyncio
import time

import structlog

from cognitive_profiler.adapters.errors import classify_error
from cognitive_profiler.core.prompts import REQUIRED_KEYS
from cognitive_profiler.exceptions import MalformedResponseError
from cognitive_profiler.models.contracts import (
    AnalysisKind,
    Failure,
    FailureKind,
    ProviderId,
    ProviderOutcome,
    Success,
)

logger = structlog.get_logger(__name__)


@runtime_checkable
class ProviderAdapter(Protocol):
    """
    Protocol for analysis providers.

    Implementations make exactly one outbound call per invocation, honor
    the timeout, and report every failure as a classified ``Failure``
    instead of raising.
    """

    provider: ProviderId

    async def invoke(
        self,
        text: str,
        context: Optional[str],
        kind: AnalysisKind,
        timeout: float,
    ) -> ProviderOutcome:
        """
        Analyze ``text`` with this provider.

        Args:
            text: Input text
            context: Optional free-text context
            kind: Requested analysis kind
            timeout: Seconds before the call is abandoned

        Returns:
            Success with the payload, or a classified Failure
        """
        ...


class BaseProviderAdapter:
    """
    Base implementation providing timeout handling and error classification.

    Subclasses implement ``_call`` and may raise anything; ``invoke`` turns
    the result into a ProviderOutcome.
    """

    def __init__(self, provider: ProviderId):
        self.provider = provider

    async def _call(self, text: str, context: Optional[str], kind: AnalysisKind) -> Dict[str, Any]:
        raise NotImplementedError

    def validate_payload(self, payload: Any, kind: AnalysisKind) -> Dict[str, Any]:
        """Reject non-object payloads and payloads missing keys for the kind."""
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"{self.provider.value} returned {type(payload).__name__}, expected a JSON object"
            )
        missing = [key for key in REQUIRED_KEYS[kind] if key not in payload]
        if missing:
            raise MalformedResponseError(
                f"{self.provider.value} response is missing keys: {', '.join(missing)}"
            )
        return payload

    async def invoke(
        self,
        text: str,
        context: Optional[str],
        kind: AnalysisKind,
        timeout: float,
    ) -> ProviderOutcome:
        start_time = time.perf_counter()

        try:
            payload = await asyncio.wait_for(self._call(text, context, kind), timeout=timeout)
            payload = self.validate_payload(payload, kind)
        except asyncio.TimeoutError:
            logger.warning(
                "Provider call timed out",
                provider=self.provider.value,
                timeout=timeout,
            )
            return Failure(kind=FailureKind.TIMEOUT, message=f"No response within {timeout:.1f}s")
        except Exception as e:
            failure_kind = classify_error(e)
            duration = round((time.perf_counter() - start_time) * 1000, 2)
            logger.warning(
                "Provider call failed",
                provider=self.provider.value,
                failure_kind=failure_kind.value,
                error=str(e),
                duration_ms=duration,
            )
            return Failure(kind=failure_kind, message=str(e) or type(e).__name__)

        elapsed = time.perf_counter() - start_time
        logger.info(
            "Provider call succeeded",
            provider=self.provider.value,
            kind=kind.value,
            duration_ms=round(elapsed * 1000, 2),
        )
        return Success(payload=payload, elapsed_seconds=elapsed)
