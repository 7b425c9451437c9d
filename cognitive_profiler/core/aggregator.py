"""
Merges per-provider outcomes into one AggregateResult.
"""

from typing import Mapping, Optional

import structlog

from cognitive_profiler.core.preview import PreviewGenerator
from cognitive_profiler.models.contracts import (
    AggregateResult,
    AnalysisRequest,
    Failure,
    FailureKind,
    ProviderId,
    ProviderOutcome,
    SkipReason,
    Skipped,
)

logger = structlog.get_logger(__name__)


class ResultAggregator:
    """Builds the aggregate result, attaching previews to credit denials."""

    def __init__(self, preview_generator: Optional[PreviewGenerator] = None):
        self.preview_generator = preview_generator or PreviewGenerator()

    def aggregate(
        self,
        request: AnalysisRequest,
        outcomes: Mapping[ProviderId, ProviderOutcome],
    ) -> AggregateResult:
        """
        Merge outcomes so that every requested provider has exactly one entry.

        Args:
            request: The originating request
            outcomes: Outcomes collected by the orchestrator

        Returns:
            AggregateResult keyed by exactly ``request.providers``
        """
        merged = {}
        for provider in request.providers:
            outcome = outcomes.get(provider)
            if outcome is None:
                logger.error("Provider finished without an outcome", provider=provider.value)
                outcome = Failure(kind=FailureKind.UNKNOWN, message="No outcome was recorded")
            elif isinstance(outcome, Skipped) and outcome.reason == SkipReason.CREDIT_DENIED:
                outcome = outcome.model_copy(
                    update={"preview": self.preview_generator.generate(request.text, request.kind)}
                )
            merged[provider] = outcome

        extra = set(outcomes) - set(request.providers)
        if extra:
            logger.warning("Dropping outcomes for unrequested providers", providers=sorted(p.value for p in extra))

        return AggregateResult(
            outcomes=merged,
            text=request.text,
            kind=request.kind,
            additional_context=request.additional_context,
        )
