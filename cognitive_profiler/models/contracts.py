"""
Data contracts for the Cognitive Profiler core.

These models define the values that flow between the orchestrator, the
provider adapters, the credit ledger and the HTTP layer.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_TEXT_LENGTH = 200_000


class ProviderId(str, Enum):
    """Closed set of analysis providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    DEEPSEEK = "deepseek"
    PERPLEXITY = "perplexity"


class AnalysisKind(str, Enum):
    """Profile types a request can ask for."""
    COGNITIVE = "cognitive"
    PSYCHOLOGICAL = "psychological"
    COMPREHENSIVE_REPORT = "comprehensive_report"
    COMPREHENSIVE_PSYCHOLOGICAL_REPORT = "comprehensive_psychological_report"


class FailureKind(str, Enum):
    """Uniform error taxonomy across all provider backends."""
    TIMEOUT = "timeout"
    QUOTA_EXCEEDED = "quota_exceeded"
    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"
    CREDIT_DENIED = "credit_denied"
    UNKNOWN = "unknown"


class SkipReason(str, Enum):
    """Why a provider was not called."""
    CREDIT_DENIED = "credit_denied"
    NOT_CONFIGURED = "not_configured"


class ProgressState(str, Enum):
    """Per-provider lifecycle: pending -> loading -> completed | errored."""
    PENDING = "pending"
    LOADING = "loading"
    COMPLETED = "completed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressState.COMPLETED, ProgressState.ERRORED)


class AnalysisRequest(BaseModel):
    """One analysis request, immutable once built."""
    model_config = ConfigDict(frozen=True)

    text: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH, description="Text to analyze")
    additional_context: Optional[str] = Field(None, max_length=10_000, description="Free-text context for the providers")
    kind: AnalysisKind = Field(default=AnalysisKind.COGNITIVE, description="Requested profile type")
    account_id: str = Field(..., min_length=1, max_length=255, description="Account billed for the analysis")
    providers: Tuple[ProviderId, ...] = Field(..., min_length=1, description="Providers to query")

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v

    @field_validator("providers")
    @classmethod
    def dedupe_providers(cls, v: Tuple[ProviderId, ...]) -> Tuple[ProviderId, ...]:
        seen: List[ProviderId] = []
        for provider in v:
            if provider not in seen:
                seen.append(provider)
        return tuple(seen)


class Success(BaseModel):
    """The provider returned a usable payload."""
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    payload: Dict[str, Any] = Field(..., description="Provider payload, shaped per analysis kind")
    elapsed_seconds: float = Field(..., ge=0.0, description="Wall-clock duration of the provider call")


class Failure(BaseModel):
    """The provider call failed; the failure is local to this provider."""
    model_config = ConfigDict(frozen=True)

    status: Literal["failure"] = "failure"
    kind: FailureKind = Field(..., description="Classified failure kind")
    message: str = Field(default="", description="Human-readable failure detail")


class Skipped(BaseModel):
    """The provider was never called."""
    model_config = ConfigDict(frozen=True)

    status: Literal["skipped"] = "skipped"
    reason: SkipReason = Field(..., description="Why the provider was skipped")
    preview: Optional[Dict[str, Any]] = Field(None, description="Truncated preview payload for credit denials")


ProviderOutcome = Annotated[Union[Success, Failure, Skipped], Field(discriminator="status")]


class AggregateResult(BaseModel):
    """Outcome of one orchestration, keyed by provider."""
    outcomes: Dict[ProviderId, ProviderOutcome] = Field(..., description="Exactly one outcome per requested provider")
    text: str = Field(..., description="Original input text, kept for report regeneration")
    kind: AnalysisKind = Field(..., description="Requested profile type")
    additional_context: Optional[str] = Field(None, description="Original additional context")

    @property
    def succeeded(self) -> List[ProviderId]:
        return [p for p, o in self.outcomes.items() if isinstance(o, Success)]

    @property
    def failed(self) -> List[ProviderId]:
        return [p for p, o in self.outcomes.items() if isinstance(o, Failure)]

    @property
    def skipped(self) -> List[ProviderId]:
        return [p for p, o in self.outcomes.items() if isinstance(o, Skipped)]

    @property
    def is_partial_success(self) -> bool:
        """At least one provider produced a live or previewed payload."""
        return any(
            isinstance(o, Success) or (isinstance(o, Skipped) and o.preview is not None)
            for o in self.outcomes.values()
        )

    @property
    def all_failed(self) -> bool:
        return bool(self.outcomes) and all(isinstance(o, Failure) for o in self.outcomes.values())


class ProgressSnapshot(BaseModel):
    """Consistent point-in-time view of one run's progress."""
    model_config = ConfigDict(frozen=True)

    version: int = Field(..., ge=0, description="Monotonic snapshot number")
    states: Dict[ProviderId, ProgressState] = Field(default_factory=dict)
    done: bool = Field(default=False, description="Every provider reached a terminal state")


# Ledger values

@dataclass(frozen=True)
class Reservation:
    """A held, not yet committed debit against one (account, provider) balance."""
    reservation_id: str
    account_id: str
    provider: ProviderId
    cost: int
    action: str = "analysis"


@dataclass(frozen=True)
class Granted:
    reservation: Reservation


@dataclass(frozen=True)
class Denied:
    account_id: str
    provider: ProviderId
    cost: int
    available: int


ReserveResult = Union[Granted, Denied]


class CreditBalance(BaseModel):
    """Balance of one (account, provider) pair."""
    account_id: str
    provider: ProviderId
    balance: int = Field(..., ge=0, description="Committed balance")
    held: int = Field(..., ge=0, description="Sum of open reservations")

    @property
    def available(self) -> int:
        return self.balance - self.held


class CreditLogEntry(BaseModel):
    """One balance mutation, as recorded by the ledger."""
    account_id: str
    provider: ProviderId
    delta: int = Field(..., description="Negative for debits, positive for deposits")
    balance_after: int = Field(..., ge=0)
    action: str
    reservation_id: Optional[str] = None
    created_at: datetime
