"""
Data models for the Cognitive Profiler service.

Contains the Pydantic models and value types shared by the core and the API.
"""

from .contracts import (
    AggregateResult,
    AnalysisKind,
    AnalysisRequest,
    CreditBalance,
    CreditLogEntry,
    Denied,
    Failure,
    FailureKind,
    Granted,
    ProgressSnapshot,
    ProgressState,
    ProviderId,
    ProviderOutcome,
    Reservation,
    ReserveResult,
    SkipReason,
    Skipped,
    Success,
)

__all__ = [
    "AggregateResult",
    "AnalysisKind",
    "AnalysisRequest",
    "CreditBalance",
    "CreditLogEntry",
    "Denied",
    "Failure",
    "FailureKind",
    "Granted",
    "ProgressSnapshot",
    "ProgressState",
    "ProviderId",
    "ProviderOutcome",
    "Reservation",
    "ReserveResult",
    "SkipReason",
    "Skipped",
    "Success",
]
