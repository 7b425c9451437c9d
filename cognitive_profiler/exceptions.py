"""
Exception hierarchy for the Cognitive Profiler service.

Provider failures are reported as data (``Failure`` outcomes) and never
raised past the orchestrator; only ledger failures abort a request.
"""

from typing import Optional


class CognitiveProfilerError(Exception):
    """Base class for all service errors."""


class LedgerError(CognitiveProfilerError):
    """Base class for credit ledger errors."""


class LedgerUnavailableError(LedgerError):
    """The ledger's backing store could not be reached or failed mid-operation."""


class ReservationStateError(LedgerError):
    """A reservation was settled twice or does not exist."""

    def __init__(self, reservation_id: str, status: Optional[str]):
        self.reservation_id = reservation_id
        self.status = status
        super().__init__(
            f"Reservation {reservation_id} cannot be settled (status: {status or 'missing'})"
        )


class InvalidAmountError(LedgerError):
    """A credit amount was negative or otherwise unusable."""


class ProgressTransitionError(CognitiveProfilerError):
    """A provider's progress state was moved backwards or out of a terminal state."""

    def __init__(self, provider: str, current: str, target: str):
        self.provider = provider
        self.current = current
        self.target = target
        super().__init__(f"Illegal progress transition for {provider}: {current} -> {target}")


class ProviderError(CognitiveProfilerError):
    """Base class for errors raised inside provider adapters."""


class MalformedResponseError(ProviderError):
    """The provider answered, but the payload could not be parsed or was incomplete."""


class ProviderNotConfiguredError(ProviderError):
    """No adapter or credentials exist for the requested provider."""
