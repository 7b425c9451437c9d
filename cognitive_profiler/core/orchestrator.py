"""
Runs one analysis request across every requested provider.

Credits are reserved before any provider is called, each provider call runs
as its own asyncio task, and every reservation is settled exactly once:
committed when the provider succeeded, released otherwise.
"""

from datetime import timedelta
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional
import asyncio
import time
import uuid

import structlog

from cognitive_profiler.core.aggregator import ResultAggregator
from cognitive_profiler.core.costs import CostSchedule
from cognitive_profiler.core.ledger import CreditLedger
from cognitive_profiler.core.progress import ProgressTracker
from cognitive_profiler.exceptions import LedgerError, LedgerUnavailableError
from cognitive_profiler.models.contracts import (
    AggregateResult,
    AnalysisRequest,
    Denied,
    Failure,
    FailureKind,
    Granted,
    ProviderId,
    ProviderOutcome,
    Reservation,
    SkipReason,
    Skipped,
    Success,
)
from cognitive_profiler.settings import Settings

if TYPE_CHECKING:
    from cognitive_profiler.adapters.base import ProviderAdapter

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
GRACE_SECONDS = 5.0
RETRY_BACKOFF_SECONDS = 0.5


class Orchestrator:
    """
    Fans an AnalysisRequest out to the provider adapters.

    The ledger is the only state shared between concurrent runs; progress
    trackers and reservations are per run.
    """

    def __init__(
        self,
        adapters: Mapping[ProviderId, "ProviderAdapter"],
        ledger: CreditLedger,
        costs: Optional[CostSchedule] = None,
        aggregator: Optional[ResultAggregator] = None,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        timeouts: Optional[Mapping[ProviderId, float]] = None,
        max_retries: int = 0,
        grace_seconds: float = GRACE_SECONDS,
    ):
        self.adapters = dict(adapters)
        self.ledger = ledger
        self.costs = costs or CostSchedule()
        self.aggregator = aggregator or ResultAggregator()
        self.default_timeout = default_timeout
        self.timeouts = dict(timeouts or {})
        self.max_retries = max_retries
        self.grace_seconds = grace_seconds

    @classmethod
    def from_settings(
        cls,
        adapters: Mapping[ProviderId, "ProviderAdapter"],
        ledger: CreditLedger,
        config: Settings,
        costs: Optional[CostSchedule] = None,
        aggregator: Optional[ResultAggregator] = None,
    ) -> "Orchestrator":
        return cls(
            adapters=adapters,
            ledger=ledger,
            costs=costs or CostSchedule.from_overrides(config.cost_overrides),
            aggregator=aggregator,
            default_timeout=config.provider_timeout_seconds,
            timeouts={provider: config.timeout_for(provider) for provider in ProviderId},
            max_retries=config.provider_max_retries,
        )

    @property
    def configured_providers(self) -> List[ProviderId]:
        return [provider for provider in ProviderId if provider in self.adapters]

    def timeout_for(self, provider: ProviderId) -> float:
        return self.timeouts.get(provider, self.default_timeout)

    @property
    def longest_deadline(self) -> float:
        """Upper bound in seconds on how long a run can keep a reservation held."""
        return max(self.timeout_for(provider) for provider in ProviderId) + self.grace_seconds

    def stale_hold_age(self, minimum_seconds: float = 0.0) -> timedelta:
        """Age after which a held reservation cannot belong to a live run."""
        return timedelta(seconds=max(minimum_seconds, self.longest_deadline * 2))

    async def run(
        self,
        request: AnalysisRequest,
        tracker: Optional[ProgressTracker] = None,
        run_id: Optional[str] = None,
    ) -> AggregateResult:
        """
        Execute one request end to end.

        Args:
            request: The analysis request
            tracker: Progress tracker to publish to; created when omitted and
                started here if the caller has not started it
            run_id: Identifier used to correlate log events

        Returns:
            AggregateResult with exactly one outcome per requested provider

        Raises:
            LedgerUnavailableError: If credits cannot be reserved; no
                provider has been called and no credit stays held
            asyncio.CancelledError: If the run is cancelled; every held
                reservation has been released
        """
        run_id = run_id or uuid.uuid4().hex
        log = logger.bind(run_id=run_id, account_id=request.account_id, kind=request.kind.value)
        if tracker is None:
            tracker = ProgressTracker(request.providers)
        elif tracker.snapshot().version == 0:
            tracker.start(request.providers)

        outcomes: Dict[ProviderId, ProviderOutcome] = {}
        reservations: Dict[ProviderId, Reservation] = {}
        tasks: Dict[ProviderId, asyncio.Task] = {}
        start_time = time.perf_counter()

        log.info("Starting analysis run", providers=[p.value for p in request.providers])

        try:
            runnable = await self._reserve_all(request, tracker, outcomes, reservations, log)

            for provider in runnable:
                tasks[provider] = asyncio.create_task(
                    self._run_provider(request, provider, reservations, tracker, log),
                    name=f"{run_id}:{provider.value}",
                )

            results = await asyncio.gather(*tasks.values(), return_exceptions=True)
        except asyncio.CancelledError:
            log.warning("Analysis run cancelled", in_flight=[p.value for p in tracker.pending_providers()])
            await self._abort(tasks.values(), reservations, tracker, log)
            raise
        except LedgerUnavailableError as e:
            log.error("Credit ledger unavailable, aborting run", error=str(e))
            await self._abort(tasks.values(), reservations, tracker, log)
            raise

        for provider, result in zip(tasks, results):
            if isinstance(result, BaseException):
                log.error("Provider task crashed", provider=provider.value, error=repr(result))
                result = Failure(kind=FailureKind.UNKNOWN, message=str(result) or type(result).__name__)
            outcomes[provider] = result

        # Anything a crashed task left behind
        if reservations:
            await self._release_held(reservations, log)
        for provider in tracker.pending_providers():
            tracker.mark_errored(provider)

        aggregate = self.aggregator.aggregate(request, outcomes)
        log.info(
            "Analysis run finished",
            succeeded=[p.value for p in aggregate.succeeded],
            failed=[p.value for p in aggregate.failed],
            skipped=[p.value for p in aggregate.skipped],
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return aggregate

    async def _reserve_all(
        self,
        request: AnalysisRequest,
        tracker: ProgressTracker,
        outcomes: Dict[ProviderId, ProviderOutcome],
        reservations: Dict[ProviderId, Reservation],
        log,
    ) -> List[ProviderId]:
        """Reserve credits for each provider; returns the providers to call."""
        runnable: List[ProviderId] = []
        for provider in request.providers:
            if provider not in self.adapters:
                log.info("Provider not configured", provider=provider.value)
                outcomes[provider] = Skipped(reason=SkipReason.NOT_CONFIGURED)
                tracker.mark_completed(provider)
                continue

            cost = self.costs.cost(request.kind, provider)
            result = await self._reserve(request, provider, cost)
            if isinstance(result, Denied):
                log.info(
                    "Insufficient credits, serving preview",
                    provider=provider.value,
                    cost=cost,
                    available=result.available,
                )
                outcomes[provider] = Skipped(reason=SkipReason.CREDIT_DENIED)
                tracker.mark_completed(provider)
                continue

            reservations[provider] = result.reservation
            runnable.append(provider)
        return runnable

    async def _reserve(self, request: AnalysisRequest, provider: ProviderId, cost: int):
        future = asyncio.ensure_future(
            asyncio.to_thread(self.ledger.reserve, request.account_id, provider, cost, request.kind.value)
        )
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            # The worker thread still finishes; undo a grant nobody will settle
            future.add_done_callback(self._release_orphan)
            raise

    def _release_orphan(self, future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        result = future.result()
        if isinstance(result, Granted):
            logger.warning(
                "Releasing reservation granted after cancellation",
                reservation_id=result.reservation.reservation_id,
            )
            asyncio.get_running_loop().run_in_executor(None, self._release_logged, result.reservation)

    async def _run_provider(
        self,
        request: AnalysisRequest,
        provider: ProviderId,
        reservations: Dict[ProviderId, Reservation],
        tracker: ProgressTracker,
        log,
    ) -> ProviderOutcome:
        """One provider's unit of work: invoke, publish progress, settle credits."""
        adapter = self.adapters[provider]
        timeout = self.timeout_for(provider)
        tracker.mark_loading(provider)

        try:
            outcome = await asyncio.wait_for(
                self._invoke_with_retries(adapter, request, provider, timeout, log),
                timeout=timeout + self.grace_seconds,
            )
        except asyncio.TimeoutError:
            log.warning("Provider exceeded its deadline", provider=provider.value, timeout=timeout)
            outcome = Failure(kind=FailureKind.TIMEOUT, message=f"No response within {timeout:.1f}s")
        except Exception as e:
            log.exception("Provider adapter raised", provider=provider.value)
            outcome = Failure(kind=FailureKind.UNKNOWN, message=str(e) or type(e).__name__)

        if isinstance(outcome, Success):
            tracker.mark_completed(provider)
        else:
            tracker.mark_errored(provider)

        reservation = reservations.pop(provider)
        await self._settle(reservation, outcome, log)
        return outcome

    async def _invoke_with_retries(
        self,
        adapter: "ProviderAdapter",
        request: AnalysisRequest,
        provider: ProviderId,
        timeout: float,
        log,
    ) -> ProviderOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempt = 0

        while True:
            remaining = max(deadline - loop.time(), 0.0)
            outcome = await adapter.invoke(request.text, request.additional_context, request.kind, remaining)

            retryable = isinstance(outcome, Failure) and outcome.kind == FailureKind.UNAVAILABLE
            if not retryable or attempt >= self.max_retries:
                return outcome

            backoff = RETRY_BACKOFF_SECONDS * (2 ** attempt)
            if deadline - loop.time() <= backoff:
                return outcome

            attempt += 1
            log.info("Retrying unavailable provider", provider=provider.value, attempt=attempt)
            await asyncio.sleep(backoff)

    async def _settle(self, reservation: Reservation, outcome: ProviderOutcome, log) -> None:
        settle = self.ledger.commit if isinstance(outcome, Success) else self.ledger.release
        try:
            await asyncio.shield(asyncio.to_thread(settle, reservation))
        except LedgerError as e:
            # Outcome still stands; release_stale returns the hold later
            log.error(
                "Failed to settle reservation",
                provider=reservation.provider.value,
                reservation_id=reservation.reservation_id,
                operation=settle.__name__,
                error=str(e),
            )

    def _release_logged(self, reservation: Reservation) -> None:
        try:
            self.ledger.release(reservation)
        except LedgerError as e:
            logger.error(
                "Failed to release reservation",
                provider=reservation.provider.value,
                reservation_id=reservation.reservation_id,
                error=str(e),
            )

    async def _release_held(self, reservations: Dict[ProviderId, Reservation], log) -> None:
        held = list(reservations.values())
        reservations.clear()
        log.info("Releasing held reservations", count=len(held))
        await asyncio.shield(
            asyncio.gather(*(asyncio.to_thread(self._release_logged, r) for r in held))
        )

    async def _abort(
        self,
        tasks: Iterable[asyncio.Task],
        reservations: Dict[ProviderId, Reservation],
        tracker: ProgressTracker,
        log,
    ) -> None:
        for task in tasks:
            task.cancel()
        for provider in tracker.pending_providers():
            tracker.mark_errored(provider)
        tracker.close()
        if reservations:
            await self._release_held(reservations, log)
