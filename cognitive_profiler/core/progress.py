"""
Live per-provider progress for one orchestration.

Each provider moves pending -> loading -> completed | errored. Transitions
are atomic and monotonic; every transition publishes a new versioned
snapshot to pollers and subscribers.
"""

from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple
import asyncio
import threading

import structlog

from cognitive_profiler.exceptions import ProgressTransitionError
from cognitive_profiler.models.contracts import ProgressSnapshot, ProgressState, ProviderId

logger = structlog.get_logger(__name__)

_CLOSED = object()


class ProgressTracker:
    """Status map {provider -> ProgressState} with a subscribable snapshot stream."""

    def __init__(self, providers: Optional[Iterable[ProviderId]] = None):
        self._lock = threading.Lock()
        self._states: Dict[ProviderId, ProgressState] = {}
        self._version = 0
        self._latest = ProgressSnapshot(version=0, states={}, done=False)
        self._subscribers: List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []
        self._closed = False
        if providers is not None:
            self.start(providers)

    def start(self, providers: Iterable[ProviderId]) -> None:
        """Initialize every provider to pending."""
        with self._lock:
            if self._states:
                raise RuntimeError("Progress tracker already started")
            self._states = {provider: ProgressState.PENDING for provider in providers}
            if not self._states:
                raise ValueError("Progress tracker needs at least one provider")
            self._publish()

    def mark_loading(self, provider: ProviderId) -> None:
        self._transition(provider, ProgressState.LOADING)

    def mark_completed(self, provider: ProviderId) -> None:
        self._transition(provider, ProgressState.COMPLETED)

    def mark_errored(self, provider: ProviderId) -> None:
        self._transition(provider, ProgressState.ERRORED)

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._latest

    @property
    def done(self) -> bool:
        return self.snapshot().done

    def pending_providers(self) -> List[ProviderId]:
        """Providers that have not reached a terminal state yet."""
        with self._lock:
            return [p for p, s in self._states.items() if not s.is_terminal]

    def _transition(self, provider: ProviderId, target: ProgressState) -> None:
        with self._lock:
            current = self._states.get(provider)
            if current is None:
                raise ProgressTransitionError(provider.value, "untracked", target.value)
            if current.is_terminal or current == target:
                raise ProgressTransitionError(provider.value, current.value, target.value)

            # Observers always see loading before a terminal state
            if target.is_terminal and current == ProgressState.PENDING:
                self._states[provider] = ProgressState.LOADING
                self._publish()

            self._states[provider] = target
            self._publish()

        logger.debug("Provider progress", provider=provider.value, state=target.value)

    def _publish(self) -> None:
        # Caller holds self._lock
        self._version += 1
        states = dict(self._states)
        done = bool(states) and all(s.is_terminal for s in states.values())
        self._latest = ProgressSnapshot(version=self._version, states=states, done=done)
        self._deliver(self._latest)
        if done:
            self._close_subscribers()

    def _deliver(self, item: object) -> None:
        for loop, queue in list(self._subscribers):
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                logger.warning("Dropping progress subscriber with closed event loop")
                self._subscribers.remove((loop, queue))

    def _close_subscribers(self) -> None:
        self._closed = True
        self._deliver(_CLOSED)
        self._subscribers.clear()

    def close(self) -> None:
        """End every subscription, even if some providers never finished."""
        with self._lock:
            if not self._closed:
                self._close_subscribers()

    async def subscribe(self) -> AsyncIterator[ProgressSnapshot]:
        """
        Yield the current snapshot, then every later one in version order.

        The stream ends after the final (done) snapshot or when the tracker
        is closed.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            current = self._latest
            finished = self._closed
            if not finished:
                self._subscribers.append((loop, queue))

        yield current
        if finished:
            return

        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            with self._lock:
                if (loop, queue) in self._subscribers:
                    self._subscribers.remove((loop, queue))
