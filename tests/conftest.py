"""
Shared fixtures for the Cognitive Profiler test suite.

Provides a temporary SQLite credit ledger, scriptable fake provider adapters
and helpers for funding accounts.
"""

import asyncio
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

import pytest
from sqlalchemy import select, update

from cognitive_profiler.adapters.base import BaseProviderAdapter
from cognitive_profiler.core import CostSchedule, CreditLedger, Orchestrator
from cognitive_profiler.core.ledger import credit_reservations
from cognitive_profiler.core.prompts import REQUIRED_KEYS
from cognitive_profiler.exceptions import LedgerUnavailableError
from cognitive_profiler.models.contracts import AnalysisKind, AnalysisRequest, ProviderId

ACCOUNT = "acct-1"
SAMPLE_TEXT = "The quick brown fox jumps over the lazy dog. " * 10


def payload_for(kind: AnalysisKind, **overrides: Any) -> Dict[str, Any]:
    """A complete provider payload for ``kind``."""
    payload: Dict[str, Any] = {}
    for key in REQUIRED_KEYS[kind]:
        if key == "intelligence_score":
            payload[key] = 87
        elif key in ("characteristics", "strengths", "tendencies", "challenges", "recommendations"):
            payload[key] = [f"{key} one", f"{key} two", f"{key} three"]
        else:
            payload[key] = f"{key} text"
    payload.update(overrides)
    return payload


class FakeAdapter(BaseProviderAdapter):
    """
    Adapter whose backend behavior is scripted per test.

    ``behavior`` is either a payload dict, an exception instance to raise, or
    an async callable returning a payload.
    """

    def __init__(
        self,
        provider: ProviderId,
        behavior: Any = None,
        delay: float = 0.0,
    ):
        super().__init__(provider)
        self.behavior = behavior
        self.delay = delay
        self.calls = 0
        self.started = asyncio.Event()
        self.cancelled = False

    async def _call(self, text: str, context: Optional[str], kind: AnalysisKind) -> Dict[str, Any]:
        self.calls += 1
        self.started.set()
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise

        behavior = self.behavior
        if behavior is None:
            return payload_for(kind)
        if isinstance(behavior, BaseException):
            raise behavior
        if callable(behavior):
            return await behavior()
        return behavior


class FlakyLedger:
    """Delegates to a real ledger but fails chosen operations."""

    def __init__(self, ledger: CreditLedger, fail_reserve_for=(), fail_commit: bool = False):
        self._ledger = ledger
        self.fail_reserve_for = set(fail_reserve_for)
        self.fail_commit = fail_commit

    def reserve(self, account_id, provider, cost, action="analysis"):
        if provider in self.fail_reserve_for:
            raise LedgerUnavailableError("database is locked")
        return self._ledger.reserve(account_id, provider, cost, action)

    def commit(self, reservation):
        if self.fail_commit:
            raise LedgerUnavailableError("connection reset")
        return self._ledger.commit(reservation)

    def release(self, reservation):
        return self._ledger.release(reservation)

    def __getattr__(self, name):
        return getattr(self._ledger, name)


@pytest.fixture
def ledger(tmp_path) -> CreditLedger:
    """A fresh file-backed SQLite ledger per test."""
    ledger = CreditLedger(
        f"sqlite:///{tmp_path / 'credits.db'}",
        connect_args={"timeout": 30},
    )
    ledger.create_schema()
    yield ledger
    ledger.close()


@pytest.fixture
def fund(ledger: CreditLedger) -> Callable[..., None]:
    """Deposit credits: fund(provider, amount, account=ACCOUNT)."""
    def _fund(provider: ProviderId, amount: int, account: str = ACCOUNT) -> None:
        ledger.deposit(account, provider, amount)
    return _fund


@pytest.fixture
def costs() -> CostSchedule:
    return CostSchedule()


@pytest.fixture
def make_orchestrator(ledger: CreditLedger, costs: CostSchedule):
    """Build an orchestrator over fake adapters: make_orchestrator({provider: adapter})."""
    def _make(adapters: Dict[ProviderId, BaseProviderAdapter], **kwargs) -> Orchestrator:
        kwargs.setdefault("ledger", ledger)
        kwargs.setdefault("costs", costs)
        kwargs.setdefault("default_timeout", 5.0)
        kwargs.setdefault("grace_seconds", 1.0)
        return Orchestrator(adapters=adapters, **kwargs)
    return _make


def make_request(*providers: ProviderId, kind: AnalysisKind = AnalysisKind.COGNITIVE, **kwargs) -> AnalysisRequest:
    return AnalysisRequest(
        text=kwargs.pop("text", SAMPLE_TEXT),
        kind=kind,
        account_id=kwargs.pop("account_id", ACCOUNT),
        providers=providers,
        **kwargs,
    )


def backdate_reservations(ledger: CreditLedger, age: timedelta) -> None:
    """Make every reservation look ``age`` older than it is."""
    with ledger.engine.begin() as conn:
        for row in conn.execute(select(credit_reservations.c.reservation_id, credit_reservations.c.created_at)).all():
            conn.execute(
                update(credit_reservations)
                .where(credit_reservations.c.reservation_id == row.reservation_id)
                .values(created_at=row.created_at - age)
            )
