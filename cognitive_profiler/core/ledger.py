"""
SQLAlchemy-backed credit ledger.

Holds one balance per (account, provider) pair and meters analyses through
a reserve -> commit/release cycle. Balances live in a durable database
because they represent purchased credit.
"""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional
import threading
import uuid

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
import structlog

from cognitive_profiler.exceptions import (
    InvalidAmountError,
    LedgerUnavailableError,
    ReservationStateError,
)
from cognitive_profiler.models.contracts import (
    CreditBalance,
    CreditLogEntry,
    Denied,
    Granted,
    ProviderId,
    Reservation,
    ReserveResult,
)

logger = structlog.get_logger(__name__)

metadata = MetaData()

credit_accounts = Table(
    "credit_accounts",
    metadata,
    Column("account_id", String(255), primary_key=True),
    Column("provider", String(32), primary_key=True),
    Column("balance", BigInteger, nullable=False, default=0),
    Column("held", BigInteger, nullable=False, default=0),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("balance >= 0", name="ck_credit_accounts_balance"),
    CheckConstraint("held >= 0 AND held <= balance", name="ck_credit_accounts_held"),
)

credit_reservations = Table(
    "credit_reservations",
    metadata,
    Column("reservation_id", String(36), primary_key=True),
    Column("account_id", String(255), nullable=False, index=True),
    Column("provider", String(32), nullable=False),
    Column("cost", BigInteger, nullable=False),
    Column("action", String(64), nullable=False),
    Column("status", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("settled_at", DateTime(timezone=True), nullable=True),
)

credit_logs = Table(
    "credit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(255), nullable=False, index=True),
    Column("provider", String(32), nullable=False),
    Column("delta", BigInteger, nullable=False),
    Column("balance_after", BigInteger, nullable=False),
    Column("action", String(64), nullable=False),
    Column("reservation_id", String(36), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

HELD = "held"
COMMITTED = "committed"
RELEASED = "released"

# Per-key locks are striped over a fixed pool so memory stays bounded
LOCK_STRIPES = 64


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditLedger:
    """
    Per-account, per-provider credit store.

    All mutating operations take a lock scoped to the (account, provider)
    key, so unrelated balances proceed independently, and use conditional
    UPDATEs so the database itself refuses to overdraw a balance.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 5,
        max_overflow: int = 10,
        engine: Optional[Engine] = None,
        **engine_kwargs
    ):
        """
        Initialize the ledger.

        Args:
            url: Database connection URL
            pool_size: Connection pool size (ignored for SQLite)
            max_overflow: Maximum pool overflow (ignored for SQLite)
            engine: Pre-built engine, mainly for tests
            **engine_kwargs: Additional SQLAlchemy engine arguments
        """
        self.url = url
        if engine is None:
            engine_config = {"pool_pre_ping": True, **engine_kwargs}
            if not url.startswith("sqlite"):
                engine_config.setdefault("pool_size", pool_size)
                engine_config.setdefault("max_overflow", max_overflow)
            try:
                engine = create_engine(url, **engine_config)
            except Exception as e:
                logger.error("Failed to create ledger engine", error=str(e))
                raise
        self.engine = engine
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

        logger.info("Created credit ledger", url_scheme=self.engine.url.drivername)

    def create_schema(self) -> None:
        """Create ledger tables if they do not exist."""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error("Failed to create ledger schema", error=str(e))
            raise LedgerUnavailableError(str(e)) from e

    @contextmanager
    def _key_lock(self, account_id: str, provider: ProviderId) -> Iterator[None]:
        lock = self._locks[hash((account_id, provider.value)) % LOCK_STRIPES]
        with lock:
            yield

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error("Ledger storage failure", error=str(e))
            raise LedgerUnavailableError(str(e)) from e

    def _account_filter(self, account_id: str, provider: ProviderId):
        return (
            credit_accounts.c.account_id == account_id,
            credit_accounts.c.provider == provider.value,
        )

    def _ensure_account(self, conn: Connection, account_id: str, provider: ProviderId) -> None:
        exists = conn.execute(
            select(credit_accounts.c.account_id).where(*self._account_filter(account_id, provider))
        ).first()
        if exists is None:
            conn.execute(
                insert(credit_accounts).values(
                    account_id=account_id,
                    provider=provider.value,
                    balance=0,
                    held=0,
                    updated_at=_utcnow(),
                )
            )

    def _fetch_account(self, conn: Connection, account_id: str, provider: ProviderId) -> CreditBalance:
        row = conn.execute(
            select(credit_accounts.c.balance, credit_accounts.c.held)
            .where(*self._account_filter(account_id, provider))
        ).mappings().first()
        if row is None:
            return CreditBalance(account_id=account_id, provider=provider, balance=0, held=0)
        return CreditBalance(
            account_id=account_id,
            provider=provider,
            balance=row["balance"],
            held=row["held"],
        )

    def _claim(self, conn: Connection, reservation: Reservation, status: str) -> None:
        """Move a reservation out of HELD, or raise if it already left it."""
        result = conn.execute(
            update(credit_reservations)
            .where(
                credit_reservations.c.reservation_id == reservation.reservation_id,
                credit_reservations.c.status == HELD,
            )
            .values(status=status, settled_at=_utcnow())
        )
        if result.rowcount != 1:
            current = conn.execute(
                select(credit_reservations.c.status)
                .where(credit_reservations.c.reservation_id == reservation.reservation_id)
            ).scalar()
            raise ReservationStateError(reservation.reservation_id, current)

    def _append_log(
        self,
        conn: Connection,
        account_id: str,
        provider: ProviderId,
        delta: int,
        action: str,
        reservation_id: Optional[str] = None,
    ) -> int:
        balance_after = self._fetch_account(conn, account_id, provider).balance
        conn.execute(
            insert(credit_logs).values(
                account_id=account_id,
                provider=provider.value,
                delta=delta,
                balance_after=balance_after,
                action=action,
                reservation_id=reservation_id,
                created_at=_utcnow(),
            )
        )
        return balance_after

    def reserve(
        self,
        account_id: str,
        provider: ProviderId,
        cost: int,
        action: str = "analysis",
    ) -> ReserveResult:
        """
        Hold ``cost`` credits if the available balance covers it.

        Args:
            account_id: Account to bill
            provider: Provider whose balance is charged
            cost: Credits to hold
            action: Label recorded with the reservation and its log entry

        Returns:
            Granted with the reservation, or Denied with the available balance

        Raises:
            InvalidAmountError: If cost is negative
            LedgerUnavailableError: If the store cannot be reached
        """
        if cost < 0:
            raise InvalidAmountError(f"Reservation cost must be non-negative, got {cost}")

        with self._key_lock(account_id, provider):
            with self._transaction() as conn:
                self._ensure_account(conn, account_id, provider)
                result = conn.execute(
                    update(credit_accounts)
                    .where(
                        *self._account_filter(account_id, provider),
                        credit_accounts.c.balance - credit_accounts.c.held >= cost,
                    )
                    .values(held=credit_accounts.c.held + cost, updated_at=_utcnow())
                )
                if result.rowcount != 1:
                    available = self._fetch_account(conn, account_id, provider).available
                    logger.info(
                        "Reservation denied",
                        account_id=account_id,
                        provider=provider.value,
                        cost=cost,
                        available=available,
                    )
                    return Denied(account_id=account_id, provider=provider, cost=cost, available=available)

                reservation = Reservation(
                    reservation_id=str(uuid.uuid4()),
                    account_id=account_id,
                    provider=provider,
                    cost=cost,
                    action=action,
                )
                conn.execute(
                    insert(credit_reservations).values(
                        reservation_id=reservation.reservation_id,
                        account_id=account_id,
                        provider=provider.value,
                        cost=cost,
                        action=action,
                        status=HELD,
                        created_at=_utcnow(),
                    )
                )

        logger.info(
            "Reservation granted",
            account_id=account_id,
            provider=provider.value,
            cost=cost,
            reservation_id=reservation.reservation_id,
        )
        return Granted(reservation=reservation)

    def commit(self, reservation: Reservation) -> int:
        """
        Turn a held reservation into a permanent debit.

        Returns:
            Balance after the debit
        """
        with self._key_lock(reservation.account_id, reservation.provider):
            with self._transaction() as conn:
                self._claim(conn, reservation, COMMITTED)
                conn.execute(
                    update(credit_accounts)
                    .where(*self._account_filter(reservation.account_id, reservation.provider))
                    .values(
                        balance=credit_accounts.c.balance - reservation.cost,
                        held=credit_accounts.c.held - reservation.cost,
                        updated_at=_utcnow(),
                    )
                )
                balance_after = self._append_log(
                    conn,
                    reservation.account_id,
                    reservation.provider,
                    -reservation.cost,
                    reservation.action,
                    reservation.reservation_id,
                )

        logger.info(
            "Reservation committed",
            account_id=reservation.account_id,
            provider=reservation.provider.value,
            cost=reservation.cost,
            balance_after=balance_after,
        )
        return balance_after

    def release(self, reservation: Reservation) -> None:
        """Cancel a held reservation without debiting."""
        with self._key_lock(reservation.account_id, reservation.provider):
            with self._transaction() as conn:
                self._return_hold(conn, reservation)

        logger.info(
            "Reservation released",
            account_id=reservation.account_id,
            provider=reservation.provider.value,
            cost=reservation.cost,
        )

    def _return_hold(self, conn: Connection, reservation: Reservation) -> None:
        self._claim(conn, reservation, RELEASED)
        conn.execute(
            update(credit_accounts)
            .where(*self._account_filter(reservation.account_id, reservation.provider))
            .values(
                held=credit_accounts.c.held - reservation.cost,
                updated_at=_utcnow(),
            )
        )

    def release_stale(self, older_than: timedelta) -> int:
        """
        Release reservations that have been held longer than ``older_than``.

        Holds are normally settled within one run. A hold that outlives every
        provider deadline was orphaned by a failed settlement or a crashed
        process, and is returned to the available balance without a debit.

        Returns:
            Number of reservations released
        """
        cutoff = _utcnow() - older_than
        with self._transaction() as conn:
            rows = conn.execute(
                select(credit_reservations)
                .where(
                    credit_reservations.c.status == HELD,
                    credit_reservations.c.created_at <= cutoff,
                )
                .order_by(credit_reservations.c.created_at)
            ).mappings().all()

        released = 0
        for row in rows:
            reservation = Reservation(
                reservation_id=row["reservation_id"],
                account_id=row["account_id"],
                provider=ProviderId(row["provider"]),
                cost=row["cost"],
                action=row["action"],
            )
            try:
                with self._key_lock(reservation.account_id, reservation.provider):
                    with self._transaction() as conn:
                        self._return_hold(conn, reservation)
            except ReservationStateError:
                # Settled by its own run since the scan
                continue
            released += 1
            logger.warning(
                "Released stale reservation",
                account_id=reservation.account_id,
                provider=reservation.provider.value,
                cost=reservation.cost,
                reservation_id=reservation.reservation_id,
                created_at=str(row["created_at"]),
            )

        if released:
            logger.info("Stale reservation sweep finished", released=released)
        return released

    def deposit(
        self,
        account_id: str,
        provider: ProviderId,
        amount: int,
        action: str = "purchase",
    ) -> int:
        """
        Add purchased credit to a balance.

        Returns:
            Balance after the deposit
        """
        if amount <= 0:
            raise InvalidAmountError(f"Deposit amount must be positive, got {amount}")

        with self._key_lock(account_id, provider):
            with self._transaction() as conn:
                self._ensure_account(conn, account_id, provider)
                conn.execute(
                    update(credit_accounts)
                    .where(*self._account_filter(account_id, provider))
                    .values(balance=credit_accounts.c.balance + amount, updated_at=_utcnow())
                )
                balance_after = self._append_log(conn, account_id, provider, amount, action)

        logger.info(
            "Credits deposited",
            account_id=account_id,
            provider=provider.value,
            amount=amount,
            balance_after=balance_after,
        )
        return balance_after

    def get_balance(self, account_id: str, provider: ProviderId) -> CreditBalance:
        with self._transaction() as conn:
            return self._fetch_account(conn, account_id, provider)

    def get_balances(self, account_id: str) -> List[CreditBalance]:
        """Balances for every provider, zero-filled for providers never funded."""
        with self._transaction() as conn:
            return [self._fetch_account(conn, account_id, provider) for provider in ProviderId]

    def history(self, account_id: str, limit: int = 50) -> List[CreditLogEntry]:
        """Most recent balance mutations for an account, newest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                select(credit_logs)
                .where(credit_logs.c.account_id == account_id)
                .order_by(credit_logs.c.id.desc())
                .limit(limit)
            ).mappings().all()

        return [
            CreditLogEntry(
                account_id=row["account_id"],
                provider=ProviderId(row["provider"]),
                delta=row["delta"],
                balance_after=row["balance_after"],
                action=row["action"],
                reservation_id=row["reservation_id"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def ping(self) -> bool:
        """Round-trip to the store; raises LedgerUnavailableError when it is down."""
        with self._transaction() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Closed credit ledger")
