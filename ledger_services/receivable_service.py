"""
ledger_services.receivable_service -- Persistent day-over-day receivable ledger.

Responsibility:
    Compute and store each counterparty's daily cash and cylinder
    receivable balance, keep later days consistent after a retroactive
    correction, and answer balance, summary and collection questions.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    The recurrence arithmetic and predecessor checks live in
    ledger_engines.receivables; reads go through ledger_kernel.selectors.
    Unlike kernel services, this service OWNS its transactions: one short
    transaction per (tenant, counterparty, date) key, committed while the
    key's in-process lock is still held.

Invariants enforced:
    - One stored record per (tenant, counterparty, date).  Recomputation
      replaces it; repeating a recomputation is a no-op on the totals.
    - total(day) = total(predecessor) + delta(day) + opening(day), where the
      predecessor is the unique latest stored record dated before the day.
    - At most one in-process recomputation per key at a time
      (KeyedLockRegistry); across processes the predecessor row lock, the
      unique constraint and the version column serialize writers.
    - Cascade: after a recomputation, every later stored date for the
      counterparty is recomputed in ascending order.
    - Opening (onboarding) balances survive every recomputation of their day.

Failure modes:
    - RecurrenceOrderingError and subclasses when the predecessor is
      duplicated, stale, or preceded by an active day with no record.
    - ConcurrentWriteError when optimistic-lock retries are exhausted.
    - TimeoutError when ``lock_timeout`` is set and a key stays busy.

Usage:
    service = ReceivableLedgerService(get_session_factory())
    service.recompute_day("tenant-1", "driver-7", date(2024, 3, 5))
    service.current_balance("tenant-1", "driver-7")
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ledger_config import EngineConfig, get_active_config
from ledger_engines.receivables import (
    ChainDay,
    DailyActivity,
    OpeningBalance,
    RunningTotals,
    check_predecessor,
    compute_deltas,
    replay_chain,
    roll_forward,
    verify_chain_link,
)
from ledger_kernel.db.engine import session_scope
from ledger_kernel.db.types import ZERO, round_money, to_decimal
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.event_store import EventStore
from ledger_kernel.domain.records import ReceivableBalance
from ledger_kernel.exceptions import (
    ConcurrentWriteError,
    LedgerError,
    UnrecordedActivityGapError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.receivable import ReceivableBalanceModel
from ledger_kernel.selectors.event_selector import EventSelector
from ledger_kernel.selectors.receivable_selector import ReceivableSelector
from ledger_services.key_lock import KeyedLockRegistry

logger = get_logger("services.receivables")

_HUNDRED = Decimal("100")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecalculationFailure:
    counterparty_id: str
    code: str
    message: str


@dataclass(frozen=True)
class RecalculationStats:
    """Outcome of rebuilding every counterparty of a tenant."""

    tenant_id: str
    counterparties_processed: int
    days_recomputed: int
    failures: tuple[RecalculationFailure, ...] = ()

    @property
    def succeeded(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class ReceivablesSummary:
    """Latest balance of every counterparty on or before ``as_of``."""

    tenant_id: str
    as_of: date
    balances: tuple[ReceivableBalance, ...]
    total_cash: Decimal
    total_cylinders: int

    @property
    def counterparty_count(self) -> int:
        return len(self.balances)


@dataclass(frozen=True)
class CollectionPerformance:
    """
    How well a counterparty collected cash and returned cylinders in a window.

    Efficiencies are percentages.  With nothing to collect (no revenue, or
    no refills) the matching efficiency is 100.
    """

    counterparty_id: str
    start: date
    end: date
    sales_revenue: Decimal
    cash_collected: Decimal
    discount: Decimal
    refill_quantity: int
    cylinders_returned: int
    cash_efficiency: Decimal
    cylinder_efficiency: Decimal
    overall_efficiency: Decimal
    outstanding_cash: Decimal
    outstanding_cylinders: int


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ReceivableLedgerService:
    """
    Receivable ledger over a session factory.

    Contract:
        Receives a session factory and, optionally, config, clock, lock
        registry and event-store factory via constructor injection.  Each
        per-day write runs in its own transaction.
    Guarantees:
        - Idempotent: recomputing a day twice with unchanged inputs leaves
          the same totals.
        - Corrections propagate forward when cascading is on.
    Non-goals:
        - Does not edit sales or deposits; it only derives balances.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        locks: KeyedLockRegistry | None = None,
        event_store_factory: Callable[[Session], EventStore] = EventSelector,
        lock_timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._config = config if config is not None else get_active_config()
        self._clock = clock if clock is not None else SystemClock()
        self._locks = locks if locks is not None else KeyedLockRegistry()
        self._event_store_factory = event_store_factory
        self._lock_timeout = lock_timeout

    # -- write paths -------------------------------------------------------

    def recompute_day(
        self,
        tenant_id: str,
        counterparty_id: str,
        day: date,
        cascade: bool | None = None,
    ) -> ReceivableBalance:
        """
        Recompute and store the balance for one counterparty and day.

        Args:
            cascade: Recompute later stored days afterwards.  Defaults to
                ``receivables.cascade_on_correction``.

        Returns:
            The stored balance for ``day``.
        """
        with LogContext.bind(tenant_id=tenant_id, counterparty_id=counterparty_id):
            balance = self._write_key(tenant_id, counterparty_id, day)
            if self._cascade(cascade):
                self._cascade_after(tenant_id, counterparty_id, day)
            return balance

    def recompute_range(
        self,
        tenant_id: str,
        counterparty_id: str,
        start: date,
        end: date,
        cascade: bool | None = None,
    ) -> list[ReceivableBalance]:
        """
        Recompute every day in [start, end] that has activity or a stored
        record, in ascending order.
        """
        if end < start:
            raise ValueError(f"end {end.isoformat()} is before start {start.isoformat()}")

        with LogContext.bind(tenant_id=tenant_id, counterparty_id=counterparty_id):
            with session_scope(self._session_factory) as session:
                store = self._event_store_factory(session)
                active = store.activity_dates(
                    tenant_id, counterparty_id,
                    start - timedelta(days=1), end + timedelta(days=1),
                )
                stored = [
                    b.balance_date
                    for b in ReceivableSelector(session).chain(
                        tenant_id, counterparty_id, start, end,
                    )
                ]

            balances = [
                self._write_key(tenant_id, counterparty_id, day)
                for day in sorted(set(active) | set(stored))
            ]
            if self._cascade(cascade):
                self._cascade_after(tenant_id, counterparty_id, end)

            logger.info("receivable_range_recomputed", extra={
                "start": start,
                "end": end,
                "days": len(balances),
            })
            return balances

    def rebuild_counterparty(
        self,
        tenant_id: str,
        counterparty_id: str,
    ) -> list[ReceivableBalance]:
        """Replay the whole chain from the first activity or stored date."""
        with LogContext.bind(tenant_id=tenant_id, counterparty_id=counterparty_id):
            days = self._chain_dates(tenant_id, counterparty_id)
            balances = [self._write_key(tenant_id, counterparty_id, day) for day in days]
            logger.info("receivable_counterparty_rebuilt", extra={
                "days": len(balances),
                "first_date": days[0] if days else None,
                "last_date": days[-1] if days else None,
            })
            return balances

    def recalculate_all(self, tenant_id: str) -> RecalculationStats:
        """
        Rebuild every counterparty of a tenant.

        A counterparty that fails is recorded in the stats with its error
        code; the remaining counterparties are still rebuilt.
        """
        with session_scope(self._session_factory) as session:
            counterparties = sorted(
                set(self._event_store_factory(session).counterparty_ids(tenant_id))
                | set(ReceivableSelector(session).counterparty_ids(tenant_id))
            )

        days = 0
        failures: list[RecalculationFailure] = []
        for counterparty_id in counterparties:
            try:
                days += len(self.rebuild_counterparty(tenant_id, counterparty_id))
            except LedgerError as exc:
                logger.error("receivable_rebuild_failed", extra={
                    "tenant_id": tenant_id,
                    "counterparty_id": counterparty_id,
                    "error_code": exc.code,
                    "error": str(exc),
                })
                failures.append(RecalculationFailure(counterparty_id, exc.code, str(exc)))

        stats = RecalculationStats(
            tenant_id=tenant_id,
            counterparties_processed=len(counterparties),
            days_recomputed=days,
            failures=tuple(failures),
        )
        logger.info("receivable_recalculate_all_completed", extra={
            "tenant_id": tenant_id,
            "counterparties": stats.counterparties_processed,
            "days_recomputed": stats.days_recomputed,
            "failures": len(stats.failures),
        })
        return stats

    def record_opening_balance(
        self,
        tenant_id: str,
        counterparty_id: str,
        day: date,
        cash: Decimal | int | str,
        cylinders: int,
        cascade: bool | None = None,
    ) -> ReceivableBalance:
        """
        Book an onboarding balance on ``day`` and recompute the day.

        The opening amounts replace any earlier opening on the same day and
        are kept by every later recomputation.
        """
        opening = OpeningBalance(cash=to_decimal(cash), cylinders=cylinders)
        with LogContext.bind(tenant_id=tenant_id, counterparty_id=counterparty_id):
            logger.info("receivable_opening_balance_recorded", extra={
                "balance_date": day,
                "opening_cash": str(opening.cash),
                "opening_cylinders": opening.cylinders,
            })
            balance = self._write_key(tenant_id, counterparty_id, day, opening)
            if self._cascade(cascade):
                self._cascade_after(tenant_id, counterparty_id, day)
            return balance

    # -- read paths --------------------------------------------------------

    def current_balance(
        self,
        tenant_id: str,
        counterparty_id: str,
        as_of: date | None = None,
    ) -> RunningTotals:
        """
        Latest stored totals on or before ``as_of`` (zero when none).

        ``as_of`` defaults to the clock's current date.
        """
        as_of = as_of if as_of is not None else self._clock.today()
        with session_scope(self._session_factory) as session:
            latest = ReceivableSelector(session).latest_on_or_before(
                tenant_id, counterparty_id, as_of,
            )
        if latest is None:
            return RunningTotals(ZERO, 0)
        return RunningTotals(latest.cash_total, latest.cylinder_total)

    def summary(self, tenant_id: str, as_of: date | None = None) -> ReceivablesSummary:
        """Latest balance per counterparty with tenant-wide totals."""
        as_of = as_of if as_of is not None else self._clock.today()
        with session_scope(self._session_factory) as session:
            balances = tuple(
                ReceivableSelector(session).latest_per_counterparty(tenant_id, as_of)
            )
        return ReceivablesSummary(
            tenant_id=tenant_id,
            as_of=as_of,
            balances=balances,
            total_cash=sum((b.cash_total for b in balances), ZERO),
            total_cylinders=sum(b.cylinder_total for b in balances),
        )

    def collection_performance(
        self,
        tenant_id: str,
        counterparty_id: str,
        start: date,
        end: date,
    ) -> CollectionPerformance:
        """Cash and cylinder collection efficiency over [start, end]."""
        with session_scope(self._session_factory) as session:
            sales = self._event_store_factory(session).counterparty_sales(
                tenant_id, counterparty_id, start, end,
            )
            latest = ReceivableSelector(session).latest_on_or_before(
                tenant_id, counterparty_id, end,
            )
        activity = DailyActivity.from_sales(sales)

        cash_eff = (
            activity.cash_deposited / activity.sales_revenue * _HUNDRED
            if activity.sales_revenue > 0
            else _HUNDRED
        )
        cylinder_eff = (
            Decimal(activity.cylinders_returned) / activity.refill_quantity * _HUNDRED
            if activity.refill_quantity > 0
            else _HUNDRED
        )
        return CollectionPerformance(
            counterparty_id=counterparty_id,
            start=start,
            end=end,
            sales_revenue=activity.sales_revenue,
            cash_collected=activity.cash_deposited,
            discount=activity.discount,
            refill_quantity=activity.refill_quantity,
            cylinders_returned=activity.cylinders_returned,
            cash_efficiency=round_money(cash_eff),
            cylinder_efficiency=round_money(cylinder_eff),
            overall_efficiency=round_money((cash_eff + cylinder_eff) / 2),
            outstanding_cash=latest.cash_total if latest is not None else ZERO,
            outstanding_cylinders=latest.cylinder_total if latest is not None else 0,
        )

    def audit_chain(self, tenant_id: str, counterparty_id: str) -> list[date]:
        """
        Dates whose stored totals differ from a fresh in-memory replay of
        the counterparty's activity.  Nothing is written.
        """
        with session_scope(self._session_factory) as session:
            store = self._event_store_factory(session)
            stored = ReceivableSelector(session).chain(tenant_id, counterparty_id)
            by_date = {b.balance_date: b for b in stored}
            days = [
                ChainDay(
                    balance_date=day,
                    activity=DailyActivity.from_sales(
                        store.counterparty_sales(tenant_id, counterparty_id, day, day)
                    ),
                    opening=self._opening_of(by_date.get(day)),
                )
                for day in self._chain_dates(tenant_id, counterparty_id, session)
            ]

        expected = replay_chain(
            days, tenant_id=tenant_id, counterparty_id=counterparty_id,
        )
        mismatched: list[date] = []
        for replayed in expected:
            stored_day = by_date.get(replayed.balance_date)
            if (
                stored_day is None
                or stored_day.cash_total != replayed.cash_total
                or stored_day.cylinder_total != replayed.cylinder_total
            ):
                mismatched.append(replayed.balance_date)
        if mismatched:
            logger.warning("receivable_chain_mismatch", extra={
                "tenant_id": tenant_id,
                "counterparty_id": counterparty_id,
                "dates": mismatched,
            })
        return mismatched

    # -- internals ---------------------------------------------------------

    def _cascade(self, cascade: bool | None) -> bool:
        if cascade is None:
            return self._config.receivables.cascade_on_correction
        return cascade

    @staticmethod
    def _opening_of(balance: ReceivableBalance | None) -> OpeningBalance:
        if balance is None:
            return OpeningBalance()
        return OpeningBalance(balance.opening_cash, balance.opening_cylinders)

    def _chain_dates(
        self,
        tenant_id: str,
        counterparty_id: str,
        session: Session | None = None,
    ) -> list[date]:
        if session is None:
            with session_scope(self._session_factory) as own:
                return self._chain_dates(tenant_id, counterparty_id, own)
        active = self._event_store_factory(session).activity_dates(
            tenant_id, counterparty_id, None, None,
        )
        stored = [
            b.balance_date
            for b in ReceivableSelector(session).chain(tenant_id, counterparty_id)
        ]
        return sorted(set(active) | set(stored))

    def _cascade_after(self, tenant_id: str, counterparty_id: str, after: date) -> None:
        with session_scope(self._session_factory) as session:
            later = ReceivableSelector(session).dates_after(tenant_id, counterparty_id, after)
        for day in later:
            self._write_key(tenant_id, counterparty_id, day)
        if later:
            logger.info("receivable_cascade_completed", extra={
                "after": after,
                "days": len(later),
            })

    def _write_key(
        self,
        tenant_id: str,
        counterparty_id: str,
        day: date,
        opening: OpeningBalance | None = None,
    ) -> ReceivableBalance:
        """Recompute one key under its lock, retrying version conflicts."""
        attempts = self._config.receivables.max_write_retries
        with self._locks.hold((tenant_id, counterparty_id, day), self._lock_timeout):
            for attempt in range(1, attempts + 1):
                try:
                    with session_scope(self._session_factory) as session:
                        balance = self._recompute_in_session(
                            session, tenant_id, counterparty_id, day, opening,
                        )
                    return balance
                except (StaleDataError, IntegrityError) as exc:
                    logger.warning("receivable_write_conflict_retry", extra={
                        "balance_date": day,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "error_type": type(exc).__name__,
                    })

        logger.error("receivable_write_conflict_exhausted", extra={
            "balance_date": day,
            "attempts": attempts,
        })
        raise ConcurrentWriteError(tenant_id, counterparty_id, day, attempts)

    def _recompute_in_session(
        self,
        session: Session,
        tenant_id: str,
        counterparty_id: str,
        day: date,
        opening: OpeningBalance | None,
    ) -> ReceivableBalance:
        settings = self._config.receivables
        receivables = ReceivableSelector(session)
        store = self._event_store_factory(session)

        predecessor = check_predecessor(
            receivables.predecessor_candidates(
                tenant_id, counterparty_id, day, for_update=True,
            ),
            day,
        )

        if predecessor is not None and settings.verify_predecessor_chain:
            before_predecessor = check_predecessor(
                receivables.predecessor_candidates(
                    tenant_id, counterparty_id, predecessor.balance_date,
                ),
                predecessor.balance_date,
            )
            verify_chain_link(predecessor, before_predecessor, target_date=day)

        if settings.reject_activity_gaps:
            gap = store.activity_dates(
                tenant_id,
                counterparty_id,
                predecessor.balance_date if predecessor is not None else None,
                day,
            )
            if gap:
                logger.error("receivable_unrecorded_activity_gap", extra={
                    "target_date": day,
                    "missing_dates": list(gap),
                })
                raise UnrecordedActivityGapError(counterparty_id, day, tuple(gap))

        activity = DailyActivity.from_sales(
            store.counterparty_sales(tenant_id, counterparty_id, day, day)
        )
        delta = compute_deltas(activity)

        row = self._locked_row(session, tenant_id, counterparty_id, day)
        if opening is None:
            opening = self._opening_of(row.to_record()) if row is not None else OpeningBalance()
        totals = roll_forward(predecessor, delta, opening)

        values = {
            "cash_delta": delta.cash,
            "cylinder_delta": delta.cylinders,
            "opening_cash": opening.cash,
            "opening_cylinders": opening.cylinders,
            "cash_total": totals.cash,
            "cylinder_total": totals.cylinders,
            "computed_at": self._clock.now(),
        }

        if row is None:
            row = self._insert_row(session, tenant_id, counterparty_id, day, values)
        elif self._matches(row, values):
            logger.debug("receivable_day_unchanged", extra={"balance_date": day})
        else:
            self._apply(row, values)
            session.flush()

        logger.info("receivable_day_recomputed", extra={
            "balance_date": day,
            "predecessor_date": predecessor.balance_date if predecessor else None,
            "cash_delta": str(delta.cash),
            "cylinder_delta": delta.cylinders,
            "cash_total": str(totals.cash),
            "cylinder_total": totals.cylinders,
            "version": row.version,
        })
        return row.to_record()

    @staticmethod
    def _locked_row(
        session: Session,
        tenant_id: str,
        counterparty_id: str,
        day: date,
    ) -> ReceivableBalanceModel | None:
        return session.execute(
            select(ReceivableBalanceModel)
            .where(
                ReceivableBalanceModel.tenant_id == tenant_id,
                ReceivableBalanceModel.counterparty_id == counterparty_id,
                ReceivableBalanceModel.balance_date == day,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def _matches(row: ReceivableBalanceModel, values: dict) -> bool:
        """True when the stored figures already equal ``values``."""
        return all(
            getattr(row, name) == value
            for name, value in values.items()
            if name != "computed_at"
        )

    @staticmethod
    def _apply(row: ReceivableBalanceModel, values: dict) -> None:
        for name, value in values.items():
            setattr(row, name, value)

    def _insert_row(
        self,
        session: Session,
        tenant_id: str,
        counterparty_id: str,
        day: date,
        values: dict,
    ) -> ReceivableBalanceModel:
        # Another writer may insert the same key first; the savepoint keeps
        # the rest of this transaction usable.
        savepoint = session.begin_nested()
        try:
            row = ReceivableBalanceModel(
                tenant_id=tenant_id,
                counterparty_id=counterparty_id,
                balance_date=day,
                **values,
            )
            session.add(row)
            session.flush()
            savepoint.commit()
            return row
        except IntegrityError:
            logger.debug("receivable_insert_race_retry", extra={"balance_date": day})
            savepoint.rollback()
            session.expire_all()
            row = self._locked_row(session, tenant_id, counterparty_id, day)
            if row is None:
                raise
            self._apply(row, values)
            session.flush()
            return row

