"""
Tests for ReceivableLedgerService against a real database.

Tests cover:
- The two-day cash recurrence and cylinder deltas
- Idempotent recomputation
- Cascading a retroactive correction, and the stale chain without it
- Unrecorded activity gaps
- Opening balances
- Read paths: current balance, summary, collection performance, audit
- Range, counterparty and tenant-wide rebuilds
- Conflict retry exhaustion
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from ledger_engines.receivables import RunningTotals
from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.records import SaleType
from ledger_kernel.exceptions import (
    ConcurrentWriteError,
    RecurrenceOrderingError,
    StaleBalanceChainError,
    UnrecordedActivityGapError,
)
from ledger_kernel.models import ReceivableBalanceModel
from ledger_services.receivable_service import ReceivableLedgerService
from tests.builders import DRIVER, TENANT, make_config

DAY1 = date(2024, 2, 1)
DAY2 = date(2024, 2, 2)
DAY3 = date(2024, 2, 3)
DAY5 = date(2024, 2, 5)

PRICE = Decimal("100")


@pytest.fixture
def service(session_factory, config, clock):
    return ReceivableLedgerService(session_factory, config=config, clock=clock)


@pytest.fixture
def three_days(add_sale):
    """
    Day 1: revenue 1000, deposited 800, 10 refills, 8 returned.
    Day 2: revenue 500, deposited 700, 5 refills, 5 returned.
    Day 3: revenue 400, deposited 100, 4 refills, 0 returned.
    """
    add_sale(DAY1, 10, PRICE, cash_deposited=Decimal("800"), cylinders_deposited=8)
    add_sale(DAY2, 5, PRICE, cash_deposited=Decimal("700"), cylinders_deposited=5)
    add_sale(DAY3, 4, PRICE, cash_deposited=Decimal("100"))


def _totals(balance):
    return balance.cash_total, balance.cylinder_total


def _stored_rows(session_factory, day) -> int:
    with session_scope(session_factory) as session:
        return session.execute(
            select(func.count())
            .select_from(ReceivableBalanceModel)
            .where(ReceivableBalanceModel.balance_date == day)
        ).scalar_one()


class TestRecomputeDay:

    def test_two_day_cash_sequence(self, three_days, service):
        day1 = service.recompute_day(TENANT, DRIVER, DAY1)
        day2 = service.recompute_day(TENANT, DRIVER, DAY2)

        assert day1.cash_delta == Decimal("200")
        assert day1.cash_total == Decimal("200")
        assert day2.cash_delta == Decimal("-200")
        assert day2.cash_total == Decimal("0")

    def test_cylinder_delta_added_to_prior_total(self, three_days, service):
        service.recompute_day(TENANT, DRIVER, DAY1)
        service.recompute_day(TENANT, DRIVER, DAY2)
        day3 = service.recompute_day(TENANT, DRIVER, DAY3)

        assert day3.cylinder_delta == 4
        assert day3.cylinder_total == 6

    def test_discount_reduces_cash_owed(self, add_sale, service):
        add_sale(DAY1, 10, PRICE, discount=Decimal("50"), cash_deposited=Decimal("800"))

        balance = service.recompute_day(TENANT, DRIVER, DAY1)

        assert balance.cash_total == Decimal("150")

    def test_package_sales_create_no_cylinder_debt(self, add_sale, service):
        add_sale(DAY1, 3, PRICE, sale_type=SaleType.PACKAGE, cash_deposited=Decimal("300"))

        balance = service.recompute_day(TENANT, DRIVER, DAY1)

        assert _totals(balance) == (Decimal("0"), 0)

    def test_day_without_activity_carries_total(self, add_sale, service):
        add_sale(DAY1, 10, PRICE, cash_deposited=Decimal("800"))
        service.recompute_day(TENANT, DRIVER, DAY1)

        quiet = service.recompute_day(TENANT, DRIVER, date(2024, 2, 10))

        assert quiet.cash_delta == Decimal("0")
        assert quiet.cash_total == Decimal("200")

    def test_recompute_is_idempotent(self, three_days, service, session_factory):
        for day in (DAY1, DAY2, DAY3):
            service.recompute_day(TENANT, DRIVER, day)
        first = service.recompute_day(TENANT, DRIVER, DAY2)
        second = service.recompute_day(TENANT, DRIVER, DAY2)

        assert second == first
        assert _stored_rows(session_factory, DAY2) == 1
        assert service.summary(TENANT, DAY3).counterparty_count == 1
        assert service.audit_chain(TENANT, DRIVER) == []

    def test_unchanged_recompute_keeps_stored_row(
        self, three_days, service, clock, captured_logs,
    ):
        first = service.recompute_day(TENANT, DRIVER, DAY1)
        second = service.recompute_day(TENANT, DRIVER, DAY1)
        clock.advance(60)
        third = service.recompute_day(TENANT, DRIVER, DAY1)

        assert third == second
        assert third.version == first.version
        assert "receivable_day_unchanged" in [r["message"] for r in captured_logs()]

    def test_changed_recompute_stamps_clock_time(self, three_days, add_sale, service, clock):
        started = clock.now()
        first = service.recompute_day(TENANT, DRIVER, DAY1)
        clock.advance(60)
        add_sale(DAY1, 1, PRICE)
        second = service.recompute_day(TENANT, DRIVER, DAY1)

        assert first.computed_at == started
        assert second.computed_at == clock.now()
        assert second.cash_total == first.cash_total + PRICE
        assert second.version > first.version

    def test_other_counterparty_is_independent(self, three_days, add_sale, service):
        add_sale(DAY1, 1, PRICE, driver_id="driver-y")

        service.recompute_day(TENANT, DRIVER, DAY1)
        other = service.recompute_day(TENANT, "driver-y", DAY1)

        assert _totals(other) == (Decimal("100"), 1)

    def test_recompute_logs_day(self, three_days, service, captured_logs):
        service.recompute_day(TENANT, DRIVER, DAY1)

        (record,) = [r for r in captured_logs() if r["message"] == "receivable_day_recomputed"]
        assert record["counterparty_id"] == DRIVER
        assert record["tenant_id"] == TENANT
        assert Decimal(record["cash_total"]) == Decimal("200")


class TestCorrections:

    def _compute_all(self, service):
        for day in (DAY1, DAY2, DAY3):
            service.recompute_day(TENANT, DRIVER, day)

    def test_correction_cascades_forward(self, three_days, add_sale, service):
        self._compute_all(service)
        add_sale(DAY1, 2, PRICE, cylinders_deposited=0)

        service.recompute_day(TENANT, DRIVER, DAY1)

        chain = service.rebuild_counterparty(TENANT, DRIVER)
        assert [_totals(b) for b in chain] == [
            (Decimal("400"), 4),
            (Decimal("200"), 4),
            (Decimal("500"), 8),
        ]
        assert service.current_balance(TENANT, DRIVER) == RunningTotals(Decimal("500"), 8)
        assert service.audit_chain(TENANT, DRIVER) == []

    def test_cascade_updates_stored_later_days(self, three_days, add_sale, service):
        self._compute_all(service)
        add_sale(DAY1, 2, PRICE)

        service.recompute_day(TENANT, DRIVER, DAY1)

        assert service.current_balance(TENANT, DRIVER, DAY2) == (Decimal("200"), 4)
        assert service.current_balance(TENANT, DRIVER, DAY3) == (Decimal("500"), 8)

    def test_without_cascade_later_chain_is_stale(self, three_days, add_sale, service):
        self._compute_all(service)
        add_sale(DAY1, 2, PRICE)

        service.recompute_day(TENANT, DRIVER, DAY1, cascade=False)

        assert service.audit_chain(TENANT, DRIVER) == [DAY2, DAY3]
        with pytest.raises(StaleBalanceChainError) as exc_info:
            service.recompute_day(TENANT, DRIVER, DAY3)

        err = exc_info.value
        assert err.stale_date == DAY2
        assert err.target_date == DAY3
        assert isinstance(err, RecurrenceOrderingError)

    def test_cascade_can_be_disabled_by_config(
        self, three_days, add_sale, session_factory, clock,
    ):
        service = ReceivableLedgerService(
            session_factory, config=make_config(cascade_on_correction=False), clock=clock,
        )
        self._compute_all(service)
        add_sale(DAY1, 2, PRICE)

        service.recompute_day(TENANT, DRIVER, DAY1)

        assert service.current_balance(TENANT, DRIVER, DAY2) == (Decimal("0"), 2)


class TestActivityGaps:

    def test_unrecorded_earlier_activity_is_rejected(self, three_days, service):
        with pytest.raises(UnrecordedActivityGapError) as exc_info:
            service.recompute_day(TENANT, DRIVER, DAY3)

        assert exc_info.value.missing_dates == (DAY1, DAY2)
        assert exc_info.value.code == "UNRECORDED_ACTIVITY_GAP"

    def test_gap_check_can_be_disabled(self, three_days, session_factory, clock):
        service = ReceivableLedgerService(
            session_factory, config=make_config(reject_activity_gaps=False), clock=clock,
        )

        balance = service.recompute_day(TENANT, DRIVER, DAY3)

        assert _totals(balance) == (Decimal("300"), 4)


class TestOpeningBalance:

    def test_opening_is_added_to_day_total(self, three_days, service):
        balance = service.record_opening_balance(TENANT, DRIVER, DAY1, "1000", 10)

        assert balance.opening_cash == Decimal("1000")
        assert _totals(balance) == (Decimal("1200"), 12)

    def test_opening_survives_recomputation(self, three_days, service):
        service.record_opening_balance(TENANT, DRIVER, DAY1, "1000", 10)

        again = service.recompute_day(TENANT, DRIVER, DAY1)
        day2 = service.recompute_day(TENANT, DRIVER, DAY2)

        assert again.opening_cylinders == 10
        assert _totals(again) == (Decimal("1200"), 12)
        assert _totals(day2) == (Decimal("1000"), 12)

    def test_opening_cascades_to_later_days(self, three_days, service):
        for day in (DAY1, DAY2):
            service.recompute_day(TENANT, DRIVER, day)

        service.record_opening_balance(TENANT, DRIVER, DAY1, Decimal("50"), 0)

        assert service.current_balance(TENANT, DRIVER) == (Decimal("50"), 2)


class TestReadPaths:

    def test_current_balance_before_any_record(self, service):
        assert service.current_balance(TENANT, DRIVER) == RunningTotals(Decimal("0"), 0)

    def test_current_balance_as_of(self, three_days, service):
        for day in (DAY1, DAY2, DAY3):
            service.recompute_day(TENANT, DRIVER, day)

        assert service.current_balance(TENANT, DRIVER, DAY1) == (Decimal("200"), 2)
        assert service.current_balance(TENANT, DRIVER, date(2024, 1, 1)) == (Decimal("0"), 0)

    def test_read_paths_default_to_clock_date(self, add_sale, service, clock):
        later = date(2024, 3, 5)
        add_sale(DAY1, 2, PRICE)
        add_sale(later, 1, PRICE)
        service.recompute_day(TENANT, DRIVER, DAY1)
        service.recompute_day(TENANT, DRIVER, later)

        assert clock.today() == date(2024, 3, 1)
        assert service.current_balance(TENANT, DRIVER) == (Decimal("200"), 2)
        assert service.summary(TENANT).as_of == date(2024, 3, 1)

        clock.set_time(datetime(2024, 3, 6, 9, 0, tzinfo=timezone.utc))

        assert service.current_balance(TENANT, DRIVER) == (Decimal("300"), 3)
        assert service.summary(TENANT).total_cash == Decimal("300")

    def test_summary_takes_latest_per_counterparty(self, three_days, add_sale, service):
        add_sale(DAY2, 3, PRICE, driver_id="driver-y", cash_deposited=Decimal("100"))
        for day in (DAY1, DAY2, DAY3):
            service.recompute_day(TENANT, DRIVER, day)
        service.recompute_day(TENANT, "driver-y", DAY2)

        summary = service.summary(TENANT, DAY2)

        assert summary.counterparty_count == 2
        assert [b.counterparty_id for b in summary.balances] == [DRIVER, "driver-y"]
        assert summary.total_cash == Decimal("200")
        assert summary.total_cylinders == 5

    def test_collection_performance(self, add_sale, service):
        add_sale(DAY1, 10, PRICE, cash_deposited=Decimal("800"), cylinders_deposited=6)
        service.recompute_day(TENANT, DRIVER, DAY1)

        perf = service.collection_performance(TENANT, DRIVER, DAY1, DAY3)

        assert perf.sales_revenue == Decimal("1000")
        assert perf.cash_efficiency == Decimal("80.00")
        assert perf.cylinder_efficiency == Decimal("60.00")
        assert perf.overall_efficiency == Decimal("70.00")
        assert perf.outstanding_cash == Decimal("200")
        assert perf.outstanding_cylinders == 4

    def test_collection_performance_without_activity(self, service):
        perf = service.collection_performance(TENANT, DRIVER, DAY1, DAY3)

        assert perf.cash_efficiency == Decimal("100")
        assert perf.cylinder_efficiency == Decimal("100")
        assert perf.overall_efficiency == Decimal("100")
        assert perf.outstanding_cash == Decimal("0")

    def test_audit_reports_missing_days(self, three_days, service, captured_logs):
        service.recompute_day(TENANT, DRIVER, DAY1)

        assert service.audit_chain(TENANT, DRIVER) == [DAY2, DAY3]
        assert any(r["message"] == "receivable_chain_mismatch" for r in captured_logs())


class TestRebuilds:

    def test_recompute_range_covers_active_days(self, add_sale, service):
        add_sale(DAY1, 1, PRICE)
        add_sale(DAY3, 2, PRICE)
        add_sale(DAY5, 3, PRICE)

        balances = service.recompute_range(TENANT, DRIVER, DAY1, DAY5)

        assert [b.balance_date for b in balances] == [DAY1, DAY3, DAY5]
        assert _totals(balances[-1]) == (Decimal("600"), 6)

    def test_recompute_range_rejects_inverted_bounds(self, service):
        with pytest.raises(ValueError):
            service.recompute_range(TENANT, DRIVER, DAY3, DAY1)

    def test_rebuild_counterparty_from_scratch(self, three_days, service):
        chain = service.rebuild_counterparty(TENANT, DRIVER)

        assert [b.balance_date for b in chain] == [DAY1, DAY2, DAY3]
        assert _totals(chain[-1]) == (Decimal("300"), 6)
        assert chain[-1].cash_total == sum(b.cash_delta for b in chain)

    def test_recalculate_all(self, three_days, add_sale, service):
        add_sale(DAY2, 2, PRICE, driver_id="driver-y")

        stats = service.recalculate_all(TENANT)

        assert stats.succeeded
        assert stats.counterparties_processed == 2
        assert stats.days_recomputed == 4
        assert service.current_balance(TENANT, "driver-y") == (Decimal("200"), 2)

    def test_recalculate_all_collects_failures(
        self, three_days, add_sale, session_factory, config, clock,
    ):
        add_sale(DAY1, 1, PRICE, driver_id="driver-bad")

        class _FailingService(ReceivableLedgerService):
            def rebuild_counterparty(self, tenant_id, counterparty_id):
                if counterparty_id == "driver-bad":
                    raise RecurrenceOrderingError(counterparty_id, DAY1, "corrupt chain")
                return super().rebuild_counterparty(tenant_id, counterparty_id)

        service = _FailingService(session_factory, config=config, clock=clock)

        stats = service.recalculate_all(TENANT)

        assert not stats.succeeded
        (failure,) = stats.failures
        assert failure.counterparty_id == "driver-bad"
        assert failure.code == "RECURRENCE_ORDERING_VIOLATION"
        assert stats.days_recomputed == 3


class TestWriteConflicts:

    def test_retries_exhausted(self, session_factory, clock, captured_logs):
        service = ReceivableLedgerService(
            session_factory, config=make_config(max_write_retries=2), clock=clock,
        )
        calls = []

        def _always_stale(*args):
            calls.append(args)
            raise StaleDataError("row changed underneath")

        service._recompute_in_session = _always_stale

        with pytest.raises(ConcurrentWriteError) as exc_info:
            service.recompute_day(TENANT, DRIVER, DAY1)

        assert exc_info.value.attempts == 2
        assert len(calls) == 2
        retries = [r for r in captured_logs() if r["message"] == "receivable_write_conflict_retry"]
        assert len(retries) == 2
