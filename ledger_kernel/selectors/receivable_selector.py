"""
Module: ledger_kernel.selectors.receivable_selector
Responsibility: Read-only queries over the ``receivable_balances`` ledger:
    predecessor lookup, chain listing, latest balance per counterparty.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - predecessor_candidates() returns EVERY row stored on the latest date
      before the target, so the caller can detect duplicated dates instead
      of silently picking one.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import func, select

from ledger_kernel.domain.records import ReceivableBalance
from ledger_kernel.models.receivable import ReceivableBalanceModel
from ledger_kernel.selectors.base import BaseSelector

_M = ReceivableBalanceModel


class ReceivableSelector(BaseSelector):
    """Read access to stored receivable balances."""

    def _key(self, tenant_id: str, counterparty_id: str):
        return (_M.tenant_id == tenant_id, _M.counterparty_id == counterparty_id)

    def predecessor_candidates(
        self,
        tenant_id: str,
        counterparty_id: str,
        before: date,
        for_update: bool = False,
    ) -> list[ReceivableBalance]:
        """
        All rows on the latest stored date strictly earlier than ``before``.

        ``for_update`` row-locks them until the caller's transaction ends.
        """
        latest = (
            select(func.max(_M.balance_date))
            .where(*self._key(tenant_id, counterparty_id), _M.balance_date < before)
            .scalar_subquery()
        )
        stmt = (
            select(_M)
            .where(*self._key(tenant_id, counterparty_id), _M.balance_date == latest)
            .order_by(_M.id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return [row.to_record() for row in self.session.execute(stmt).scalars().all()]

    def chain(
        self,
        tenant_id: str,
        counterparty_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[ReceivableBalance]:
        """Stored balances in ascending date order, optionally bounded."""
        stmt = select(_M).where(*self._key(tenant_id, counterparty_id))
        if start is not None:
            stmt = stmt.where(_M.balance_date >= start)
        if end is not None:
            stmt = stmt.where(_M.balance_date <= end)
        stmt = stmt.order_by(_M.balance_date, _M.id)
        return [row.to_record() for row in self.session.execute(stmt).scalars().all()]

    def dates_after(
        self,
        tenant_id: str,
        counterparty_id: str,
        after: date,
    ) -> list[date]:
        stmt = (
            select(_M.balance_date)
            .where(*self._key(tenant_id, counterparty_id), _M.balance_date > after)
            .distinct()
            .order_by(_M.balance_date)
        )
        return list(self.session.execute(stmt).scalars().all())

    def latest_on_or_before(
        self,
        tenant_id: str,
        counterparty_id: str,
        as_of: date | None = None,
    ) -> ReceivableBalance | None:
        stmt = select(_M).where(*self._key(tenant_id, counterparty_id))
        if as_of is not None:
            stmt = stmt.where(_M.balance_date <= as_of)
        stmt = stmt.order_by(_M.balance_date.desc(), _M.id).limit(1)
        row = self.session.execute(stmt).scalars().first()
        return row.to_record() if row is not None else None

    def latest_per_counterparty(
        self,
        tenant_id: str,
        as_of: date,
    ) -> list[ReceivableBalance]:
        """Most recent balance on or before ``as_of`` for every counterparty."""
        latest = (
            select(
                _M.counterparty_id.label("counterparty_id"),
                func.max(_M.balance_date).label("balance_date"),
            )
            .where(_M.tenant_id == tenant_id, _M.balance_date <= as_of)
            .group_by(_M.counterparty_id)
            .subquery()
        )
        stmt = (
            select(_M)
            .join(
                latest,
                (_M.counterparty_id == latest.c.counterparty_id)
                & (_M.balance_date == latest.c.balance_date),
            )
            .where(_M.tenant_id == tenant_id)
            .order_by(_M.counterparty_id)
        )
        return [row.to_record() for row in self.session.execute(stmt).scalars().all()]

    def counterparty_ids(self, tenant_id: str) -> list[str]:
        stmt = (
            select(_M.counterparty_id)
            .where(_M.tenant_id == tenant_id)
            .distinct()
            .order_by(_M.counterparty_id)
        )
        return list(self.session.execute(stmt).scalars().all())
