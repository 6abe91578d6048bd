from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, selectinload

from models import (
    BillingPositionRow,
    BillingTransactionRow,
    FetchFamily,
    FetchLogRow,
    MenuRow,
    MenuType,
)
from periods import month_range, utc_now
from schemas import BillingMonth, BillingPosition, BillingTransaction, Day, Menu

logger = logging.getLogger(__name__)


def _to_transaction(row: BillingTransactionRow) -> BillingTransaction:
    return BillingTransaction(
        id=row.id,
        type=row.type,
        date=row.date,
        hash=row.hash,
        positions=[
            BillingPosition(
                name=p.name,
                quantity=p.quantity,
                unit_price_cents=p.unit_price_cents,
                support_cents=p.support_cents,
                transaction_id=p.transaction_id,
            )
            for p in row.positions
        ],
    )


def _to_menu(row: MenuRow) -> Menu:
    return Menu(
        type=row.slot,
        title=row.title,
        allergens=list(row.allergens),
        price_cents=row.price_cents,
        date=row.date,
    )


def _month_start_dt(value: date) -> datetime:
    return datetime(value.year, value.month, value.day)


class FetchLogRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, family: FetchFamily, period_start: date) -> Optional[FetchLogRow]:
        return self.session.scalar(
            select(FetchLogRow).where(
                FetchLogRow.family == family,
                FetchLogRow.period_start == period_start,
            )
        )

    def latest(self, family: FetchFamily) -> Optional[FetchLogRow]:
        return self.session.scalar(
            select(FetchLogRow)
            .where(FetchLogRow.family == family)
            .order_by(FetchLogRow.fetched_at.desc())
            .limit(1)
        )

    def mark_fetched(
        self,
        family: FetchFamily,
        period_start: date,
        fetched_at: datetime,
        exhausted: bool = False,
    ) -> FetchLogRow:
        entry = self.get(family, period_start)
        if entry is None:
            entry = FetchLogRow(family=family, period_start=period_start)
            self.session.add(entry)
        entry.fetched_at = fetched_at
        entry.exhausted = exhausted
        self.session.flush()
        return entry


class BillingRepository:
    """Billing months stored as flat transaction and position rows.

    Transactions are immutable once stored; ``hash`` is the identity used to
    skip rows that are already present.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def insert(self, month: BillingMonth) -> int:
        incoming: dict[str, BillingTransaction] = {}
        for txn in month.transactions:
            incoming.setdefault(txn.hash, txn)
        if not incoming:
            return 0

        existing = set(
            self.session.scalars(
                select(BillingTransactionRow.hash).where(
                    BillingTransactionRow.hash.in_(list(incoming))
                )
            ).all()
        )

        added = 0
        for txn_hash, txn in incoming.items():
            if txn_hash in existing:
                continue
            row = BillingTransactionRow(type=txn.type, date=txn.date, hash=txn_hash)
            row.positions = [
                BillingPositionRow(
                    name=p.name,
                    quantity=p.quantity,
                    unit_price_cents=p.unit_price_cents,
                    support_cents=p.support_cents,
                )
                for p in txn.positions
            ]
            self.session.add(row)
            added += 1
        self.session.flush()
        logger.debug(
            f"billing_insert: month={month.month.isoformat()} "
            f"received={len(incoming)} added={added}"
        )
        return added

    def _transactions_between(
        self, start: datetime, end: datetime
    ) -> list[BillingTransactionRow]:
        stmt = (
            select(BillingTransactionRow)
            .options(selectinload(BillingTransactionRow.positions))
            .where(
                BillingTransactionRow.date >= start,
                BillingTransactionRow.date < end,
            )
            .order_by(BillingTransactionRow.date, BillingTransactionRow.id)
        )
        return list(self.session.scalars(stmt).all())

    def read(self, month_key: date) -> Optional[BillingMonth]:
        span = month_range(month_key)
        rows = self._transactions_between(
            _month_start_dt(span.start), _month_start_dt(span.end)
        )
        if not rows:
            fetched = FetchLogRepository(self.session).get(
                FetchFamily.billing, span.start
            )
            if fetched is None or fetched.exhausted:
                return None
        return BillingMonth(
            month=span.start, transactions=[_to_transaction(r) for r in rows]
        )

    def available_months(self) -> list[date]:
        ym = func.strftime("%Y-%m", BillingTransactionRow.date).label("ym")
        keys = self.session.scalars(select(ym).group_by(ym)).all()
        months = {date.fromisoformat(f"{key}-01") for key in keys}
        months.update(
            self.session.scalars(
                select(FetchLogRow.period_start).where(
                    FetchLogRow.family == FetchFamily.billing,
                    FetchLogRow.exhausted.is_(False),
                )
            ).all()
        )
        return sorted(months, reverse=True)

    def read_all(self) -> list[BillingMonth]:
        months = []
        for key in self.available_months():
            month = self.read(key)
            if month is not None:
                months.append(month)
        return months

    def latest_transaction_date(self) -> Optional[datetime]:
        return self.session.scalar(select(func.max(BillingTransactionRow.date)))

    def count_transactions(self) -> int:
        return int(
            self.session.scalar(select(func.count(BillingTransactionRow.id))) or 0
        )


class MenuRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def insert(self, days: Iterable[Day], fetched_at: Optional[datetime] = None) -> int:
        fetched_at = fetched_at or utc_now()
        latest = {day.date: day for day in days}
        written = 0
        for day in latest.values():
            menus = {menu.type: menu for menu in day.menus}
            stale_slots = [slot for slot in MenuType if slot not in menus]
            if stale_slots:
                self.session.execute(
                    delete(MenuRow).where(
                        MenuRow.date == day.date, MenuRow.slot.in_(stale_slots)
                    )
                )

            existing = {
                row.slot: row
                for row in self.session.scalars(
                    select(MenuRow).where(MenuRow.date == day.date)
                )
            }
            for slot, menu in menus.items():
                row = existing.get(slot)
                if row is None:
                    row = MenuRow(date=day.date, slot=slot)
                    self.session.add(row)
                row.title = menu.title
                row.allergens = "".join(menu.allergens)
                row.price_cents = menu.price_cents
                row.hash = menu.hash
                row.fetched_at = fetched_at
                written += 1
        self.session.flush()
        return written

    def read(self, start: date, end: date) -> list[Day]:
        rows = self.session.scalars(
            select(MenuRow)
            .where(MenuRow.date >= start, MenuRow.date < end)
            .order_by(MenuRow.date, MenuRow.id)
        ).all()

        by_date: dict[date, list[Menu]] = {}
        for row in rows:
            by_date.setdefault(row.date, []).append(_to_menu(row))
        return [Day.from_menus(d, menus) for d, menus in sorted(by_date.items())]

    def available_dates(self) -> list[date]:
        return list(
            self.session.scalars(
                select(MenuRow.date).group_by(MenuRow.date).order_by(MenuRow.date)
            ).all()
        )
