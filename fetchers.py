from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import AsyncIterator, Callable, Optional

from database import PersistentStore
from errors import UpstreamFetchError
from models import FetchFamily
from periods import (
    DateRange,
    local_today,
    month_start,
    order_window,
    shift_month,
    trailing_months,
    utc_now,
)
from repositories import BillingRepository, FetchLogRepository, MenuRepository
from schemas import BillingMonth, Day
from upstream import BillingSource, MenuSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreshnessPolicy:
    """Decides whether a persisted billing month may be served without a fetch.

    ``refetch_open_months``: a month whose last fetch happened before the month
    was over may have gained transactions since, so it is fetched again. The
    current month is therefore always refetched.
    ``max_age``: when set, any month fetched longer ago than this is refetched.
    A month stored without a fetch record counts as fresh unless it is the
    current month.
    """

    max_age: Optional[timedelta] = None
    refetch_open_months: bool = True

    def is_stale(
        self,
        month: date,
        fetched_at: Optional[datetime],
        *,
        today: date,
        now: datetime,
    ) -> bool:
        if self.refetch_open_months:
            if fetched_at is None:
                if month >= month_start(today):
                    return True
            elif fetched_at < datetime.combine(shift_month(month, 1), time()):
                return True
        if self.max_age is not None and fetched_at is not None:
            return now - fetched_at > self.max_age
        return False


@dataclass(frozen=True)
class _StoredMonth:
    month: Optional[BillingMonth]
    fetched_at: Optional[datetime]
    exhausted: bool


class BillingFetcher:
    """Streams billing months newest first, preferring the local store."""

    def __init__(
        self,
        store: PersistentStore,
        source: BillingSource,
        policy: Optional[FreshnessPolicy] = None,
        max_months: Optional[int] = None,
        today: Optional[Callable[[], date]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.source = source
        self.policy = policy or FreshnessPolicy()
        self.max_months = max_months
        self.today = today or local_today
        self.now = now or utc_now

    async def get_async(self, force: bool = False) -> AsyncIterator[BillingMonth]:
        today = self.today()
        for key in trailing_months(today, limit=self.max_months):
            stored = await asyncio.to_thread(self._load, key)
            stale = force or self.policy.is_stale(
                key, stored.fetched_at, today=today, now=self.now()
            )
            if not stale:
                if stored.exhausted:
                    logger.debug(f"billing_history_end: month={key:%Y-%m} source=store")
                    return
                if stored.month is not None:
                    yield stored.month
                    continue

            fetched = await self._fetch(key)
            if fetched is None:
                await asyncio.to_thread(self._mark_exhausted, key)
                logger.info(f"billing_history_end: month={key:%Y-%m} source=upstream")
                return
            yield await asyncio.to_thread(self._persist, key, fetched)

    async def _fetch(self, key: date) -> Optional[BillingMonth]:
        try:
            return await self.source.fetch_month(key)
        except UpstreamFetchError:
            raise
        except Exception as exc:
            raise UpstreamFetchError(
                f"Failed to fetch billing month {key:%Y-%m}: {exc}"
            ) from exc

    def _load(self, key: date) -> _StoredMonth:
        with self.store.session_scope() as session:
            entry = FetchLogRepository(session).get(FetchFamily.billing, key)
            return _StoredMonth(
                month=BillingRepository(session).read(key),
                fetched_at=entry.fetched_at if entry else None,
                exhausted=entry.exhausted if entry else False,
            )

    def _persist(self, key: date, fetched: BillingMonth) -> BillingMonth:
        if fetched.month != key:
            fetched = fetched.model_copy(update={"month": key})
        with self.store.session_scope() as session:
            billing = BillingRepository(session)
            added = billing.insert(fetched)
            FetchLogRepository(session).mark_fetched(
                FetchFamily.billing, key, self.now()
            )
            month = billing.read(key)
        logger.info(
            f"billing_fetched: month={key:%Y-%m} "
            f"transactions={len(fetched.transactions)} added={added}"
        )
        assert month is not None
        return month

    def _mark_exhausted(self, key: date) -> None:
        with self.store.session_scope() as session:
            FetchLogRepository(session).mark_fetched(
                FetchFamily.billing, key, self.now(), exhausted=True
            )


class MenuFetcher:
    """Pulls menu days for a date window into the store; reads go through it."""

    def __init__(
        self,
        store: PersistentStore,
        source: MenuSource,
        max_age: timedelta = timedelta(minutes=60),
        today: Optional[Callable[[], date]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.source = source
        self.max_age = max_age
        self.today = today or local_today
        self.now = now or utc_now

    def window(self, window: Optional[DateRange] = None) -> DateRange:
        return window or order_window(self.today())

    async def refresh(self, window: Optional[DateRange] = None) -> int:
        window = self.window(window)
        try:
            days = await self.source.fetch_days(window.start, window.end)
        except UpstreamFetchError:
            raise
        except Exception as exc:
            raise UpstreamFetchError(
                f"Failed to fetch menus {window.start}..{window.end}: {exc}"
            ) from exc
        return await asyncio.to_thread(self._persist, window, days)

    async def read(self, window: Optional[DateRange] = None) -> list[Day]:
        window = self.window(window)
        return await asyncio.to_thread(self._read, window)

    async def is_stale(self, window: Optional[DateRange] = None) -> bool:
        window = self.window(window)
        return await asyncio.to_thread(self._is_stale, window)

    async def get_async(
        self, window: Optional[DateRange] = None, force: bool = False
    ) -> AsyncIterator[Day]:
        window = self.window(window)
        for day in await self.read(window):
            yield day
        if force or await self.is_stale(window):
            await self.refresh(window)
            for day in await self.read(window):
                yield day

    def _persist(self, window: DateRange, days: list[Day]) -> int:
        in_window = [d for d in days if d.date in window]
        with self.store.session_scope() as session:
            written = MenuRepository(session).insert(in_window, fetched_at=self.now())
            FetchLogRepository(session).mark_fetched(
                FetchFamily.menu, window.start, self.now()
            )
        logger.info(
            f"menus_fetched: start={window.start} end={window.end} "
            f"days={len(in_window)} rows={written}"
        )
        return written

    def _read(self, window: DateRange) -> list[Day]:
        with self.store.session_scope() as session:
            return MenuRepository(session).read(window.start, window.end)

    def _is_stale(self, window: DateRange) -> bool:
        with self.store.session_scope() as session:
            entry = FetchLogRepository(session).get(FetchFamily.menu, window.start)
            if entry is None:
                return True
            return self.now() - entry.fetched_at > self.max_age
