import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from database import PersistentStore
from errors import CacheError
from events import ObservableList, Signal
from fetchers import BillingFetcher, MenuFetcher
from repositories import BillingRepository, MenuRepository
from schemas import BillingMonth, Day

logger = logging.getLogger(__name__)


class CacheFamily(str, Enum):
    billing = "billing"
    orders = "orders"


@dataclass(frozen=True)
class ErrorEvent:
    family: CacheFamily
    error: BaseException
    context: str = ""


class ReactiveCache:
    """In-memory view over the store that the UI binds to.

    Collections are only ever mutated here. Refreshes run at most once per
    family at a time; later callers join the running refresh. Failures never
    reach the caller: they are logged and published on ``errors`` while the
    collections keep what they already held.
    """

    def __init__(
        self,
        store: PersistentStore,
        billing_fetcher: BillingFetcher,
        menu_fetcher: MenuFetcher,
    ) -> None:
        self.store = store
        self.billing_fetcher = billing_fetcher
        self.menu_fetcher = menu_fetcher

        self.billing_months: ObservableList[BillingMonth] = ObservableList(
            "billing_months",
            key=lambda m: m.month,
            sort_key=lambda m: m.month,
            reverse=True,
        )
        self.order_days: ObservableList[Day] = ObservableList(
            "order_days", key=lambda d: d.date, sort_key=lambda d: d.date
        )
        self.loading_changed = Signal("loading_changed")
        self.errors = Signal("errors")

        self._loading = {family: False for family in CacheFamily}
        self._init_task: Optional[asyncio.Task] = None
        self._refresh_tasks: dict[CacheFamily, asyncio.Task] = {}

    @property
    def menus(self) -> ObservableList[Day]:
        return self.order_days

    @property
    def is_billing_loading(self) -> bool:
        return self._loading[CacheFamily.billing]

    @property
    def is_orders_loading(self) -> bool:
        return self._loading[CacheFamily.orders]

    @property
    def is_loading(self) -> bool:
        return any(self._loading.values())

    async def initialize(self) -> bool:
        """Load persisted data into the collections without touching upstream.

        Returns False when the store could not be read; the next call retries.
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> bool:
        window = self.menu_fetcher.window()
        try:
            months, days = await asyncio.to_thread(self._load_persisted, window)
        except Exception as exc:
            self._init_task = None
            if not isinstance(exc, CacheError):
                logger.exception("initialize_crashed")
            for family in CacheFamily:
                self._report(family, exc, "initialize")
            return False
        self.billing_months.reset(months)
        self.order_days.reset(days)
        logger.info(f"cache_initialized: months={len(months)} days={len(days)}")
        return True

    def _load_persisted(self, window) -> tuple[list[BillingMonth], list[Day]]:
        with self.store.session_scope() as session:
            months = BillingRepository(session).read_all()
            days = MenuRepository(session).read(window.start, window.end)
        return months, days

    async def refresh_billing_months(self, force: bool = False) -> list[BillingMonth]:
        return await self._single_flight(
            CacheFamily.billing, lambda: self._refresh_billing(force)
        )

    async def refresh_order_days(self) -> list[Day]:
        return await self._single_flight(CacheFamily.orders, self._refresh_orders)

    async def _refresh_billing(self, force: bool) -> None:
        await self.initialize()
        streamed = 0
        async for month in self.billing_fetcher.get_async(force=force):
            self.billing_months.upsert(month)
            streamed += 1
        logger.info(f"billing_refresh: months={streamed} force={force}")

    async def _refresh_orders(self) -> None:
        await self.initialize()
        window = self.menu_fetcher.window()
        await self.menu_fetcher.refresh(window)
        days = await self.menu_fetcher.read(window)
        self.order_days.reset(days)
        logger.info(f"orders_refresh: start={window.start} days={len(days)}")

    async def _single_flight(
        self, family: CacheFamily, factory: Callable[[], Awaitable[None]]
    ) -> list:
        task = self._refresh_tasks.get(family)
        if task is None or task.done():
            task = asyncio.ensure_future(self._run_refresh(family, factory))
            self._refresh_tasks[family] = task
        else:
            logger.debug(f"refresh_joined: family={family.value}")
        return await asyncio.shield(task)

    async def _run_refresh(
        self, family: CacheFamily, factory: Callable[[], Awaitable[None]]
    ) -> list:
        self._set_loading(family, True)
        try:
            await factory()
        except CacheError as exc:
            self._report(family, exc, "refresh")
        except Exception as exc:
            logger.exception(f"refresh_crashed: family={family.value}")
            self.errors.emit(ErrorEvent(family, exc, "refresh"))
        finally:
            self._set_loading(family, False)
        return self._collection(family).snapshot()

    def _collection(self, family: CacheFamily) -> ObservableList:
        if family is CacheFamily.billing:
            return self.billing_months
        return self.order_days

    def _set_loading(self, family: CacheFamily, value: bool) -> None:
        self._loading[family] = value
        logger.debug(
            f"loading_changed: family={family.value} loading={value} "
            f"any={self.is_loading}"
        )
        self.loading_changed.emit(self.is_loading)

    def _report(self, family: CacheFamily, exc: BaseException, context: str) -> None:
        logger.error(f"{context}_failed: family={family.value} error={exc}")
        self.errors.emit(ErrorEvent(family, exc, context))

    def reset(self) -> None:
        for task in [self._init_task, *self._refresh_tasks.values()]:
            if task is not None and not task.done():
                task.cancel()
        self._init_task = None
        self._refresh_tasks = {}
        self._loading = {family: False for family in CacheFamily}
        self.billing_months.reset([])
        self.order_days.reset([])
