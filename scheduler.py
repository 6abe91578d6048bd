import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cache import CacheFamily, ReactiveCache
from config import Settings, get_settings


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class RefreshScheduler:
    def __init__(self, cache: ReactiveCache, settings: Optional[Settings] = None) -> None:
        self.cache = cache
        self.settings = settings or get_settings()
        self.scheduler = AsyncIOScheduler(timezone=self.settings.timezone)

    async def _run_job(self, family: CacheFamily, source: str = "manual") -> None:
        logger.info(f"scheduler_run: family={family.value} source={source}")
        if family is CacheFamily.billing:
            items = await self.cache.refresh_billing_months()
        else:
            items = await self.cache.refresh_order_days()
        logger.info(
            f"scheduler_run: family={family.value} source={source} items={len(items)}"
        )

    async def start(self, refresh_now: bool = True) -> None:
        logging.getLogger().setLevel(self.settings.log_level)
        await self.cache.initialize()
        if refresh_now:
            await asyncio.gather(
                self._run_job(CacheFamily.billing, "startup"),
                self._run_job(CacheFamily.orders, "startup"),
            )

        trigger = IntervalTrigger(minutes=self.settings.billing_refresh_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[CacheFamily.billing, "interval"],
            id="billing_refresh",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=300,
        )

        trigger = IntervalTrigger(minutes=self.settings.menu_refresh_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[CacheFamily.orders, "interval"],
            id="menu_refresh",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started: billing every "
            f"{self.settings.billing_refresh_minutes}m, menus every "
            f"{self.settings.menu_refresh_minutes}m"
        )

    async def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            # shutdown is scheduled on the event loop, let it run
            await asyncio.sleep(0)
            logger.info("Scheduler stopped")
