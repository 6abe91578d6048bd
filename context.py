import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from cache import ReactiveCache
from config import Settings, get_settings
from database import PersistentStore
from fetchers import BillingFetcher, FreshnessPolicy, MenuFetcher
from periods import local_today
from upstream import BillingSource, MenuSource
from vault import CredentialVault, KeySource, key_source_from_settings

logger = logging.getLogger(__name__)


class CacheContext:
    """Everything the app needs, wired once at process start and passed down."""

    def __init__(
        self,
        settings: Settings,
        store: PersistentStore,
        vault: CredentialVault,
        billing_fetcher: BillingFetcher,
        menu_fetcher: MenuFetcher,
        cache: ReactiveCache,
    ) -> None:
        self.settings = settings
        self.store = store
        self.vault = vault
        self.billing_fetcher = billing_fetcher
        self.menu_fetcher = menu_fetcher
        self.cache = cache

    @classmethod
    def create(
        cls,
        billing_source: BillingSource,
        menu_source: MenuSource,
        settings: Optional[Settings] = None,
        key_source: Optional[KeySource] = None,
    ) -> "CacheContext":
        settings = settings or get_settings()

        def today():
            return local_today(settings.timezone)

        store = PersistentStore(settings.database_path)
        billing_fetcher = BillingFetcher(
            store,
            billing_source,
            policy=FreshnessPolicy(max_age=settings.billing_max_age),
            max_months=settings.billing_history_months,
            today=today,
        )
        menu_fetcher = MenuFetcher(
            store, menu_source, max_age=settings.menu_max_age, today=today
        )
        vault = CredentialVault(
            settings.credentials_dir,
            key_source or key_source_from_settings(settings),
        )
        cache = ReactiveCache(store, billing_fetcher, menu_fetcher)
        logger.info(f"context_created: db={settings.database_path}")
        return cls(settings, store, vault, billing_fetcher, menu_fetcher, cache)

    def reconfigure(self, db_path: Union[str, Path]) -> None:
        self.cache.reset()
        self.store.set_db_path(db_path)

    async def aclose(self) -> None:
        await asyncio.to_thread(self.store.close)
