from datetime import timedelta

import pytest

from config import Settings
from context import CacheContext
from upstream import FixtureBillingSource, FixtureMenuSource


def _settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path,
        database_path=tmp_path / "cache.db",
        credentials_dir=tmp_path / "credentials",
        timezone="Europe/Vienna",
        device_key="test-device-key",
        billing_history_months=3,
        billing_max_age=None,
        menu_max_age=timedelta(minutes=60),
        billing_refresh_minutes=60,
        menu_refresh_minutes=30,
        log_level="INFO",
    )


def test_create_wires_components_from_settings(tmp_path) -> None:
    context = CacheContext.create(FixtureBillingSource([]), FixtureMenuSource([]), _settings(tmp_path))

    assert context.store.db_path == tmp_path / "cache.db"
    assert context.billing_fetcher.max_months == 3
    assert context.menu_fetcher.max_age == timedelta(minutes=60)
    assert context.cache.billing_fetcher is context.billing_fetcher

    context.vault.save_credentials("gourmet", "max", "s3cret!")
    assert context.vault.get_credentials("gourmet").password == "s3cret!"


@pytest.mark.asyncio
async def test_reconfigure_points_cache_at_another_database(tmp_path) -> None:
    billing = FixtureBillingSource([])
    context = CacheContext.create(billing, FixtureMenuSource([]), _settings(tmp_path))
    await context.cache.refresh_billing_months()
    assert len(billing.calls) == 1

    context.reconfigure(tmp_path / "other.db")
    await context.cache.refresh_billing_months()

    assert context.store.db_path == tmp_path / "other.db"
    assert (tmp_path / "other.db").exists()
    assert len(billing.calls) == 2
    await context.aclose()
    assert not context.store.is_initialized
