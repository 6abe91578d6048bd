import pytest

from config import get_settings


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("CANTEEN_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CANTEEN_DEVICE_KEY", "test-device-key")
    monkeypatch.delenv("CANTEEN_DATABASE_PATH", raising=False)
    monkeypatch.delenv("CANTEEN_CREDENTIALS_DIR", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
