from __future__ import annotations

import pytest

from nlweb_licensing.app.licensing.validator import SYNC_TASK_NAME, WARM_TASK_NAME
from nlweb_licensing.app.storage import InMemoryOptionStore
from nlweb_licensing.wiring import get_licensing_services


@pytest.fixture
def fresh_services_cache():
    get_licensing_services.cache_clear()
    yield
    get_licensing_services.cache_clear()


def test_build_shares_collaborators(licensed_services, store) -> None:
    assert licensed_services.store is store
    assert licensed_services.validator.domain == "www.example.com"
    assert licensed_services.scheduler.is_scheduled(SYNC_TASK_NAME)
    assert licensed_services.scheduler.is_scheduled(WARM_TASK_NAME)
    assert licensed_services.api_client.is_available() is False


def test_services_from_environment(monkeypatch, fresh_services_cache) -> None:
    monkeypatch.setenv("NLWEB_SERVER_URL", "https://licensing.example.com")
    monkeypatch.setenv("NLWEB_SITE_URL", "https://shop.example.com")
    monkeypatch.setenv("NLWEB_ENCRYPTION_SECRET", "environment-secret-value")
    monkeypatch.delenv("NLWEB_DATABASE_URL", raising=False)

    services = get_licensing_services()

    assert isinstance(services.store, InMemoryOptionStore)
    assert services.config.site_url == "https://shop.example.com"
    assert get_licensing_services() is services
    services.api_client.close()
