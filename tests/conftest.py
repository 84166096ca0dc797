"""Pytest configuration and shared fixtures."""

import httpx
import pytest
from fastapi.testclient import TestClient

from fakes import FakeClock, FakeEncoder, FakeObjectStore
from streamvault.api.dependencies import Services
from streamvault.catalog.repository import CatalogStore
from streamvault.core.config import settings
from streamvault.main import create_app
from streamvault.storage.progress import ProgressStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return FakeObjectStore(clock=clock)


@pytest.fixture
def catalog():
    """In-memory catalog database."""
    catalog = CatalogStore.from_url("sqlite://")
    yield catalog
    catalog.close()


@pytest.fixture
def test_settings():
    """Settings pinned to local development values."""
    return settings.model_copy(update={"ENV": "local", "UPLOAD_VIDEO_ONLY": True})


@pytest.fixture
def services(test_settings, store, catalog):
    return Services.build(
        test_settings,
        store=store,
        catalog=catalog,
        progress=ProgressStore(),
        encoder=FakeEncoder(),
        proxy_client=httpx.AsyncClient(transport=httpx.MockTransport(store.serve_download)),
    )


@pytest.fixture
def client(services):
    """Create test client around the fake services."""
    return TestClient(create_app(services=services), raise_server_exceptions=False)
