"""pytest configuration for Signage Sync tests."""

import pytest

from signage.config import ServerConfig
from signage.service import SignageService

API_KEY = "test-api-key"


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture()
def server_config(tmp_path):
    return ServerConfig(data_dir=tmp_path / "data", api_key=API_KEY, keepalive_seconds=0.05)


@pytest.fixture()
def service(server_config):
    return SignageService(server_config)


@pytest.fixture()
def api_key():
    return API_KEY
