"""
Shared fixtures for the MyTube client tests.
"""

import pytest

from mytube_client import ClientConfig, MyTubeClient, RoleStore
from mytube_client.storage import MemoryStorage


BASE_URL = "http://testserver/api"


@pytest.fixture
def config() -> ClientConfig:
    """Configuration with instant retries for testing."""
    return ClientConfig(base_url=BASE_URL, timeout=5.0, retry_delay=0.0, debug=True)


@pytest.fixture
def client(config: ClientConfig) -> MyTubeClient:
    return MyTubeClient(config)


@pytest.fixture
def role_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def role_store(role_storage: MemoryStorage) -> RoleStore:
    return RoleStore(role_storage)
