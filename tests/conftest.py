"""
Shared fixtures for the Vault test suite.
"""

import tempfile

import pytest

from vaultapi.vault_server.config import DatabaseConfig, ServerConfig
from vaultapi.vault_server.queue import InMemoryQueue
from vaultapi.vault_server.services import VaultServices
from vaultapi.vault_server.storage import ShardRouter

from tests.helpers import FakeClock


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def config(data_dir):
    """Server configuration with two data shards under data_dir."""
    return ServerConfig(database=DatabaseConfig.local(data_dir, data_shards=2))


@pytest.fixture
def router(config):
    """Initialized shard router."""
    router = ShardRouter.build(config.database)
    router.initialize()
    return router


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue():
    return InMemoryQueue()


@pytest.fixture
def services(router, queue, config, clock):
    """Service container over fresh shards."""
    return VaultServices(router, queue, config, clock=clock)
