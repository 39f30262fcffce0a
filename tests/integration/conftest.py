"""
Fixtures for HTTP tests: one app over fresh shards, one cookie jar per user.
"""

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from vaultapi.vault_server.api import create_app
from vaultapi.vault_server.config import InvitationConfig


@pytest.fixture
def app(config, queue, clock):
    """App with the in-memory queue, the fake clock and no background sweeper."""
    config = replace(config, invitations=InvitationConfig(sweep_interval_seconds=0))
    return create_app(config, queue=queue, clock=clock)


@pytest.fixture
def client(app):
    """Client running the app lifespan."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def other_client(app, client):
    """Factory for extra clients (separate cookie jars) on the running app."""
    return lambda: TestClient(app)
