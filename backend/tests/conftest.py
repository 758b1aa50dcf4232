"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from app.config import RelayConfig
from app.main import create_app
from app.realtime.membership import ConversationMembershipIndex
from app.realtime.registry import ConnectionRegistry


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def membership(registry):
    return ConversationMembershipIndex(registry)


@pytest.fixture
def relay_config():
    return RelayConfig()


@pytest.fixture
def app(relay_config):
    """A fresh application with its own registry per test."""
    return create_app(relay_config)


@pytest.fixture
def api_client(app):
    """Provide a TestClient for a fresh FastAPI app.

    Entered as a context manager so every WebSocket session shares one event
    loop with the app state.
    """
    with TestClient(app) as client:
        yield client
