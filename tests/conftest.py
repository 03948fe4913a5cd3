import os

# Avant l'import de l'app: pas de Redis pendant les tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from typing import Generator, Dict, Any
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from marketplace.app import app as fastapi_app
from marketplace.negotiation.service import NegotiationService, get_negotiation_service
from marketplace.realtime.channels import ChannelManager
from marketplace.utils.security import require_user
from tests.fakes import FakeGateway, FakeStore

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)
        elif "tests/functional/" in nodeid:
            item.add_marker(pytest.mark.functional)

# Aucun test ne doit joindre Supabase
@pytest.fixture(autouse=True)
def _no_supabase(monkeypatch):
    monkeypatch.setattr("marketplace.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("marketplace.infra.supabase_client.get_service_supabase", lambda: MagicMock())

@pytest.fixture
def store(monkeypatch) -> FakeStore:
    s = FakeStore().install(monkeypatch)
    s.add_service("svc-1", client_id="client-1", developer_id="dev-1", title="Landing page")
    return s

@pytest.fixture
def channels() -> ChannelManager:
    return ChannelManager(send_timeout=0.5, dedupe_history=50)

@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()

@pytest.fixture
def negotiation(store, channels, gateway) -> NegotiationService:
    return NegotiationService(channels=channels, gateway=gateway)

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture
def current_user() -> Dict[str, Any]:
    # Modifiable par les tests: current_user["id"] = "dev-1"
    return {"id": "client-1", "email": "client@example.com", "role": "user", "token": "fake-token"}

@pytest.fixture
def client(app, negotiation, current_user) -> Generator[TestClient, None, None]:
    app.dependency_overrides[require_user] = lambda: current_user
    app.dependency_overrides[get_negotiation_service] = lambda: negotiation
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.pop(require_user, None)
        app.dependency_overrides.pop(get_negotiation_service, None)
