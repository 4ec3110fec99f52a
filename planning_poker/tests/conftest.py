import pytest
from fastapi.testclient import TestClient

from planning_poker.main import app
from planning_poker.tests.fixtures.session_fixtures import (
    FakeTicketSource,
    SAMPLE_TICKETS,
    build_test_coordinator,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def ticket_source():
    return FakeTicketSource(tickets=list(reversed(SAMPLE_TICKETS)))


@pytest.fixture
def coordinator(ticket_source):
    """A room with three queued tickets, a fake tracker, and guard timers disabled."""
    return build_test_coordinator(ticket_source=ticket_source)


@pytest.fixture(scope="function")
def client(monkeypatch, tmp_path):
    """Provides a TestClient with the lifespan (and so a fresh room) running."""
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("PLANNING_POKER_GUARD_ENABLED", "false")
    with TestClient(app) as c:
        yield c
