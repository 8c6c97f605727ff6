"""Shared test fixtures for Felicity-Engine."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from felicity_engine.attendance.service import AttendanceService
from felicity_engine.common.config import FelicitySettings
from felicity_engine.common.database import DatabaseManager
from felicity_engine.events.service import EventService
from felicity_engine.forms.service import FormSchemaGuard
from felicity_engine.inventory.service import InventoryLedger
from felicity_engine.payments.service import PaymentService
from felicity_engine.registrations.service import AdmissionService
from felicity_engine.tickets.service import TicketService


HMAC_KEY = "test-hmac-key-for-unit-tests"
API_KEY = "test-organizer-api-key"
ORGANIZER = "organizer-1"


def make_settings(db_path=None, **overrides) -> FelicitySettings:
    # A file database so concurrent sessions get real SQLite locking.
    url = f"sqlite+aiosqlite:///{db_path}" if db_path else "sqlite+aiosqlite://"
    defaults = {"hmac_key": HMAC_KEY, "api_key": API_KEY, "db_url": url}
    defaults.update(overrides)
    return FelicitySettings(**defaults)


def event_fields(**overrides) -> dict:
    now = datetime.now(timezone.utc)
    fields = {
        "organizer_id": ORGANIZER,
        "name": "Hackathon",
        "kind": "seats",
        "start_at": now + timedelta(days=7),
        "end_at": now + timedelta(days=8),
        "registration_deadline": now + timedelta(days=6),
        "capacity": 10,
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def hmac_key():
    return HMAC_KEY


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path / "felicity.db")


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def ledger(settings):
    return InventoryLedger(settings)


@pytest.fixture
def form_guard(settings):
    return FormSchemaGuard(settings)


@pytest.fixture
def ticket_svc(settings):
    return TicketService(settings)


@pytest.fixture
def event_svc(settings, ledger):
    return EventService(settings, ledger)


@pytest.fixture
def admission(settings, ledger, form_guard, ticket_svc):
    return AdmissionService(settings, ledger, form_guard, ticket_svc)


@pytest.fixture
def payment_svc(settings, ledger, ticket_svc):
    return PaymentService(settings, ledger, ticket_svc)


@pytest.fixture
def attendance_svc(settings, ticket_svc):
    return AttendanceService(settings, ticket_svc)


@pytest.fixture
def make_event(db, event_svc):
    """Create an event (published unless ``publish=False``) and return it."""

    async def _make(publish: bool = True, **overrides):
        async with db.get_session() as session:
            event = await event_svc.create_event(session, **event_fields(**overrides))
            if publish:
                event = await event_svc.transition(session, event.id, "published")
        return event

    return _make


@pytest.fixture
def app(tmp_path, monkeypatch):
    """Create a test app backed by a temporary SQLite file."""
    monkeypatch.setenv("FELICITY_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("FELICITY_HMAC_KEY", HMAC_KEY)
    monkeypatch.setenv("FELICITY_API_KEY", API_KEY)

    # Clear caches and singletons so new env vars take effect
    from felicity_engine.common.config import get_settings
    get_settings.cache_clear()

    from felicity_engine.deps import reset_singletons
    reset_singletons()

    from felicity_engine.app import create_app
    yield create_app()

    get_settings.cache_clear()
    reset_singletons()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from felicity_engine.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def organizer_headers():
    return {"X-Felicity-Api-Key": API_KEY, "X-Actor-Id": ORGANIZER}


def participant(actor_id: str) -> dict:
    return {"X-Actor-Id": actor_id}


def event_payload(**overrides) -> dict:
    """JSON body for ``POST /events``."""
    fields = event_fields(**overrides)
    fields.pop("organizer_id")
    for key in ("start_at", "end_at", "registration_deadline"):
        fields[key] = fields[key].isoformat()
    return fields


@pytest.fixture
def create_event(client, organizer_headers):
    async def _create(publish: bool = True, **overrides) -> dict:
        resp = await client.post("/events", json=event_payload(**overrides), headers=organizer_headers)
        assert resp.status_code == 201, resp.text
        event = resp.json()
        if publish:
            resp = await client.post(
                f"/events/{event['id']}/status",
                json={"status": "published"},
                headers=organizer_headers,
            )
            assert resp.status_code == 200, resp.text
            event = resp.json()
        return event

    return _create
