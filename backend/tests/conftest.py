"""Pytest configuration and fixtures for CareBase tests.

Provides in-memory fakes for the wizard's store protocols, an aiosqlite
database for the SQL-backed stores, and an API client with a tenant JWT.
"""

import copy
import os
from datetime import datetime, timedelta
from typing import AsyncGenerator

# Redis is never required by the suite
os.environ.setdefault("CACHE_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import carebase.models  # noqa: F401  register every table
from carebase.auth.jwt import create_access_token
from carebase.auth.permissions import resolve_permissions
from carebase.database import TenantBase, get_tenant_db
from carebase.main import app
from carebase.middleware.exceptions import ResourceNotFoundError
from carebase.models.tenant.client import Client
from carebase.services.interfaces import Actor, Draft, SubjectProfile
from carebase.services.staff_reconciliation import StaffAssignment
from carebase.services.step_catalog import SubjectCategory
from carebase.services.wizard_controller import WizardController

TEST_TENANT = "tenant_test123"

ADMIN = Actor(
    user_id="user-admin",
    role="administrator",
    permissions=tuple(resolve_permissions("administrator")),
    tenant_schema=TEST_TENANT,
)
CARER = Actor(
    user_id="user-carer",
    role="carer",
    permissions=("care_plan.read", "care_plan.write"),
    tenant_schema=TEST_TENANT,
)


@pytest.fixture
def admin() -> Actor:
    return ADMIN


@pytest.fixture
def carer() -> Actor:
    return CARER


# ── In-memory store fakes ────────────────────────────────────────

class StoreUnavailable(ConnectionError):
    pass


class FakeProfiles:
    def __init__(self):
        self.profiles: dict[str, SubjectProfile] = {}
        self.fail = False
        self.calls = 0

    def add(self, client_id: str, category=SubjectCategory.ADULT, **fields) -> SubjectProfile:
        fields.setdefault("first_name", "Ada")
        fields.setdefault("last_name", "Lovelace")
        profile = SubjectProfile(client_id=client_id, category=category, **fields)
        self.profiles[client_id] = profile
        return profile

    async def get_subject_profile(self, client_id: str) -> SubjectProfile:
        self.calls += 1
        if self.fail:
            raise StoreUnavailable("profile service unavailable")
        if client_id not in self.profiles:
            raise ResourceNotFoundError("Client", client_id)
        return self.profiles[client_id]


class FakeDraftBackend:
    def __init__(self):
        self.rows: dict[str, Draft] = {}
        self.puts = 0
        self.fail_get = False
        self.fail_put = False
        self._seq = 0
        self._clock = datetime(2026, 1, 1, 9, 0, 0)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def seed(self, draft: Draft) -> Draft:
        stored = copy.deepcopy(draft)
        if stored.id is None:
            self._seq += 1
            stored.id = f"draft-{self._seq}"
        stored.updated_at = self._tick()
        self.rows[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_draft(self, draft_id: str) -> Draft | None:
        if self.fail_get:
            raise StoreUnavailable("draft store unavailable")
        row = self.rows.get(draft_id)
        return copy.deepcopy(row) if row else None

    async def find_draft(self, client_id: str, care_plan_id: str | None) -> Draft | None:
        if self.fail_get:
            raise StoreUnavailable("draft store unavailable")
        matches = [
            d for d in self.rows.values()
            if d.client_id == client_id and d.care_plan_id == care_plan_id and d.status == "draft"
        ]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda d: d.updated_at))

    async def put_draft(self, draft: Draft) -> Draft:
        if self.fail_put:
            raise StoreUnavailable("draft store unavailable")
        self.puts += 1
        return self.seed(draft)


class FakeRecordStore:
    def __init__(self):
        self.commits = []
        self.assignments: dict[str, list[StaffAssignment]] = {}
        self.fail_commit = False
        self.fail_assignments = False
        self._seq = 0

    async def commit(self, request) -> str:
        if self.fail_commit:
            raise StoreUnavailable("record store unavailable")
        self.commits.append(request)
        care_plan_id = request.care_plan_id
        if not care_plan_id:
            self._seq += 1
            care_plan_id = f"plan-{self._seq}"
        self.assignments[care_plan_id] = list(request.assignments)
        return care_plan_id

    async def get_assignments(self, care_plan_id: str) -> list[StaffAssignment]:
        if self.fail_assignments:
            raise StoreUnavailable("record store unavailable")
        return list(self.assignments.get(care_plan_id, []))


class FakeCounter:
    def __init__(self):
        self.counts: dict[tuple[str, str], int] = {}

    async def get_external_count(self, care_plan_id: str, kind: str) -> int:
        return self.counts.get((care_plan_id, kind), 0)


class FakeAudit:
    def __init__(self):
        self.events = []
        self.fail = False

    def record(self, event) -> None:
        if self.fail:
            raise RuntimeError("audit sink down")
        self.events.append(event)


@pytest.fixture
def profiles() -> FakeProfiles:
    fake = FakeProfiles()
    fake.add("client-1")
    return fake


@pytest.fixture
def drafts() -> FakeDraftBackend:
    return FakeDraftBackend()


@pytest.fixture
def records() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def counter() -> FakeCounter:
    return FakeCounter()


@pytest.fixture
def audit() -> FakeAudit:
    return FakeAudit()


@pytest.fixture
def make_wizard(profiles, drafts, records, counter, audit):
    """Factory for WizardControllers wired to the in-memory fakes."""

    def _make(client_id: str = "client-1", **kwargs) -> WizardController:
        kwargs.setdefault("actor", CARER)
        kwargs.setdefault("debounce_seconds", 0.01)
        return WizardController(
            client_id,
            profiles=profiles,
            drafts=drafts,
            records=records,
            counter=counter,
            audit=audit,
            **kwargs,
        )

    return _make


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine holding every tenant table."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(TenantBase.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def test_client_record(db_session: AsyncSession) -> Client:
    client = Client(
        first_name="Grace",
        last_name="Hopper",
        email="grace@example.com",
        phone="+44 7700 900123",
        address="1 Harbour Street, Leith",
        age_group="adult",
    )
    db_session.add(client)
    await db_session.flush()
    return client


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """API client with the tenant session dependency overridden."""

    async def override_get_tenant_db():
        yield db_session

    app.dependency_overrides[get_tenant_db] = override_get_tenant_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def token_for(actor: Actor) -> str:
    return create_access_token(
        user_id=actor.user_id,
        role=actor.role,
        permissions=list(actor.permissions),
        tenant_schema=actor.tenant_schema,
    )


@pytest.fixture
def headers_for():
    """Bearer headers for an arbitrary Actor."""

    def _headers(actor: Actor) -> dict:
        return {"Authorization": f"Bearer {token_for(actor)}"}

    return _headers


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {token_for(ADMIN)}"}


@pytest.fixture
def carer_headers() -> dict:
    return {"Authorization": f"Bearer {token_for(CARER)}"}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "cache: Cache tests")
    config.addinivalue_line("markers", "auth: Authentication and permission tests")
