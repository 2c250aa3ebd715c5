"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

from spacegate.auth.password import hash_password
from spacegate.authz.context import ScopeRef
from spacegate.config.settings import Settings
from spacegate.engine import AccessEngine, build_engine
from spacegate.models.database import Membership, Organization, Person, _utc_now
from spacegate.storage.memory import InMemoryStore
from spacegate.types import Role, Space

PASSWORD = "correct-horse-battery"


class FakeClock:
    """Controllable naive-UTC clock, starting at the real current time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or _utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class Seeded:
    org: Organization
    person: Person
    memberships: list[Membership]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        secret_key="test-secret",
        use_database=False,
        invite_base_url="https://app.test/accept",
    )


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def access(settings: Settings, store: InMemoryStore, clock: FakeClock) -> AccessEngine:
    """AccessEngine over the in-memory store."""
    return build_engine(settings, store=store, clock=clock)


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    import spacegate.models.database  # noqa: F401

    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def db_access(settings: Settings, async_engine, clock: FakeClock) -> AccessEngine:
    """AccessEngine over the SQLite-backed repositories."""
    return build_engine(settings, db_engine=async_engine, clock=clock)


@pytest.fixture()
async def org(access: AccessEngine) -> Organization:
    return await access.repos.identity.create_organization("Org One", "org1")


async def seed_person(
    access: AccessEngine,
    org: Organization,
    email: str,
    grants: list[tuple[Role, Space, ScopeRef]],
    password: str = PASSWORD,
) -> Seeded:
    """Create a person with a password and the given memberships."""
    person = await access.repos.identity.create_person(
        email, password_hash=hash_password(password)
    )
    memberships = [
        await access.registry.create_membership(person.id, org.id, role, space, scope)
        for role, space, scope in grants
    ]
    return Seeded(org=org, person=person, memberships=memberships)


@pytest.fixture()
def seed():
    """The ``seed_person`` helper, as a fixture."""
    return seed_person


@pytest.fixture()
async def alice(access: AccessEngine, org: Organization) -> Seeded:
    """alice@x.com: internal admin plus client_member of account7."""
    return await seed_person(
        access,
        org,
        "alice@x.com",
        [
            (Role.ADMIN, Space.INTERNAL, ScopeRef.internal()),
            (Role.CLIENT_MEMBER, Space.CLIENT, ScopeRef.client("account7")),
        ],
    )


@pytest.fixture()
def app(access: AccessEngine):
    from spacegate.web.app import create_app

    return create_app(engine=access)


@pytest.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
