"""Identity store: people and organizations."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from spacegate.exceptions import ConflictError
from spacegate.models.database import Organization, Person, _utc_now
from spacegate.storage.database import store_errors
from spacegate.storage.memory import detached

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from spacegate.storage.memory import InMemoryStore

logger = structlog.get_logger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def default_name(email: str) -> str:
    """Fallback display name: the local part of the address."""
    return email.split("@", 1)[0]


class DatabaseIdentityRepository:
    """PostgreSQL-backed people and organizations."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def create_organization(self, name: str, slug: str) -> Organization:
        async with store_errors("organizations.create"), AsyncSession(self._engine) as session:
            org = Organization(name=name, slug=slug)
            session.add(org)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                msg = f"Organization slug already taken: {slug}"
                raise ConflictError(msg) from exc
            await session.refresh(org)
            logger.info("organization_created", org_id=org.id, slug=slug)
            return org

    async def get_organization(self, org_id: str) -> Organization | None:
        async with store_errors("organizations.get"), AsyncSession(self._engine) as session:
            return await session.get(Organization, org_id)

    async def get_organization_by_slug(self, slug: str) -> Organization | None:
        async with store_errors("organizations.get"), AsyncSession(self._engine) as session:
            stmt = select(Organization).where(col(Organization.slug) == slug)
            result = await session.execute(stmt)
            return result.scalars().first()

    async def create_person(
        self, email: str, name: str = "", password_hash: str | None = None
    ) -> Person:
        email = normalize_email(email)
        async with store_errors("people.create"), AsyncSession(self._engine) as session:
            person = Person(
                email=email, name=name or default_name(email), password_hash=password_hash
            )
            session.add(person)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                msg = "A person with this email already exists"
                raise ConflictError(msg) from exc
            await session.refresh(person)
            logger.info("person_created", person_id=person.id)
            return person

    async def find_or_create_person(self, email: str, name: str = "") -> Person:
        existing = await self.get_person_by_email(email)
        if existing:
            return existing
        try:
            return await self.create_person(email, name)
        except ConflictError:
            # Lost a race against a concurrent insert of the same email.
            person = await self.get_person_by_email(email)
            if person is None:
                raise
            return person

    async def get_person(self, person_id: str) -> Person | None:
        async with store_errors("people.get"), AsyncSession(self._engine) as session:
            return await session.get(Person, person_id)

    async def get_person_by_email(self, email: str) -> Person | None:
        async with store_errors("people.get"), AsyncSession(self._engine) as session:
            stmt = select(Person).where(col(Person.email) == normalize_email(email))
            result = await session.execute(stmt)
            return result.scalars().first()

    async def set_password(self, person_id: str, password_hash: str) -> None:
        async with store_errors("people.update"), AsyncSession(self._engine) as session:
            person = await session.get(Person, person_id)
            if person:
                person.password_hash = password_hash
                person.updated_at = _utc_now()
                session.add(person)
                await session.commit()

    async def update_profile(
        self, person_id: str, *, name: str | None = None, avatar: str | None = None
    ) -> Person | None:
        async with store_errors("people.update"), AsyncSession(self._engine) as session:
            person = await session.get(Person, person_id)
            if not person:
                return None
            if name is not None:
                person.name = name
            if avatar is not None:
                person.avatar = avatar
            person.updated_at = _utc_now()
            session.add(person)
            await session.commit()
            await session.refresh(person)
            return person


class InMemoryIdentityRepository:
    """In-memory fallback for dev/testing without a database."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def create_organization(self, name: str, slug: str) -> Organization:
        async with self._store.lock:
            if any(o.slug == slug for o in self._store.organizations.values()):
                msg = f"Organization slug already taken: {slug}"
                raise ConflictError(msg)
            org = Organization(name=name, slug=slug)
            self._store.organizations[org.id] = org
            return detached(org)

    async def get_organization(self, org_id: str) -> Organization | None:
        org = self._store.organizations.get(org_id)
        return detached(org) if org else None

    async def get_organization_by_slug(self, slug: str) -> Organization | None:
        org = next((o for o in self._store.organizations.values() if o.slug == slug), None)
        return detached(org) if org else None

    async def create_person(
        self, email: str, name: str = "", password_hash: str | None = None
    ) -> Person:
        async with self._store.lock:
            return detached(self._insert_person(email, name, password_hash))

    def _insert_person(self, email: str, name: str, password_hash: str | None) -> Person:
        email = normalize_email(email)
        if self._store.person_by_email(email):
            msg = "A person with this email already exists"
            raise ConflictError(msg)
        person = Person(email=email, name=name or default_name(email), password_hash=password_hash)
        self._store.people[person.id] = person
        return person

    async def find_or_create_person(self, email: str, name: str = "") -> Person:
        async with self._store.lock:
            person = self._store.person_by_email(email) or self._insert_person(email, name, None)
            return detached(person)

    async def get_person(self, person_id: str) -> Person | None:
        person = self._store.people.get(person_id)
        return detached(person) if person else None

    async def get_person_by_email(self, email: str) -> Person | None:
        person = self._store.person_by_email(email)
        return detached(person) if person else None

    async def set_password(self, person_id: str, password_hash: str) -> None:
        person = self._store.people.get(person_id)
        if person:
            person.password_hash = password_hash
            person.updated_at = _utc_now()

    async def update_profile(
        self, person_id: str, *, name: str | None = None, avatar: str | None = None
    ) -> Person | None:
        person = self._store.people.get(person_id)
        if not person:
            return None
        if name is not None:
            person.name = name
        if avatar is not None:
            person.avatar = avatar
        person.updated_at = _utc_now()
        return detached(person)
