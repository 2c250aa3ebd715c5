"""Membership repository: PostgreSQL-backed with an in-memory twin."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from spacegate.exceptions import ConflictError
from spacegate.models.database import Membership
from spacegate.storage.database import store_errors
from spacegate.storage.memory import detached

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from spacegate.storage.memory import InMemoryStore

logger = structlog.get_logger(__name__)

_DUPLICATE_MSG = "Person already holds this exact membership"


class DatabaseMembershipRepository:
    """Relies on the partial unique index for duplicate detection."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def insert(self, membership: Membership) -> Membership:
        async with store_errors("memberships.insert"), AsyncSession(self._engine) as session:
            session.add(membership)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError(_DUPLICATE_MSG) from exc
            await session.refresh(membership)
            return membership

    async def get(self, membership_id: str) -> Membership | None:
        async with store_errors("memberships.get"), AsyncSession(self._engine) as session:
            return await session.get(Membership, membership_id)

    async def list_active_for_person(self, person_id: str) -> list[Membership]:
        async with store_errors("memberships.list"), AsyncSession(self._engine) as session:
            stmt = select(Membership).where(
                col(Membership.person_id) == person_id,
                col(Membership.is_active).is_(True),
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def deactivate(self, membership_id: str, at: datetime) -> bool:
        async with store_errors("memberships.deactivate"), AsyncSession(self._engine) as session:
            stmt = (
                update(Membership)
                .where(
                    col(Membership.id) == membership_id,
                    col(Membership.is_active).is_(True),
                )
                .values(is_active=False, deactivated_at=at)
            )
            result = await session.execute(stmt)
            await session.commit()
            return bool(result.rowcount)


class InMemoryMembershipRepository:
    """In-memory fallback; the uniqueness check and insert share the store lock."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def insert(self, membership: Membership) -> Membership:
        async with self._store.lock:
            if self._store.active_duplicate(membership):
                raise ConflictError(_DUPLICATE_MSG)
            self._store.memberships[membership.id] = detached(membership)
            return detached(membership)

    async def get(self, membership_id: str) -> Membership | None:
        membership = self._store.memberships.get(membership_id)
        return detached(membership) if membership else None

    async def list_active_for_person(self, person_id: str) -> list[Membership]:
        return [
            detached(m)
            for m in self._store.memberships.values()
            if m.person_id == person_id and m.is_active
        ]

    async def deactivate(self, membership_id: str, at: datetime) -> bool:
        async with self._store.lock:
            membership = self._store.memberships.get(membership_id)
            if not membership or not membership.is_active:
                return False
            membership.is_active = False
            membership.deactivated_at = at
            return True
