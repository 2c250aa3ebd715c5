"""Server-side session records."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, update
from sqlmodel import col
from sqlmodel.ext.asyncio.session import AsyncSession

from spacegate.models.database import SessionRecord
from spacegate.storage.database import store_errors
from spacegate.storage.memory import detached

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from spacegate.storage.memory import InMemoryStore

logger = structlog.get_logger(__name__)


class DatabaseSessionRepository:
    """PostgreSQL-backed session store."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def insert(self, record: SessionRecord) -> SessionRecord:
        async with store_errors("sessions.insert"), AsyncSession(self._engine) as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    async def get(self, session_id: str) -> SessionRecord | None:
        async with store_errors("sessions.get"), AsyncSession(self._engine) as session:
            return await session.get(SessionRecord, session_id)

    async def rebind(
        self, session_id: str, membership_id: str, expires_at: datetime
    ) -> SessionRecord | None:
        async with store_errors("sessions.rebind"), AsyncSession(self._engine) as session:
            stmt = (
                update(SessionRecord)
                .where(col(SessionRecord.id) == session_id)
                .values(active_membership_id=membership_id, expires_at=expires_at)
            )
            result = await session.execute(stmt)
            await session.commit()
            if not result.rowcount:
                return None
            return await session.get(SessionRecord, session_id, populate_existing=True)

    async def delete(self, session_id: str) -> bool:
        async with store_errors("sessions.delete"), AsyncSession(self._engine) as session:
            stmt = delete(SessionRecord).where(col(SessionRecord.id) == session_id)
            result = await session.execute(stmt)
            await session.commit()
            return bool(result.rowcount)

    async def purge_expired(self, at: datetime) -> int:
        async with store_errors("sessions.purge"), AsyncSession(self._engine) as session:
            stmt = delete(SessionRecord).where(col(SessionRecord.expires_at) <= at)
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount:
                logger.info("sessions_purged", count=result.rowcount)
            return int(result.rowcount or 0)


class InMemorySessionRepository:
    """In-memory fallback for dev/testing without a database."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def insert(self, record: SessionRecord) -> SessionRecord:
        self._store.sessions[record.id] = detached(record)
        return detached(record)

    async def get(self, session_id: str) -> SessionRecord | None:
        record = self._store.sessions.get(session_id)
        return detached(record) if record else None

    async def rebind(
        self, session_id: str, membership_id: str, expires_at: datetime
    ) -> SessionRecord | None:
        record = self._store.sessions.get(session_id)
        if not record:
            return None
        record.active_membership_id = membership_id
        record.expires_at = expires_at
        return detached(record)

    async def delete(self, session_id: str) -> bool:
        return self._store.sessions.pop(session_id, None) is not None

    async def purge_expired(self, at: datetime) -> int:
        expired = [k for k, r in self._store.sessions.items() if r.expires_at <= at]
        for k in expired:
            del self._store.sessions[k]
        return len(expired)
