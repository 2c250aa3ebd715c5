"""Vendor project assignments, resolved fresh on every authorization call."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import or_, update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from spacegate.models.database import ProjectAssignment, _utc_now
from spacegate.storage.database import store_errors
from spacegate.storage.memory import detached

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from spacegate.storage.memory import InMemoryStore

logger = structlog.get_logger(__name__)


def is_active(assignment: ProjectAssignment, at: datetime) -> bool:
    return (
        assignment.revoked_at is None
        and assignment.starts_at <= at
        and (assignment.ends_at is None or at < assignment.ends_at)
    )


class DatabaseAssignmentRepository:
    """PostgreSQL-backed assignment store."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def assign(
        self,
        org_id: str,
        vendor_id: str,
        project_id: str,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
    ) -> ProjectAssignment:
        async with store_errors("assignments.assign"), AsyncSession(self._engine) as session:
            assignment = ProjectAssignment(
                org_id=org_id,
                vendor_id=vendor_id,
                project_id=project_id,
                starts_at=starts_at or _utc_now(),
                ends_at=ends_at,
            )
            session.add(assignment)
            await session.commit()
            await session.refresh(assignment)
            logger.info(
                "project_assigned", vendor_id=vendor_id, project_id=project_id, org_id=org_id
            )
            return assignment

    async def revoke(self, assignment_id: str, at: datetime) -> bool:
        async with store_errors("assignments.revoke"), AsyncSession(self._engine) as session:
            stmt = (
                update(ProjectAssignment)
                .where(
                    col(ProjectAssignment.id) == assignment_id,
                    col(ProjectAssignment.revoked_at).is_(None),
                )
                .values(revoked_at=at)
            )
            result = await session.execute(stmt)
            await session.commit()
            return bool(result.rowcount)

    async def list_active_project_ids(
        self, org_id: str, vendor_id: str, at: datetime
    ) -> frozenset[str]:
        async with store_errors("assignments.list"), AsyncSession(self._engine) as session:
            stmt = (
                select(ProjectAssignment.project_id)
                .where(
                    col(ProjectAssignment.org_id) == org_id,
                    col(ProjectAssignment.vendor_id) == vendor_id,
                    col(ProjectAssignment.revoked_at).is_(None),
                    col(ProjectAssignment.starts_at) <= at,
                    or_(
                        col(ProjectAssignment.ends_at).is_(None),
                        col(ProjectAssignment.ends_at) > at,
                    ),
                )
                .distinct()
            )
            result = await session.execute(stmt)
            return frozenset(result.scalars().all())


class InMemoryAssignmentRepository:
    """In-memory fallback for dev/testing without a database."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def assign(
        self,
        org_id: str,
        vendor_id: str,
        project_id: str,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
    ) -> ProjectAssignment:
        assignment = ProjectAssignment(
            org_id=org_id,
            vendor_id=vendor_id,
            project_id=project_id,
            starts_at=starts_at or _utc_now(),
            ends_at=ends_at,
        )
        self._store.assignments[assignment.id] = assignment
        return detached(assignment)

    async def revoke(self, assignment_id: str, at: datetime) -> bool:
        assignment = self._store.assignments.get(assignment_id)
        if not assignment or assignment.revoked_at is not None:
            return False
        assignment.revoked_at = at
        return True

    async def list_active_project_ids(
        self, org_id: str, vendor_id: str, at: datetime
    ) -> frozenset[str]:
        return frozenset(
            a.project_id
            for a in self._store.assignments.values()
            if a.org_id == org_id and a.vendor_id == vendor_id and is_active(a, at)
        )
