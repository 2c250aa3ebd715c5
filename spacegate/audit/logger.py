"""Audit trail: insert-only record of authentication and provisioning events.

Uses its own DB session so entries survive a caller's rollback. Details are
sanitized (secret-looking keys dropped, 10KB max).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from spacegate.models.database import AuditLog

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

_SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "password_hash",
        "secret",
        "token",
        "redeem_url",
        "authorization",
        "cookie",
        "session",
    }
)

_MAX_DETAILS_BYTES = 10_240


def _sanitize_details(details: dict[str, Any]) -> str:
    sanitized = {k: v for k, v in details.items() if k.lower() not in _SENSITIVE_FIELDS}
    encoded = json.dumps(sanitized, default=str)
    if len(encoded) > _MAX_DETAILS_BYTES:
        encoded = encoded[:_MAX_DETAILS_BYTES]
    return encoded


class AuditSink(Protocol):
    async def log(
        self,
        *,
        org_id: str,
        person_id: str,
        action: str,
        resource_type: str = "",
        resource_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None: ...

    async def list_for_org(self, org_id: str, limit: int = 100) -> list[AuditLog]: ...


class AuditLogger:
    """Database audit sink."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def log(
        self,
        *,
        org_id: str,
        person_id: str,
        action: str,
        resource_type: str = "",
        resource_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        entry = AuditLog(
            org_id=org_id,
            person_id=person_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details_json=_sanitize_details(details or {}),
        )
        try:
            async with AsyncSession(self._engine) as session:
                session.add(entry)
                await session.commit()
        except Exception:
            # Audit must never break the request; log and continue
            logger.exception("audit_log_failed", action=action, org_id=org_id)

    async def list_for_org(self, org_id: str, limit: int = 100) -> list[AuditLog]:
        async with AsyncSession(self._engine) as session:
            stmt = (
                select(AuditLog)
                .where(col(AuditLog.org_id) == org_id)
                .order_by(col(AuditLog.created_at).desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())


class InMemoryAuditLogger:
    """Keeps entries in a list; used with the in-memory store."""

    def __init__(self) -> None:
        self.entries: list[AuditLog] = []

    async def log(
        self,
        *,
        org_id: str,
        person_id: str,
        action: str,
        resource_type: str = "",
        resource_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.entries.append(
            AuditLog(
                org_id=org_id,
                person_id=person_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                details_json=_sanitize_details(details or {}),
            )
        )

    async def list_for_org(self, org_id: str, limit: int = 100) -> list[AuditLog]:
        rows = [e for e in self.entries if e.org_id == org_id]
        rows.sort(key=lambda e: e.created_at, reverse=True)
        return rows[:limit]
