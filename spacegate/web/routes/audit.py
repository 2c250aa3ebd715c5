"""Audit log query route (internal admins only)."""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Query

from spacegate.web.dependencies import EngineDep, TokenDep

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("")
async def list_audit_logs(
    engine: EngineDep,
    token: TokenDep,
    action: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
) -> list[dict[str, Any]]:
    """Most recent audit entries for the caller's org."""
    entries = await engine.audit_entries(token, limit=limit)
    return [
        {
            "id": e.id,
            "org_id": e.org_id,
            "person_id": e.person_id,
            "action": e.action,
            "resource_type": e.resource_type,
            "resource_id": e.resource_id,
            "details": json.loads(e.details_json or "{}"),
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
        if action is None or e.action == action
    ]
