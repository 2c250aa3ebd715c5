"""Authorization check route for data-access collaborators.

A service that owns records posts the caller's session token together with
the record's tenancy markers and gets back the decision and the predicate to
AND into its query.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from spacegate.authz.context import Target
from spacegate.types import Operation, RecordKind
from spacegate.web.dependencies import ContextDep, EngineDep, TokenDep

router = APIRouter(prefix="/api/authz", tags=["authz"])


class AuthorizeRequest(BaseModel):
    operation: Operation
    org_id: str
    kind: RecordKind | None = None
    account_id: str | None = None
    vendor_id: str | None = None
    project_id: str | None = None


class AuthorizeResponse(BaseModel):
    allow: bool
    reason: str | None = None
    predicate: list[dict[str, Any]] | None = None


@router.post("/check")
async def check(
    body: AuthorizeRequest, engine: EngineDep, token: TokenDep
) -> AuthorizeResponse:
    decision = await engine.authorize(
        token,
        body.operation,
        Target(
            org_id=body.org_id,
            kind=body.kind,
            account_id=body.account_id,
            vendor_id=body.vendor_id,
            project_id=body.project_id,
        ),
    )
    return AuthorizeResponse(
        allow=decision.allow,
        reason=decision.reason,
        predicate=decision.predicate.to_dict() if decision.predicate else None,
    )


@router.get("/permissions")
async def permissions(context: ContextDep, engine: EngineDep) -> dict[str, list[str]]:
    """Operations the caller's active role may perform, per record kind.

    This is the role-level allow-list only; record tenancy is decided by
    ``/check``.
    """
    policy = engine.gate.policy
    return {
        kind.value: sorted(op.value for op in policy.allowed_operations(context.role, kind))
        for kind in RecordKind
        if policy.can_access(context.role, kind)
    }
