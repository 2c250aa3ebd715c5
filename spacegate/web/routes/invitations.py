"""Invitation routes.

Tokens travel in request bodies rather than URLs so they stay out of access
logs.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog
from fastapi import APIRouter, Response
from pydantic import BaseModel

from spacegate.authz.context import ScopeRef
from spacegate.models.database import Invitation
from spacegate.models.domain import invitation_status
from spacegate.types import InvitationReason, InvitationStatus, Role, Space
from spacegate.web.dependencies import EngineDep, TokenDep
from spacegate.web.routes.auth import SessionResponse, session_response, set_session_cookie

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/invitations", tags=["invitations"])


class CreateInvitationRequest(BaseModel):
    email: str
    role: Role
    space: Space
    account_id: str | None = None
    vendor_id: str | None = None
    name: str | None = None
    ttl_seconds: int | None = None


class InvitationOut(BaseModel):
    id: str
    email: str
    name: str | None = None
    org_id: str
    role: str
    space: str
    account_id: str | None = None
    vendor_id: str | None = None
    status: InvitationStatus
    expires_at: datetime
    created_at: datetime

    @classmethod
    def of(cls, invitation: Invitation, now: datetime) -> InvitationOut:
        return cls(
            id=invitation.id,
            email=invitation.email,
            name=invitation.name,
            org_id=invitation.org_id,
            role=invitation.role,
            space=invitation.space,
            account_id=invitation.account_id,
            vendor_id=invitation.vendor_id,
            status=invitation_status(invitation, now),
            expires_at=invitation.expires_at,
            created_at=invitation.created_at,
        )


class CreateInvitationResponse(BaseModel):
    invitation: InvitationOut
    redeem_url: str
    warnings: list[str] = []


class TokenRequest(BaseModel):
    token: str


class AcceptInvitationRequest(BaseModel):
    token: str
    name: str | None = None
    password: str | None = None


class ValidateInvitationResponse(BaseModel):
    valid: bool
    reason: InvitationReason | None = None
    email: str | None = None
    role: str | None = None
    space: str | None = None
    expires_at: datetime | None = None


class AcceptInvitationResponse(BaseModel):
    person_id: str
    membership_id: str
    session: SessionResponse


@router.post("", status_code=201)
async def create_invitation(
    body: CreateInvitationRequest, engine: EngineDep, token: TokenDep
) -> CreateInvitationResponse:
    issued = await engine.issue_invitation(
        body.email,
        body.role,
        body.space,
        ScopeRef(account_id=body.account_id, vendor_id=body.vendor_id),
        timedelta(seconds=body.ttl_seconds) if body.ttl_seconds is not None else None,
        name=body.name,
        inviter_token=token,
    )
    return CreateInvitationResponse(
        invitation=InvitationOut.of(issued.invitation, engine.clock()),
        redeem_url=issued.redeem_url,
        warnings=issued.warnings,
    )


@router.get("")
async def list_invitations(
    engine: EngineDep, token: TokenDep, status: InvitationStatus | None = None
) -> list[InvitationOut]:
    invitations = await engine.list_invitations(token, status)
    now = engine.clock()
    return [InvitationOut.of(i, now) for i in invitations]


@router.post("/validate")
async def validate_invitation(
    body: TokenRequest, engine: EngineDep
) -> ValidateInvitationResponse:
    check = await engine.validate_invitation(body.token)
    # Details are only shown for redeemable tokens.
    if not check.valid or check.invitation is None:
        return ValidateInvitationResponse(valid=False, reason=check.reason)
    return ValidateInvitationResponse(
        valid=True,
        email=check.invitation.email,
        role=check.invitation.role,
        space=check.invitation.space,
        expires_at=check.invitation.expires_at,
    )


@router.post("/accept")
async def accept_invitation(
    body: AcceptInvitationRequest, response: Response, engine: EngineDep
) -> AcceptInvitationResponse:
    redemption = await engine.redeem_invitation(body.token, body.name, body.password)
    set_session_cookie(response, redemption.session)
    return AcceptInvitationResponse(
        person_id=redemption.person.id,
        membership_id=redemption.membership.id,
        session=session_response(redemption.session),
    )


@router.delete("/{invitation_id}")
async def revoke_invitation(
    invitation_id: str, engine: EngineDep, token: TokenDep
) -> InvitationOut:
    invitation = await engine.revoke_invitation(token, invitation_id)
    return InvitationOut.of(invitation, engine.clock())
