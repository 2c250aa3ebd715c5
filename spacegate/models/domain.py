"""Inter-module data contracts returned by the services (not persisted directly)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from spacegate.models.database import Invitation, Membership, Person
from spacegate.types import InvitationReason, InvitationStatus, Role, Space


class Session(BaseModel):
    """A live session. ``token`` is the bearer credential; only its hash is stored."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    token: str
    person_id: str
    active_membership_id: str
    issued_at: datetime
    expires_at: datetime


class AvailableSpace(BaseModel):
    membership_id: str
    org_id: str
    role: Role
    space: Space
    account_id: str | None = None
    vendor_id: str | None = None
    is_current: bool = False


class IssuedInvitation(BaseModel):
    invitation: Invitation
    token: str  # raw token, returned exactly once
    redeem_url: str
    warnings: list[str] = []


class InvitationCheck(BaseModel):
    valid: bool
    invitation: Invitation | None = None
    reason: InvitationReason | None = None


class Redemption(BaseModel):
    person: Person
    membership: Membership
    session: Session
    person_created: bool = False
    membership_created: bool = True


def invitation_status(invitation: Invitation, at: datetime) -> InvitationStatus:
    if invitation.revoked_at is not None:
        return InvitationStatus.REVOKED
    if invitation.consumed_at is not None:
        return InvitationStatus.REDEEMED
    if at >= invitation.expires_at:
        return InvitationStatus.EXPIRED
    return InvitationStatus.PENDING
