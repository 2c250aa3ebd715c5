"""Invitation issuing and single-use redemption."""

from __future__ import annotations

import re
from datetime import timedelta
from typing import TYPE_CHECKING
from urllib.parse import urlencode

import structlog

from spacegate.auth.password import MIN_PASSWORD_LENGTH, hash_password, verify_password
from spacegate.auth.tokens import generate_token, hash_token
from spacegate.authz.context import AccessContext, ScopeRef, check_pairing
from spacegate.exceptions import (
    INVITATION_ERRORS,
    AlreadyRedeemed,
    ForbiddenError,
    InvalidCredentials,
    InvariantError,
    InvitationNotFound,
    NotFoundError,
    NotificationError,
    ValidationError,
)
from spacegate.models.database import Invitation, _utc_now
from spacegate.models.domain import (
    InvitationCheck,
    IssuedInvitation,
    Redemption,
    invitation_status,
)
from spacegate.notifications.base import LogInvitationNotifier
from spacegate.storage.repositories.identity import normalize_email
from spacegate.types import InvitationReason, InvitationStatus, Role, Space

if TYPE_CHECKING:
    from spacegate.notifications.base import InvitationNotifier
    from spacegate.services.registry import Clock
    from spacegate.services.sessions import SessionManager
    from spacegate.storage.interfaces import IdentityRepository, InvitationRepository

logger = structlog.get_logger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class InvitationService:
    """Issues expiring single-use tokens and turns them into memberships.

    Only the SHA-256 of a token is stored. The raw token leaves this class
    exactly once, in the ``IssuedInvitation`` returned by ``issue``.
    """

    def __init__(
        self,
        *,
        identity: IdentityRepository,
        invitations: InvitationRepository,
        sessions: SessionManager,
        notifier: InvitationNotifier | None = None,
        invite_base_url: str = "http://localhost:5000/auth/accept-invite",
        default_ttl: timedelta = timedelta(days=7),
        min_ttl: timedelta = timedelta(minutes=5),
        max_ttl: timedelta = timedelta(days=365),
        client_admin_can_invite: bool = False,
        clock: Clock = _utc_now,
    ) -> None:
        self._identity = identity
        self._invitations = invitations
        self._sessions = sessions
        self._notifier = notifier or LogInvitationNotifier()
        self._invite_base_url = invite_base_url
        self._default_ttl = default_ttl
        self._min_ttl = min_ttl
        self._max_ttl = max_ttl
        self._client_admin_can_invite = client_admin_can_invite
        self._clock = clock

    async def issue(
        self,
        email: str,
        org_id: str,
        role: Role | str,
        space: Space | str,
        scope: ScopeRef | None = None,
        ttl: timedelta | None = None,
        *,
        name: str | None = None,
        inviter: AccessContext | None = None,
    ) -> IssuedInvitation:
        """Create an invitation and hand it to the notifier.

        ``inviter=None`` means administrative provisioning. A delivery
        failure does not undo the invitation; it comes back in ``warnings``.
        """
        email = normalize_email(email)
        if not _EMAIL_RE.match(email):
            msg = f"Malformed email address: {email!r}"
            raise ValidationError(msg)

        scope = scope or ScopeRef.internal()
        try:
            role, space = check_pairing(role, space, scope)
        except InvariantError as exc:
            raise ValidationError(str(exc)) from exc

        ttl = self._default_ttl if ttl is None else ttl
        if not self._min_ttl <= ttl <= self._max_ttl:
            msg = f"Invitation ttl must be between {self._min_ttl} and {self._max_ttl}"
            raise ValidationError(msg)

        self._check_inviter(inviter, org_id, space, scope)
        if await self._identity.get_organization(org_id) is None:
            msg = f"Organization {org_id} not found"
            raise NotFoundError(msg)

        token = generate_token()
        now = self._clock()
        invitation = await self._invitations.insert(
            Invitation(
                token_hash=hash_token(token),
                email=email,
                name=name,
                org_id=org_id,
                role=role.value,
                space=space.value,
                account_id=scope.account_id,
                vendor_id=scope.vendor_id,
                expires_at=now + ttl,
                created_by_id=inviter.person_id if inviter else None,
                created_at=now,
            )
        )
        redeem_url = f"{self._invite_base_url}?{urlencode({'token': token})}"
        logger.info(
            "invitation_issued",
            invitation_id=invitation.id,
            org_id=org_id,
            role=role.value,
            space=space.value,
            expires_at=invitation.expires_at.isoformat(),
        )

        warnings: list[str] = []
        try:
            await self._notifier.send_invitation_message(email, redeem_url, invitation.expires_at)
        except (NotificationError, OSError) as exc:
            logger.warning(
                "invitation_notification_failed", invitation_id=invitation.id, error=str(exc)
            )
            warnings.append(f"Invitation created but the message could not be sent: {exc}")

        return IssuedInvitation(
            invitation=invitation, token=token, redeem_url=redeem_url, warnings=warnings
        )

    async def validate(self, token: str) -> InvitationCheck:
        """Report whether a token is redeemable right now. Read-only."""
        invitation = await self._invitations.get_by_token_hash(hash_token(token)) if token else None
        if invitation is None:
            return InvitationCheck(valid=False, reason=InvitationReason.NOT_FOUND)
        reason = _REASONS.get(invitation_status(invitation, self._clock()))
        return InvitationCheck(valid=reason is None, invitation=invitation, reason=reason)

    async def redeem(
        self,
        token: str,
        display_name: str | None = None,
        password: str | None = None,
    ) -> Redemption:
        """Consume the token, provision person and membership, open a session.

        For a new person ``password`` becomes their credential. When the
        invited email already has an account, ``password`` must be that
        account's current password: holding the token alone never yields a
        session as an existing person, and their credential is left as is.

        Raises the InvitationError matching the reason when the token is not
        redeemable, InvalidCredentials when an existing account is not
        proven, and AlreadyRedeemed when a concurrent redemption won. Every
        failure leaves the token pending unless another redemption took it.
        """
        check = await self.validate(token)
        if not check.valid or check.invitation is None:
            reason = check.reason or InvitationReason.NOT_FOUND
            logger.info("invitation_redeem_rejected", reason=reason.value)
            raise INVITATION_ERRORS[reason]

        existing = await self._identity.get_person_by_email(check.invitation.email)
        password_hash = None
        if existing is not None:
            proven = verify_password(password or "", existing.password_hash)
            if not existing.is_active or not proven:
                logger.info(
                    "invitation_redeem_rejected",
                    reason="existing_account_unverified",
                    invitation_id=check.invitation.id,
                )
                raise InvalidCredentials
        elif password is not None:
            if len(password) < MIN_PASSWORD_LENGTH:
                msg = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
                raise ValidationError(msg)
            password_hash = hash_password(password)

        session_token, grant = self._sessions.grant()
        provisioned = await self._invitations.consume_and_provision(
            hash_token(token),
            self._clock(),
            person_id=existing.id if existing else None,
            display_name=display_name,
            password_hash=password_hash,
            open_session=grant,
        )
        if provisioned is None:
            logger.info("invitation_redeem_lost_race")
            raise AlreadyRedeemed
        if provisioned.session is None:
            msg = "Redemption did not open a session"
            raise InvariantError(msg)

        session = self._sessions.opened(provisioned.session, session_token)
        logger.info(
            "invitation_redeemed",
            invitation_id=provisioned.invitation.id,
            person_id=provisioned.person.id,
            membership_id=provisioned.membership.id,
            person_created=provisioned.person_created,
            membership_created=provisioned.membership_created,
        )
        return Redemption(
            person=provisioned.person,
            membership=provisioned.membership,
            session=session,
            person_created=provisioned.person_created,
            membership_created=provisioned.membership_created,
        )

    async def revoke(self, invitation_id: str, org_id: str) -> Invitation:
        """Revoke a pending invitation. Revoking twice returns the same record."""
        revoked = await self._invitations.revoke(invitation_id, org_id, self._clock())
        if revoked is not None:
            logger.info("invitation_revoked", invitation_id=invitation_id, org_id=org_id)
            return revoked

        existing = await self._invitations.get(invitation_id)
        if existing is None or existing.org_id != org_id:
            raise InvitationNotFound
        if existing.revoked_at is not None:
            return existing
        raise AlreadyRedeemed

    async def list_invitations(
        self, org_id: str, status: InvitationStatus | str | None = None
    ) -> list[Invitation]:
        invitations = await self._invitations.list_for_org(org_id)
        if status is None:
            return invitations
        wanted = InvitationStatus(status)
        now = self._clock()
        return [i for i in invitations if invitation_status(i, now) == wanted]

    def _check_inviter(
        self, inviter: AccessContext | None, org_id: str, space: Space, scope: ScopeRef
    ) -> None:
        if inviter is None:
            return
        if inviter.org_id == org_id:
            if inviter.role == Role.ADMIN and inviter.space == Space.INTERNAL:
                return
            if (
                inviter.role == Role.CLIENT_ADMIN
                and self._client_admin_can_invite
                and space == Space.CLIENT
                and scope.account_id == inviter.scope.account_id
            ):
                return
        logger.warning(
            "invitation_issue_forbidden",
            person_id=inviter.person_id,
            role=inviter.role.value,
            org_id=org_id,
        )
        msg = "You are not allowed to issue this invitation"
        raise ForbiddenError(msg)


_REASONS: dict[InvitationStatus, InvitationReason | None] = {
    InvitationStatus.PENDING: None,
    InvitationStatus.REDEEMED: InvitationReason.ALREADY_CONSUMED,
    InvitationStatus.EXPIRED: InvitationReason.EXPIRED,
    InvitationStatus.REVOKED: InvitationReason.REVOKED,
}
