"""Session manager: login, per-request context resolution, space switching."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from spacegate.auth.password import verify_password
from spacegate.authz.context import AccessContext
from spacegate.exceptions import (
    ForbiddenError,
    InvalidCredentials,
    MembershipRevoked,
    SessionExpired,
)
from spacegate.models.database import Membership, SessionRecord, _utc_now
from spacegate.models.domain import AvailableSpace, Session
from spacegate.storage.interfaces import SessionGrant
from spacegate.storage.repositories.identity import normalize_email
from spacegate.types import Role, Space

if TYPE_CHECKING:
    from spacegate.auth.tokens import TokenSigner
    from spacegate.services.registry import Clock, MembershipRegistry
    from spacegate.storage.interfaces import (
        AssignmentRepository,
        IdentityRepository,
        MembershipRepository,
        SessionRepository,
    )

logger = structlog.get_logger(__name__)


def _to_session(record: SessionRecord, token: str) -> Session:
    return Session(
        session_id=record.id,
        token=token,
        person_id=record.person_id,
        active_membership_id=record.active_membership_id,
        issued_at=record.issued_at,
        expires_at=record.expires_at,
    )


class SessionManager:
    """Server-side sessions bound to exactly one membership at a time.

    Every call re-reads the session and its membership from the store, so a
    deactivated membership or revoked vendor assignment takes effect on the
    very next request.
    """

    def __init__(
        self,
        *,
        identity: IdentityRepository,
        memberships: MembershipRepository,
        sessions: SessionRepository,
        assignments: AssignmentRepository,
        registry: MembershipRegistry,
        signer: TokenSigner,
        ttl: timedelta = timedelta(days=7),
        clock: Clock = _utc_now,
    ) -> None:
        self._identity = identity
        self._memberships = memberships
        self._sessions = sessions
        self._assignments = assignments
        self._registry = registry
        self._signer = signer
        self._ttl = ttl
        self._clock = clock

    async def authenticate(self, email: str, password: str) -> Session:
        """Verify credentials and open a session on the default membership.

        Every failure raises the same InvalidCredentials.
        """
        person = await self._identity.get_person_by_email(normalize_email(email))
        # Always run bcrypt so unknown emails cost the same as wrong passwords.
        password_ok = verify_password(password, person.password_hash if person else None)
        if person is None or not person.is_active or not password_ok:
            logger.info("login_failed")
            raise InvalidCredentials

        membership = await self._registry.resolve_default_membership(person.id)
        if membership is None:
            logger.info("login_failed", person_id=person.id, detail="no_active_membership")
            raise InvalidCredentials

        session = await self.create_session(person.id, membership)
        logger.info("login_success", person_id=person.id, membership_id=membership.id)
        return session

    async def create_session(self, person_id: str, membership: Membership) -> Session:
        if membership.person_id != person_id or not membership.is_active:
            msg = "Membership is not available to this person"
            raise ForbiddenError(msg)
        token, session_id = self._signer.issue()
        now = self._clock()
        record = await self._sessions.insert(
            SessionRecord(
                id=session_id,
                person_id=person_id,
                active_membership_id=membership.id,
                issued_at=now,
                expires_at=now + self._ttl,
            )
        )
        return self.opened(record, token)

    def grant(self) -> tuple[str, SessionGrant]:
        """Mint a token plus the session row a redemption opens atomically."""
        token, session_id = self._signer.issue()
        return token, SessionGrant(session_id=session_id, expires_at=self._clock() + self._ttl)

    def opened(self, record: SessionRecord, token: str) -> Session:
        logger.info(
            "session_created",
            session_id=record.id[:12],
            person_id=record.person_id,
            membership_id=record.active_membership_id,
        )
        return _to_session(record, token)

    async def current_context(self, token: str) -> AccessContext:
        """Resolve the live membership behind a session token.

        Raises SessionExpired for unknown, tampered or expired tokens and
        MembershipRevoked when the bound membership is no longer usable.
        """
        record, now = await self._live_record(token)
        membership = await self._memberships.get(record.active_membership_id)
        if (
            membership is None
            or not membership.is_active
            or membership.person_id != record.person_id
        ):
            logger.info(
                "membership_revoked_on_session",
                session_id=record.id[:12],
                membership_id=record.active_membership_id,
            )
            msg = "The active membership for this session has been revoked"
            raise MembershipRevoked(msg)

        person = await self._identity.get_person(record.person_id)
        if person is None or not person.is_active:
            msg = "Session owner is no longer active"
            raise SessionExpired(msg)

        active_projects: frozenset[str] = frozenset()
        if membership.space == Space.VENDOR and membership.vendor_id:
            active_projects = await self._assignments.list_active_project_ids(
                membership.org_id, membership.vendor_id, now
            )
        return AccessContext.from_membership(
            membership,
            email=person.email,
            session_id=record.id,
            active_project_ids=active_projects,
        )

    async def switch_space(self, token: str, membership_id: str) -> Session:
        """Rebind the session to another of the caller's memberships.

        Ownership is checked against the store on every call. Unknown,
        inactive and foreign memberships all raise the same ForbiddenError.
        """
        record, now = await self._live_record(token)
        target = await self._memberships.get(membership_id)
        if target is None or not target.is_active or target.person_id != record.person_id:
            logger.warning(
                "space_switch_forbidden",
                session_id=record.id[:12],
                person_id=record.person_id,
                membership_id=membership_id,
            )
            msg = "Membership is not available to this session"
            raise ForbiddenError(msg)

        updated = await self._sessions.rebind(record.id, target.id, now + self._ttl)
        if updated is None:
            msg = "Session no longer exists"
            raise SessionExpired(msg)
        logger.info(
            "space_switched",
            session_id=record.id[:12],
            person_id=record.person_id,
            membership_id=target.id,
            space=target.space,
        )
        return _to_session(updated, token)

    async def invalidate(self, token: str) -> None:
        """Logout. Unknown or already-invalidated tokens are a no-op."""
        session_id = self._signer.verify(token)
        if session_id is None:
            return
        if await self._sessions.delete(session_id):
            logger.info("session_invalidated", session_id=session_id[:12])

    async def available_spaces(self, token: str) -> list[AvailableSpace]:
        record, _ = await self._live_record(token)
        memberships = await self._memberships.list_active_for_person(record.person_id)
        return [
            AvailableSpace(
                membership_id=m.id,
                org_id=m.org_id,
                role=Role(m.role),
                space=Space(m.space),
                account_id=m.account_id,
                vendor_id=m.vendor_id,
                is_current=m.id == record.active_membership_id,
            )
            for m in sorted(memberships, key=lambda m: (m.created_at, m.id))
        ]

    async def purge_expired(self) -> int:
        """Delete expired session records. Not needed for correctness."""
        return await self._sessions.purge_expired(self._clock())

    async def _live_record(self, token: str) -> tuple[SessionRecord, datetime]:
        session_id = self._signer.verify(token)
        if session_id is None:
            msg = "Session token is invalid"
            raise SessionExpired(msg)
        record = await self._sessions.get(session_id)
        now = self._clock()
        if record is None or record.expires_at <= now:
            msg = "Session has expired"
            raise SessionExpired(msg)
        return record, now
