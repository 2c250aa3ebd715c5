"""AccessEngine: the inbound boundary of SpaceGate.

Wires the registry, invitation service, session manager and gate over one
set of repositories, and is what the transport layer talks to.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from spacegate.audit.logger import AuditLogger, AuditSink, InMemoryAuditLogger
from spacegate.auth.tokens import TokenSigner
from spacegate.authz.gate import AuthorizationGate, Decision
from spacegate.authz.permissions import DEFAULT_POLICY, PermissionPolicy
from spacegate.config.settings import Settings, get_settings
from spacegate.exceptions import ForbiddenError, ValidationError
from spacegate.models.database import _utc_now
from spacegate.notifications.base import LogInvitationNotifier
from spacegate.services.invitations import InvitationService
from spacegate.services.registry import MembershipRegistry
from spacegate.services.sessions import SessionManager
from spacegate.types import Role, Space

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from spacegate.authz.context import AccessContext, ScopeRef, Target
    from spacegate.models.database import AuditLog, Invitation
    from spacegate.models.domain import (
        AvailableSpace,
        InvitationCheck,
        IssuedInvitation,
        Redemption,
        Session,
    )
    from spacegate.notifications.base import InvitationNotifier
    from spacegate.services.registry import Clock
    from spacegate.storage.interfaces import (
        AssignmentRepository,
        IdentityRepository,
        InvitationRepository,
        MembershipRepository,
        SessionRepository,
    )
    from spacegate.storage.memory import InMemoryStore
    from spacegate.types import InvitationStatus, Operation

logger = structlog.get_logger(__name__)


@dataclass
class Repositories:
    identity: IdentityRepository
    memberships: MembershipRepository
    invitations: InvitationRepository
    sessions: SessionRepository
    assignments: AssignmentRepository


class AccessEngine:
    def __init__(
        self,
        repos: Repositories,
        *,
        signer: TokenSigner,
        gate: AuthorizationGate | None = None,
        notifier: InvitationNotifier | None = None,
        audit: AuditSink | None = None,
        session_ttl: timedelta = timedelta(days=7),
        invitation_default_ttl: timedelta = timedelta(days=7),
        invitation_min_ttl: timedelta = timedelta(minutes=5),
        invitation_max_ttl: timedelta = timedelta(days=365),
        invite_base_url: str = "http://localhost:5000/auth/accept-invite",
        client_admin_can_invite: bool = False,
        clock: Clock = _utc_now,
    ) -> None:
        self.repos = repos
        self.clock = clock
        self.gate = gate or AuthorizationGate()
        self.audit = audit or InMemoryAuditLogger()
        self.registry = MembershipRegistry(repos.memberships, clock=clock)
        self.sessions = SessionManager(
            identity=repos.identity,
            memberships=repos.memberships,
            sessions=repos.sessions,
            assignments=repos.assignments,
            registry=self.registry,
            signer=signer,
            ttl=session_ttl,
            clock=clock,
        )
        self.invitations = InvitationService(
            identity=repos.identity,
            invitations=repos.invitations,
            sessions=self.sessions,
            notifier=notifier,
            invite_base_url=invite_base_url,
            default_ttl=invitation_default_ttl,
            min_ttl=invitation_min_ttl,
            max_ttl=invitation_max_ttl,
            client_admin_can_invite=client_admin_can_invite,
            clock=clock,
        )

    # -- sessions ------------------------------------------------------------

    async def authenticate(self, email: str, password: str) -> Session:
        session = await self.sessions.authenticate(email, password)
        membership = await self.registry.get_membership(session.active_membership_id)
        await self.audit.log(
            org_id=membership.org_id,
            person_id=session.person_id,
            action="auth.login",
            resource_type="membership",
            resource_id=membership.id,
        )
        return session

    async def logout(self, token: str) -> None:
        await self.sessions.invalidate(token)

    async def current_context(self, token: str) -> AccessContext:
        return await self.sessions.current_context(token)

    async def switch_space(self, token: str, membership_id: str) -> Session:
        session = await self.sessions.switch_space(token, membership_id)
        membership = await self.registry.get_membership(membership_id)
        await self.audit.log(
            org_id=membership.org_id,
            person_id=session.person_id,
            action="auth.switch_space",
            resource_type="membership",
            resource_id=membership_id,
            details={"space": membership.space, "role": membership.role},
        )
        return session

    async def available_spaces(self, token: str) -> list[AvailableSpace]:
        return await self.sessions.available_spaces(token)

    # -- authorization -------------------------------------------------------

    async def authorize(
        self, token: str, operation: Operation | str, target: Target
    ) -> Decision:
        """Resolve the live context for ``token`` and ask the gate.

        Raises SessionExpired or MembershipRevoked when the session is no
        longer usable; a denial is returned, not raised.
        """
        context = await self.sessions.current_context(token)
        decision = self.gate.authorize(context, operation, target)
        if not decision.allow:
            logger.info(
                "authorization_denied",
                person_id=context.person_id,
                membership_id=context.membership_id,
                space=context.space.value,
                operation=str(operation),
                kind=str(target.kind) if target.kind else None,
                reason=decision.reason,
            )
        return decision

    # -- invitations ---------------------------------------------------------

    async def issue_invitation(
        self,
        email: str,
        role: Role | str,
        space: Space | str,
        scope: ScopeRef | None = None,
        ttl: timedelta | None = None,
        *,
        org_id: str | None = None,
        name: str | None = None,
        inviter_token: str | None = None,
    ) -> IssuedInvitation:
        """Issue on behalf of the session behind ``inviter_token``.

        Without a token this is administrative provisioning and ``org_id``
        is required.
        """
        inviter = await self.sessions.current_context(inviter_token) if inviter_token else None
        org_id = org_id or (inviter.org_id if inviter else None)
        if not org_id:
            msg = "org_id is required for administrative invitations"
            raise ValidationError(msg)
        issued = await self.invitations.issue(
            email, org_id, role, space, scope, ttl, name=name, inviter=inviter
        )
        await self.audit.log(
            org_id=org_id,
            person_id=inviter.person_id if inviter else "",
            action="invitation.issued",
            resource_type="invitation",
            resource_id=issued.invitation.id,
            details={"email": issued.invitation.email, "role": issued.invitation.role},
        )
        return issued

    async def validate_invitation(self, token: str) -> InvitationCheck:
        return await self.invitations.validate(token)

    async def redeem_invitation(
        self, token: str, display_name: str | None = None, password: str | None = None
    ) -> Redemption:
        redemption = await self.invitations.redeem(token, display_name, password)
        await self.audit.log(
            org_id=redemption.membership.org_id,
            person_id=redemption.person.id,
            action="invitation.redeemed",
            resource_type="membership",
            resource_id=redemption.membership.id,
            details={"person_created": redemption.person_created},
        )
        return redemption

    async def revoke_invitation(self, inviter_token: str, invitation_id: str) -> Invitation:
        context = await self._invitation_manager(inviter_token)
        invitation = await self.invitations.revoke(invitation_id, context.org_id)
        await self.audit.log(
            org_id=context.org_id,
            person_id=context.person_id,
            action="invitation.revoked",
            resource_type="invitation",
            resource_id=invitation_id,
        )
        return invitation

    async def list_invitations(
        self, inviter_token: str, status: InvitationStatus | str | None = None
    ) -> list[Invitation]:
        context = await self._invitation_manager(inviter_token)
        return await self.invitations.list_invitations(context.org_id, status)

    async def _invitation_manager(self, token: str) -> AccessContext:
        context = await self.sessions.current_context(token)
        if context.role != Role.ADMIN or context.space != Space.INTERNAL:
            msg = "Only internal admins can manage invitations"
            raise ForbiddenError(msg)
        return context

    async def audit_entries(self, token: str, limit: int = 100) -> list[AuditLog]:
        context = await self._invitation_manager(token)
        return await self.audit.list_for_org(context.org_id, limit)


def memory_repositories(store: InMemoryStore | None = None) -> Repositories:
    from spacegate.storage.memory import InMemoryStore
    from spacegate.storage.repositories.assignments import InMemoryAssignmentRepository
    from spacegate.storage.repositories.identity import InMemoryIdentityRepository
    from spacegate.storage.repositories.invitations import InMemoryInvitationRepository
    from spacegate.storage.repositories.memberships import InMemoryMembershipRepository
    from spacegate.storage.repositories.sessions import InMemorySessionRepository

    store = store or InMemoryStore()
    return Repositories(
        identity=InMemoryIdentityRepository(store),
        memberships=InMemoryMembershipRepository(store),
        invitations=InMemoryInvitationRepository(store),
        sessions=InMemorySessionRepository(store),
        assignments=InMemoryAssignmentRepository(store),
    )


def database_repositories(engine: AsyncEngine) -> Repositories:
    from spacegate.storage.repositories.assignments import DatabaseAssignmentRepository
    from spacegate.storage.repositories.identity import DatabaseIdentityRepository
    from spacegate.storage.repositories.invitations import DatabaseInvitationRepository
    from spacegate.storage.repositories.memberships import DatabaseMembershipRepository
    from spacegate.storage.repositories.sessions import DatabaseSessionRepository

    return Repositories(
        identity=DatabaseIdentityRepository(engine),
        memberships=DatabaseMembershipRepository(engine),
        invitations=DatabaseInvitationRepository(engine),
        sessions=DatabaseSessionRepository(engine),
        assignments=DatabaseAssignmentRepository(engine),
    )


def _create_notifier(settings: Settings) -> InvitationNotifier:
    if settings.invitation_webhook_url:
        from spacegate.notifications.webhook import WebhookConfig, WebhookInvitationNotifier

        return WebhookInvitationNotifier(
            WebhookConfig(
                url=settings.invitation_webhook_url,
                secret=settings.invitation_webhook_secret,
            )
        )
    return LogInvitationNotifier()


def build_engine(
    settings: Settings | None = None,
    *,
    db_engine: AsyncEngine | None = None,
    store: InMemoryStore | None = None,
    policy: PermissionPolicy = DEFAULT_POLICY,
    notifier: InvitationNotifier | None = None,
    clock: Clock = _utc_now,
) -> AccessEngine:
    """Build an AccessEngine from settings.

    ``USE_DATABASE`` (or an explicit ``db_engine``) selects the SQL
    repositories; otherwise everything lives in one in-memory store.
    """
    settings = settings or get_settings()
    audit: AuditSink
    if db_engine is not None or settings.use_database:
        if db_engine is None:
            from spacegate.storage.database import get_engine

            db_engine = get_engine()
        repos = database_repositories(db_engine)
        audit = AuditLogger(db_engine)
    else:
        repos = memory_repositories(store)
        audit = InMemoryAuditLogger()

    logger.info("access_engine_built", use_database=db_engine is not None)
    return AccessEngine(
        repos,
        signer=TokenSigner(settings.secret_key),
        gate=AuthorizationGate(
            policy,
            vendor_profile_requires_assignment=settings.vendor_profile_requires_assignment,
        ),
        notifier=notifier or _create_notifier(settings),
        audit=audit,
        session_ttl=timedelta(seconds=settings.session_ttl_seconds),
        invitation_default_ttl=timedelta(seconds=settings.invitation_default_ttl_seconds),
        invitation_min_ttl=timedelta(seconds=settings.invitation_min_ttl_seconds),
        invitation_max_ttl=timedelta(seconds=settings.invitation_max_ttl_seconds),
        invite_base_url=settings.invite_base_url,
        client_admin_can_invite=settings.client_admin_can_invite,
        clock=clock,
    )
