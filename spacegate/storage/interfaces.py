"""Repository contracts the engine depends on.

Two implementations ship with the package: ``Database*Repository`` (SQLModel,
PostgreSQL/SQLite) and ``InMemory*Repository`` (dev/testing, one shared lock).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from datetime import datetime

    from spacegate.models.database import (
        Invitation,
        Membership,
        Organization,
        Person,
        ProjectAssignment,
        SessionRecord,
    )


@dataclass(frozen=True, slots=True)
class Provisioned:
    """Outcome of a successful conditional invitation redemption."""

    invitation: Invitation
    person: Person
    membership: Membership
    person_created: bool
    membership_created: bool
    session: SessionRecord | None = None


@dataclass(frozen=True, slots=True)
class SessionGrant:
    """A session row to open in the same transaction as a redemption."""

    session_id: str
    expires_at: datetime


class IdentityRepository(Protocol):
    async def create_organization(self, name: str, slug: str) -> Organization: ...

    async def get_organization(self, org_id: str) -> Organization | None: ...

    async def get_organization_by_slug(self, slug: str) -> Organization | None: ...

    async def create_person(
        self, email: str, name: str = "", password_hash: str | None = None
    ) -> Person: ...

    async def find_or_create_person(self, email: str, name: str = "") -> Person: ...

    async def get_person(self, person_id: str) -> Person | None: ...

    async def get_person_by_email(self, email: str) -> Person | None: ...

    async def set_password(self, person_id: str, password_hash: str) -> None: ...

    async def update_profile(
        self, person_id: str, *, name: str | None = None, avatar: str | None = None
    ) -> Person | None: ...


class MembershipRepository(Protocol):
    async def insert(self, membership: Membership) -> Membership:
        """Insert; raises ConflictError when the exact active tuple exists."""
        ...

    async def get(self, membership_id: str) -> Membership | None: ...

    async def list_active_for_person(self, person_id: str) -> list[Membership]: ...

    async def deactivate(self, membership_id: str, at: datetime) -> bool:
        """Return True only when the row flipped from active to inactive."""
        ...


class InvitationRepository(Protocol):
    async def insert(self, invitation: Invitation) -> Invitation: ...

    async def get(self, invitation_id: str) -> Invitation | None: ...

    async def get_by_token_hash(self, token_hash: str) -> Invitation | None: ...

    async def list_for_org(self, org_id: str) -> list[Invitation]: ...

    async def revoke(self, invitation_id: str, org_id: str, at: datetime) -> Invitation | None: ...

    async def consume_and_provision(
        self,
        token_hash: str,
        at: datetime,
        *,
        person_id: str | None = None,
        display_name: str | None = None,
        password_hash: str | None = None,
        open_session: SessionGrant | None = None,
    ) -> Provisioned | None:
        """Consume a pending token and provision person + membership atomically.

        ``person_id`` is the account the caller verified for the invited
        email, or None when a new person must be created. ``password_hash``
        only ever applies to that new person. When the store disagrees this
        raises ConflictError and leaves the invitation pending. ``open_session``
        is opened on the provisioned membership within the same step.

        Returns None when no pending, unexpired, unrevoked row matched.
        """
        ...


class SessionRepository(Protocol):
    async def insert(self, record: SessionRecord) -> SessionRecord: ...

    async def get(self, session_id: str) -> SessionRecord | None: ...

    async def rebind(
        self, session_id: str, membership_id: str, expires_at: datetime
    ) -> SessionRecord | None: ...

    async def delete(self, session_id: str) -> bool: ...

    async def purge_expired(self, at: datetime) -> int: ...


class AssignmentRepository(Protocol):
    async def assign(
        self,
        org_id: str,
        vendor_id: str,
        project_id: str,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
    ) -> ProjectAssignment: ...

    async def revoke(self, assignment_id: str, at: datetime) -> bool: ...

    async def list_active_project_ids(
        self, org_id: str, vendor_id: str, at: datetime
    ) -> frozenset[str]: ...
