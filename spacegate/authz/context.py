"""Scope references, access contexts and authorization targets."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from spacegate.exceptions import InvariantError
from spacegate.types import RecordKind, Role, Space, space_for

if TYPE_CHECKING:
    from collections.abc import Iterable

    from spacegate.models.database import Invitation, Membership


@dataclass(frozen=True, slots=True)
class ScopeRef:
    """Narrows visibility within a space.

    ``active_project_ids`` is derived per request for vendor scopes and is
    never persisted; it does not take part in equality.
    """

    account_id: str | None = None
    vendor_id: str | None = None
    active_project_ids: frozenset[str] = field(default=frozenset(), compare=False)

    @classmethod
    def internal(cls) -> ScopeRef:
        return cls()

    @classmethod
    def client(cls, account_id: str) -> ScopeRef:
        return cls(account_id=account_id)

    @classmethod
    def vendor(cls, vendor_id: str) -> ScopeRef:
        return cls(vendor_id=vendor_id)

    @classmethod
    def of(cls, row: Membership | Invitation) -> ScopeRef:
        return cls(account_id=row.account_id, vendor_id=row.vendor_id)

    @property
    def key(self) -> str:
        """Canonical string form used by the uniqueness constraint."""
        if self.account_id:
            return f"account:{self.account_id}"
        if self.vendor_id:
            return f"vendor:{self.vendor_id}"
        return ""

    def with_active_projects(self, project_ids: Iterable[str]) -> ScopeRef:
        return replace(self, active_project_ids=frozenset(project_ids))

    def check_for(self, space: Space) -> None:
        """Raise InvariantError unless this scope has exactly the marker the space needs."""
        if space == Space.INTERNAL:
            ok = not self.account_id and not self.vendor_id
        elif space == Space.CLIENT:
            ok = bool(self.account_id) and not self.vendor_id
        else:
            ok = bool(self.vendor_id) and not self.account_id
        if not ok:
            msg = f"Scope {self.key or '<none>'} does not fit the {space.value} space"
            raise InvariantError(msg)


def check_pairing(role: Role | str, space: Space | str, scope: ScopeRef) -> tuple[Role, Space]:
    """Validate the role/space/scope triple and return the coerced enums."""
    try:
        role = Role(role)
        space = Space(space)
    except ValueError as exc:
        raise InvariantError(str(exc)) from exc
    if space_for(role) is not space:
        msg = f"Role {role.value} cannot be held in the {space.value} space"
        raise InvariantError(msg)
    scope.check_for(space)
    return role, space


@dataclass(frozen=True, slots=True)
class AccessContext:
    """Immutable view of a session's live membership, resolved per request."""

    person_id: str
    email: str
    membership_id: str
    org_id: str
    role: Role
    space: Space
    scope: ScopeRef
    session_id: str = ""

    @classmethod
    def from_membership(
        cls,
        membership: Membership,
        *,
        email: str,
        session_id: str = "",
        active_project_ids: Iterable[str] = (),
    ) -> AccessContext:
        scope = ScopeRef.of(membership)
        if membership.space == Space.VENDOR:
            scope = scope.with_active_projects(active_project_ids)
        return cls(
            person_id=membership.person_id,
            email=email,
            membership_id=membership.id,
            org_id=membership.org_id,
            role=Role(membership.role),
            space=Space(membership.space),
            scope=scope,
            session_id=session_id,
        )


@dataclass(frozen=True, slots=True)
class Target:
    """Tenancy markers of the record an operation touches."""

    org_id: str | None
    kind: RecordKind | str | None = None
    account_id: str | None = None
    vendor_id: str | None = None
    project_id: str | None = None
