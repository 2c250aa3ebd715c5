"""Membership registry: who holds which role, in which space, with which scope."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from spacegate.authz.context import ScopeRef, check_pairing
from spacegate.exceptions import NotFoundError
from spacegate.models.database import Membership, _utc_now
from spacegate.types import Role, Space

if TYPE_CHECKING:
    from spacegate.storage.interfaces import MembershipRepository

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


class MembershipRegistry:
    def __init__(self, memberships: MembershipRepository, clock: Clock = _utc_now) -> None:
        self._memberships = memberships
        self._clock = clock

    async def list_memberships(self, person_id: str) -> list[Membership]:
        """Return the person's active memberships."""
        return await self._memberships.list_active_for_person(person_id)

    async def get_membership(self, membership_id: str) -> Membership:
        membership = await self._memberships.get(membership_id)
        if membership is None:
            msg = f"Membership {membership_id} not found"
            raise NotFoundError(msg)
        return membership

    async def create_membership(
        self,
        person_id: str,
        org_id: str,
        role: Role | str,
        space: Space | str,
        scope: ScopeRef | None = None,
    ) -> Membership:
        """Grant a membership.

        Raises InvariantError when role, space and scope do not fit together,
        ConflictError when the person already holds the exact active tuple.
        """
        scope = scope or ScopeRef.internal()
        role, space = check_pairing(role, space, scope)
        membership = Membership(
            person_id=person_id,
            org_id=org_id,
            role=role.value,
            space=space.value,
            account_id=scope.account_id,
            vendor_id=scope.vendor_id,
            scope_key=scope.key,
        )
        created = await self._memberships.insert(membership)
        logger.info(
            "membership_created",
            membership_id=created.id,
            person_id=person_id,
            org_id=org_id,
            role=role.value,
            space=space.value,
        )
        return created

    async def deactivate_membership(self, membership_id: str) -> None:
        """Soft-deactivate. Idempotent.

        Sessions pointing at the membership are not touched; they fail on
        their next context resolution.
        """
        changed = await self._memberships.deactivate(membership_id, self._clock())
        if changed:
            logger.info("membership_deactivated", membership_id=membership_id)

    async def resolve_default_membership(self, person_id: str) -> Membership | None:
        """Pick the membership a fresh login binds to.

        Internal memberships win; otherwise the most recently created one.
        Equal timestamps fall back to the id so the choice is stable.
        """
        memberships = await self._memberships.list_active_for_person(person_id)
        if not memberships:
            return None
        return max(
            memberships,
            key=lambda m: (m.space == Space.INTERNAL, m.created_at, m.id),
        )
