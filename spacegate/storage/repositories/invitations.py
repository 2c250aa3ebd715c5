"""Invitation repository: conditional single-use consumption.

``consume_and_provision`` is the only write path that turns an invitation
into a membership. It flips ``consumed_at`` with a conditional UPDATE and, in
the same transaction, provisions the person, the membership and the redeemer's
session. "No rows affected" is a normal outcome (returned as None), not an
error. An existing person's credential is never written here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from spacegate.authz.context import ScopeRef
from spacegate.exceptions import ConflictError
from spacegate.models.database import Invitation, Membership, Person, SessionRecord
from spacegate.storage.database import store_errors
from spacegate.storage.interfaces import Provisioned
from spacegate.storage.memory import detached
from spacegate.storage.repositories.identity import default_name

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from spacegate.storage.interfaces import SessionGrant
    from spacegate.storage.memory import InMemoryStore

logger = structlog.get_logger(__name__)


def _is_redeemable(invitation: Invitation, at: datetime) -> bool:
    return (
        invitation.consumed_at is None
        and invitation.revoked_at is None
        and at < invitation.expires_at
    )


def _membership_for(invitation: Invitation, person_id: str) -> Membership:
    return Membership(
        person_id=person_id,
        org_id=invitation.org_id,
        role=invitation.role,
        space=invitation.space,
        account_id=invitation.account_id,
        vendor_id=invitation.vendor_id,
        scope_key=ScopeRef.of(invitation).key,
    )


def _check_invitee(person: Person | None, person_id: str | None) -> None:
    # The caller verified who owns the invited email before consuming the
    # token; anything else here means the account changed underneath it.
    found = person.id if person is not None else None
    if found != person_id:
        msg = "Invitee account changed during redemption; invitation left pending"
        raise ConflictError(msg)


def _new_person(
    invitation: Invitation, display_name: str | None, password_hash: str | None
) -> Person:
    return Person(
        email=invitation.email,
        name=display_name or invitation.name or default_name(invitation.email),
        password_hash=password_hash,
    )


def _session_for(grant: SessionGrant, membership: Membership, at: datetime) -> SessionRecord:
    return SessionRecord(
        id=grant.session_id,
        person_id=membership.person_id,
        active_membership_id=membership.id,
        issued_at=at,
        expires_at=grant.expires_at,
    )


class DatabaseInvitationRepository:
    """PostgreSQL-backed invitation store."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def insert(self, invitation: Invitation) -> Invitation:
        async with store_errors("invitations.insert"), AsyncSession(self._engine) as session:
            session.add(invitation)
            await session.commit()
            await session.refresh(invitation)
            return invitation

    async def get(self, invitation_id: str) -> Invitation | None:
        async with store_errors("invitations.get"), AsyncSession(self._engine) as session:
            return await session.get(Invitation, invitation_id)

    async def get_by_token_hash(self, token_hash: str) -> Invitation | None:
        async with store_errors("invitations.get"), AsyncSession(self._engine) as session:
            stmt = select(Invitation).where(col(Invitation.token_hash) == token_hash)
            result = await session.execute(stmt)
            return result.scalars().first()

    async def list_for_org(self, org_id: str) -> list[Invitation]:
        async with store_errors("invitations.list"), AsyncSession(self._engine) as session:
            stmt = (
                select(Invitation)
                .where(col(Invitation.org_id) == org_id)
                .order_by(col(Invitation.created_at).desc())
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def revoke(self, invitation_id: str, org_id: str, at: datetime) -> Invitation | None:
        async with store_errors("invitations.revoke"), AsyncSession(self._engine) as session:
            stmt = (
                update(Invitation)
                .where(
                    col(Invitation.id) == invitation_id,
                    col(Invitation.org_id) == org_id,
                    col(Invitation.consumed_at).is_(None),
                    col(Invitation.revoked_at).is_(None),
                )
                .values(revoked_at=at)
            )
            result = await session.execute(stmt)
            await session.commit()
            if not result.rowcount:
                return None
            return await session.get(Invitation, invitation_id, populate_existing=True)

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
        async with store_errors("invitations.redeem"), AsyncSession(self._engine) as session:
            consume = (
                update(Invitation)
                .where(
                    col(Invitation.token_hash) == token_hash,
                    col(Invitation.consumed_at).is_(None),
                    col(Invitation.revoked_at).is_(None),
                    col(Invitation.expires_at) > at,
                )
                .values(consumed_at=at)
            )
            result = await session.execute(consume)
            if not result.rowcount:
                await session.rollback()
                return None

            try:
                provisioned = await self._provision(
                    session, token_hash, at, person_id, display_name, password_hash, open_session
                )
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                msg = "Concurrent provisioning conflict; invitation left pending"
                raise ConflictError(msg) from exc
            except ConflictError:
                await session.rollback()
                raise

            for row in (provisioned.invitation, provisioned.person, provisioned.membership):
                await session.refresh(row)
            if provisioned.session is not None:
                await session.refresh(provisioned.session)
            logger.info(
                "invitation_consumed",
                invitation_id=provisioned.invitation.id,
                person_id=provisioned.person.id,
                membership_id=provisioned.membership.id,
            )
            return provisioned

    async def _provision(
        self,
        session: AsyncSession,
        token_hash: str,
        at: datetime,
        person_id: str | None,
        display_name: str | None,
        password_hash: str | None,
        open_session: SessionGrant | None,
    ) -> Provisioned:
        inv_result = await session.execute(
            select(Invitation).where(col(Invitation.token_hash) == token_hash)
        )
        invitation = inv_result.scalars().one()

        person_result = await session.execute(
            select(Person).where(col(Person.email) == invitation.email)
        )
        person = person_result.scalars().first()
        _check_invitee(person, person_id)
        person_created = person is None
        if person is None:
            person = _new_person(invitation, display_name, password_hash)
            session.add(person)
            await session.flush()  # populate person.id without committing

        candidate = _membership_for(invitation, person.id)
        existing_result = await session.execute(
            select(Membership).where(
                col(Membership.person_id) == person.id,
                col(Membership.org_id) == candidate.org_id,
                col(Membership.role) == candidate.role,
                col(Membership.space) == candidate.space,
                col(Membership.scope_key) == candidate.scope_key,
                col(Membership.is_active).is_(True),
            )
        )
        membership = existing_result.scalars().first()
        membership_created = membership is None
        if membership is None:
            membership = candidate
            session.add(membership)
            await session.flush()

        record = None
        if open_session is not None:
            record = _session_for(open_session, membership, at)
            session.add(record)
            await session.flush()

        return Provisioned(
            invitation=invitation,
            person=person,
            membership=membership,
            person_created=person_created,
            membership_created=membership_created,
            session=record,
        )


class InMemoryInvitationRepository:
    """In-memory fallback; redemption is linearized by the store lock."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def insert(self, invitation: Invitation) -> Invitation:
        async with self._store.lock:
            self._store.invitations[invitation.id] = detached(invitation)
            return detached(invitation)

    async def get(self, invitation_id: str) -> Invitation | None:
        invitation = self._store.invitations.get(invitation_id)
        return detached(invitation) if invitation else None

    async def get_by_token_hash(self, token_hash: str) -> Invitation | None:
        invitation = self._find(token_hash)
        return detached(invitation) if invitation else None

    async def list_for_org(self, org_id: str) -> list[Invitation]:
        rows = [i for i in self._store.invitations.values() if i.org_id == org_id]
        rows.sort(key=lambda i: i.created_at, reverse=True)
        return [detached(i) for i in rows]

    async def revoke(self, invitation_id: str, org_id: str, at: datetime) -> Invitation | None:
        async with self._store.lock:
            invitation = self._store.invitations.get(invitation_id)
            if (
                not invitation
                or invitation.org_id != org_id
                or invitation.consumed_at is not None
                or invitation.revoked_at is not None
            ):
                return None
            invitation.revoked_at = at
            return detached(invitation)

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
        async with self._store.lock:
            invitation = self._find(token_hash)
            if invitation is None or not _is_redeemable(invitation, at):
                return None

            person = self._store.person_by_email(invitation.email)
            _check_invitee(person, person_id)
            person_created = person is None
            if person is None:
                person = _new_person(invitation, display_name, password_hash)

            candidate = _membership_for(invitation, person.id)
            membership = None if person_created else self._store.active_duplicate(candidate)
            membership_created = membership is None
            if membership is None:
                membership = candidate

            # Writes go last so a failing write leaves the token pending.
            record = None
            if open_session is not None:
                record = _session_for(open_session, membership, at)
                self._store.sessions[record.id] = record
            if person_created:
                self._store.people[person.id] = person
            if membership_created:
                self._store.memberships[membership.id] = membership
            invitation.consumed_at = at
            return Provisioned(
                invitation=detached(invitation),
                person=detached(person),
                membership=detached(membership),
                person_created=person_created,
                membership_created=membership_created,
                session=detached(record) if record else None,
            )

    def _find(self, token_hash: str) -> Invitation | None:
        return next(
            (i for i in self._store.invitations.values() if i.token_hash == token_hash), None
        )
