"""Unit tests for sessions, space switching and live authorization (in-memory store)."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from spacegate.authz.context import ScopeRef, Target
from spacegate.engine import AccessEngine
from spacegate.exceptions import (
    ForbiddenError,
    InvalidCredentials,
    MembershipRevoked,
    SessionExpired,
    ValidationError,
)
from spacegate.models.database import Organization
from spacegate.storage.memory import InMemoryStore
from spacegate.types import Operation, RecordKind, Role, Space

if TYPE_CHECKING:
    from tests.conftest import FakeClock, Seeded

PASSWORD = "correct-horse-battery"


@pytest.fixture()
async def vendor(access: AccessEngine, org: Organization, seed) -> Seeded:
    return await seed(
        access, org, "v@x.com", [(Role.VENDOR, Space.VENDOR, ScopeRef.vendor("vendor42"))]
    )


@pytest.mark.unit
class TestAuthenticate:
    async def test_login_binds_default_membership(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        session = await access.authenticate("Alice@X.com ", PASSWORD)
        assert session.person_id == alice.person.id
        # internal membership wins over the more recent client one
        assert session.active_membership_id == alice.memberships[0].id
        assert session.token != session.session_id
        context = await access.current_context(session.token)
        assert context.role == Role.ADMIN
        assert context.space == Space.INTERNAL

    async def test_login_is_audited(self, access: AccessEngine, alice: Seeded) -> None:
        await access.authenticate("alice@x.com", PASSWORD)
        actions = [e.action for e in access.audit.entries]
        assert actions == ["auth.login"]

    async def test_every_failure_looks_the_same(
        self, access: AccessEngine, org: Organization, alice: Seeded, store: InMemoryStore, seed
    ) -> None:
        await seed(access, org, "nobody@x.com", [])
        inactive = await seed(
            access, org, "gone@x.com", [(Role.SALES, Space.INTERNAL, ScopeRef.internal())]
        )
        store.people[inactive.person.id].is_active = False

        messages = set()
        for email, password in [
            ("unknown@x.com", PASSWORD),
            ("alice@x.com", "wrong-password"),
            ("nobody@x.com", PASSWORD),
            ("gone@x.com", PASSWORD),
        ]:
            with pytest.raises(InvalidCredentials) as exc_info:
                await access.authenticate(email, password)
            messages.add(str(exc_info.value))
        assert len(messages) == 1

    async def test_person_without_password_cannot_log_in(
        self, access: AccessEngine, org: Organization
    ) -> None:
        person = await access.repos.identity.create_person("sso@x.com")
        await access.registry.create_membership(person.id, org.id, Role.SALES, Space.INTERNAL)
        with pytest.raises(InvalidCredentials):
            await access.authenticate("sso@x.com", "")


@pytest.mark.unit
class TestSwitchSpace:
    async def test_alice_switches_to_client_space(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        client_membership = alice.memberships[1]

        switched = await access.switch_space(session.token, client_membership.id)
        assert switched.token == session.token
        assert switched.session_id == session.session_id
        assert switched.active_membership_id == client_membership.id

        org_id = alice.org.id
        allowed = await access.authorize(
            session.token, Operation.READ, Target(org_id=org_id, account_id="account7")
        )
        assert allowed.allow
        denied = await access.authorize(
            session.token, Operation.READ, Target(org_id=org_id, account_id="account9")
        )
        assert not denied.allow
        assert denied.reason == "out_of_scope"

    async def test_switch_back_restores_internal_view(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        await access.switch_space(session.token, alice.memberships[1].id)
        await access.switch_space(session.token, alice.memberships[0].id)
        decision = await access.authorize(
            session.token,
            Operation.DELETE,
            Target(org_id=alice.org.id, kind=RecordKind.DEAL, account_id="account9"),
        )
        assert decision.allow

    async def test_switch_extends_expiry(
        self, access: AccessEngine, alice: Seeded, clock: FakeClock
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        clock.advance(days=6)
        switched = await access.switch_space(session.token, alice.memberships[1].id)
        assert switched.expires_at == clock.now + timedelta(days=7)
        assert switched.expires_at > session.expires_at

    async def test_switch_is_audited(self, access: AccessEngine, alice: Seeded) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        await access.switch_space(session.token, alice.memberships[1].id)
        entry = access.audit.entries[-1]
        assert entry.action == "auth.switch_space"
        assert entry.resource_id == alice.memberships[1].id

    async def test_foreign_membership_forbidden(
        self, access: AccessEngine, alice: Seeded, vendor: Seeded
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        with pytest.raises(ForbiddenError):
            await access.switch_space(session.token, vendor.memberships[0].id)
        context = await access.current_context(session.token)
        assert context.membership_id == alice.memberships[0].id

    async def test_unknown_and_inactive_memberships_forbidden(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        await access.registry.deactivate_membership(alice.memberships[1].id)
        for membership_id in ("does-not-exist", alice.memberships[1].id):
            with pytest.raises(ForbiddenError) as exc_info:
                await access.switch_space(session.token, membership_id)
            assert str(exc_info.value) == "Membership is not available to this session"

    async def test_switch_on_expired_session(
        self, access: AccessEngine, alice: Seeded, clock: FakeClock
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        clock.advance(days=8)
        with pytest.raises(SessionExpired):
            await access.switch_space(session.token, alice.memberships[1].id)

    async def test_available_spaces_marks_current(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        await access.switch_space(session.token, alice.memberships[1].id)
        spaces = await access.available_spaces(session.token)
        current = {s.membership_id: s.is_current for s in spaces}
        assert current == {alice.memberships[0].id: False, alice.memberships[1].id: True}
        assert {s.account_id for s in spaces} == {None, "account7"}


@pytest.mark.unit
class TestLiveRevocation:
    async def test_deactivated_membership_revokes_session(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        await access.switch_space(session.token, alice.memberships[1].id)
        await access.registry.deactivate_membership(alice.memberships[1].id)
        with pytest.raises(MembershipRevoked):
            await access.current_context(session.token)
        with pytest.raises(MembershipRevoked):
            await access.authorize(
                session.token, Operation.READ, Target(org_id=alice.org.id, account_id="account7")
            )
        # switching to a membership that is still active recovers the session
        await access.switch_space(session.token, alice.memberships[0].id)
        assert (await access.current_context(session.token)).space == Space.INTERNAL

    async def test_deactivated_person_loses_session(
        self, access: AccessEngine, alice: Seeded, store: InMemoryStore
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        store.people[alice.person.id].is_active = False
        with pytest.raises(SessionExpired):
            await access.current_context(session.token)

    async def test_vendor_assignment_revoked_mid_session(
        self, access: AccessEngine, vendor: Seeded, clock: FakeClock
    ) -> None:
        org_id = vendor.org.id
        assignment = await access.repos.assignments.assign(
            org_id, "vendor42", "p1", starts_at=clock.now
        )
        session = await access.authenticate("v@x.com", PASSWORD)
        target = Target(org_id=org_id, kind=RecordKind.TASK, project_id="p1")

        decision = await access.authorize(session.token, Operation.READ, target)
        assert decision.allow
        assert decision.predicate is not None
        assert decision.predicate.matches({"org_id": org_id, "project_id": "p1"})

        await access.repos.assignments.revoke(assignment.id, clock.now)
        decision = await access.authorize(session.token, Operation.READ, target)
        assert not decision.allow
        assert decision.reason == "no_active_assignment"

    async def test_vendor_assignment_window(
        self, access: AccessEngine, vendor: Seeded, clock: FakeClock
    ) -> None:
        org_id = vendor.org.id
        await access.repos.assignments.assign(
            org_id,
            "vendor42",
            "p1",
            starts_at=clock.now + timedelta(hours=1),
            ends_at=clock.now + timedelta(hours=3),
        )
        session = await access.authenticate("v@x.com", PASSWORD)
        target = Target(org_id=org_id, project_id="p1")

        assert not (await access.authorize(session.token, Operation.READ, target)).allow
        clock.advance(hours=2)
        assert (await access.authorize(session.token, Operation.READ, target)).allow
        clock.advance(hours=2)
        assert not (await access.authorize(session.token, Operation.READ, target)).allow

    async def test_vendor_context_carries_projects(
        self, access: AccessEngine, vendor: Seeded, clock: FakeClock
    ) -> None:
        for project in ("p1", "p2"):
            await access.repos.assignments.assign(
                vendor.org.id, "vendor42", project, starts_at=clock.now
            )
        await access.repos.assignments.assign(vendor.org.id, "vendor7", "p3", starts_at=clock.now)
        session = await access.authenticate("v@x.com", PASSWORD)
        context = await access.current_context(session.token)
        assert context.scope.active_project_ids == frozenset({"p1", "p2"})


@pytest.mark.unit
class TestSessionLifetime:
    async def test_expiry(self, access: AccessEngine, alice: Seeded, clock: FakeClock) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        clock.advance(days=7)
        with pytest.raises(SessionExpired):
            await access.current_context(session.token)

    async def test_tampered_token(self, access: AccessEngine, alice: Seeded) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        with pytest.raises(SessionExpired):
            await access.current_context(session.token + "x")
        with pytest.raises(SessionExpired):
            await access.current_context(session.session_id)

    async def test_logout_is_idempotent(self, access: AccessEngine, alice: Seeded) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        await access.logout(session.token)
        await access.logout(session.token)
        await access.logout("garbage")
        with pytest.raises(SessionExpired):
            await access.current_context(session.token)

    async def test_sessions_are_independent(self, access: AccessEngine, alice: Seeded) -> None:
        first = await access.authenticate("alice@x.com", PASSWORD)
        second = await access.authenticate("alice@x.com", PASSWORD)
        await access.switch_space(first.token, alice.memberships[1].id)
        assert (await access.current_context(second.token)).space == Space.INTERNAL
        await access.logout(first.token)
        assert (await access.current_context(second.token)).person_id == alice.person.id

    async def test_purge_expired(
        self, access: AccessEngine, alice: Seeded, clock: FakeClock, store: InMemoryStore
    ) -> None:
        await access.authenticate("alice@x.com", PASSWORD)
        await access.authenticate("alice@x.com", PASSWORD)
        clock.advance(days=8)
        live = await access.authenticate("alice@x.com", PASSWORD)
        assert await access.sessions.purge_expired() == 2
        assert list(store.sessions) == [live.session_id]

    async def test_session_for_foreign_membership_refused(
        self, access: AccessEngine, alice: Seeded, vendor: Seeded
    ) -> None:
        with pytest.raises(ForbiddenError):
            await access.sessions.create_session(alice.person.id, vendor.memberships[0])


@pytest.mark.unit
class TestEngineInvitations:
    async def test_admin_session_issues_in_own_org(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        issued = await access.issue_invitation(
            "new@x.com", Role.DELIVERY, Space.INTERNAL, inviter_token=session.token
        )
        assert issued.invitation.org_id == alice.org.id
        assert issued.invitation.created_by_id == alice.person.id
        entry = access.audit.entries[-1]
        assert entry.action == "invitation.issued"
        assert issued.token not in entry.details_json

    async def test_client_space_session_cannot_issue(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        await access.switch_space(session.token, alice.memberships[1].id)
        with pytest.raises(ForbiddenError):
            await access.issue_invitation(
                "new@x.com",
                Role.CLIENT_MEMBER,
                Space.CLIENT,
                ScopeRef.client("account7"),
                inviter_token=session.token,
            )
        with pytest.raises(ForbiddenError):
            await access.list_invitations(session.token)

    async def test_provisioning_requires_org(self, access: AccessEngine) -> None:
        with pytest.raises(ValidationError):
            await access.issue_invitation("new@x.com", Role.SALES, Space.INTERNAL)

    async def test_redeem_and_revoke_are_audited(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        session = await access.authenticate("alice@x.com", PASSWORD)
        redeemed = await access.issue_invitation(
            "r@x.com", Role.SALES, Space.INTERNAL, inviter_token=session.token
        )
        revoked = await access.issue_invitation(
            "v@x.com", Role.SALES, Space.INTERNAL, inviter_token=session.token
        )
        await access.redeem_invitation(redeemed.token, password="long-enough-pw")
        await access.revoke_invitation(session.token, revoked.invitation.id)

        entries = await access.audit_entries(session.token)
        actions = {e.action for e in entries}
        assert {"invitation.redeemed", "invitation.revoked"} <= actions
        assert all("long-enough-pw" not in e.details_json for e in entries)
