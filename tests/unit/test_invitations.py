"""Unit tests for invitation issuing, validation and redemption (in-memory store)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

import pytest

from spacegate.auth.password import verify_password
from spacegate.auth.tokens import hash_token
from spacegate.authz.context import AccessContext, ScopeRef
from spacegate.config.settings import Settings
from spacegate.engine import AccessEngine, build_engine
from spacegate.exceptions import (
    AlreadyRedeemed,
    ForbiddenError,
    InvalidCredentials,
    InvitationExpired,
    InvitationNotFound,
    InvitationRevoked,
    NotFoundError,
    NotificationError,
    StoreUnavailable,
    ValidationError,
)
from spacegate.models.database import Organization
from spacegate.storage.memory import InMemoryStore
from spacegate.types import InvitationReason, InvitationStatus, Role, Space

PASSWORD = "correct-horse-battery"

if TYPE_CHECKING:
    from tests.conftest import FakeClock, Seeded


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, datetime]] = []

    async def send_invitation_message(
        self, email: str, redeem_url: str, expires_at: datetime
    ) -> None:
        self.sent.append((email, redeem_url, expires_at))


class FailingNotifier:
    async def send_invitation_message(
        self, email: str, redeem_url: str, expires_at: datetime
    ) -> None:
        msg = "relay down"
        raise NotificationError(msg)


class UnwritableSessions(dict):
    def __setitem__(self, key: str, value: object) -> None:
        msg = "Store unavailable during sessions.insert"
        raise StoreUnavailable(msg)


def inviter(role: Role, space: Space, scope: ScopeRef, org_id: str) -> AccessContext:
    return AccessContext(
        person_id="inviter-1",
        email="boss@x.com",
        membership_id="m-boss",
        org_id=org_id,
        role=role,
        space=space,
        scope=scope,
    )


@pytest.mark.unit
class TestIssue:
    async def test_issue_returns_token_once(self, access: AccessEngine, org: Organization) -> None:
        issued = await access.invitations.issue(
            "New.Person@X.com", org.id, Role.CLIENT_MEMBER, Space.CLIENT, ScopeRef.client("acc1")
        )
        assert issued.invitation.email == "new.person@x.com"
        assert issued.invitation.token_hash == hash_token(issued.token)
        assert issued.token not in issued.invitation.model_dump_json()
        assert issued.warnings == []
        query = parse_qs(urlparse(issued.redeem_url).query)
        assert query["token"] == [issued.token]
        assert issued.redeem_url.startswith("https://app.test/accept?")

    async def test_default_ttl_is_seven_days(
        self, access: AccessEngine, org: Organization, clock: FakeClock
    ) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        assert issued.invitation.expires_at == clock.now + timedelta(days=7)

    async def test_notifier_receives_url(
        self, settings: Settings, store: InMemoryStore, clock: FakeClock
    ) -> None:
        notifier = RecordingNotifier()
        engine = build_engine(settings, store=store, notifier=notifier, clock=clock)
        org = await engine.repos.identity.create_organization("Org", "org")
        issued = await engine.invitations.issue("a@x.com", org.id, Role.FINANCE, Space.INTERNAL)
        assert notifier.sent == [("a@x.com", issued.redeem_url, issued.invitation.expires_at)]

    async def test_notifier_failure_becomes_warning(
        self, settings: Settings, store: InMemoryStore, clock: FakeClock
    ) -> None:
        engine = build_engine(settings, store=store, notifier=FailingNotifier(), clock=clock)
        org = await engine.repos.identity.create_organization("Org", "org")
        issued = await engine.invitations.issue("a@x.com", org.id, Role.FINANCE, Space.INTERNAL)
        assert len(issued.warnings) == 1
        assert "relay down" in issued.warnings[0]
        check = await engine.invitations.validate(issued.token)
        assert check.valid

    @pytest.mark.parametrize("email", ["", "no-at-sign", "a@b", "two@@x.com", "sp ace@x.com"])
    async def test_malformed_email(
        self, access: AccessEngine, org: Organization, email: str
    ) -> None:
        with pytest.raises(ValidationError):
            await access.invitations.issue(email, org.id, Role.SALES, Space.INTERNAL)

    async def test_role_space_mismatch(self, access: AccessEngine, org: Organization) -> None:
        with pytest.raises(ValidationError):
            await access.invitations.issue(
                "a@x.com", org.id, Role.VENDOR, Space.CLIENT, ScopeRef.client("acc1")
            )

    async def test_missing_scope_marker(self, access: AccessEngine, org: Organization) -> None:
        with pytest.raises(ValidationError):
            await access.invitations.issue("a@x.com", org.id, Role.VENDOR, Space.VENDOR)

    async def test_unknown_role(self, access: AccessEngine, org: Organization) -> None:
        with pytest.raises(ValidationError):
            await access.invitations.issue("a@x.com", org.id, "overlord", Space.INTERNAL)

    @pytest.mark.parametrize("ttl", [timedelta(seconds=0), timedelta(days=-1), timedelta(days=400)])
    async def test_ttl_out_of_bounds(
        self, access: AccessEngine, org: Organization, ttl: timedelta
    ) -> None:
        with pytest.raises(ValidationError):
            await access.invitations.issue(
                "a@x.com", org.id, Role.SALES, Space.INTERNAL, ttl=ttl
            )

    async def test_unknown_org(self, access: AccessEngine) -> None:
        with pytest.raises(NotFoundError):
            await access.invitations.issue("a@x.com", "no-such-org", Role.SALES, Space.INTERNAL)


@pytest.mark.unit
class TestInviterPolicy:
    async def test_internal_admin_may_issue(self, access: AccessEngine, org: Organization) -> None:
        admin = inviter(Role.ADMIN, Space.INTERNAL, ScopeRef.internal(), org.id)
        issued = await access.invitations.issue(
            "v@x.com", org.id, Role.VENDOR, Space.VENDOR, ScopeRef.vendor("v1"), inviter=admin
        )
        assert issued.invitation.created_by_id == "inviter-1"

    async def test_admin_of_other_org_forbidden(
        self, access: AccessEngine, org: Organization
    ) -> None:
        admin = inviter(Role.ADMIN, Space.INTERNAL, ScopeRef.internal(), "other-org")
        with pytest.raises(ForbiddenError):
            await access.invitations.issue(
                "a@x.com", org.id, Role.SALES, Space.INTERNAL, inviter=admin
            )

    @pytest.mark.parametrize("role", [Role.SALES, Role.DELIVERY, Role.FINANCE])
    async def test_non_admin_staff_forbidden(
        self, access: AccessEngine, org: Organization, role: Role
    ) -> None:
        staff = inviter(role, Space.INTERNAL, ScopeRef.internal(), org.id)
        with pytest.raises(ForbiddenError):
            await access.invitations.issue(
                "a@x.com", org.id, Role.SALES, Space.INTERNAL, inviter=staff
            )

    async def test_client_admin_forbidden_by_default(
        self, access: AccessEngine, org: Organization
    ) -> None:
        client_admin = inviter(Role.CLIENT_ADMIN, Space.CLIENT, ScopeRef.client("acc1"), org.id)
        with pytest.raises(ForbiddenError):
            await access.invitations.issue(
                "c@x.com",
                org.id,
                Role.CLIENT_MEMBER,
                Space.CLIENT,
                ScopeRef.client("acc1"),
                inviter=client_admin,
            )

    async def test_client_admin_own_account_when_enabled(
        self, settings: Settings, store: InMemoryStore, clock: FakeClock
    ) -> None:
        enabled = settings.model_copy(update={"client_admin_can_invite": True})
        engine = build_engine(enabled, store=store, clock=clock)
        org = await engine.repos.identity.create_organization("Org", "org")
        client_admin = inviter(Role.CLIENT_ADMIN, Space.CLIENT, ScopeRef.client("acc1"), org.id)

        issued = await engine.invitations.issue(
            "c@x.com",
            org.id,
            Role.CLIENT_MEMBER,
            Space.CLIENT,
            ScopeRef.client("acc1"),
            inviter=client_admin,
        )
        assert issued.invitation.account_id == "acc1"

        with pytest.raises(ForbiddenError):
            await engine.invitations.issue(
                "c@x.com",
                org.id,
                Role.CLIENT_MEMBER,
                Space.CLIENT,
                ScopeRef.client("acc2"),
                inviter=client_admin,
            )
        with pytest.raises(ForbiddenError):
            await engine.invitations.issue(
                "c@x.com", org.id, Role.SALES, Space.INTERNAL, inviter=client_admin
            )

    async def test_vendor_never_issues(self, access: AccessEngine, org: Organization) -> None:
        vendor = inviter(Role.VENDOR, Space.VENDOR, ScopeRef.vendor("v1"), org.id)
        with pytest.raises(ForbiddenError):
            await access.invitations.issue(
                "v2@x.com", org.id, Role.VENDOR, Space.VENDOR, ScopeRef.vendor("v1"), inviter=vendor
            )


@pytest.mark.unit
class TestValidate:
    async def test_unknown_and_empty_tokens(self, access: AccessEngine) -> None:
        for token in ("", "not-a-token"):
            check = await access.invitations.validate(token)
            assert not check.valid
            assert check.reason == InvitationReason.NOT_FOUND
            assert check.invitation is None

    async def test_pending_is_valid_and_read_only(
        self, access: AccessEngine, org: Organization
    ) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        for _ in range(3):
            check = await access.invitations.validate(issued.token)
            assert check.valid
            assert check.reason is None
        assert check.invitation is not None
        assert check.invitation.consumed_at is None

    async def test_expired(
        self, access: AccessEngine, org: Organization, clock: FakeClock
    ) -> None:
        issued = await access.invitations.issue(
            "a@x.com", org.id, Role.SALES, Space.INTERNAL, ttl=timedelta(hours=1)
        )
        clock.advance(hours=1)
        check = await access.invitations.validate(issued.token)
        assert check.reason == InvitationReason.EXPIRED

    async def test_consumed(self, access: AccessEngine, org: Organization) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        await access.invitations.redeem(issued.token)
        check = await access.invitations.validate(issued.token)
        assert check.reason == InvitationReason.ALREADY_CONSUMED

    async def test_revoked(self, access: AccessEngine, org: Organization) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        await access.invitations.revoke(issued.invitation.id, org.id)
        check = await access.invitations.validate(issued.token)
        assert check.reason == InvitationReason.REVOKED


@pytest.mark.unit
class TestRedeem:
    async def test_new_person_gets_membership_and_session(
        self, access: AccessEngine, org: Organization
    ) -> None:
        issued = await access.invitations.issue(
            "v@x.com", org.id, Role.VENDOR, Space.VENDOR, ScopeRef.vendor("vendor42")
        )
        redemption = await access.invitations.redeem(issued.token, display_name="Vera")

        assert redemption.person_created
        assert redemption.membership_created
        assert redemption.person.email == "v@x.com"
        assert redemption.person.name == "Vera"
        assert redemption.membership.vendor_id == "vendor42"
        assert redemption.membership.scope_key == "vendor:vendor42"
        assert redemption.session.active_membership_id == redemption.membership.id

        context = await access.sessions.current_context(redemption.session.token)
        assert context.role == Role.VENDOR
        assert context.scope == ScopeRef.vendor("vendor42")

    async def test_password_is_set(self, access: AccessEngine, org: Organization) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        redemption = await access.invitations.redeem(issued.token, password="long-enough-pw")
        assert verify_password("long-enough-pw", redemption.person.password_hash)
        session = await access.sessions.authenticate("a@x.com", "long-enough-pw")
        assert session.person_id == redemption.person.id

    async def test_short_password_rejected_and_token_kept(
        self, access: AccessEngine, org: Organization
    ) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        with pytest.raises(ValidationError):
            await access.invitations.redeem(issued.token, password="short")
        assert (await access.invitations.validate(issued.token)).valid

    async def test_existing_membership_reused_token_still_consumed(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        issued = await access.invitations.issue(
            "alice@x.com", alice.org.id, Role.ADMIN, Space.INTERNAL
        )
        redemption = await access.invitations.redeem(issued.token, password=PASSWORD)

        assert not redemption.person_created
        assert not redemption.membership_created
        assert redemption.person.id == alice.person.id
        assert redemption.membership.id == alice.memberships[0].id
        assert len(await access.registry.list_memberships(alice.person.id)) == 2
        with pytest.raises(AlreadyRedeemed):
            await access.invitations.redeem(issued.token, password=PASSWORD)

    async def test_existing_person_gets_new_membership(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        issued = await access.invitations.issue(
            "alice@x.com", alice.org.id, Role.VENDOR, Space.VENDOR, ScopeRef.vendor("v9")
        )
        redemption = await access.invitations.redeem(issued.token, password=PASSWORD)
        assert not redemption.person_created
        assert redemption.membership_created
        assert redemption.person.password_hash == alice.person.password_hash
        assert redemption.session.active_membership_id == redemption.membership.id
        assert len(await access.registry.list_memberships(alice.person.id)) == 3
        session = await access.sessions.authenticate("alice@x.com", PASSWORD)
        assert session.person_id == alice.person.id

    async def test_existing_person_credential_cannot_be_replaced(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        other_org = await access.repos.identity.create_organization("Org Two", "org2")
        issued = await access.invitations.issue(
            "alice@x.com", other_org.id, Role.VENDOR, Space.VENDOR, ScopeRef.vendor("v9")
        )
        with pytest.raises(InvalidCredentials):
            await access.invitations.redeem(issued.token, password="someone-elses-pw")

        assert (await access.invitations.validate(issued.token)).valid
        assert len(await access.registry.list_memberships(alice.person.id)) == 2
        with pytest.raises(InvalidCredentials):
            await access.sessions.authenticate("alice@x.com", "someone-elses-pw")
        session = await access.sessions.authenticate("alice@x.com", PASSWORD)
        context = await access.sessions.current_context(session.token)
        assert context.org_id == alice.org.id
        assert context.role == Role.ADMIN

    async def test_existing_person_needs_proof_for_a_session(
        self, access: AccessEngine, alice: Seeded
    ) -> None:
        issued = await access.invitations.issue(
            "alice@x.com", alice.org.id, Role.VENDOR, Space.VENDOR, ScopeRef.vendor("v9")
        )
        with pytest.raises(InvalidCredentials):
            await access.invitations.redeem(issued.token)
        assert (await access.invitations.validate(issued.token)).valid
        assert len(await access.registry.list_memberships(alice.person.id)) == 2

    async def test_failed_session_write_leaves_token_pending(
        self, access: AccessEngine, org: Organization, store: InMemoryStore
    ) -> None:
        issued = await access.invitations.issue("new@x.com", org.id, Role.SALES, Space.INTERNAL)
        sessions = store.sessions
        store.sessions = UnwritableSessions()
        with pytest.raises(StoreUnavailable):
            await access.invitations.redeem(issued.token, password="long-enough-pw")

        assert (await access.invitations.validate(issued.token)).valid
        assert await access.repos.identity.get_person_by_email("new@x.com") is None

        store.sessions = sessions
        redemption = await access.invitations.redeem(issued.token, password="long-enough-pw")
        assert redemption.person_created
        context = await access.sessions.current_context(redemption.session.token)
        assert context.membership_id == redemption.membership.id

    async def test_second_redeem_fails(self, access: AccessEngine, org: Organization) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        await access.invitations.redeem(issued.token)
        with pytest.raises(AlreadyRedeemed) as exc_info:
            await access.invitations.redeem(issued.token)
        assert exc_info.value.reason == InvitationReason.ALREADY_CONSUMED

    async def test_concurrent_redeems_exactly_one_wins(
        self, access: AccessEngine, org: Organization
    ) -> None:
        issued = await access.invitations.issue(
            "c@x.com", org.id, Role.CLIENT_MEMBER, Space.CLIENT, ScopeRef.client("acc1")
        )
        results = await asyncio.gather(
            *[access.invitations.redeem(issued.token) for _ in range(10)],
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, BaseException)]
        assert len(winners) == 1
        assert len(losers) == 9
        assert all(isinstance(r, AlreadyRedeemed) for r in losers)
        assert len(await access.registry.list_memberships(winners[0].person.id)) == 1

    async def test_vendor_invitation_expires_after_ttl(
        self, access: AccessEngine, org: Organization, clock: FakeClock
    ) -> None:
        issued = await access.invitations.issue(
            "v@x.com",
            org.id,
            Role.VENDOR,
            Space.VENDOR,
            ScopeRef.vendor("vendor42"),
            ttl=timedelta(hours=1),
        )
        clock.advance(hours=2)
        with pytest.raises(InvitationExpired) as exc_info:
            await access.invitations.redeem(issued.token)
        assert exc_info.value.reason == InvitationReason.EXPIRED
        assert await access.repos.identity.get_person_by_email("v@x.com") is None

    async def test_unknown_token(self, access: AccessEngine) -> None:
        with pytest.raises(InvitationNotFound):
            await access.invitations.redeem("nonsense")

    async def test_revoked_token(self, access: AccessEngine, org: Organization) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        await access.invitations.revoke(issued.invitation.id, org.id)
        with pytest.raises(InvitationRevoked):
            await access.invitations.redeem(issued.token)


@pytest.mark.unit
class TestRevokeAndList:
    async def test_revoke_twice_is_idempotent(
        self, access: AccessEngine, org: Organization
    ) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        first = await access.invitations.revoke(issued.invitation.id, org.id)
        second = await access.invitations.revoke(issued.invitation.id, org.id)
        assert first.revoked_at is not None
        assert second.revoked_at == first.revoked_at

    async def test_revoke_consumed_fails(self, access: AccessEngine, org: Organization) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        await access.invitations.redeem(issued.token)
        with pytest.raises(AlreadyRedeemed):
            await access.invitations.revoke(issued.invitation.id, org.id)

    async def test_revoke_unknown_or_foreign(
        self, access: AccessEngine, org: Organization
    ) -> None:
        issued = await access.invitations.issue("a@x.com", org.id, Role.SALES, Space.INTERNAL)
        with pytest.raises(InvitationNotFound):
            await access.invitations.revoke("missing", org.id)
        with pytest.raises(InvitationNotFound):
            await access.invitations.revoke(issued.invitation.id, "other-org")

    async def test_list_by_status(
        self, access: AccessEngine, org: Organization, clock: FakeClock
    ) -> None:
        pending = await access.invitations.issue("p@x.com", org.id, Role.SALES, Space.INTERNAL)
        redeemed = await access.invitations.issue("r@x.com", org.id, Role.SALES, Space.INTERNAL)
        revoked = await access.invitations.issue("v@x.com", org.id, Role.SALES, Space.INTERNAL)
        expiring = await access.invitations.issue(
            "e@x.com", org.id, Role.SALES, Space.INTERNAL, ttl=timedelta(minutes=10)
        )
        await access.invitations.redeem(redeemed.token)
        await access.invitations.revoke(revoked.invitation.id, org.id)
        clock.advance(minutes=30)

        def ids(invitations):
            return {i.id for i in invitations}

        assert len(await access.invitations.list_invitations(org.id)) == 4
        assert ids(await access.invitations.list_invitations(org.id, "pending")) == {
            pending.invitation.id
        }
        assert ids(
            await access.invitations.list_invitations(org.id, InvitationStatus.REDEEMED)
        ) == {redeemed.invitation.id}
        assert ids(await access.invitations.list_invitations(org.id, "revoked")) == {
            revoked.invitation.id
        }
        assert ids(await access.invitations.list_invitations(org.id, "expired")) == {
            expiring.invitation.id
        }
        with pytest.raises(ValueError):
            await access.invitations.list_invitations(org.id, "bogus")
