"""Exception hierarchy for SpaceGate.

Authorization denials are not exceptions; see ``spacegate.authz.gate``.
"""

from __future__ import annotations

from spacegate.types import InvitationReason


class SpaceGateError(Exception):
    """Base exception for all SpaceGate errors."""


class InvalidCredentials(SpaceGateError):
    """Raised when a credential check fails, for any reason."""

    def __init__(self) -> None:
        super().__init__("Invalid email or password")


class SessionExpired(SpaceGateError):
    """Raised when a session token is unknown, tampered with, or past expiry."""


class MembershipRevoked(SpaceGateError):
    """Raised when a session's active membership was deactivated after issuance."""


class ConflictError(SpaceGateError):
    """Raised when an identical active membership (or unique record) already exists."""


class InvariantError(SpaceGateError):
    """Raised when a role/space/scope combination is inconsistent."""


class ValidationError(SpaceGateError):
    """Raised when an invitation request is malformed."""


class NotFoundError(SpaceGateError):
    """Raised when a referenced record does not exist."""


class ForbiddenError(SpaceGateError):
    """Raised when the caller does not own the resource it tries to use."""


class InvitationError(SpaceGateError):
    """Base for invitation redemption failures; ``reason`` is UI-safe."""

    reason: InvitationReason

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or f"Invitation is not redeemable: {self.reason.value}")


class InvitationNotFound(InvitationError, NotFoundError):
    reason = InvitationReason.NOT_FOUND


class InvitationExpired(InvitationError):
    reason = InvitationReason.EXPIRED


class AlreadyRedeemed(InvitationError):
    reason = InvitationReason.ALREADY_CONSUMED


class InvitationRevoked(InvitationError):
    reason = InvitationReason.REVOKED


class StoreUnavailable(SpaceGateError):
    """Raised when the persistent store cannot be reached. Never retried here."""


class MalformedRequest(SpaceGateError, ValueError):
    """Raised on programmer errors passed to the authorization gate."""


INVITATION_ERRORS: dict[InvitationReason, type[InvitationError]] = {
    InvitationReason.NOT_FOUND: InvitationNotFound,
    InvitationReason.EXPIRED: InvitationExpired,
    InvitationReason.ALREADY_CONSUMED: AlreadyRedeemed,
    InvitationReason.REVOKED: InvitationRevoked,
}


class NotificationError(SpaceGateError):
    """Raised by a notifier that could not deliver a message."""
