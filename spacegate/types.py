"""Enums and type aliases for SpaceGate."""

from enum import StrEnum


class Space(StrEnum):
    INTERNAL = "internal"
    CLIENT = "client"
    VENDOR = "vendor"


class Role(StrEnum):
    ADMIN = "admin"
    SALES = "sales"
    DELIVERY = "delivery"
    FINANCE = "finance"
    CLIENT_ADMIN = "client_admin"
    CLIENT_MEMBER = "client_member"
    VENDOR = "vendor"


# Every role lives in exactly one space.
ROLE_SPACE: dict[Role, Space] = {
    Role.ADMIN: Space.INTERNAL,
    Role.SALES: Space.INTERNAL,
    Role.DELIVERY: Space.INTERNAL,
    Role.FINANCE: Space.INTERNAL,
    Role.CLIENT_ADMIN: Space.CLIENT,
    Role.CLIENT_MEMBER: Space.CLIENT,
    Role.VENDOR: Space.VENDOR,
}


def space_for(role: Role) -> Space:
    """Return the space a role belongs to."""
    return ROLE_SPACE[Role(role)]


def is_consistent(role: Role | str, space: Space | str) -> bool:
    """Check the role/space pairing without raising on unknown values."""
    try:
        return ROLE_SPACE[Role(role)] == Space(space)
    except ValueError:
        return False


class Operation(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class RecordKind(StrEnum):
    PROJECT = "project"
    TASK = "task"
    DOCUMENT = "document"
    COMMENT = "comment"
    CHANNEL_MESSAGE = "channel_message"
    DELIVERABLE = "deliverable"
    INVOICE = "invoice"
    CONTRACT = "contract"
    ACCOUNT = "account"
    VENDOR = "vendor"
    DEAL = "deal"
    QUOTE = "quote"


class InvitationStatus(StrEnum):
    PENDING = "pending"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    REVOKED = "revoked"


class InvitationReason(StrEnum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_CONSUMED = "already_consumed"
    REVOKED = "revoked"
