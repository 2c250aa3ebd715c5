"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Identity store
# ---------------------------------------------------------------------------


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str
    slug: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=_utc_now)


class Person(SQLModel, table=True):
    __tablename__ = "people"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    email: str = Field(unique=True, index=True)  # always lower-cased
    name: str = ""
    avatar: str | None = None
    password_hash: str | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Memberships and invitations
# ---------------------------------------------------------------------------


class Membership(SQLModel, table=True):
    __tablename__ = "memberships"
    __table_args__ = (
        # One active grant per exact tuple; deactivated rows keep their history.
        Index(
            "uq_memberships_active_tuple",
            "person_id",
            "org_id",
            "role",
            "space",
            "scope_key",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    person_id: str = Field(foreign_key="people.id", index=True)
    org_id: str = Field(foreign_key="organizations.id", index=True)
    role: str  # Role value
    space: str  # Space value
    account_id: str | None = None
    vendor_id: str | None = None
    scope_key: str = ""  # "" | "account:<id>" | "vendor:<id>"
    is_active: bool = Field(default=True)
    deactivated_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)


class Invitation(SQLModel, table=True):
    __tablename__ = "invitations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    token_hash: str = Field(unique=True, index=True)  # SHA-256 of the bearer token
    email: str = Field(index=True)
    name: str | None = None
    org_id: str = Field(foreign_key="organizations.id", index=True)
    role: str
    space: str
    account_id: str | None = None
    vendor_id: str | None = None
    expires_at: datetime
    consumed_at: datetime | None = None
    revoked_at: datetime | None = None
    created_by_id: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionRecord(SQLModel, table=True):
    __tablename__ = "sessions"

    id: str = Field(primary_key=True)  # SHA-256 of the bearer token
    person_id: str = Field(foreign_key="people.id", index=True)
    active_membership_id: str = Field(foreign_key="memberships.id")
    issued_at: datetime = Field(default_factory=_utc_now)
    expires_at: datetime = Field(index=True)


# ---------------------------------------------------------------------------
# Vendor scoping
# ---------------------------------------------------------------------------


class ProjectAssignment(SQLModel, table=True):
    __tablename__ = "project_assignments"
    __table_args__ = (UniqueConstraint("org_id", "vendor_id", "project_id", "starts_at"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    org_id: str = Field(foreign_key="organizations.id", index=True)
    vendor_id: str = Field(index=True)
    project_id: str = Field(index=True)
    starts_at: datetime = Field(default_factory=_utc_now)
    ends_at: datetime | None = None
    revoked_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    org_id: str = Field(default="", index=True)
    person_id: str = Field(default="", index=True)
    action: str = Field(index=True)
    resource_type: str = ""
    resource_id: str = ""
    details_json: str = "{}"
    created_at: datetime = Field(default_factory=_utc_now)
