"""create access tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel.sql.sqltypes
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_str = sqlmodel.sql.sqltypes.AutoString


def upgrade() -> None:
    """Create identity, membership, invitation, session, assignment and audit tables."""
    op.create_table(
        "organizations",
        sa.Column("id", _str(), nullable=False),
        sa.Column("name", _str(), nullable=False),
        sa.Column("slug", _str(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_organizations_slug"), "organizations", ["slug"], unique=True)

    op.create_table(
        "people",
        sa.Column("id", _str(), nullable=False),
        sa.Column("email", _str(), nullable=False),
        sa.Column("name", _str(), nullable=False, server_default=""),
        sa.Column("avatar", _str(), nullable=True),
        sa.Column("password_hash", _str(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_people_email"), "people", ["email"], unique=True)

    op.create_table(
        "memberships",
        sa.Column("id", _str(), nullable=False),
        sa.Column("person_id", _str(), nullable=False),
        sa.Column("org_id", _str(), nullable=False),
        sa.Column("role", _str(), nullable=False),
        sa.Column("space", _str(), nullable=False),
        sa.Column("account_id", _str(), nullable=True),
        sa.Column("vendor_id", _str(), nullable=True),
        sa.Column("scope_key", _str(), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"]),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_memberships_person_id"), "memberships", ["person_id"])
    op.create_index(op.f("ix_memberships_org_id"), "memberships", ["org_id"])
    # Only active rows take part in uniqueness
    op.create_index(
        "uq_memberships_active_tuple",
        "memberships",
        ["person_id", "org_id", "role", "space", "scope_key"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "invitations",
        sa.Column("id", _str(), nullable=False),
        sa.Column("token_hash", _str(), nullable=False),
        sa.Column("email", _str(), nullable=False),
        sa.Column("name", _str(), nullable=True),
        sa.Column("org_id", _str(), nullable=False),
        sa.Column("role", _str(), nullable=False),
        sa.Column("space", _str(), nullable=False),
        sa.Column("account_id", _str(), nullable=True),
        sa.Column("vendor_id", _str(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("created_by_id", _str(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_invitations_token_hash"), "invitations", ["token_hash"], unique=True)
    op.create_index(op.f("ix_invitations_email"), "invitations", ["email"])
    op.create_index(op.f("ix_invitations_org_id"), "invitations", ["org_id"])

    op.create_table(
        "sessions",
        sa.Column("id", _str(), nullable=False),
        sa.Column("person_id", _str(), nullable=False),
        sa.Column("active_membership_id", _str(), nullable=False),
        sa.Column("issued_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"]),
        sa.ForeignKeyConstraint(["active_membership_id"], ["memberships.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sessions_person_id"), "sessions", ["person_id"])
    op.create_index(op.f("ix_sessions_expires_at"), "sessions", ["expires_at"])

    op.create_table(
        "project_assignments",
        sa.Column("id", _str(), nullable=False),
        sa.Column("org_id", _str(), nullable=False),
        sa.Column("vendor_id", _str(), nullable=False),
        sa.Column("project_id", _str(), nullable=False),
        sa.Column("starts_at", sa.DateTime(), nullable=False),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "vendor_id", "project_id", "starts_at"),
    )
    op.create_index(op.f("ix_project_assignments_org_id"), "project_assignments", ["org_id"])
    op.create_index(
        op.f("ix_project_assignments_vendor_id"), "project_assignments", ["vendor_id"]
    )
    op.create_index(
        op.f("ix_project_assignments_project_id"), "project_assignments", ["project_id"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", _str(), nullable=False),
        sa.Column("org_id", _str(), nullable=False, server_default=""),
        sa.Column("person_id", _str(), nullable=False, server_default=""),
        sa.Column("action", _str(), nullable=False),
        sa.Column("resource_type", _str(), nullable=False, server_default=""),
        sa.Column("resource_id", _str(), nullable=False, server_default=""),
        sa.Column("details_json", _str(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_logs_org_id"), "audit_logs", ["org_id"])
    op.create_index(op.f("ix_audit_logs_person_id"), "audit_logs", ["person_id"])
    op.create_index(op.f("ix_audit_logs_action"), "audit_logs", ["action"])


def downgrade() -> None:
    """Drop all access tables."""
    op.drop_table("audit_logs")
    op.drop_table("project_assignments")
    op.drop_table("sessions")
    op.drop_table("invitations")
    op.drop_index("uq_memberships_active_tuple", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("people")
    op.drop_table("organizations")
