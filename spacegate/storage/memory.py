"""Shared state for the in-memory repositories (dev/testing without a database)."""

from __future__ import annotations

import asyncio
from typing import TypeVar

from sqlmodel import SQLModel

from spacegate.models.database import (
    Invitation,
    Membership,
    Organization,
    Person,
    ProjectAssignment,
    SessionRecord,
)

_T = TypeVar("_T", bound=SQLModel)


def detached(row: _T) -> _T:
    """Return a copy so callers never hold a reference into the store."""
    return type(row)(**row.model_dump())


class InMemoryStore:
    """Tables as dicts keyed by primary key.

    Every write that must be atomic with a preceding read holds ``lock``;
    that is what makes conditional updates race-free under asyncio.
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.organizations: dict[str, Organization] = {}
        self.people: dict[str, Person] = {}
        self.memberships: dict[str, Membership] = {}
        self.invitations: dict[str, Invitation] = {}
        self.sessions: dict[str, SessionRecord] = {}
        self.assignments: dict[str, ProjectAssignment] = {}

    def person_by_email(self, email: str) -> Person | None:
        email = email.lower()
        return next((p for p in self.people.values() if p.email == email), None)

    def active_duplicate(self, membership: Membership) -> Membership | None:
        return next(
            (
                m
                for m in self.memberships.values()
                if m.is_active
                and m.person_id == membership.person_id
                and m.org_id == membership.org_id
                and m.role == membership.role
                and m.space == membership.space
                and m.scope_key == membership.scope_key
            ),
            None,
        )
