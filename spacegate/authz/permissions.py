"""Record-kind allow-lists per role.

The defaults mirror the product's permission matrix. They are configuration:
pass a different ``PermissionPolicy`` to the gate to change them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from spacegate.types import Operation, RecordKind, Role

R = Operation.READ
C = Operation.CREATE
U = Operation.UPDATE
D = Operation.DELETE

_ALL = frozenset(Operation)
_READ = frozenset({R})
_NONE: frozenset[Operation] = frozenset()
_CRU = frozenset({R, C, U})

_DEFAULT_MATRIX: dict[Role, dict[RecordKind, frozenset[Operation]]] = {
    Role.ADMIN: {kind: _ALL for kind in RecordKind},
    Role.SALES: {
        RecordKind.PROJECT: _CRU,
        RecordKind.TASK: _CRU,
        RecordKind.DOCUMENT: _CRU,
        RecordKind.COMMENT: _ALL,
        RecordKind.CHANNEL_MESSAGE: _ALL,
        RecordKind.DELIVERABLE: _READ,
        RecordKind.INVOICE: _READ,
        RecordKind.CONTRACT: _CRU,
        RecordKind.ACCOUNT: _CRU,
        RecordKind.VENDOR: _CRU,
        RecordKind.DEAL: _ALL,
        RecordKind.QUOTE: _ALL,
    },
    Role.DELIVERY: {
        RecordKind.PROJECT: _CRU,
        RecordKind.TASK: _ALL,
        RecordKind.DOCUMENT: _ALL,
        RecordKind.COMMENT: _ALL,
        RecordKind.CHANNEL_MESSAGE: _ALL,
        RecordKind.DELIVERABLE: _ALL,
        RecordKind.INVOICE: _READ,
        RecordKind.CONTRACT: _READ,
        RecordKind.ACCOUNT: _READ,
        RecordKind.VENDOR: _READ,
        RecordKind.DEAL: _READ,
        RecordKind.QUOTE: _READ,
    },
    Role.FINANCE: {
        RecordKind.PROJECT: _READ,
        RecordKind.TASK: _READ,
        RecordKind.DOCUMENT: _READ,
        RecordKind.COMMENT: _CRU,
        RecordKind.CHANNEL_MESSAGE: _CRU,
        RecordKind.DELIVERABLE: _READ,
        RecordKind.INVOICE: _ALL,
        RecordKind.CONTRACT: _CRU,
        RecordKind.ACCOUNT: _READ,
        RecordKind.VENDOR: _READ,
        RecordKind.DEAL: _READ,
        RecordKind.QUOTE: _READ,
    },
    Role.CLIENT_ADMIN: {
        RecordKind.PROJECT: _READ,
        RecordKind.TASK: _ALL,
        RecordKind.DOCUMENT: _ALL,
        RecordKind.COMMENT: _ALL,
        RecordKind.CHANNEL_MESSAGE: _ALL,
        RecordKind.DELIVERABLE: _READ,
        RecordKind.INVOICE: _READ,
        RecordKind.CONTRACT: _READ,
        RecordKind.ACCOUNT: _READ,
        RecordKind.VENDOR: _NONE,
        RecordKind.DEAL: _NONE,
        RecordKind.QUOTE: _READ,
    },
    Role.CLIENT_MEMBER: {
        RecordKind.PROJECT: _READ,
        RecordKind.TASK: _READ,
        RecordKind.DOCUMENT: _READ,
        RecordKind.COMMENT: frozenset({R, C}),
        RecordKind.CHANNEL_MESSAGE: frozenset({R, C}),
        RecordKind.DELIVERABLE: _READ,
        RecordKind.INVOICE: _READ,
        RecordKind.CONTRACT: _READ,
        RecordKind.ACCOUNT: _READ,
        RecordKind.VENDOR: _NONE,
        RecordKind.DEAL: _NONE,
        RecordKind.QUOTE: _READ,
    },
    Role.VENDOR: {
        RecordKind.PROJECT: _READ,
        RecordKind.TASK: frozenset({R, U}),
        RecordKind.DOCUMENT: _READ,
        RecordKind.COMMENT: _ALL,
        RecordKind.CHANNEL_MESSAGE: _ALL,
        RecordKind.DELIVERABLE: _CRU,
        RecordKind.INVOICE: _CRU,
        RecordKind.CONTRACT: _READ,
        RecordKind.ACCOUNT: _NONE,
        # Own vendor profile only; other vendors are never in scope.
        RecordKind.VENDOR: _READ,
        RecordKind.DEAL: _NONE,
        RecordKind.QUOTE: _NONE,
    },
}


@dataclass(frozen=True, slots=True)
class PermissionPolicy:
    """Role -> record kind -> allowed operations. Missing entries deny."""

    matrix: Mapping[Role, Mapping[RecordKind, frozenset[Operation]]]

    def permits(self, role: Role, kind: RecordKind, operation: Operation) -> bool:
        return operation in self.matrix.get(role, {}).get(kind, _NONE)

    def allowed_operations(self, role: Role, kind: RecordKind) -> frozenset[Operation]:
        return self.matrix.get(role, {}).get(kind, _NONE)

    def can_access(self, role: Role, kind: RecordKind) -> bool:
        """True when the role may perform at least one operation on the kind."""
        return bool(self.allowed_operations(role, kind))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Mapping[str, list[str]]]) -> PermissionPolicy:
        """Build a policy from plain strings, e.g. loaded from JSON or YAML.

        Raises ValueError on unknown roles, kinds or operations.
        """
        matrix = {
            Role(role): {
                RecordKind(kind): frozenset(Operation(op) for op in ops)
                for kind, ops in kinds.items()
            }
            for role, kinds in raw.items()
        }
        return cls(matrix=matrix)

    def with_overrides(self, raw: Mapping[str, Mapping[str, list[str]]]) -> PermissionPolicy:
        """Return a copy where the given role/kind cells are replaced."""
        overrides = PermissionPolicy.from_mapping(raw).matrix
        merged = {role: dict(kinds) for role, kinds in self.matrix.items()}
        for role, kinds in overrides.items():
            merged.setdefault(role, {}).update(kinds)
        return PermissionPolicy(matrix=merged)


DEFAULT_POLICY = PermissionPolicy(matrix=_DEFAULT_MATRIX)
