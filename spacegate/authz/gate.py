"""Authorization gate: a pure decision over (context, operation, target).

The gate holds no mutable state and never touches storage. Vendor project
assignments arrive already resolved inside ``context.scope.active_project_ids``.
A denial is a ``Decision`` with ``allow=False``; only malformed input raises.
"""

from __future__ import annotations

from dataclasses import dataclass

from spacegate.authz.context import AccessContext, Target
from spacegate.authz.permissions import DEFAULT_POLICY, PermissionPolicy
from spacegate.authz.predicate import ScopePredicate
from spacegate.exceptions import MalformedRequest
from spacegate.types import Operation, RecordKind, Space, is_consistent


@dataclass(frozen=True, slots=True)
class Decision:
    allow: bool
    predicate: ScopePredicate | None = None
    reason: str | None = None

    @classmethod
    def allowed(cls, predicate: ScopePredicate) -> Decision:
        return cls(allow=True, predicate=predicate)

    @classmethod
    def denied(cls, reason: str) -> Decision:
        return cls(allow=False, reason=reason)

    def __bool__(self) -> bool:
        return self.allow


class AuthorizationGate:
    def __init__(
        self,
        policy: PermissionPolicy = DEFAULT_POLICY,
        *,
        vendor_profile_requires_assignment: bool = False,
    ) -> None:
        self._policy = policy
        self._vendor_profile_requires_assignment = vendor_profile_requires_assignment

    @property
    def policy(self) -> PermissionPolicy:
        return self._policy

    def authorize(
        self, context: AccessContext, operation: Operation | str, target: Target
    ) -> Decision:
        """Decide whether ``context`` may perform ``operation`` on ``target``.

        Rules are evaluated in order and the first match wins: tenancy and
        role/space consistency, then the internal, client and vendor branches,
        then deny.

        Only a missing ``org_id`` raises MalformedRequest. The narrower
        markers are optional on a target: a client caller against a target
        without ``account_id`` is denied ``out_of_scope``, and a vendor
        caller against one without ``project_id`` is denied
        (``no_active_assignment`` or ``project_not_assigned``) unless it is the
        vendor's own profile record. Callers should read an unmarked target as
        "deny", not as a programming error.
        """
        op, kind = _parse(operation, target)

        if target.org_id != context.org_id:
            return Decision.denied("org_mismatch")
        if not is_consistent(context.role, context.space):
            return Decision.denied("role_space_mismatch")

        if context.space == Space.INTERNAL:
            return Decision.allowed(ScopePredicate.build(org_id=context.org_id))
        if context.space == Space.CLIENT:
            return self._client(context, op, kind, target)
        if context.space == Space.VENDOR:
            return self._vendor(context, op, kind, target)
        return Decision.denied("unknown_space")

    def _client(
        self,
        context: AccessContext,
        op: Operation,
        kind: RecordKind | None,
        target: Target,
    ) -> Decision:
        account_id = context.scope.account_id
        if not account_id:
            return Decision.denied("missing_scope")
        if target.account_id != account_id:
            return Decision.denied("out_of_scope")
        if not self._kind_permits(context, kind, op):
            return Decision.denied("operation_not_permitted")
        return Decision.allowed(
            ScopePredicate.build(org_id=context.org_id, account_id=account_id)
        )

    def _vendor(
        self,
        context: AccessContext,
        op: Operation,
        kind: RecordKind | None,
        target: Target,
    ) -> Decision:
        scope = context.scope
        if not scope.vendor_id:
            return Decision.denied("missing_scope")
        if target.vendor_id and target.vendor_id != scope.vendor_id:
            return Decision.denied("out_of_scope")

        # The vendor's own profile record carries no project.
        if kind == RecordKind.VENDOR and target.project_id is None:
            if target.vendor_id != scope.vendor_id:
                return Decision.denied("out_of_scope")
            if self._vendor_profile_requires_assignment and not scope.active_project_ids:
                return Decision.denied("no_active_assignment")
            if not self._kind_permits(context, kind, op):
                return Decision.denied("operation_not_permitted")
            return Decision.allowed(
                ScopePredicate.build(org_id=context.org_id, vendor_id=scope.vendor_id)
            )

        if not scope.active_project_ids:
            return Decision.denied("no_active_assignment")
        if target.project_id not in scope.active_project_ids:
            return Decision.denied("project_not_assigned")
        if not self._kind_permits(context, kind, op):
            return Decision.denied("operation_not_permitted")
        return Decision.allowed(
            ScopePredicate.build(org_id=context.org_id).and_in(
                "project_id", scope.active_project_ids
            )
        )

    def _kind_permits(
        self, context: AccessContext, kind: RecordKind | None, op: Operation
    ) -> bool:
        # Without a record kind only tenancy is checked.
        if kind is None:
            return True
        return self._policy.permits(context.role, kind, op)


def _parse(operation: Operation | str, target: Target) -> tuple[Operation, RecordKind | None]:
    if not isinstance(target, Target):
        msg = f"target must be a Target, got {type(target).__name__}"
        raise MalformedRequest(msg)
    try:
        op = Operation(operation)
    except ValueError as exc:
        msg = f"Unknown operation: {operation!r}"
        raise MalformedRequest(msg) from exc
    if not target.org_id:
        msg = "Target is missing its org_id tenancy marker"
        raise MalformedRequest(msg)
    if target.kind is None:
        return op, None
    try:
        return op, RecordKind(target.kind)
    except ValueError as exc:
        msg = f"Unknown record kind: {target.kind!r}"
        raise MalformedRequest(msg) from exc
