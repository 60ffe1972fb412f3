"""
Who may do what.

Identity is resolved upstream; this module only decides whether an already
identified actor may invoke a workflow operation. Services receive a policy
instead of checking roles at each call site.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from barangay.errors import PermissionDenied
from barangay.models.enums import ActorRole


class Operation:
    """Names of the role-gated operations."""
    SUBMIT = "submit"
    UPDATE_DETAILS = "update_details"
    APPROVE = "approve"
    REJECT = "reject"
    RELEASE = "release"
    ADVANCE_PROGRESS = "advance_progress"
    INVALIDATE = "invalidate"
    VIEW_QUEUE = "view_queue"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as vouched for by the identity provider."""
    actor_id: str
    role: ActorRole


_APPROVERS = frozenset({ActorRole.ADMIN, ActorRole.CAPTAIN})
_SUBMITTERS = frozenset({ActorRole.ADMIN, ActorRole.CAPTAIN, ActorRole.PUROK_LEADER, ActorRole.STAFF})

DEFAULT_REQUIRED_ROLES: Dict[str, FrozenSet[ActorRole]] = {
    Operation.SUBMIT: _SUBMITTERS,
    Operation.UPDATE_DETAILS: _SUBMITTERS,
    Operation.APPROVE: _APPROVERS,
    Operation.REJECT: _APPROVERS,
    Operation.RELEASE: _APPROVERS,
    Operation.INVALIDATE: _APPROVERS,
    Operation.VIEW_QUEUE: _APPROVERS,
    Operation.ADVANCE_PROGRESS: frozenset({ActorRole.ADMIN, ActorRole.CAPTAIN, ActorRole.PUROK_LEADER}),
}


class RolePolicy:
    """Maps each operation to the roles allowed to perform it."""

    def __init__(self, required_roles: Optional[Mapping[str, Iterable[ActorRole]]] = None):
        source = DEFAULT_REQUIRED_ROLES if required_roles is None else required_roles
        self._required_roles = {op: frozenset(roles) for op, roles in source.items()}

    def required_roles_for(self, operation: str) -> FrozenSet[ActorRole]:
        # Unknown operations are closed by default
        return self._required_roles.get(operation, frozenset())

    def allows(self, actor: Actor, operation: str) -> bool:
        return actor.role in self.required_roles_for(operation)

    def require(self, actor: Actor, operation: str) -> None:
        if not self.allows(actor, operation):
            raise PermissionDenied(operation, actor.role)
