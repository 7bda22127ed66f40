# authorization.py - Single decision point for every mutating entry point
"""
Authorization Gate.

Every mutation asks one question, ``can_transition(actor, item, change)``,
instead of re-deriving ownership and role checks inline. Rules, in order:

1. The owner may do anything on an item they own.
2. Deletion is owner-only.
3. Creating children (sub-tasks, issues) is owner-only.
4. Main tasks have no assignable status; non-owners may not touch them.
5. A non-owner must be in the item's assignee set.
6. Only ``supervisor`` and ``member`` assignees get assignee rights.
7. Assignees may attach progress reports, and may change ``status`` only.

Issues follow rules 5-7 against their own assignee set, independent of
the parent sub-task's assignees.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from errors import AuthorizationError
from models import Issue, Project, UserRole, WorkItem

ASSIGNEE_ROLES = {UserRole.SUPERVISOR.value, UserRole.MEMBER.value}
ASSIGNEE_EDITABLE_FIELDS = frozenset({"status"})


class ChangeAction(str, Enum):
    UPDATE = "update"
    DELETE = "delete"
    CREATE_CHILD = "create_child"
    ATTACH = "attach"


class DenialReason(str, Enum):
    NOT_OWNER = "not_owner"
    NOT_ASSIGNED = "not_assigned"
    FORBIDDEN_FIELD = "forbidden_field"


@dataclass(frozen=True)
class RequestedChange:
    action: ChangeAction
    fields: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def status(cls) -> "RequestedChange":
        return cls(ChangeAction.UPDATE, frozenset({"status"}))

    @classmethod
    def update(cls, *fields: str) -> "RequestedChange":
        return cls(ChangeAction.UPDATE, frozenset(fields))

    @classmethod
    def delete(cls) -> "RequestedChange":
        return cls(ChangeAction.DELETE)

    @classmethod
    def create_child(cls) -> "RequestedChange":
        return cls(ChangeAction.CREATE_CHILD)

    @classmethod
    def attach(cls) -> "RequestedChange":
        return cls(ChangeAction.ATTACH)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenialReason] = None
    message: str = ""

    @classmethod
    def allow(cls) -> "Decision":
        return cls(True)

    @classmethod
    def deny(cls, reason: DenialReason, message: str) -> "Decision":
        return cls(False, reason, message)


def can_transition(actor, item, change: RequestedChange) -> Decision:
    """Decide whether ``actor`` may apply ``change`` to ``item``.

    ``actor`` is anything with ``id`` and ``role`` (auth.CurrentUser);
    ``item`` is a WorkItem or an Issue.
    """
    if item.owner_id == actor.id:
        return Decision.allow()

    if isinstance(item, Issue):
        kind = "issue"
    elif isinstance(item, Project):
        kind = "project"
    else:
        kind = "task"

    if change.action == ChangeAction.DELETE:
        return Decision.deny(DenialReason.NOT_OWNER, f"Only the owner can delete this {kind}")

    if change.action == ChangeAction.CREATE_CHILD:
        return Decision.deny(DenialReason.NOT_OWNER, f"Only the owner can add to this {kind}")

    if isinstance(item, WorkItem) and item.is_main_task:
        return Decision.deny(
            DenialReason.NOT_OWNER,
            "Only the owner can change a main task; its status is not assignable",
        )

    if actor.id not in item.assignee_ids:
        return Decision.deny(DenialReason.NOT_ASSIGNED, f"You are not assigned to this {kind}")

    role = getattr(actor.role, "value", actor.role)
    if role not in ASSIGNEE_ROLES:
        return Decision.deny(
            DenialReason.FORBIDDEN_FIELD,
            f"Role '{role}' may not edit {kind}s it does not own",
        )

    if change.action == ChangeAction.ATTACH:
        if isinstance(item, Issue):
            return Decision.deny(DenialReason.FORBIDDEN_FIELD, "Attachments belong to tasks")
        return Decision.allow()

    forbidden = change.fields - ASSIGNEE_EDITABLE_FIELDS
    if not change.fields or forbidden:
        names = ", ".join(sorted(forbidden)) or "(none)"
        return Decision.deny(
            DenialReason.FORBIDDEN_FIELD,
            f"Assignees may only change status; forbidden field(s) for role '{role}': {names}",
        )

    return Decision.allow()


def ensure_allowed(actor, item, change: RequestedChange) -> None:
    """Raise AuthorizationError unless the gate allows the change"""
    decision = can_transition(actor, item, change)
    if not decision.allowed:
        raise AuthorizationError(decision.reason, decision.message)
