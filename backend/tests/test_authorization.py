# tests/test_authorization.py - Ownership and assignee rules
import pytest

from auth import CurrentUser
from authorization import DenialReason, RequestedChange, can_transition, ensure_allowed
from errors import AuthorizationError
from models import (
    Issue, IssueAssignment, IssueStatus, TaskKind, TaskStatus, WorkItem,
    WorkItemAssignment,
)

OWNER = CurrentUser(id="owner", role="supervisor")
MEMBER = CurrentUser(id="member", role="member")
SUPERVISOR = CurrentUser(id="supervisor", role="supervisor")
ADMIN = CurrentUser(id="admin", role="admin")


def _sub_task(assignees=()):
    return WorkItem(
        id="sub-1", project_id="p1", parent_id="main-1", name="Tile the floor",
        owner_id=OWNER.id, kind=TaskKind.STANDARD, status=TaskStatus.TODO,
        assignments=[WorkItemAssignment(user_id=uid) for uid in assignees],
    )


def _main_task():
    return WorkItem(
        id="main-1", project_id="p1", parent_id=None, name="Kitchen",
        owner_id=OWNER.id, kind=TaskKind.STANDARD, status=TaskStatus.TODO,
    )


def _issue(assignees=()):
    return Issue(
        id="issue-1", task_id="sub-1", project_id="p1", owner_id=OWNER.id,
        title="Cracked tile", status=IssueStatus.OPEN,
        assignments=[IssueAssignment(user_id=uid) for uid in assignees],
    )


def test_owner_may_edit_any_field():
    decision = can_transition(OWNER, _sub_task(), RequestedChange.update("name", "description"))
    assert decision.allowed


def test_owner_may_delete():
    assert can_transition(OWNER, _sub_task(), RequestedChange.delete()).allowed


def test_assigned_member_may_change_status():
    assert can_transition(MEMBER, _sub_task([MEMBER.id]), RequestedChange.status()).allowed


def test_assigned_supervisor_may_change_status():
    assert can_transition(SUPERVISOR, _sub_task([SUPERVISOR.id]), RequestedChange.status()).allowed


def test_assigned_member_may_not_edit_description():
    decision = can_transition(MEMBER, _sub_task([MEMBER.id]), RequestedChange.update("description"))
    assert not decision.allowed
    assert decision.reason == DenialReason.FORBIDDEN_FIELD


def test_status_plus_other_field_is_rejected_as_a_whole():
    decision = can_transition(
        MEMBER, _sub_task([MEMBER.id]), RequestedChange.update("status", "due_date"),
    )
    assert decision.reason == DenialReason.FORBIDDEN_FIELD


def test_empty_update_from_assignee_is_rejected():
    decision = can_transition(MEMBER, _sub_task([MEMBER.id]), RequestedChange.update())
    assert decision.reason == DenialReason.FORBIDDEN_FIELD


def test_unassigned_user_is_rejected():
    decision = can_transition(SUPERVISOR, _sub_task([MEMBER.id]), RequestedChange.status())
    assert decision.reason == DenialReason.NOT_ASSIGNED


def test_delete_is_owner_only_even_for_assignees():
    decision = can_transition(MEMBER, _sub_task([MEMBER.id]), RequestedChange.delete())
    assert decision.reason == DenialReason.NOT_OWNER


def test_creating_children_is_owner_only():
    decision = can_transition(MEMBER, _sub_task([MEMBER.id]), RequestedChange.create_child())
    assert decision.reason == DenialReason.NOT_OWNER


def test_main_task_is_owner_only():
    decision = can_transition(MEMBER, _main_task(), RequestedChange.status())
    assert decision.reason == DenialReason.NOT_OWNER


def test_admin_role_has_no_assignee_rights():
    decision = can_transition(ADMIN, _sub_task([ADMIN.id]), RequestedChange.status())
    assert decision.reason == DenialReason.FORBIDDEN_FIELD


def test_assignee_may_attach_reports():
    assert can_transition(MEMBER, _sub_task([MEMBER.id]), RequestedChange.attach()).allowed


def test_issue_uses_its_own_assignee_set():
    # Assigned to the issue, not the sub-task
    assert can_transition(MEMBER, _issue([MEMBER.id]), RequestedChange.status()).allowed
    decision = can_transition(SUPERVISOR, _issue([MEMBER.id]), RequestedChange.status())
    assert decision.reason == DenialReason.NOT_ASSIGNED


def test_issue_attachments_are_rejected():
    decision = can_transition(MEMBER, _issue([MEMBER.id]), RequestedChange.attach())
    assert decision.reason == DenialReason.FORBIDDEN_FIELD


def test_ensure_allowed_raises_with_catalogue_code():
    with pytest.raises(AuthorizationError) as exc_info:
        ensure_allowed(SUPERVISOR, _sub_task(), RequestedChange.status())
    assert exc_info.value.code == "WT-AUTH-002"
    assert exc_info.value.http_status == 403
    assert exc_info.value.to_dict()["reason"] == "not_assigned"


def test_ensure_allowed_passes_silently():
    ensure_allowed(OWNER, _sub_task(), RequestedChange.delete())
