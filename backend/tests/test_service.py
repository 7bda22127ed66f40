# tests/test_service.py - Task lifecycle, cascading deletes, attachments and deadlines
import asyncio

import pytest

from errors import AuthorizationError, DependencyError, NotFoundError, PreconditionError
from models import IssueStatus, ReportType, TaskKind, TaskStatus, TimelineEventType
from service import WorkTrackService
from tests.conftest import make_sub_task


# ============================================================
# CREATION
# ============================================================

@pytest.mark.asyncio
async def test_create_main_task_records_creation(service, owner, project):
    result = await service.create_task(owner, project.id, "Garden", description="Back garden")
    task = result.record

    assert task.is_main_task
    assert task.status == TaskStatus.TODO
    [event] = await service.list_events(task.id)
    assert event.event_type == TimelineEventType.TASK_CREATED
    assert event.details["name"] == "Garden"
    assert event.details["parentId"] is None


@pytest.mark.asyncio
async def test_only_the_project_owner_adds_main_tasks(service, supervisor, project):
    with pytest.raises(AuthorizationError) as exc_info:
        await service.create_task(supervisor, project.id, "Garden")
    assert exc_info.value.code == "WT-AUTH-001"


@pytest.mark.asyncio
async def test_only_the_main_task_owner_adds_sub_tasks(service, supervisor, main_task):
    with pytest.raises(AuthorizationError):
        await service.create_task(supervisor, main_task.project_id, "Plumbing", parent_id=main_task.id)


@pytest.mark.asyncio
async def test_sub_tasks_cannot_nest(service, owner, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing")
    with pytest.raises(PreconditionError) as exc_info:
        await service.create_task(owner, main_task.project_id, "Pipes", parent_id=sub.id)
    assert exc_info.value.code == "WT-STATE-005"


@pytest.mark.asyncio
async def test_collections_have_no_sub_tasks(service, owner, project):
    collection = (await service.create_task(
        owner, project.id, "Deposit", kind=TaskKind.COLLECTION,
    )).record
    with pytest.raises(PreconditionError):
        await service.create_task(owner, project.id, "Invoice", parent_id=collection.id)


@pytest.mark.asyncio
async def test_main_tasks_take_no_assignees(service, owner, member, project):
    with pytest.raises(PreconditionError):
        await service.create_task(owner, project.id, "Garden", assignee_ids=[member.id])


# ============================================================
# UPDATES
# ============================================================

@pytest.mark.asyncio
async def test_member_cannot_edit_description(service, owner, member, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing", assignees=[member])
    with pytest.raises(AuthorizationError) as exc_info:
        await service.update_task(member, sub.id, description="Done early")
    assert exc_info.value.code == "WT-AUTH-003"
    assert (await service.get_task(sub.id)).description is None


@pytest.mark.asyncio
async def test_member_may_update_status_through_update_task(service, owner, member, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing", assignees=[member])
    result = await service.update_task(member, sub.id, status=TaskStatus.IN_PROGRESS)
    assert result.changed
    assert result.record.status == TaskStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_main_task_edit_records_changes(service, owner, main_task):
    result = await service.update_task(owner, main_task.id, name="Kitchen refit")

    assert result.record.name == "Kitchen refit"
    events = await service.list_events(main_task.id)
    assert events[-1].event_type == TimelineEventType.MAIN_TASK_UPDATED
    assert events[-1].details["changes"] == {"name": {"old": "Kitchen", "new": "Kitchen refit"}}


@pytest.mark.asyncio
async def test_unchanged_fields_record_nothing(service, owner, main_task):
    result = await service.update_task(owner, main_task.id, name="Kitchen")
    assert not result.changed
    assert len(await service.list_events(main_task.id)) == 1


@pytest.mark.asyncio
async def test_reassignment_records_who_was_added_and_removed(service, owner, member, supervisor, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing", assignees=[member])

    result = await service.update_task(owner, sub.id, assignee_ids=[supervisor.id])

    assert result.record.assignee_ids == {supervisor.id}
    event = (await service.list_events(sub.id))[-1]
    assert event.event_type == TimelineEventType.ASSIGNMENT_CHANGED
    assert event.details["added"] == [supervisor.id]
    assert event.details["removed"] == [member.id]


@pytest.mark.asyncio
async def test_invalid_field_for_main_task_is_rejected(service, owner, main_task):
    with pytest.raises(PreconditionError):
        await service.update_task(owner, main_task.id, reminder_days=3)


@pytest.mark.asyncio
async def test_clearing_a_task_name_is_rejected_before_any_write(service, owner, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing")

    with pytest.raises(PreconditionError) as exc_info:
        await service.update_task(owner, sub.id, status=TaskStatus.IN_PROGRESS, name=None)

    assert exc_info.value.code == "WT-STATE-005"
    stored = await service.get_task(sub.id)
    assert stored.status == TaskStatus.TODO
    assert stored.name == "Plumbing"
    assert [e.event_type for e in await service.list_events(sub.id)] == [TimelineEventType.TASK_CREATED]


@pytest.mark.asyncio
async def test_clearing_an_issue_title_is_rejected(service, owner, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing")
    issue = (await service.create_issue(owner, sub.id, "Leaking joint")).record

    with pytest.raises(PreconditionError):
        await service.update_issue(owner, issue.id, title=None, description="Still dripping")

    stored = await service.get_issue(issue.id)
    assert stored.title == "Leaking joint"
    assert stored.description is None


@pytest.mark.asyncio
async def test_assigned_tasks_are_listed_for_the_assignee(service, owner, member, main_task):
    plumbing = await make_sub_task(service, owner, main_task, "Plumbing", assignees=[member])
    await make_sub_task(service, owner, main_task, "Wiring")

    assigned = await service.list_assigned_tasks(member.id)
    assert [t.id for t in assigned] == [plumbing.id]


# ============================================================
# DELETION
# ============================================================

@pytest.mark.asyncio
async def test_deleting_a_main_task_removes_everything_under_it(service, owner, member, main_task, attachment_store):
    sub = await make_sub_task(service, owner, main_task, "Tiling", assignees=[member])
    issue = (await service.create_issue(owner, sub.id, "Cracked tile")).record
    upload = (await service.add_attachment(member, sub.id, "floor.jpg", b"jpeg-bytes")).record
    stored_file = attachment_store.root / upload.path
    assert stored_file.exists()

    result = await service.delete_task(owner, main_task.id)

    assert set(result.record.item_ids) == {main_task.id, sub.id}
    assert not stored_file.exists()
    for item_id in (main_task.id, sub.id):
        with pytest.raises(NotFoundError):
            await service.get_task(item_id)
        assert await service.store.list_events(item_id) == []
    with pytest.raises(NotFoundError):
        await service.get_issue(issue.id)
    assert await service.list_assigned_tasks(member.id) == []


@pytest.mark.asyncio
async def test_non_owner_cannot_delete(service, owner, member, main_task):
    sub = await make_sub_task(service, owner, main_task, "Tiling", assignees=[member])
    with pytest.raises(AuthorizationError) as exc_info:
        await service.delete_task(member, sub.id)
    assert exc_info.value.code == "WT-AUTH-001"
    assert (await service.get_task(sub.id)).id == sub.id


@pytest.mark.asyncio
async def test_deleting_a_project_removes_its_tasks(service, owner, project, main_task):
    sub = await make_sub_task(service, owner, main_task, "Tiling")
    result = await service.delete_project(owner, project.id)

    assert set(result.record.item_ids) == {main_task.id, sub.id}
    with pytest.raises(NotFoundError):
        await service.get_project(project.id)


@pytest.mark.asyncio
async def test_only_the_owner_deletes_a_project(service, supervisor, project):
    with pytest.raises(AuthorizationError):
        await service.delete_project(supervisor, project.id)


@pytest.mark.asyncio
async def test_issue_deletion_is_recorded_before_removal(service, owner, main_task):
    sub = await make_sub_task(service, owner, main_task, "Tiling")
    issue = (await service.create_issue(owner, sub.id, "Cracked tile")).record

    result = await service.delete_issue(owner, issue.id)

    assert len(result.event_ids) == 1
    with pytest.raises(NotFoundError):
        await service.get_issue(issue.id)
    event = (await service.list_events(sub.id))[-1]
    assert event.event_type == TimelineEventType.ISSUE_DELETED
    assert event.details["issueId"] == issue.id


@pytest.mark.asyncio
async def test_issue_assignee_cannot_delete_it(service, owner, member, main_task):
    sub = await make_sub_task(service, owner, main_task, "Tiling")
    issue = (await service.create_issue(owner, sub.id, "Cracked tile", assignee_ids=[member.id])).record
    with pytest.raises(AuthorizationError):
        await service.delete_issue(member, issue.id)
    assert (await service.get_issue(issue.id)).status == IssueStatus.OPEN


@pytest.mark.asyncio
async def test_open_issue_counts_per_sub_task(service, owner, main_task):
    tiling = await make_sub_task(service, owner, main_task, "Tiling")
    wiring = await make_sub_task(service, owner, main_task, "Wiring")
    await service.create_issue(owner, tiling.id, "Cracked tile")
    closed = (await service.create_issue(owner, tiling.id, "Grout colour")).record
    await service.change_issue_status(owner, closed.id, IssueStatus.CLOSED)

    counts = await service.open_issue_counts(main_task.id)
    assert counts == {tiling.id: 1, wiring.id: 0}


# ============================================================
# ATTACHMENTS
# ============================================================

@pytest.mark.asyncio
async def test_assignee_uploads_a_daily_report(service, owner, member, main_task, attachment_store):
    sub = await make_sub_task(service, owner, main_task, "Painting", assignees=[member])

    result = await service.add_attachment(
        member, sub.id, "day1.jpg", b"photo", content_type="image/jpeg", latitude=1.5, longitude=2.5,
    )

    attachment = result.record
    assert attachment.report_type == ReportType.DAILY_PROGRESS
    assert attachment.owner_name == "Mia Member"
    assert attachment.path.startswith(f"attachments/{sub.id}/")
    assert attachment.path.endswith("-day1.jpg")
    assert (attachment_store.root / attachment.path).read_bytes() == b"photo"
    event = (await service.list_events(sub.id))[-1]
    assert event.event_type == TimelineEventType.ATTACHMENT_ADDED
    assert event.details["attachmentId"] == attachment.id


@pytest.mark.asyncio
async def test_stranger_cannot_upload(service, owner, stranger, main_task):
    sub = await make_sub_task(service, owner, main_task, "Painting")
    with pytest.raises(AuthorizationError) as exc_info:
        await service.add_attachment(stranger, sub.id, "day1.jpg", b"photo")
    assert exc_info.value.code == "WT-AUTH-002"


@pytest.mark.asyncio
async def test_deleting_an_attachment_removes_the_file(service, owner, member, main_task, attachment_store):
    sub = await make_sub_task(service, owner, main_task, "Painting", assignees=[member])
    attachment = (await service.add_attachment(member, sub.id, "day1.jpg", b"photo")).record

    with pytest.raises(AuthorizationError):
        await service.delete_attachment(member, attachment.id)

    result = await service.delete_attachment(owner, attachment.id)
    assert result.warnings == []
    assert await service.list_attachments(sub.id) == []
    assert not (attachment_store.root / attachment.path).exists()
    assert (await service.list_events(sub.id))[-1].event_type == TimelineEventType.ATTACHMENT_DELETED


# ============================================================
# DEADLINES
# ============================================================

@pytest.mark.asyncio
async def test_slow_store_call_hits_the_deadline(session_factory, attachment_store, main_task, monkeypatch):
    hurried = WorkTrackService(session_factory, attachment_store, timeout=0.05)

    async def slow_get(item_id):
        await asyncio.sleep(1)

    monkeypatch.setattr(hurried.store, "get_work_item", slow_get)
    with pytest.raises(DependencyError) as exc_info:
        await hurried.get_task(main_task.id)
    assert exc_info.value.code == "WT-DEP-003"
    assert exc_info.value.http_status == 504


@pytest.mark.asyncio
async def test_deadline_does_not_abandon_a_committed_status_change(
    session_factory, attachment_store, owner, main_task, monkeypatch,
):
    hurried = WorkTrackService(session_factory, attachment_store, timeout=0.05)
    sub = await make_sub_task(hurried, owner, main_task, "Plumbing")

    async def slow_name(user_id):
        await asyncio.sleep(0.2)
        return "Olivia Owner"

    # Name lookups run only after the status has committed
    monkeypatch.setattr(hurried.directory, "display_name", slow_name)
    result = await hurried.change_task_status(owner, sub.id, TaskStatus.IN_PROGRESS)

    assert result.changed
    assert result.warnings == []
    assert (await hurried.get_task(sub.id)).status == TaskStatus.IN_PROGRESS
    events = await hurried.list_events(sub.id)
    assert [e.event_type for e in events] == [
        TimelineEventType.TASK_CREATED,
        TimelineEventType.STATUS_CHANGED,
    ]
    assert events[-1].details == {"oldStatus": "To Do", "newStatus": "In Progress"}


@pytest.mark.asyncio
async def test_deadline_before_any_write_leaves_nothing_behind(
    session_factory, attachment_store, owner, main_task, monkeypatch,
):
    hurried = WorkTrackService(session_factory, attachment_store, timeout=0.05)
    sub = await make_sub_task(hurried, owner, main_task, "Plumbing")
    real_count = hurried.store.count_open_issues

    async def slow_count(task_id):
        await asyncio.sleep(1)
        return await real_count(task_id)

    monkeypatch.setattr(hurried.store, "count_open_issues", slow_count)
    with pytest.raises(DependencyError) as exc_info:
        await hurried.change_task_status(owner, sub.id, TaskStatus.COMPLETED)

    assert exc_info.value.code == "WT-DEP-003"
    assert (await hurried.get_task(sub.id)).status == TaskStatus.TODO
    assert len(await hurried.list_events(sub.id)) == 1
