# tests/test_timeline.py - Aggregated main-task and project timelines
import pytest

from errors import DependencyError, PreconditionError
from models import IssueStatus, TaskStatus, TimelineEventType
from tests.conftest import make_sub_task


@pytest.mark.asyncio
async def test_sub_task_history_collapses_into_one_entry(service, owner, main_task):
    await service.update_task(owner, main_task.id, name="Kitchen refit")
    sub = await make_sub_task(service, owner, main_task, "Plumbing")
    await service.change_task_status(owner, sub.id, TaskStatus.IN_PROGRESS)
    await service.change_task_status(owner, sub.id, TaskStatus.COMPLETED)

    entries = await service.aggregate_for_work_item(main_task.id)

    # Two main-task events plus one group of three sub-task events
    assert len(entries) == 3
    group = entries[0]
    assert group.is_group
    assert group.sub_task_id == sub.id
    assert group.event_count == 3
    assert [e.event_type for e in group.events] == [
        TimelineEventType.STATUS_CHANGED,
        TimelineEventType.STATUS_CHANGED,
        TimelineEventType.TASK_CREATED,
    ]
    assert group.timestamp == group.events[0].timestamp
    assert [e.event.event_type for e in entries[1:]] == [
        TimelineEventType.MAIN_TASK_UPDATED,
        TimelineEventType.TASK_CREATED,
    ]


@pytest.mark.asyncio
async def test_sub_task_events_never_appear_as_single_entries(service, owner, main_task):
    for name in ("Plumbing", "Wiring"):
        sub = await make_sub_task(service, owner, main_task, name)
        await service.change_task_status(owner, sub.id, TaskStatus.IN_PROGRESS)

    entries = await service.aggregate_for_work_item(main_task.id)
    singles = [e for e in entries if not e.is_group]
    assert all(e.event.work_item_id == main_task.id for e in singles)
    assert sum(1 for e in entries if e.is_group) == 2


@pytest.mark.asyncio
async def test_entries_are_newest_first(service, owner, main_task):
    plumbing = await make_sub_task(service, owner, main_task, "Plumbing")
    await make_sub_task(service, owner, main_task, "Wiring")
    await service.change_task_status(owner, plumbing.id, TaskStatus.IN_PROGRESS)

    entries = await service.aggregate_for_work_item(main_task.id)
    timestamps = [e.timestamp for e in entries]
    assert timestamps == sorted(timestamps, reverse=True)
    # Plumbing moved last, so its group leads
    assert entries[0].sub_task_id == plumbing.id


@pytest.mark.asyncio
async def test_issue_activity_lands_in_the_sub_task_group(service, owner, main_task):
    sub = await make_sub_task(service, owner, main_task, "Tiling")
    issue = (await service.create_issue(owner, sub.id, "Cracked tile")).record
    await service.change_issue_status(owner, issue.id, IssueStatus.CLOSED)

    entries = await service.aggregate_for_work_item(main_task.id)
    group = next(e for e in entries if e.is_group)
    assert [e.event_type for e in group.events][:2] == [
        TimelineEventType.ISSUE_STATUS_CHANGED,
        TimelineEventType.ISSUE_CREATED,
    ]


@pytest.mark.asyncio
async def test_aggregation_is_idempotent(service, owner, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing")
    await service.change_task_status(owner, sub.id, TaskStatus.IN_PROGRESS)

    first = [e.to_dict() for e in await service.aggregate_for_work_item(main_task.id)]
    second = [e.to_dict() for e in await service.aggregate_for_work_item(main_task.id)]
    assert first == second


@pytest.mark.asyncio
async def test_unreadable_sub_task_is_omitted(service, owner, main_task, monkeypatch):
    healthy = await make_sub_task(service, owner, main_task, "Plumbing")
    broken = await make_sub_task(service, owner, main_task, "Wiring")

    original = service.store.list_events

    async def flaky_list_events(item_id):
        if item_id == broken.id:
            raise DependencyError("replica lagging")
        return await original(item_id)

    monkeypatch.setattr(service.store, "list_events", flaky_list_events)
    timeline = await service.timeline.timeline_for(await service.get_task(main_task.id))

    group_ids = [e.sub_task_id for e in timeline.entries if e.is_group]
    assert group_ids == [healthy.id]
    assert len(timeline.warnings) == 1
    assert broken.id in timeline.warnings[0]


@pytest.mark.asyncio
async def test_group_to_dict_shape(service, owner, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing")
    entries = await service.aggregate_for_work_item(main_task.id)
    data = next(e.to_dict() for e in entries if e.is_group)

    assert data["kind"] == "sub_task"
    assert data["sub_task"] == {"id": sub.id, "name": "Plumbing"}
    assert data["event_count"] == 1
    assert data["events"][0]["author"]["name"] == "Olivia Owner"


@pytest.mark.asyncio
async def test_project_timeline_orders_main_tasks_by_latest_activity(service, owner, project, main_task):
    bathroom = (await service.create_task(owner, project.id, "Bathroom")).record
    sub = await make_sub_task(service, owner, main_task, "Plumbing")
    await service.change_task_status(owner, sub.id, TaskStatus.IN_PROGRESS)

    timelines = await service.aggregate_for_project(project.id)
    assert [t.task.id for t in timelines] == [main_task.id, bathroom.id]
    assert timelines[0].latest_activity > timelines[1].latest_activity


@pytest.mark.asyncio
async def test_timeline_of_a_sub_task_is_rejected(service, owner, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing")
    with pytest.raises(PreconditionError):
        await service.aggregate_for_work_item(sub.id)
