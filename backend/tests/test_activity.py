# tests/test_activity.py - Daily activity rollups and the projected timeline
from datetime import datetime, timedelta, timezone

import pytest

from errors import DependencyError, NotFoundError
from models import IssueSeverity, IssueStatus, TaskKind, TaskStatus, TimelineEventType, utcnow
from tests.conftest import make_sub_task


def _today():
    return utcnow().date()


# ============================================================
# DAILY ACTIVITY
# ============================================================

@pytest.mark.asyncio
async def test_daily_activity_collects_the_days_changes(service, owner, member, project, main_task):
    plumbing = await make_sub_task(service, owner, main_task, "Plumbing", assignees=[member])
    wiring = await make_sub_task(service, owner, main_task, "Wiring")
    await service.change_task_status(member, plumbing.id, TaskStatus.COMPLETED)

    leak = (await service.create_issue(owner, wiring.id, "Loose socket", severity=IssueSeverity.CRITICAL)).record
    scuff = (await service.create_issue(owner, wiring.id, "Scuffed wall")).record
    await service.change_issue_status(owner, scuff.id, IssueStatus.CLOSED)
    upload = (await service.add_attachment(member, plumbing.id, "pipes.jpg", b"photo")).record

    report = await service.daily_activity(project.id, _today())

    assert {t.id for t in report.tasks_created} == {main_task.id, plumbing.id, wiring.id}
    assert [t.id for t in report.tasks_completed] == [plumbing.id]
    assert {i.id for i in report.issues_opened} == {leak.id, scuff.id}
    assert [i.id for i in report.issues_closed] == [scuff.id]
    assert [a.id for a in report.attachments] == [upload.id]
    assert report.warnings == []

    timestamps = [e.timestamp for e in report.events]
    assert timestamps == sorted(timestamps)
    assert len(report.events) == 8
    assert report.events[0].event_type == TimelineEventType.TASK_CREATED

    body = report.to_dict()
    assert body["date"] == _today().isoformat()
    assert body["tasks_completed"] == [{"id": plumbing.id, "name": "Plumbing", "parent_id": main_task.id}]
    assert {"id": leak.id, "title": "Loose socket", "severity": "Critical"} in body["issues_opened"]
    assert body["issues_closed"] == [{"id": scuff.id, "title": "Scuffed wall"}]
    assert body["attachments"] == [{
        "id": upload.id, "url": upload.url, "filename": "pipes.jpg", "owner_name": "Mia Member",
    }]
    assert body["events"][-1]["type"] == "ATTACHMENT_ADDED"
    assert body["events"][-1]["author"]["name"] == "Mia Member"


@pytest.mark.asyncio
async def test_daily_activity_for_another_day_is_empty(service, owner, project, main_task):
    await make_sub_task(service, owner, main_task, "Plumbing", status=TaskStatus.COMPLETED)

    report = await service.daily_activity(project.id, _today() - timedelta(days=1))

    assert report.tasks_created == []
    assert report.tasks_completed == []
    assert report.events == []


@pytest.mark.asyncio
async def test_completed_means_completed_that_day(service, owner, project, main_task):
    sub = await make_sub_task(service, owner, main_task, "Plumbing")
    await service.store.update_work_item(sub.id, status=TaskStatus.COMPLETED)
    # Backdate creation; the completion stays today
    last_week = utcnow() - timedelta(days=7)
    await service.store.update_work_item(sub.id, created_at=last_week)

    today = await service.daily_activity(project.id, _today())
    assert [t.id for t in today.tasks_completed] == [sub.id]
    assert sub.id not in {t.id for t in today.tasks_created}

    then = await service.daily_activity(project.id, last_week.date())
    assert [t.id for t in then.tasks_created] == [sub.id]
    assert then.tasks_completed == []


@pytest.mark.asyncio
async def test_unreadable_task_is_left_out_of_the_days_uploads(service, owner, member, project, main_task, monkeypatch):
    plumbing = await make_sub_task(service, owner, main_task, "Plumbing", assignees=[member])
    wiring = await make_sub_task(service, owner, main_task, "Wiring", assignees=[member])
    kept = (await service.add_attachment(member, plumbing.id, "pipes.jpg", b"photo")).record
    await service.add_attachment(member, wiring.id, "cables.jpg", b"photo")

    real_list = service.store.list_attachments

    async def flaky_list(work_item_id):
        if work_item_id == wiring.id:
            raise DependencyError("attachment index unavailable")
        return await real_list(work_item_id)

    monkeypatch.setattr(service.store, "list_attachments", flaky_list)
    report = await service.daily_activity(project.id, _today())

    assert [a.id for a in report.attachments] == [kept.id]
    assert len(report.warnings) == 1
    assert wiring.id in report.warnings[0]
    assert len(report.tasks_created) == 3


@pytest.mark.asyncio
async def test_daily_activity_for_unknown_project(service):
    with pytest.raises(NotFoundError):
        await service.daily_activity("missing", _today())


# ============================================================
# PROJECTED TIMELINE
# ============================================================

@pytest.mark.asyncio
async def test_projected_timeline_orders_by_due_date(service, owner, project, main_task):
    soon = datetime(2030, 5, 1, 9, tzinfo=timezone.utc)
    later = datetime(2030, 6, 1, 9, tzinfo=timezone.utc)

    tiling = (await service.create_task(
        owner, project.id, "Tiling", parent_id=main_task.id, due_date=later,
    )).record
    plumbing = (await service.create_task(
        owner, project.id, "Plumbing", parent_id=main_task.id, due_date=soon,
    )).record
    await make_sub_task(service, owner, main_task, "Unscheduled")
    deposit = (await service.create_task(
        owner, project.id, "Deposit", kind=TaskKind.COLLECTION,
        due_date=soon + timedelta(days=3), amount=2500,
    )).record
    await service.create_issue(owner, tiling.id, "Cracked tile")
    await service.create_issue(owner, tiling.id, "Grout missing")

    timeline = await service.projected_timeline(project.id)

    assert [p.task.id for p in timeline.tasks] == [plumbing.id, deposit.id, tiling.id]
    assert [p.open_issues for p in timeline.tasks] == [0, 0, 2]
    assert timeline.warnings == []

    body = timeline.to_dict()
    assert body["tasks"][0]["due_date"] == soon.isoformat()
    assert body["tasks"][1]["kind"] == "collection"
    assert body["tasks"][2]["parent_id"] == main_task.id


@pytest.mark.asyncio
async def test_projected_timeline_without_due_dates_is_empty(service, owner, project, main_task):
    await make_sub_task(service, owner, main_task, "Plumbing")
    assert (await service.projected_timeline(project.id)).tasks == []
