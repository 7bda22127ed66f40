# activity.py - Daily progress rollups and the projected due-date timeline
"""
Project activity views.

``daily_activity`` gathers what happened in a project on one calendar
day (UTC): tasks created and completed, issues opened and closed,
attachments added, and every timeline event of the day in order. It is
the data behind a daily progress report. Attendance is not tracked.

``projected_timeline`` lists every task with a due date, soonest first,
with its open-issue count.

Per-task reads (event logs, attachments, issue counts) fan out
concurrently; a task whose reads fail is left out and noted in
``warnings``.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from fanout import fan_out
from models import (
    Attachment, Issue, IssueStatus, TaskStatus, TimelineEvent, WorkItem,
)
from timeline import event_to_dict

logger = logging.getLogger("worktrack.activity")


def on_day(value: Optional[datetime], day: date) -> bool:
    return value is not None and value.date() == day


@dataclass
class DailyActivity:
    project_id: str
    day: date
    tasks_created: List[WorkItem] = field(default_factory=list)
    tasks_completed: List[WorkItem] = field(default_factory=list)
    issues_opened: List[Issue] = field(default_factory=list)
    issues_closed: List[Issue] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    events: List[TimelineEvent] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        def task_row(t: WorkItem) -> dict:
            return {"id": t.id, "name": t.name, "parent_id": t.parent_id}

        return {
            "project_id": self.project_id,
            "date": self.day.isoformat(),
            "tasks_created": [task_row(t) for t in self.tasks_created],
            "tasks_completed": [task_row(t) for t in self.tasks_completed],
            "issues_opened": [
                {"id": i.id, "title": i.title, "severity": i.severity.value}
                for i in self.issues_opened
            ],
            "issues_closed": [{"id": i.id, "title": i.title} for i in self.issues_closed],
            "attachments": [
                {"id": a.id, "url": a.url, "filename": a.filename, "owner_name": a.owner_name}
                for a in self.attachments
            ],
            "events": [event_to_dict(e) for e in self.events],
            "warnings": self.warnings,
        }


@dataclass
class ProjectedTask:
    task: WorkItem
    open_issues: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.task.id,
            "name": self.task.name,
            "parent_id": self.task.parent_id,
            "kind": self.task.kind.value,
            "status": self.task.status.value,
            "due_date": self.task.due_date.isoformat(),
            "open_issues": self.open_issues,
        }


@dataclass
class ProjectedTimeline:
    project_id: str
    tasks: List[ProjectedTask] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "tasks": [t.to_dict() for t in self.tasks],
            "warnings": self.warnings,
        }


class ActivityAggregator:
    def __init__(self, store):
        self.store = store

    async def daily_activity(self, project_id: str, day: date) -> DailyActivity:
        await self.store.get_project(project_id)
        tasks = await self.store.list_project_tasks(project_id)
        issues = await self.store.list_project_issues(project_id)

        report = DailyActivity(project_id=project_id, day=day)
        report.tasks_created = [t for t in tasks if on_day(t.created_at, day)]
        report.tasks_completed = [
            t for t in tasks
            if t.status == TaskStatus.COMPLETED and on_day(t.updated_at, day)
        ]
        report.issues_opened = [i for i in issues if on_day(i.created_at, day)]
        report.issues_closed = [
            i for i in issues
            if i.status == IssueStatus.CLOSED and on_day(i.updated_at, day)
        ]

        logs = await fan_out(tasks, lambda t: self.store.list_events(t.id), label="task")
        report.events = sorted(
            (e for _, events in logs for e in events if on_day(e.timestamp, day)),
            key=lambda e: (e.timestamp, e.id),
        )
        uploads = await fan_out(tasks, lambda t: self.store.list_attachments(t.id), label="task")
        report.attachments = sorted(
            (a for _, attachments in uploads for a in attachments if on_day(a.created_at, day)),
            key=lambda a: (a.created_at, a.id),
        )
        report.warnings = logs.warnings + uploads.warnings

        logger.info(
            f"Daily activity for project {project_id} on {day}: "
            f"{len(report.events)} events, {len(report.attachments)} attachments"
        )
        return report

    async def projected_timeline(self, project_id: str) -> ProjectedTimeline:
        """Tasks with a due date, soonest first"""
        await self.store.get_project(project_id)
        tasks = await self.store.list_project_tasks(project_id)
        scheduled = sorted(
            (t for t in tasks if t.due_date is not None),
            key=lambda t: (t.due_date, t.id),
        )

        counts = await fan_out(
            scheduled, lambda t: self.store.count_open_issues(t.id), label="task",
        )
        return ProjectedTimeline(
            project_id=project_id,
            tasks=[ProjectedTask(task, open_issues) for task, open_issues in counts],
            warnings=counts.warnings,
        )
