# progress.py - Completion percentages derived from children, never stored
"""
Progress Aggregator.

A standard main task's percent and status are a pure function of its
sub-tasks' current statuses. Nothing here writes back: callers may cache
a report for display, but the next read always recomputes.

Collection tasks are never derived; their owner-set status is reported
as-is.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from errors import PreconditionError
from fanout import fan_out
from models import ProjectStatus, TaskKind, TaskStatus, WorkItem, utcnow


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ProgressReport:
    percent: int
    derived_status: TaskStatus
    total: int = 0
    completed: int = 0
    derived: bool = True

    def to_dict(self) -> dict:
        return {
            "percent": self.percent,
            "derived_status": self.derived_status.value,
            "total": self.total,
            "completed": self.completed,
            "derived": self.derived,
        }


@dataclass
class ProjectProgress:
    percent: int
    status: ProjectStatus
    task_progress: Dict[str, ProgressReport] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "percent": self.percent,
            "status": self.status.value,
            "tasks": {task_id: r.to_dict() for task_id, r in self.task_progress.items()},
            "warnings": self.warnings,
        }


def derive_progress(statuses: Iterable[TaskStatus]) -> ProgressReport:
    """Percent complete and derived status for a list of sub-task statuses"""
    statuses = [TaskStatus(s) for s in statuses]
    total = len(statuses)
    if total == 0:
        return ProgressReport(percent=0, derived_status=TaskStatus.TODO)

    completed = sum(1 for s in statuses if s == TaskStatus.COMPLETED)
    percent = round_half_up(100 * completed / total)

    if percent == 100:
        status = TaskStatus.COMPLETED
    elif percent > 0 or TaskStatus.IN_PROGRESS in statuses:
        status = TaskStatus.IN_PROGRESS
    else:
        status = TaskStatus.TODO
    return ProgressReport(percent=percent, derived_status=status, total=total, completed=completed)


def collection_report(task: WorkItem) -> ProgressReport:
    """Owner-set status of a collection task, reported without derivation"""
    status = TaskStatus(task.status)
    return ProgressReport(
        percent=100 if status == TaskStatus.COMPLETED else 0,
        derived_status=status,
        derived=False,
    )


def derive_project_status(reports: List[ProgressReport], percent: int) -> ProjectStatus:
    if reports and percent == 100:
        return ProjectStatus.COMPLETED
    if percent > 0 or any(r.derived_status == TaskStatus.IN_PROGRESS for r in reports):
        return ProjectStatus.IN_PROGRESS
    return ProjectStatus.NOT_STARTED


@dataclass(frozen=True)
class CollectionReminder:
    days_remaining: Optional[int]
    due_soon: bool

    @property
    def due_today(self) -> bool:
        return self.due_soon and self.days_remaining == 0


def collection_reminder(task: WorkItem, today: Optional[date] = None) -> CollectionReminder:
    """Whether an unpaid collection task is inside its reminder window"""
    if task.due_date is None:
        return CollectionReminder(days_remaining=None, due_soon=False)

    today = today or utcnow().date()
    due = task.due_date.date() if isinstance(task.due_date, datetime) else task.due_date
    days_remaining = (due - today).days

    due_soon = (
        task.kind == TaskKind.COLLECTION
        and TaskStatus(task.status) != TaskStatus.COMPLETED
        and bool(task.reminder_days)
        and 0 <= days_remaining <= task.reminder_days
    )
    return CollectionReminder(days_remaining=days_remaining, due_soon=due_soon)


class ProgressAggregator:
    """Read-only progress computation over the work-item store"""

    def __init__(self, store):
        self.store = store

    async def compute_progress(self, main_task_id: str) -> ProgressReport:
        task = await self.store.get_work_item(main_task_id)
        return await self.progress_for(task)

    async def progress_for(self, task: WorkItem) -> ProgressReport:
        if not task.is_main_task:
            raise PreconditionError(
                "Progress is only derived for main tasks", code="WT-STATE-005",
            )
        if task.is_collection:
            return collection_report(task)
        children = await self.store.list_children(task.id)
        return derive_progress(child.status for child in children)

    async def compute_project_progress(self, project_id: str) -> ProjectProgress:
        await self.store.get_project(project_id)
        main_tasks = await self.store.list_main_tasks(project_id)
        standard = [t for t in main_tasks if not t.is_collection]

        outcome = await fan_out(standard, self.progress_for, label="main task")
        reports = {task.id: report for task, report in outcome}
        values = list(reports.values())

        percent = round_half_up(sum(r.percent for r in values) / len(values)) if values else 0
        return ProjectProgress(
            percent=percent,
            status=derive_project_status(values, percent),
            task_progress=reports,
            warnings=outcome.warnings,
        )

    async def open_issue_counts(self, sub_tasks: List[WorkItem]) -> Dict[str, int]:
        outcome = await fan_out(
            sub_tasks, lambda t: self.store.count_open_issues(t.id), label="sub-task",
        )
        return {task.id: count for task, count in outcome}
