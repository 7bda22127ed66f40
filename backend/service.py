# service.py - Work-item operations exposed to the presentation layer
"""
WorkTrack service.

Every operation a caller needs lives here. Each one runs its mutation
through the authorization gate, applies it through the state machine or
the store, and records a timeline event. Reads go through the progress
and timeline aggregators.

Each public call runs under a deadline (SERVICE_CALL_TIMEOUT seconds).
A call that overruns it before writing anything is cancelled and raises
DependencyError; once it has started committing it is allowed to finish.
"""

import logging
import os
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from activity import ActivityAggregator, DailyActivity, ProjectedTimeline
from attachments import AttachmentStore, ProgressCallback, build_attachment_path
from authorization import RequestedChange, ensure_allowed
from deadline import with_deadline
from errors import DependencyError, PreconditionError
from event_recorder import EventRecorder
from models import (
    Attachment, Issue, IssueSeverity, Project, ReportType, TaskKind, TaskStatus,
    TimelineEvent, TimelineEventType, WorkItem, WorkItemAssignment,
)
from progress import (
    CollectionReminder, ProgressAggregator, ProgressReport, ProjectProgress,
    collection_reminder,
)
from state_machine import (
    REQUIRE_COMPLETION_PROOF, CompletionProof, OperationResult, StatusStateMachine,
)
from store import DeletedTree, UserDirectory, WorkItemStore
from timeline import AggregatedEvent, MainTaskTimeline, TimelineAggregator

logger = logging.getLogger("worktrack.service")

SERVICE_CALL_TIMEOUT = float(os.getenv("SERVICE_CALL_TIMEOUT", "30"))

# Which task fields the owner may edit, by shape of task
MAIN_TASK_FIELDS = frozenset({"name", "description", "status"})
COLLECTION_FIELDS = frozenset({"name", "description", "due_date", "amount", "reminder_days", "status"})
SUB_TASK_FIELDS = frozenset({"name", "description", "due_date", "assignee_ids", "status"})
ISSUE_FIELDS = frozenset({"title", "description", "severity", "due_date", "assignee_ids"})

# Columns that cannot be cleared once set
REQUIRED_TASK_FIELDS = ("name",)
REQUIRED_ISSUE_FIELDS = ("title", "severity")


def _reject_cleared(changes: dict, required, what: str) -> None:
    cleared = sorted(name for name in required if name in changes and not changes[name])
    if cleared:
        raise PreconditionError(
            f"Field(s) {', '.join(cleared)} cannot be cleared on {what}", code="WT-STATE-005",
        )


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "value"):
        return value.value
    return value


class WorkTrackService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        attachment_store: Optional[AttachmentStore] = None,
        require_proof: bool = REQUIRE_COMPLETION_PROOF,
        timeout: Optional[float] = SERVICE_CALL_TIMEOUT,
    ):
        self.store = WorkItemStore(session_factory)
        self.directory = UserDirectory(session_factory)
        self.attachment_store = attachment_store
        self.recorder = EventRecorder(self.store, self.directory)
        self.machine = StatusStateMachine(
            self.store, self.recorder, attachment_store, require_proof=require_proof,
        )
        self.progress = ProgressAggregator(self.store)
        self.timeline = TimelineAggregator(self.store)
        self.activity = ActivityAggregator(self.store)
        self.timeout = timeout

    # ============================================================
    # PROJECTS
    # ============================================================

    @with_deadline
    async def create_project(self, actor, name: str, description: Optional[str] = None) -> Project:
        project = await self.store.add(Project(name=name, description=description, owner_id=actor.id))
        logger.info(f"Project created: {project.id} by {actor.id}")
        return project

    @with_deadline
    async def get_project(self, project_id: str) -> Project:
        return await self.store.get_project(project_id)

    @with_deadline
    async def delete_project(self, actor, project_id: str) -> OperationResult:
        project = await self.store.get_project(project_id)
        ensure_allowed(actor, project, RequestedChange.delete())

        deleted = await self.store.delete_project_tree(project_id)
        result = OperationResult(deleted)
        await self._remove_blobs(deleted, result)
        logger.info(f"Project deleted: {project_id} ({len(deleted.item_ids)} tasks) by {actor.id}")
        return result

    # ============================================================
    # TASKS
    # ============================================================

    @with_deadline
    async def create_task(
        self,
        actor,
        project_id: str,
        name: str,
        parent_id: Optional[str] = None,
        description: Optional[str] = None,
        kind=TaskKind.STANDARD,
        due_date: Optional[datetime] = None,
        assignee_ids: Iterable[str] = (),
        amount: Optional[Decimal] = None,
        reminder_days: Optional[int] = None,
        status=TaskStatus.TODO,
    ) -> OperationResult:
        """Create a main task (no parent) or a sub-task under a main task"""
        project = await self.store.get_project(project_id)
        kind = TaskKind(kind)
        status = TaskStatus(status)
        assignee_ids = list(dict.fromkeys(assignee_ids))

        if parent_id is None:
            ensure_allowed(actor, project, RequestedChange.create_child())
            if assignee_ids:
                raise PreconditionError("Main tasks have no assignees", code="WT-STATE-005")
            if kind == TaskKind.STANDARD:
                # Derived from sub-tasks; starts empty
                status = TaskStatus.TODO
            elif status == TaskStatus.IN_PROGRESS:
                raise PreconditionError(
                    "A collection task is either 'To Do' or 'Completed'", code="WT-STATE-002",
                )
        else:
            parent = await self.store.get_work_item(parent_id)
            ensure_allowed(actor, parent, RequestedChange.create_child())
            if parent.project_id != project.id:
                raise PreconditionError("Parent task belongs to another project", code="WT-STATE-005")
            if not parent.is_main_task:
                raise PreconditionError("Sub-tasks cannot have sub-tasks", code="WT-STATE-005")
            if parent.is_collection:
                raise PreconditionError("Collection tasks have no sub-tasks", code="WT-STATE-005")
            if kind != TaskKind.STANDARD:
                raise PreconditionError("Only main tasks can be collections", code="WT-STATE-005")
            if status == TaskStatus.COMPLETED and self.machine.require_proof:
                # No proof can accompany creation
                raise PreconditionError(code="WT-STATE-004")

        task = await self.store.add(WorkItem(
            project_id=project.id,
            parent_id=parent_id,
            name=name,
            description=description,
            owner_id=actor.id,
            kind=kind,
            status=status,
            due_date=due_date,
            amount=amount,
            reminder_days=reminder_days,
            assignments=[WorkItemAssignment(user_id=uid) for uid in assignee_ids],
        ))

        result = OperationResult(task)
        what = "sub-task" if parent_id else ("collection" if kind == TaskKind.COLLECTION else "task")
        event_id = await self.recorder.record_safely(
            result.warnings, task.id, actor.id, TimelineEventType.TASK_CREATED,
            {
                "name": name,
                "parentId": parent_id,
                "kind": kind.value,
                "status": status.value,
                "assigneeIds": assignee_ids,
            },
            f"created {what} '{name}'",
        )
        if event_id:
            result.event_ids.append(event_id)
        logger.info(f"Task created: {task.id} in project {project.id} by {actor.id}")
        return result

    @with_deadline
    async def get_task(self, task_id: str) -> WorkItem:
        return await self.store.get_work_item(task_id)

    @with_deadline
    async def update_task(self, actor, task_id: str, **changes) -> OperationResult:
        """Edit task fields.

        Assignees may only pass ``status``. A status change goes through the
        state machine first, so a rejected transition leaves the other
        fields untouched.
        """
        task = await self.store.get_work_item(task_id)
        ensure_allowed(actor, task, RequestedChange.update(*changes))

        if task.is_main_task:
            editable = COLLECTION_FIELDS if task.is_collection else MAIN_TASK_FIELDS
        else:
            editable = SUB_TASK_FIELDS
        rejected = set(changes) - editable
        if rejected:
            raise PreconditionError(
                f"Field(s) {', '.join(sorted(rejected))} cannot be edited on this task",
                code="WT-STATE-005",
            )
        _reject_cleared(changes, REQUIRED_TASK_FIELDS, "a task")

        new_status = changes.pop("status", None)
        new_assignees = changes.pop("assignee_ids", None)
        result = OperationResult(task, changed=False)

        if new_status is not None:
            outcome = await self.machine.change_task_status(actor, task.id, new_status)
            result.event_ids.extend(outcome.event_ids)
            result.warnings.extend(outcome.warnings)
            if outcome.changed:
                result.record, result.changed = outcome.record, True
                task = outcome.record

        diff = {
            name: {"old": _jsonable(getattr(task, name)), "new": _jsonable(value)}
            for name, value in changes.items()
            if getattr(task, name) != value
        }
        if diff:
            task = await self.store.update_work_item(
                task.id, **{name: changes[name] for name in diff},
            )
            result.record, result.changed = task, True
            event_type = (
                TimelineEventType.MAIN_TASK_UPDATED if task.is_main_task
                else TimelineEventType.TASK_UPDATED
            )
            event_id = await self.recorder.record_safely(
                result.warnings, task.id, actor.id, event_type,
                {"changes": diff},
                f"updated {', '.join(sorted(diff))}",
            )
            if event_id:
                result.event_ids.append(event_id)

        if new_assignees is not None:
            await self._reassign(actor, task, list(dict.fromkeys(new_assignees)), result)

        return result

    async def _reassign(self, actor, task: WorkItem, assignee_ids: List[str], result) -> None:
        before = task.assignee_ids
        after = set(assignee_ids)
        if before == after:
            return
        task = await self.store.set_work_item_assignees(task.id, assignee_ids)
        result.record, result.changed = task, True
        added = sorted(after - before)
        removed = sorted(before - after)
        event_id = await self.recorder.record_safely(
            result.warnings, task.id, actor.id, TimelineEventType.ASSIGNMENT_CHANGED,
            {"added": added, "removed": removed, "assigneeIds": sorted(after)},
            f"changed assignees (+{len(added)} / -{len(removed)})",
        )
        if event_id:
            result.event_ids.append(event_id)

    @with_deadline
    async def change_task_status(
        self, actor, task_id: str, new_status, proof: Optional[CompletionProof] = None,
    ) -> OperationResult:
        return await self.machine.change_task_status(actor, task_id, new_status, proof)

    @with_deadline
    async def set_collection_status(self, actor, task_id: str, new_status) -> OperationResult:
        return await self.machine.set_collection_status(actor, task_id, new_status)

    @with_deadline
    async def delete_task(self, actor, task_id: str) -> OperationResult:
        """Delete a task with its sub-tasks, issues, events and attachments"""
        task = await self.store.get_work_item(task_id)
        ensure_allowed(actor, task, RequestedChange.delete())

        deleted = await self.store.delete_work_item_tree(task.id)
        result = OperationResult(deleted)
        await self._remove_blobs(deleted, result)
        logger.info(f"Task deleted: {task.id} ({len(deleted.item_ids)} items) by {actor.id}")
        return result

    async def _remove_blobs(self, deleted: DeletedTree, result: OperationResult) -> None:
        if self.attachment_store is None:
            return
        for path in deleted.attachment_paths:
            try:
                await self.attachment_store.delete(path)
            except DependencyError as e:
                message = f"Attachment {path} could not be removed: {e.message}"
                logger.warning(message)
                result.warnings.append(message)

    @with_deadline
    async def list_main_tasks(self, project_id: str) -> List[WorkItem]:
        await self.store.get_project(project_id)
        return await self.store.list_main_tasks(project_id)

    @with_deadline
    async def list_sub_tasks(self, parent_id: str) -> List[WorkItem]:
        await self.store.get_work_item(parent_id)
        return await self.store.list_children(parent_id)

    @with_deadline
    async def list_assigned_tasks(self, user_id: str) -> List[WorkItem]:
        return await self.store.list_assigned_sub_tasks(user_id)

    # ============================================================
    # ISSUES
    # ============================================================

    @with_deadline
    async def create_issue(
        self,
        actor,
        task_id: str,
        title: str,
        description: Optional[str] = None,
        severity=IssueSeverity.NORMAL,
        assignee_ids: Iterable[str] = (),
        due_date: Optional[datetime] = None,
    ) -> OperationResult:
        return await self.machine.create_issue(
            actor, task_id, title, description, severity, assignee_ids, due_date,
        )

    @with_deadline
    async def get_issue(self, issue_id: str) -> Issue:
        return await self.store.get_issue(issue_id)

    @with_deadline
    async def list_issues(self, task_id: str) -> List[Issue]:
        await self.store.get_work_item(task_id)
        return await self.store.list_issues(task_id)

    @with_deadline
    async def update_issue(self, actor, issue_id: str, **changes) -> OperationResult:
        """Edit issue details; status changes go through change_issue_status"""
        issue = await self.store.get_issue(issue_id)
        ensure_allowed(actor, issue, RequestedChange.update(*changes))
        rejected = set(changes) - ISSUE_FIELDS
        if rejected:
            raise PreconditionError(
                f"Field(s) {', '.join(sorted(rejected))} cannot be edited on an issue",
                code="WT-STATE-005",
            )
        _reject_cleared(changes, REQUIRED_ISSUE_FIELDS, "an issue")

        assignee_ids = changes.pop("assignee_ids", None)
        if "severity" in changes:
            changes["severity"] = IssueSeverity(changes["severity"])
        if changes:
            issue = await self.store.update_issue(issue.id, **changes)
        if assignee_ids is not None:
            issue = await self.store.set_issue_assignees(issue.id, list(dict.fromkeys(assignee_ids)))
        return OperationResult(issue, changed=bool(changes) or assignee_ids is not None)

    @with_deadline
    async def change_issue_status(self, actor, issue_id: str, new_status) -> OperationResult:
        return await self.machine.change_issue_status(actor, issue_id, new_status)

    @with_deadline
    async def delete_issue(self, actor, issue_id: str) -> OperationResult:
        """Owner-only. The deletion event is written before the issue goes."""
        issue = await self.store.get_issue(issue_id)
        ensure_allowed(actor, issue, RequestedChange.delete())

        result = OperationResult(issue)
        event_id = await self.recorder.record_safely(
            result.warnings, issue.task_id, actor.id, TimelineEventType.ISSUE_DELETED,
            {"issueId": issue.id, "title": issue.title, "status": issue.status.value},
            f"deleted issue '{issue.title}'",
        )
        if event_id:
            result.event_ids.append(event_id)

        await self.store.delete_issue(issue.id)
        logger.info(f"Issue deleted: {issue.id} by {actor.id}")
        return result

    # ============================================================
    # ATTACHMENTS
    # ============================================================

    @with_deadline
    async def add_attachment(
        self,
        actor,
        task_id: str,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
        report_type=ReportType.DAILY_PROGRESS,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> OperationResult:
        """Upload a photo report to a task and record it on the timeline"""
        task = await self.store.get_work_item(task_id)
        ensure_allowed(actor, task, RequestedChange.attach())
        if self.attachment_store is None:
            raise DependencyError("No attachment store configured", code="WT-DEP-002")

        owner_name = await self.recorder.resolve_author_name(actor.id)
        path = build_attachment_path(task.id, filename)
        url = await self.attachment_store.upload(path, content, content_type, progress)
        attachment = Attachment(
            work_item_id=task.id,
            project_id=task.project_id,
            owner_id=actor.id,
            owner_name=owner_name,
            url=url,
            path=path,
            filename=filename,
            report_type=ReportType(report_type),
            latitude=latitude,
            longitude=longitude,
        )
        try:
            attachment = await self.store.add(attachment)
        except BaseException:
            await self.machine.discard_upload(path)
            raise

        result = OperationResult(attachment, attachment=attachment)
        event_id = await self.recorder.record_safely(
            result.warnings, task.id, actor.id, TimelineEventType.ATTACHMENT_ADDED,
            {
                "attachmentId": attachment.id,
                "url": attachment.url,
                "filename": attachment.filename,
                "reportType": attachment.report_type.value,
            },
            f"attached '{attachment.filename}'",
        )
        if event_id:
            result.event_ids.append(event_id)
        return result

    @with_deadline
    async def list_attachments(self, task_id: str) -> List[Attachment]:
        await self.store.get_work_item(task_id)
        return await self.store.list_attachments(task_id)

    @with_deadline
    async def delete_attachment(self, actor, attachment_id: str) -> OperationResult:
        """Owner of the task only. Metadata goes first, then the stored file."""
        attachment = await self.store.get_attachment(attachment_id)
        task = await self.store.get_work_item(attachment.work_item_id)
        ensure_allowed(actor, task, RequestedChange.delete())

        result = OperationResult(attachment)
        event_id = await self.recorder.record_safely(
            result.warnings, task.id, actor.id, TimelineEventType.ATTACHMENT_DELETED,
            {"attachmentId": attachment.id, "filename": attachment.filename},
            f"deleted attachment '{attachment.filename}'",
        )
        if event_id:
            result.event_ids.append(event_id)

        await self.store.delete_attachment(attachment.id)
        await self._remove_blobs(DeletedTree(attachment_paths=[attachment.path]), result)
        return result

    # ============================================================
    # READS
    # ============================================================

    @with_deadline
    async def compute_progress(self, main_task_id: str) -> ProgressReport:
        return await self.progress.compute_progress(main_task_id)

    @with_deadline
    async def compute_project_progress(self, project_id: str) -> ProjectProgress:
        return await self.progress.compute_project_progress(project_id)

    @with_deadline
    async def collection_reminder(self, task_id: str) -> CollectionReminder:
        task = await self.store.get_work_item(task_id)
        if not task.is_collection:
            raise PreconditionError("Only collection tasks have reminders", code="WT-STATE-005")
        return collection_reminder(task)

    @with_deadline
    async def open_issue_counts(self, main_task_id: str) -> Dict[str, int]:
        sub_tasks = await self.store.list_children(main_task_id)
        return await self.progress.open_issue_counts(sub_tasks)

    @with_deadline
    async def list_events(self, item_id: str) -> List[TimelineEvent]:
        await self.store.get_work_item(item_id)
        return await self.recorder.list_events(item_id)

    @with_deadline
    async def aggregate_for_work_item(self, main_task_id: str) -> List[AggregatedEvent]:
        task = await self.store.get_work_item(main_task_id)
        if not task.is_main_task:
            raise PreconditionError("Timelines are aggregated for main tasks", code="WT-STATE-005")
        return (await self.timeline.timeline_for(task)).entries

    @with_deadline
    async def aggregate_for_project(self, project_id: str) -> List[MainTaskTimeline]:
        return await self.timeline.aggregate_for_project(project_id)

    @with_deadline
    async def daily_activity(self, project_id: str, day: date) -> DailyActivity:
        """What happened in the project on ``day`` (UTC)"""
        return await self.activity.daily_activity(project_id, day)

    @with_deadline
    async def projected_timeline(self, project_id: str) -> ProjectedTimeline:
        return await self.activity.projected_timeline(project_id)
