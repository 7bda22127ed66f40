# state_machine.py - Status transitions for tasks and issues, with cascades
"""
Status State Machine.

Validates and applies status changes, enforcing domain preconditions:

    sub-task:         To Do <-> In Progress <-> Completed, To Do -> Completed
                      (Completed never goes straight back to To Do)
    collection task:  To Do <-> Completed, owner only
    standard main:    derived from sub-tasks, never written
    issue:            Open <-> Closed

Side effects on related records run as post-commit hooks registered on
the machine. The default hooks demote a Completed sub-task to In Progress
when one of its issues is reopened or a new issue is raised against it.
Hook failures are logged and returned as warnings; they never fail the
action that triggered them.

Concurrent transitions on the same item are not serialised. Two requests
can both pass their precondition checks before either commits, and the
store keeps whichever status is written last.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from attachments import AttachmentStore, ProgressCallback, build_attachment_path
from authorization import RequestedChange, ensure_allowed
from errors import CascadeWarning, DependencyError, PreconditionError
from models import (
    Attachment, Issue, IssueAssignment, IssueSeverity, IssueStatus, ReportType,
    TaskStatus, TimelineEventType, WorkItem,
)

logger = logging.getLogger("worktrack.state-machine")

REQUIRE_COMPLETION_PROOF = os.getenv("REQUIRE_COMPLETION_PROOF", "false").lower() == "true"

TASK_TRANSITIONS = {
    TaskStatus.TODO: {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED},
    TaskStatus.IN_PROGRESS: {TaskStatus.TODO, TaskStatus.COMPLETED},
    TaskStatus.COMPLETED: {TaskStatus.IN_PROGRESS},
}

COLLECTION_TRANSITIONS = {
    TaskStatus.TODO: {TaskStatus.COMPLETED},
    TaskStatus.COMPLETED: {TaskStatus.TODO},
}

ISSUE_TRANSITIONS = {
    IssueStatus.OPEN: {IssueStatus.CLOSED},
    IssueStatus.CLOSED: {IssueStatus.OPEN},
}

HOOK_EVENTS = ("task_status_changed", "issue_status_changed", "issue_created")

Hook = Callable[..., Awaitable[None]]


@dataclass
class CompletionProof:
    """Photo evidence that must be stored before a completion commits"""
    filename: str
    content: bytes
    content_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    progress: Optional[ProgressCallback] = None


@dataclass
class OperationResult:
    """Outcome of a mutation: the record, what was written, and soft failures"""
    record: Any
    changed: bool = True
    event_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    attachment: Optional[Attachment] = None


def _check_transition(table: Dict, old, new, what: str) -> None:
    if new not in table.get(old, set()):
        raise PreconditionError(
            f"Cannot move {what} from '{old.value}' to '{new.value}'", code="WT-STATE-002",
        )


class StatusStateMachine:
    """Applies status transitions and runs post-commit cascade hooks"""

    def __init__(
        self,
        store,
        recorder,
        attachment_store: Optional[AttachmentStore] = None,
        require_proof: bool = REQUIRE_COMPLETION_PROOF,
    ):
        self.store = store
        self.recorder = recorder
        self.attachment_store = attachment_store
        self.require_proof = require_proof
        self._hooks: Dict[str, List[Hook]] = {event: [] for event in HOOK_EVENTS}
        self.register_hook("issue_status_changed", self._demote_on_issue_reopen)
        self.register_hook("issue_created", self._demote_on_issue_created)

    # ------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------

    def register_hook(self, event: str, callback: Hook) -> None:
        if event not in self._hooks:
            raise ValueError(f"Unknown hook event: {event}")
        self._hooks[event].append(callback)

    async def _run_hooks(self, event: str, result: OperationResult, **context) -> None:
        for callback in self._hooks[event]:
            try:
                await callback(result=result, **context)
            except Exception as e:
                warning = CascadeWarning(f"{event} hook {getattr(callback, '__name__', callback)} failed: {e}")
                logger.warning(str(warning))
                result.warnings.append(str(warning))

    async def _demote_on_issue_reopen(self, actor, issue, old_status, new_status, result, **_):
        if not (old_status == IssueStatus.CLOSED and new_status == IssueStatus.OPEN):
            return
        task = await self.store.get_work_item(issue.task_id)
        if TaskStatus(task.status) == TaskStatus.COMPLETED:
            await self._force_task_status(
                actor, task, TaskStatus.IN_PROGRESS, "issue_reopened", issue, result,
            )

    async def _demote_on_issue_created(self, actor, issue, result, **_):
        task = await self.store.get_work_item(issue.task_id)
        if TaskStatus(task.status) == TaskStatus.COMPLETED:
            await self._force_task_status(
                actor, task, TaskStatus.IN_PROGRESS, "issue_created", issue, result,
            )

    async def _force_task_status(
        self, actor, task: WorkItem, new_status: TaskStatus, reason: str,
        issue: Issue, result: OperationResult,
    ) -> WorkItem:
        """Demotion path for cascades: no gate, no open-issue guard"""
        old_status = TaskStatus(task.status)
        task = await self.store.set_status_with_attachment(task.id, new_status)
        cause = "was reopened" if reason == "issue_reopened" else "was raised"
        event_id = await self.recorder.record_safely(
            result.warnings, task.id, actor.id, TimelineEventType.STATUS_CHANGED,
            {
                "oldStatus": old_status.value,
                "newStatus": new_status.value,
                "automatic": True,
                "reason": reason,
                "issueId": issue.id,
            },
            f"automatically moved the task from '{old_status.value}' to "
            f"'{new_status.value}' because issue '{issue.title}' {cause}",
        )
        if event_id:
            result.event_ids.append(event_id)
        logger.info(f"Cascade {reason}: task {task.id} {old_status.value} -> {new_status.value}")
        return task

    # ------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------

    async def change_task_status(
        self, actor, task_id: str, new_status, proof: Optional[CompletionProof] = None,
    ) -> OperationResult:
        task = await self.store.get_work_item(task_id)
        if task.is_main_task:
            if task.is_collection:
                return await self.set_collection_status(actor, task_id, new_status)
            raise PreconditionError(
                "A main task's status is derived from its sub-tasks", code="WT-STATE-003",
            )

        ensure_allowed(actor, task, RequestedChange.status())

        new_status = TaskStatus(new_status)
        old_status = TaskStatus(task.status)
        if new_status == old_status:
            return OperationResult(task, changed=False)
        _check_transition(TASK_TRANSITIONS, old_status, new_status, "a task")

        if proof is not None and new_status != TaskStatus.COMPLETED:
            raise PreconditionError("Completion proof only accompanies a move to Completed")

        if new_status == TaskStatus.COMPLETED:
            open_issues = await self.store.count_open_issues(task.id)
            if open_issues:
                raise PreconditionError(
                    f"{open_issues} open issue(s) must be resolved first", code="WT-STATE-001",
                )
            if proof is None and self.require_proof:
                raise PreconditionError(code="WT-STATE-004")

        attachment = None
        if proof is not None:
            attachment = await self._store_proof(actor, task, proof)

        try:
            task = await self.store.set_status_with_attachment(task.id, new_status, attachment)
        except BaseException:
            # Any failure, cancellation included, leaves the upload unreferenced
            if attachment is not None:
                await self.discard_upload(attachment.path)
            raise

        result = OperationResult(task, attachment=attachment)
        event_id = await self.recorder.record_safely(
            result.warnings, task.id, actor.id, TimelineEventType.STATUS_CHANGED,
            {"oldStatus": old_status.value, "newStatus": new_status.value},
            f"changed status from '{old_status.value}' to '{new_status.value}'",
        )
        if event_id:
            result.event_ids.append(event_id)

        if attachment is not None:
            event_id = await self.recorder.record_safely(
                result.warnings, task.id, actor.id, TimelineEventType.ATTACHMENT_ADDED,
                {
                    "attachmentId": attachment.id,
                    "url": attachment.url,
                    "filename": attachment.filename,
                    "reportType": attachment.report_type.value,
                },
                f"attached completion proof '{attachment.filename}'",
            )
            if event_id:
                result.event_ids.append(event_id)

        await self._run_hooks(
            "task_status_changed", result,
            actor=actor, task=task, old_status=old_status, new_status=new_status,
        )
        return result

    async def _store_proof(self, actor, task: WorkItem, proof: CompletionProof) -> Attachment:
        if self.attachment_store is None:
            raise DependencyError("No attachment store configured", code="WT-DEP-002")
        owner_name = await self.recorder.resolve_author_name(actor.id)
        path = build_attachment_path(task.id, proof.filename)
        url = await self.attachment_store.upload(
            path, proof.content, proof.content_type, proof.progress,
        )
        return Attachment(
            work_item_id=task.id,
            project_id=task.project_id,
            owner_id=actor.id,
            owner_name=owner_name,
            url=url,
            path=path,
            filename=proof.filename,
            report_type=ReportType.COMPLETION_PROOF,
            latitude=proof.latitude,
            longitude=proof.longitude,
        )

    async def discard_upload(self, path: str) -> None:
        """Best-effort removal of an upload whose metadata never committed"""
        try:
            await self.attachment_store.delete(path)
        except DependencyError as e:
            logger.warning(f"Orphaned upload {path} could not be removed: {e.message}")

    async def set_collection_status(self, actor, task_id: str, new_status) -> OperationResult:
        task = await self.store.get_work_item(task_id)
        if not (task.is_main_task and task.is_collection):
            raise PreconditionError("Only collection tasks have an owner-set status", code="WT-STATE-005")

        ensure_allowed(actor, task, RequestedChange.status())

        new_status = TaskStatus(new_status)
        old_status = TaskStatus(task.status)
        if new_status == old_status:
            return OperationResult(task, changed=False)
        _check_transition(COLLECTION_TRANSITIONS, old_status, new_status, "a collection task")

        task = await self.store.update_work_item(task.id, status=new_status)
        result = OperationResult(task)
        event_id = await self.recorder.record_safely(
            result.warnings, task.id, actor.id, TimelineEventType.STATUS_CHANGED,
            {"oldStatus": old_status.value, "newStatus": new_status.value},
            f"marked the collection '{new_status.value}'",
        )
        if event_id:
            result.event_ids.append(event_id)
        await self._run_hooks(
            "task_status_changed", result,
            actor=actor, task=task, old_status=old_status, new_status=new_status,
        )
        return result

    # ------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------

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
        task = await self.store.get_work_item(task_id)
        if task.is_main_task:
            raise PreconditionError("Issues can only be raised against sub-tasks", code="WT-STATE-005")
        ensure_allowed(actor, task, RequestedChange.create_child())

        issue = await self.store.add(Issue(
            task_id=task.id,
            project_id=task.project_id,
            owner_id=actor.id,
            title=title,
            description=description,
            severity=IssueSeverity(severity),
            status=IssueStatus.OPEN,
            due_date=due_date,
            assignments=[IssueAssignment(user_id=uid) for uid in dict.fromkeys(assignee_ids)],
        ))

        result = OperationResult(issue)
        event_id = await self.recorder.record_safely(
            result.warnings, task.id, actor.id, TimelineEventType.ISSUE_CREATED,
            {"issueId": issue.id, "title": issue.title, "severity": issue.severity.value},
            f"raised issue '{issue.title}'",
        )
        if event_id:
            result.event_ids.append(event_id)

        await self._run_hooks("issue_created", result, actor=actor, issue=issue, task=task)
        return result

    async def change_issue_status(self, actor, issue_id: str, new_status) -> OperationResult:
        issue = await self.store.get_issue(issue_id)
        ensure_allowed(actor, issue, RequestedChange.status())

        new_status = IssueStatus(new_status)
        old_status = IssueStatus(issue.status)
        if new_status == old_status:
            return OperationResult(issue, changed=False)
        _check_transition(ISSUE_TRANSITIONS, old_status, new_status, "an issue")

        issue = await self.store.update_issue(issue.id, status=new_status)
        result = OperationResult(issue)
        event_id = await self.recorder.record_safely(
            result.warnings, issue.task_id, actor.id, TimelineEventType.ISSUE_STATUS_CHANGED,
            {
                "issueId": issue.id,
                "title": issue.title,
                "oldStatus": old_status.value,
                "newStatus": new_status.value,
            },
            f"{'closed' if new_status == IssueStatus.CLOSED else 'reopened'} issue '{issue.title}'",
        )
        if event_id:
            result.event_ids.append(event_id)

        await self._run_hooks(
            "issue_status_changed", result,
            actor=actor, issue=issue, old_status=old_status, new_status=new_status,
        )
        return result
