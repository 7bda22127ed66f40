# routers/common.py - Shared dependencies and response schemas for the API
from datetime import datetime
from typing import List, Optional

from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import async_sessionmaker

from attachments import AttachmentStore, get_attachment_store
from database import get_session_factory
from service import WorkTrackService


def get_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    attachment_store: AttachmentStore = Depends(get_attachment_store),
) -> WorkTrackService:
    return WorkTrackService(session_factory, attachment_store)


def iso_or_none(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


# ============================================================
# SCHEMAS
# ============================================================

class ProjectOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    owner_id: str
    created_at: str


class TaskOut(BaseModel):
    id: str
    project_id: str
    parent_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    owner_id: str
    kind: str
    status: str
    due_date: Optional[str] = None
    amount: Optional[str] = None
    reminder_days: Optional[int] = None
    assignee_ids: List[str] = []
    created_at: str
    updated_at: str


class IssueOut(BaseModel):
    id: str
    task_id: str
    project_id: str
    owner_id: str
    title: str
    description: Optional[str] = None
    severity: str
    status: str
    due_date: Optional[str] = None
    assignee_ids: List[str] = []
    created_at: str
    updated_at: str


class AttachmentOut(BaseModel):
    id: str
    work_item_id: str
    owner_id: str
    owner_name: str
    url: str
    filename: str
    report_type: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: str


class TaskResult(BaseModel):
    task: TaskOut
    changed: bool
    event_ids: List[str] = []
    warnings: List[str] = []
    attachment: Optional[AttachmentOut] = None


class IssueResult(BaseModel):
    issue: IssueOut
    changed: bool
    event_ids: List[str] = []
    warnings: List[str] = []


class AttachmentResult(BaseModel):
    attachment: AttachmentOut
    event_ids: List[str] = []
    warnings: List[str] = []


class DeletionOut(BaseModel):
    deleted_ids: List[str]
    event_ids: List[str] = []
    warnings: List[str] = []


# ============================================================
# SERIALISERS
# ============================================================

def project_out(project) -> ProjectOut:
    return ProjectOut(
        id=project.id,
        name=project.name,
        description=project.description,
        owner_id=project.owner_id,
        created_at=iso_or_none(project.created_at),
    )


def task_out(task) -> TaskOut:
    return TaskOut(
        id=task.id,
        project_id=task.project_id,
        parent_id=task.parent_id,
        name=task.name,
        description=task.description,
        owner_id=task.owner_id,
        kind=task.kind.value,
        status=task.status.value,
        due_date=iso_or_none(task.due_date),
        amount=str(task.amount) if task.amount is not None else None,
        reminder_days=task.reminder_days,
        assignee_ids=sorted(task.assignee_ids),
        created_at=iso_or_none(task.created_at),
        updated_at=iso_or_none(task.updated_at),
    )


def issue_out(issue) -> IssueOut:
    return IssueOut(
        id=issue.id,
        task_id=issue.task_id,
        project_id=issue.project_id,
        owner_id=issue.owner_id,
        title=issue.title,
        description=issue.description,
        severity=issue.severity.value,
        status=issue.status.value,
        due_date=iso_or_none(issue.due_date),
        assignee_ids=sorted(issue.assignee_ids),
        created_at=iso_or_none(issue.created_at),
        updated_at=iso_or_none(issue.updated_at),
    )


def attachment_out(attachment) -> AttachmentOut:
    return AttachmentOut(
        id=attachment.id,
        work_item_id=attachment.work_item_id,
        owner_id=attachment.owner_id,
        owner_name=attachment.owner_name,
        url=attachment.url,
        filename=attachment.filename,
        report_type=attachment.report_type.value,
        latitude=attachment.latitude,
        longitude=attachment.longitude,
        created_at=iso_or_none(attachment.created_at),
    )


def task_result(result) -> TaskResult:
    return TaskResult(
        task=task_out(result.record),
        changed=result.changed,
        event_ids=result.event_ids,
        warnings=result.warnings,
        attachment=attachment_out(result.attachment) if result.attachment else None,
    )


def issue_result(result) -> IssueResult:
    return IssueResult(
        issue=issue_out(result.record),
        changed=result.changed,
        event_ids=result.event_ids,
        warnings=result.warnings,
    )
