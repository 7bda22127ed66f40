# routers/tasks.py - Main tasks, sub-tasks, status, attachments and task history
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field, field_validator

from auth import CurrentUser, get_current_user
from models import IssueSeverity, TaskStatus
from routers.common import (
    AttachmentOut, AttachmentResult, DeletionOut, IssueOut, IssueResult, TaskOut,
    TaskResult, attachment_out, get_service, issue_out, issue_result, task_out,
    task_result,
)
from service import WorkTrackService
from state_machine import CompletionProof
from timeline import event_to_dict

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])

# Uploads are read into memory before being handed to the attachment store
MAX_UPLOAD_BYTES = 25 * 1024 * 1024


# ============================================================
# SCHEMAS
# ============================================================

class SubTaskCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    assignee_ids: List[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.TODO


class TaskUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    amount: Optional[Decimal] = None
    reminder_days: Optional[int] = Field(None, ge=0)
    assignee_ids: Optional[List[str]] = None
    status: Optional[TaskStatus] = None

    @field_validator("name")
    @classmethod
    def name_not_null(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("A task name cannot be cleared")
        return v


class StatusChange(BaseModel):
    status: TaskStatus


class IssueCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    severity: IssueSeverity = IssueSeverity.NORMAL
    assignee_ids: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None


# ============================================================
# HELPERS
# ============================================================

async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    return content


# ============================================================
# TASK ENDPOINTS
# ============================================================

@router.get("/assigned", response_model=List[TaskOut])
async def list_assigned_tasks(
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Sub-tasks the current user is assigned to, newest first"""
    return [task_out(t) for t in await service.list_assigned_tasks(user.id)]


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return task_out(await service.get_task(task_id))


@router.patch("/{task_id}", response_model=TaskResult)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Edit task fields; assignees may only send ``status``"""
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    return task_result(await service.update_task(user, task_id, **changes))


@router.put("/{task_id}/status", response_model=TaskResult)
async def change_status(
    task_id: str,
    data: StatusChange,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return task_result(await service.change_task_status(user, task_id, data.status))


@router.post("/{task_id}/complete", response_model=TaskResult)
async def complete_with_proof(
    task_id: str,
    file: UploadFile = File(...),
    latitude: Optional[float] = Form(None),
    longitude: Optional[float] = Form(None),
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Mark a sub-task Completed with a photo proof.

    The photo is stored first; if that fails the status does not change.
    """
    proof = CompletionProof(
        filename=file.filename or "proof",
        content=await _read_upload(file),
        content_type=file.content_type,
        latitude=latitude,
        longitude=longitude,
    )
    result = await service.change_task_status(user, task_id, TaskStatus.COMPLETED, proof=proof)
    return task_result(result)


@router.delete("/{task_id}", response_model=DeletionOut)
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    result = await service.delete_task(user, task_id)
    return DeletionOut(deleted_ids=result.record.item_ids, warnings=result.warnings)


# ============================================================
# SUB-TASKS
# ============================================================

@router.get("/{task_id}/subtasks", response_model=List[TaskOut])
async def list_sub_tasks(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return [task_out(t) for t in await service.list_sub_tasks(task_id)]


@router.post("/{task_id}/subtasks", response_model=TaskResult, status_code=201)
async def create_sub_task(
    task_id: str,
    data: SubTaskCreate,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    parent = await service.get_task(task_id)
    result = await service.create_task(
        user, parent.project_id, data.name,
        parent_id=parent.id,
        description=data.description,
        due_date=data.due_date,
        assignee_ids=data.assignee_ids,
        status=data.status,
    )
    return task_result(result)


# ============================================================
# DERIVED VIEWS
# ============================================================

@router.get("/{task_id}/progress")
async def get_progress(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return (await service.compute_progress(task_id)).to_dict()


@router.get("/{task_id}/reminder")
async def get_collection_reminder(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    reminder = await service.collection_reminder(task_id)
    return {
        "task_id": task_id,
        "days_remaining": reminder.days_remaining,
        "due_soon": reminder.due_soon,
        "due_today": reminder.due_today,
    }


@router.get("/{task_id}/open-issues")
async def get_open_issue_counts(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Open issue count per sub-task of a main task"""
    return await service.open_issue_counts(task_id)


@router.get("/{task_id}/events")
async def list_events(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """The task's own event log, oldest first"""
    return [event_to_dict(e) for e in await service.list_events(task_id)]


@router.get("/{task_id}/timeline")
async def get_timeline(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Main task events and collapsed sub-task histories, newest first"""
    entries = await service.aggregate_for_work_item(task_id)
    return {"task_id": task_id, "entries": [entry.to_dict() for entry in entries]}


# ============================================================
# ISSUES
# ============================================================

@router.get("/{task_id}/issues", response_model=List[IssueOut])
async def list_issues(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return [issue_out(i) for i in await service.list_issues(task_id)]


@router.post("/{task_id}/issues", response_model=IssueResult, status_code=201)
async def create_issue(
    task_id: str,
    data: IssueCreate,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    result = await service.create_issue(
        user, task_id, data.title,
        description=data.description,
        severity=data.severity,
        assignee_ids=data.assignee_ids,
        due_date=data.due_date,
    )
    return issue_result(result)


# ============================================================
# ATTACHMENTS
# ============================================================

@router.get("/{task_id}/attachments", response_model=List[AttachmentOut])
async def list_attachments(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return [attachment_out(a) for a in await service.list_attachments(task_id)]


@router.post("/{task_id}/attachments", response_model=AttachmentResult, status_code=201)
async def upload_attachment(
    task_id: str,
    file: UploadFile = File(...),
    latitude: Optional[float] = Form(None),
    longitude: Optional[float] = Form(None),
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Attach a daily progress photo to a task"""
    result = await service.add_attachment(
        user, task_id,
        filename=file.filename or "upload",
        content=await _read_upload(file),
        content_type=file.content_type,
        latitude=latitude,
        longitude=longitude,
    )
    return AttachmentResult(
        attachment=attachment_out(result.record),
        event_ids=result.event_ids,
        warnings=result.warnings,
    )


@router.delete("/{task_id}/attachments/{attachment_id}", response_model=DeletionOut)
async def delete_attachment(
    task_id: str,
    attachment_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    attachments = await service.list_attachments(task_id)
    if attachment_id not in {a.id for a in attachments}:
        raise HTTPException(status_code=404, detail="Attachment not found")
    result = await service.delete_attachment(user, attachment_id)
    return DeletionOut(deleted_ids=[attachment_id], event_ids=result.event_ids, warnings=result.warnings)
