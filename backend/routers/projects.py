# routers/projects.py - Projects, their main tasks, progress, timelines and daily activity
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from auth import CurrentUser, get_current_user
from models import TaskKind, TaskStatus, utcnow
from routers.common import (
    DeletionOut, ProjectOut, TaskOut, TaskResult, get_service, project_out,
    task_out, task_result,
)
from service import WorkTrackService

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])


# ============================================================
# SCHEMAS
# ============================================================

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None


class MainTaskCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    kind: TaskKind = TaskKind.STANDARD
    due_date: Optional[datetime] = None
    amount: Optional[Decimal] = None
    reminder_days: Optional[int] = Field(None, ge=0)
    status: TaskStatus = TaskStatus.TODO


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("", response_model=ProjectOut, status_code=201)
async def create_project(
    data: ProjectCreate,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    project = await service.create_project(user, data.name, data.description)
    return project_out(project)


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return project_out(await service.get_project(project_id))


@router.delete("/{project_id}", response_model=DeletionOut)
async def delete_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Delete the project with every task, issue, event and attachment in it"""
    result = await service.delete_project(user, project_id)
    return DeletionOut(deleted_ids=result.record.item_ids, warnings=result.warnings)


@router.get("/{project_id}/tasks", response_model=List[TaskOut])
async def list_main_tasks(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return [task_out(t) for t in await service.list_main_tasks(project_id)]


@router.post("/{project_id}/tasks", response_model=TaskResult, status_code=201)
async def create_main_task(
    project_id: str,
    data: MainTaskCreate,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    result = await service.create_task(
        user, project_id, data.name,
        description=data.description,
        kind=data.kind,
        due_date=data.due_date,
        amount=data.amount,
        reminder_days=data.reminder_days,
        status=data.status,
    )
    return task_result(result)


@router.get("/{project_id}/progress")
async def get_project_progress(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Mean progress over standard main tasks, plus the derived project status"""
    return (await service.compute_project_progress(project_id)).to_dict()


@router.get("/{project_id}/timeline")
async def get_project_timeline(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    timelines = await service.aggregate_for_project(project_id)
    return {"project_id": project_id, "main_tasks": [t.to_dict() for t in timelines]}


@router.get("/{project_id}/daily-activity")
async def get_daily_activity(
    project_id: str,
    day: Optional[date] = Query(None, alias="date", description="UTC day, defaults to today"),
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Daily progress report data: created/completed tasks, issues, uploads and events"""
    activity = await service.daily_activity(project_id, day or utcnow().date())
    return activity.to_dict()


@router.get("/{project_id}/projected-timeline")
async def get_projected_timeline(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return (await service.projected_timeline(project_id)).to_dict()
