# routers/issues.py - Issue detail, edits, open/close and deletion
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from auth import CurrentUser, get_current_user
from models import IssueSeverity, IssueStatus
from routers.common import (
    DeletionOut, IssueOut, IssueResult, get_service, issue_out, issue_result,
)
from service import WorkTrackService

router = APIRouter(prefix="/api/v1/issues", tags=["Issues"])


class IssueUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    severity: Optional[IssueSeverity] = None
    due_date: Optional[datetime] = None
    assignee_ids: Optional[List[str]] = None

    @field_validator("title", "severity")
    @classmethod
    def not_null(cls, v, info):
        if v is None:
            raise ValueError(f"An issue {info.field_name} cannot be cleared")
        return v


class IssueStatusChange(BaseModel):
    status: IssueStatus


@router.get("/{issue_id}", response_model=IssueOut)
async def get_issue(
    issue_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return issue_out(await service.get_issue(issue_id))


@router.patch("/{issue_id}", response_model=IssueResult)
async def update_issue(
    issue_id: str,
    data: IssueUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    return issue_result(await service.update_issue(user, issue_id, **changes))


@router.put("/{issue_id}/status", response_model=IssueResult)
async def change_issue_status(
    issue_id: str,
    data: IssueStatusChange,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Close or reopen an issue. Reopening demotes a Completed sub-task."""
    return issue_result(await service.change_issue_status(user, issue_id, data.status))


@router.delete("/{issue_id}", response_model=DeletionOut)
async def delete_issue(
    issue_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    result = await service.delete_issue(user, issue_id)
    return DeletionOut(deleted_ids=[issue_id], event_ids=result.event_ids, warnings=result.warnings)
