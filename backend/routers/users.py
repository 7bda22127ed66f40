# routers/users.py - User directory entries used for timeline author names
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from auth import CurrentUser, get_current_user, require_role
from errors import DependencyError
from models import User, UserRole
from routers.common import get_service, iso_or_none
from service import WorkTrackService

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


# --- Schemas ---

class UserOut(BaseModel):
    id: str
    email: str
    display_name: str
    role: str
    created_at: str


class UserCreate(BaseModel):
    id: Optional[str] = None  # Identity-provider subject, when known
    email: str = Field(..., min_length=3, max_length=320)
    display_name: Optional[str] = None
    role: UserRole = UserRole.MEMBER


class DisplayNameUpdate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=200)


def _user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        email=u.email,
        display_name=u.display_name or "",
        role=u.role.value if isinstance(u.role, UserRole) else u.role,
        created_at=iso_or_none(u.created_at) or "",
    )


# --- Endpoints ---

@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    data: UserCreate,
    user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
    service: WorkTrackService = Depends(get_service),
):
    """Register a user in the directory (admin only)"""
    record = User(email=data.email, display_name=data.display_name, role=data.role)
    if data.id:
        record.id = data.id
    try:
        record = await service.directory.add_user(record)
    except DependencyError as e:
        if isinstance(e.__cause__, IntegrityError):
            raise HTTPException(status_code=409, detail="User already exists")
        raise
    return _user_to_out(record)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    return _user_to_out(await service.directory.get_user(user_id))


@router.patch("/me", response_model=UserOut)
async def update_my_display_name(
    data: DisplayNameUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: WorkTrackService = Depends(get_service),
):
    """Rename yourself. Past timeline events keep the old name."""
    return _user_to_out(await service.directory.set_display_name(user.id, data.display_name))
