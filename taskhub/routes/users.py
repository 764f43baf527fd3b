from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..db import get_db
from ..deps import get_actor, require_admin
from ..models import User, UserRole
from ..policy import Actor
from ..schemas import (
    SortOrder,
    UserAdminUpdate,
    UserFilter,
    UserResponse,
    UserSearchOptions,
    UserSortField,
    UserSummary,
)
from ..utils import envelope

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/assignable")
async def assignable_users(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Active users for the assignee picker"""
    users = await crud.users.list_assignable_users(db)
    return envelope({"users": [UserSummary.model_validate(user) for user in users]})


@router.get("/")
async def list_users(
    search: Optional[str] = Query(None, max_length=100),
    role: Optional[UserRole] = Query(None),
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: UserSortField = Query("created_at"),
    sort_order: SortOrder = Query("desc"),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await crud.users.list_users(
        db,
        UserFilter(search=search, role=role, is_active=is_active),
        UserSearchOptions(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order),
    )
    return envelope({
        "users": [UserResponse.model_validate(user) for user in result["items"]],
        "pagination": result["pagination"],
    })


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Users can view their own profile, admins any profile"""
    user, stats = await crud.users.get_user_for_actor(db, user_id, actor)
    return envelope({"user": UserResponse.model_validate(user), "stats": stats})


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    data: UserAdminUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await crud.users.update_user(db, user_id, data)
    return envelope({"user": UserResponse.model_validate(user)}, "User updated successfully")


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await crud.users.delete_user(db, user_id, Actor.from_user(admin))
    return envelope(message="User deleted successfully")
