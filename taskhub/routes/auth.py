from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..config import Settings
from ..db import get_db
from ..deps import get_app_settings, get_current_user
from ..models import User
from ..schemas import (
    LogoutRequest,
    PasswordChange,
    ProfileUpdate,
    RefreshRequest,
    TokenPair,
    UserLogin,
    UserRegister,
    UserResponse,
)
from ..utils import envelope

router = APIRouter(prefix="/auth", tags=["auth"])


def _session_data(user: User, tokens: dict[str, str]) -> dict:
    return {"user": UserResponse.model_validate(user), **TokenPair(**tokens).model_dump()}


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    data: UserRegister,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user, tokens = await crud.users.register_user(db, data, settings)
    return envelope(_session_data(user, tokens), "User registered successfully")


@router.post("/login")
async def login(
    data: UserLogin,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user, tokens = await crud.users.authenticate(db, data, settings)
    return envelope(_session_data(user, tokens), "Login successful")


@router.post("/refresh")
async def refresh(
    data: RefreshRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """Exchange a refresh token for a new token pair"""
    _, tokens = await crud.users.refresh_session(db, data.refresh_token, settings)
    return envelope(TokenPair(**tokens))


@router.post("/logout")
async def logout(
    data: LogoutRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await crud.users.logout(db, user, data.refresh_token)
    return envelope(message="Logged out successfully")


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return envelope({"user": UserResponse.model_validate(user)})


@router.put("/update-profile")
async def update_profile(
    data: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await crud.users.update_profile(db, user, data)
    return envelope({"user": UserResponse.model_validate(user)}, "Profile updated successfully")


@router.put("/change-password")
async def change_password(
    data: PasswordChange,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    await crud.users.change_password(db, user, data, settings)
    return envelope(message="Password changed successfully")
