from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings
from .db import get_db
from .errors import Forbidden, Unauthorized
from .models import User
from .policy import Actor
from .security import token_user_id, verify_access_token
from .storage import ObjectStorage

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> User:
    """Resolve the bearer access token to an active user"""
    if credentials is None:
        raise Unauthorized("Not authorized, no token")

    payload = verify_access_token(credentials.credentials, settings)
    user = await db.get(User, token_user_id(payload))
    if not user:
        raise Unauthorized("User no longer exists")
    if not user.is_active:
        raise Forbidden("Account is deactivated")
    return user


async def get_actor(user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(user)


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user
