import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm.attributes import flag_modified

from ..config import Settings
from ..errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationFailed
from ..models import Task, User, UserRole, utcnow
from ..policy import Actor
from ..schemas import (
    PasswordChange,
    ProfileUpdate,
    UserAdminUpdate,
    UserFilter,
    UserLogin,
    UserRegister,
    UserSearchOptions,
)
from ..security import (
    hash_password,
    issue_tokens,
    prune_refresh_tokens,
    refresh_token_record,
    token_user_id,
    verify_password,
    verify_refresh_token,
)
from ..utils import page_count
from .tasks import count_user_tasks

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).filter(User.email == email.lower()))
    return result.scalar_one_or_none()


async def _ensure_email_free(db: AsyncSession, email: str, current: Optional[User] = None) -> None:
    if current is not None and email == current.email:
        return
    if await get_user_by_email(db, email):
        raise Conflict("Email already in use")


async def _flush_unique_email(db: AsyncSession) -> None:
    # The unique index settles races that slip past _ensure_email_free
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Email already in use")


def _store_refresh_token(user: User, token: str, now: Optional[datetime] = None) -> None:
    records = prune_refresh_tokens(user.refresh_tokens or [], now)
    records.append(refresh_token_record(token, now))
    user.refresh_tokens = records
    flag_modified(user, "refresh_tokens")


def _start_session(user: User, settings: Settings, now: Optional[datetime] = None) -> dict[str, str]:
    access_token, refresh_token = issue_tokens(user, settings)
    _store_refresh_token(user, refresh_token, now)
    return {"access_token": access_token, "refresh_token": refresh_token}


# Credentials

async def register_user(db: AsyncSession, data: UserRegister, settings: Settings) -> tuple[User, dict[str, str]]:
    """Create an account and open its first session"""
    await _ensure_email_free(db, data.email)

    user = User(
        name=data.name,
        email=data.email,
        password_hash=hash_password(data.password, settings.bcrypt_rounds),
        role=UserRole.USER.value,
        is_active=True,
        last_login=utcnow(),
        refresh_tokens=[],
    )
    db.add(user)
    await _flush_unique_email(db)
    tokens = _start_session(user, settings)
    await db.commit()
    await db.refresh(user)
    logger.info("Registered user %s", user.id)
    return user, tokens


async def authenticate(db: AsyncSession, data: UserLogin, settings: Settings) -> tuple[User, dict[str, str]]:
    user = await get_user_by_email(db, data.email)
    if not user or not verify_password(data.password, user.password_hash):
        raise Unauthorized("Invalid email or password")
    if not user.is_active:
        raise Forbidden("Account is deactivated")

    now = utcnow()
    user.last_login = now
    tokens = _start_session(user, settings, now)
    await db.commit()
    await db.refresh(user)
    logger.info("User %s logged in", user.id)
    return user, tokens


async def refresh_session(db: AsyncSession, refresh_token: str, settings: Settings) -> tuple[User, dict[str, str]]:
    """Rotate a refresh token: the presented one is revoked, a new pair issued"""
    payload = verify_refresh_token(refresh_token, settings)
    user = await db.get(User, token_user_id(payload))
    if not user:
        raise Unauthorized("Invalid or expired refresh token")

    records = prune_refresh_tokens(user.refresh_tokens or [])
    if not any(record.get("token") == refresh_token for record in records):
        raise Unauthorized("Invalid or expired refresh token")
    if not user.is_active:
        raise Forbidden("Account is deactivated")

    user.refresh_tokens = [record for record in records if record.get("token") != refresh_token]
    tokens = _start_session(user, settings)
    await db.commit()
    await db.refresh(user)
    return user, tokens


async def logout(db: AsyncSession, user: User, refresh_token: Optional[str] = None) -> None:
    """Revoke one refresh token, or all of them when none is given"""
    if refresh_token:
        user.refresh_tokens = [r for r in (user.refresh_tokens or []) if r.get("token") != refresh_token]
    else:
        user.refresh_tokens = []
    flag_modified(user, "refresh_tokens")
    await db.commit()
    logger.info("User %s logged out", user.id)


async def update_profile(db: AsyncSession, user: User, data: ProfileUpdate) -> User:
    changes = data.model_dump(exclude_unset=True)
    if changes.get("email"):
        await _ensure_email_free(db, changes["email"], user)
    for field in ("name", "email"):
        if changes.get(field) is not None:
            setattr(user, field, changes[field])
    if "avatar" in changes:
        user.avatar = changes["avatar"]
    user.updated_at = utcnow()
    await _flush_unique_email(db)
    await db.commit()
    await db.refresh(user)
    return user


async def change_password(db: AsyncSession, user: User, data: PasswordChange, settings: Settings) -> None:
    if not verify_password(data.current_password, user.password_hash):
        raise ValidationFailed.for_field("current_password", "Current password is incorrect")
    user.password_hash = hash_password(data.new_password, settings.bcrypt_rounds)
    # Existing sessions end with the old password
    user.refresh_tokens = []
    flag_modified(user, "refresh_tokens")
    await db.commit()
    logger.info("User %s changed password", user.id)


async def ensure_admin(db: AsyncSession, email: str, password: str, settings: Settings) -> User:
    """Create the bootstrap admin account if it does not exist yet"""
    user = await get_user_by_email(db, email)
    if user:
        logger.info("Admin user already exists (email: %s)", email)
        return user

    user = User(
        name="Admin",
        email=email.lower(),
        password_hash=hash_password(password, settings.bcrypt_rounds),
        role=UserRole.ADMIN.value,
        is_active=True,
        refresh_tokens=[],
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.warning("Created admin user %s", email)
    return user


# Administration

async def list_users(db: AsyncSession, user_filter: UserFilter, options: UserSearchOptions) -> dict[str, Any]:
    conditions = []
    if user_filter.search:
        conditions.append(
            or_(
                User.name.icontains(user_filter.search, autoescape=True),
                User.email.icontains(user_filter.search, autoescape=True),
            )
        )
    if user_filter.role:
        conditions.append(User.role == user_filter.role.value)
    if user_filter.is_active is not None:
        conditions.append(User.is_active.is_(user_filter.is_active))

    sort_column = getattr(User, options.sort_by)
    order = sort_column.asc() if options.sort_order == "asc" else sort_column.desc()
    result = await db.execute(
        select(User)
        .filter(*conditions)
        .order_by(order, User.id.asc())
        .offset((options.page - 1) * options.limit)
        .limit(options.limit)
    )
    users = list(result.scalars().all())
    total = (await db.execute(select(func.count(User.id)).filter(*conditions))).scalar() or 0

    return {
        "items": users,
        "pagination": {
            "total": total,
            "page": options.page,
            "limit": options.limit,
            "pages": page_count(total, options.limit),
        },
    }


async def get_user_for_actor(db: AsyncSession, user_id: int, actor: Actor) -> tuple[User, dict[str, int]]:
    """A user record with task counts; non-admins only see themselves"""
    user = await get_user(db, user_id)
    if not actor.is_admin and actor.id != user.id:
        raise Forbidden("Not authorized to view this user")
    return user, await count_user_tasks(db, user.id)


async def update_user(db: AsyncSession, user_id: int, data: UserAdminUpdate) -> User:
    user = await get_user(db, user_id)
    changes = data.model_dump(exclude_unset=True)

    if changes.get("email"):
        await _ensure_email_free(db, changes["email"], user)

    for field in ("name", "email", "is_active"):
        if changes.get(field) is not None:
            setattr(user, field, changes[field])
    if changes.get("role") is not None:
        user.role = changes["role"].value
    user.updated_at = utcnow()

    await _flush_unique_email(db)
    await db.commit()
    await db.refresh(user)
    logger.info("User %s updated (%s)", user_id, ", ".join(sorted(changes)))
    return user


async def delete_user(db: AsyncSession, user_id: int, actor: Actor) -> None:
    """Hard-delete a user who neither created nor is assigned any task"""
    user = await get_user(db, user_id)
    if user.id == actor.id:
        raise ValidationFailed("Cannot delete your own account")

    result = await db.execute(
        select(func.count(Task.id)).filter(
            or_(Task.created_by_id == user.id, Task.assigned_to_id == user.id)
        )
    )
    task_count = result.scalar() or 0
    if task_count > 0:
        raise ValidationFailed(
            f"Cannot delete user. User has {task_count} associated tasks. "
            "Please reassign or delete tasks first."
        )

    await db.delete(user)
    await db.commit()
    logger.info("User %s deleted by %s", user_id, actor.id)


async def list_assignable_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).filter(User.is_active.is_(True)).order_by(User.name.asc()))
    return list(result.scalars().all())
