from datetime import datetime, timedelta

from taskhub.models import Task, User, UserRole, utcnow
from taskhub.policy import Actor
from taskhub.security import hash_password

TEST_PASSWORD = "secret123"


async def make_user(db, name="Alice Smith", email=None, role=UserRole.USER, is_active=True) -> User:
    user = User(
        name=name,
        email=email or f"{name.split()[0].lower()}@example.com",
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        role=role.value,
        is_active=is_active,
        refresh_tokens=[],
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_task(db, creator: User, assignee: User | None = None, **fields) -> Task:
    values = {
        "title": "Write report",
        "status": "pending",
        "priority": "medium",
        "tags": [],
        "attachments": [],
        "comments": [],
        "is_archived": False,
    }
    values.update(fields)
    task = Task(created_by_id=creator.id, assigned_to_id=assignee.id if assignee else None, **values)
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


def actor_for(user: User) -> Actor:
    return Actor.from_user(user)


def future(days: int = 3) -> datetime:
    return utcnow() + timedelta(days=days)


def past(days: int = 3) -> datetime:
    return utcnow() - timedelta(days=days)
