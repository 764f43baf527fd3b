import logging
import uuid
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm.attributes import flag_modified

from ..errors import Forbidden, NotFound
from ..models import Task, User, utcnow
from ..policy import Actor, can_edit_comment, can_modify
from .tasks import get_task, save_task

logger = logging.getLogger(__name__)


def _find_comment(task: Task, comment_id: str) -> tuple[int, dict[str, Any]]:
    for index, comment in enumerate(task.comments or []):
        if comment.get("id") == comment_id:
            return index, comment
    raise NotFound("Comment not found")


async def add_comment(
    db: AsyncSession,
    task_id: int,
    text: str,
    actor: Actor,
    now: Optional[datetime] = None,
) -> Task:
    """Append a comment; anyone allowed to modify the task may comment"""
    task = await get_task(db, task_id)
    if not can_modify(task, actor.id, actor.role):
        raise Forbidden("Not authorized to comment on this task")

    stamp = (now or utcnow()).isoformat()
    comment = {
        "id": uuid.uuid4().hex,
        "text": text,
        "author_id": actor.id,
        "created_at": stamp,
        "updated_at": stamp,
    }
    task.comments = [*(task.comments or []), comment]
    flag_modified(task, "comments")
    await save_task(db, task)
    logger.info("User %s commented on task %s", actor.id, task_id)
    return task


async def update_comment(
    db: AsyncSession,
    task_id: int,
    comment_id: str,
    text: str,
    actor: Actor,
    now: Optional[datetime] = None,
) -> Task:
    """Edit a comment's text; only its author or an admin may do so"""
    task = await get_task(db, task_id)
    index, comment = _find_comment(task, comment_id)
    if not can_edit_comment(comment, actor.id, actor.role):
        raise Forbidden("Not authorized to update this comment")

    comments = list(task.comments)
    comments[index] = {**comment, "text": text, "updated_at": (now or utcnow()).isoformat()}
    task.comments = comments
    flag_modified(task, "comments")
    await save_task(db, task)
    return task


async def delete_comment(db: AsyncSession, task_id: int, comment_id: str, actor: Actor) -> Task:
    """Remove a comment; only its author or an admin may do so"""
    task = await get_task(db, task_id)
    index, comment = _find_comment(task, comment_id)
    if not can_edit_comment(comment, actor.id, actor.role):
        raise Forbidden("Not authorized to delete this comment")

    task.comments = [c for i, c in enumerate(task.comments) if i != index]
    flag_modified(task, "comments")
    await save_task(db, task)
    logger.info("User %s deleted comment %s on task %s", actor.id, comment_id, task_id)
    return task


async def load_comment_authors(db: AsyncSession, tasks: Iterable[Task]) -> dict[int, User]:
    """Users who wrote any comment on ``tasks``, keyed by id, in one query"""
    author_ids = {
        comment.get("author_id")
        for task in tasks
        for comment in (task.comments or [])
        if comment.get("author_id") is not None
    }
    if not author_ids:
        return {}
    result = await db.execute(select(User).filter(User.id.in_(author_ids)))
    return {user.id: user for user in result.scalars().all()}
