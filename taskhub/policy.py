"""Access-control predicates for tasks and comments.

All functions here are pure: they look at already-loaded entities and the
acting identity and never touch the database.
"""
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy import or_

from .models import Task, User, UserRole


@dataclass(frozen=True)
class Actor:
    """The authenticated identity performing an operation"""

    id: int
    role: str = UserRole.USER.value

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=user.role)


def _is_admin(actor_role: str) -> bool:
    return actor_role == UserRole.ADMIN.value


def can_modify(task: Task, actor_id: int, actor_role: str) -> bool:
    """Admin, creator or assignee may view, update and comment on a task"""
    return (
        _is_admin(actor_role)
        or task.created_by_id == actor_id
        or (task.assigned_to_id is not None and task.assigned_to_id == actor_id)
    )


def can_delete(task: Task, actor_id: int, actor_role: str) -> bool:
    """Only the creator or an admin may delete; the assignee may not"""
    return _is_admin(actor_role) or task.created_by_id == actor_id


def can_edit_comment(comment: Mapping[str, Any], actor_id: int, actor_role: str) -> bool:
    """Comment author or admin, independent of task-level permission"""
    return _is_admin(actor_role) or comment.get("author_id") == actor_id


def visible_to(actor: Actor) -> Optional[Any]:
    """Query clause narrowing tasks to the actor's own, or None for admins"""
    if actor.is_admin:
        return None
    return or_(Task.created_by_id == actor.id, Task.assigned_to_id == actor.id)
