import enum
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import Text, cast, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ..errors import Forbidden, NotFound, ValidationFailed
from ..lifecycle import apply_status_change, normalize_tags
from ..models import Task, TaskPriority, TaskStatus, User, utcnow
from ..policy import Actor, can_delete, can_modify, visible_to
from ..schemas import SearchOptions, TaskCreate, TaskFilter, TaskUpdate
from ..utils import page_count

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, enum.Enum) else value


async def _require_assignee(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise ValidationFailed.for_field("assigned_to", "Assigned user not found")
    return user


async def save_task(db: AsyncSession, task: Task) -> Task:
    """Persist a loaded task and reload it with its user references"""
    task.updated_at = utcnow()
    await db.commit()
    await db.refresh(task)
    return task


async def create_task(
    db: AsyncSession,
    task: TaskCreate,
    actor: Actor,
    now: Optional[datetime] = None,
) -> Task:
    """Create a new task owned by ``actor``"""
    if task.assigned_to is not None:
        await _require_assignee(db, task.assigned_to)

    db_task = Task(
        title=task.title,
        description=task.description,
        status=task.status.value,
        priority=task.priority.value,
        due_date=task.due_date,
        created_by_id=actor.id,
        assigned_to_id=task.assigned_to,
        tags=normalize_tags(task.tags),
        attachments=[],
        comments=[],
        estimated_hours=task.estimated_hours,
        actual_hours=task.actual_hours,
        is_archived=False,
    )
    changes = apply_status_change(db_task, {"status": db_task.status}, now)
    db_task.completed_at = changes.get("completed_at")

    db.add(db_task)
    await db.commit()
    await db.refresh(db_task)
    logger.info("User %s created task %s", actor.id, db_task.id)
    return db_task


async def get_task(db: AsyncSession, task_id: int) -> Task:
    """Get a task by ID or raise NotFound"""
    result = await db.execute(select(Task).filter(Task.id == task_id))
    task = result.scalar_one_or_none()
    if not task:
        raise NotFound("Task not found")
    return task


async def get_task_for_actor(db: AsyncSession, task_id: int, actor: Actor) -> Task:
    task = await get_task(db, task_id)
    if not can_modify(task, actor.id, actor.role):
        raise Forbidden("Not authorized to view this task")
    return task


async def update_task(
    db: AsyncSession,
    task_id: int,
    task_update: TaskUpdate,
    actor: Actor,
    now: Optional[datetime] = None,
) -> Task:
    """Apply a partial update; the creator reference is never changed"""
    db_task = await get_task(db, task_id)
    if not can_modify(db_task, actor.id, actor.role):
        raise Forbidden("Not authorized to update this task")

    changes = {field: _plain(value) for field, value in task_update.model_dump(exclude_unset=True).items()}
    if "assigned_to" in changes:
        assignee = changes.pop("assigned_to")
        if assignee is not None:
            await _require_assignee(db, assignee)
        changes["assigned_to_id"] = assignee
    if "tags" in changes:
        changes["tags"] = normalize_tags(changes["tags"])

    apply_status_change(db_task, changes, now)

    for field, value in changes.items():
        setattr(db_task, field, value)

    await save_task(db, db_task)
    logger.info("User %s updated task %s (%s)", actor.id, task_id, ", ".join(sorted(changes)))
    return db_task


async def delete_task(db: AsyncSession, task_id: int, actor: Actor) -> Task:
    """Delete a task; returns the deleted row so its attachments can be released"""
    db_task = await get_task(db, task_id)
    if not can_delete(db_task, actor.id, actor.role):
        raise Forbidden("Not authorized to delete this task")

    await db.delete(db_task)
    await db.commit()
    logger.info("User %s deleted task %s", actor.id, task_id)
    return db_task


def _tag_condition(tags: list[str]):
    # Tags are stored as a JSON array; match the encoded element text
    return or_(*[cast(Task.tags, Text).contains(json.dumps(tag), autoescape=True) for tag in tags])


def build_task_conditions(task_filter: TaskFilter, actor: Actor, now: Optional[datetime] = None) -> list:
    """Translate filters into conjunctive WHERE clauses, scope first"""
    now = now or utcnow()
    conditions = []

    scope = visible_to(actor)
    if scope is not None:
        conditions.append(scope)

    if task_filter.search:
        conditions.append(
            or_(
                Task.title.icontains(task_filter.search, autoescape=True),
                Task.description.icontains(task_filter.search, autoescape=True),
            )
        )

    if task_filter.is_overdue:
        # Overrides any explicit status or due-date filter
        conditions.append(Task.due_date < now)
        conditions.append(Task.status != TaskStatus.COMPLETED.value)
    else:
        if task_filter.status:
            conditions.append(Task.status.in_([_plain(status) for status in task_filter.status]))
        if task_filter.due_date_from:
            conditions.append(Task.due_date >= task_filter.due_date_from)
        if task_filter.due_date_to:
            conditions.append(Task.due_date <= task_filter.due_date_to)

    if task_filter.priority:
        conditions.append(Task.priority.in_([_plain(priority) for priority in task_filter.priority]))

    if task_filter.assigned_to is not None:
        conditions.append(Task.assigned_to_id == task_filter.assigned_to)

    if task_filter.created_by is not None:
        conditions.append(Task.created_by_id == task_filter.created_by)

    tags = normalize_tags(task_filter.tags)
    if tags:
        conditions.append(_tag_condition(tags))

    if not task_filter.include_archived:
        conditions.append(Task.is_archived.is_(False))

    return conditions


async def search_tasks(
    db: AsyncSession,
    task_filter: TaskFilter,
    options: SearchOptions,
    actor: Actor,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Filtered, sorted, offset-paginated task listing"""
    conditions = build_task_conditions(task_filter, actor, now)

    sort_column = getattr(Task, options.sort_by)
    order = sort_column.asc() if options.sort_order == "asc" else sort_column.desc()

    query = (
        select(Task)
        .filter(*conditions)
        .order_by(order, Task.id.asc())
        .offset((options.page - 1) * options.limit)
        .limit(options.limit)
    )
    result = await db.execute(query)
    items = list(result.scalars().all())
    total = await get_tasks_count(db, task_filter, actor, now)

    return {
        "items": items,
        "pagination": {
            "total": total,
            "page": options.page,
            "limit": options.limit,
            "pages": page_count(total, options.limit),
        },
    }


async def get_tasks_count(
    db: AsyncSession,
    task_filter: TaskFilter,
    actor: Actor,
    now: Optional[datetime] = None,
) -> int:
    """Get total count of tasks matching the filters"""
    query = select(func.count(Task.id)).filter(*build_task_conditions(task_filter, actor, now))
    result = await db.execute(query)
    return result.scalar() or 0


async def get_task_stats(db: AsyncSession, actor: Actor, now: Optional[datetime] = None) -> dict[str, Any]:
    """Counts by status and priority, overdue and recently completed tasks"""
    now = now or utcnow()
    scope = visible_to(actor)
    base = [scope] if scope is not None else []

    total = (await db.execute(select(func.count(Task.id)).filter(*base))).scalar() or 0

    by_status = {status.value: 0 for status in TaskStatus}
    rows = await db.execute(select(Task.status, func.count(Task.id)).filter(*base).group_by(Task.status))
    for status, count in rows.all():
        by_status[status] = count

    by_priority = {priority.value: 0 for priority in TaskPriority}
    rows = await db.execute(select(Task.priority, func.count(Task.id)).filter(*base).group_by(Task.priority))
    for priority, count in rows.all():
        by_priority[priority] = count

    overdue = (
        await db.execute(
            select(func.count(Task.id)).filter(
                *base,
                Task.due_date < now,
                Task.status != TaskStatus.COMPLETED.value,
            )
        )
    ).scalar() or 0

    completed_this_week = (
        await db.execute(
            select(func.count(Task.id)).filter(
                *base,
                Task.status == TaskStatus.COMPLETED.value,
                Task.completed_at >= now - timedelta(days=7),
            )
        )
    ).scalar() or 0

    return {
        "total_tasks": total,
        "tasks_by_status": by_status,
        "tasks_by_priority": by_priority,
        "overdue_tasks": overdue,
        "completed_this_week": completed_this_week,
    }


async def count_user_tasks(db: AsyncSession, user_id: int) -> dict[str, int]:
    created = (await db.execute(select(func.count(Task.id)).filter(Task.created_by_id == user_id))).scalar() or 0
    assigned = (await db.execute(select(func.count(Task.id)).filter(Task.assigned_to_id == user_id))).scalar() or 0
    return {"created_tasks": created, "assigned_tasks": assigned}
