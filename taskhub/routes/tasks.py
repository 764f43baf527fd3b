from enum import Enum
from typing import Iterable, Optional, Type

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..db import get_db
from ..deps import get_actor, get_storage
from ..errors import ValidationFailed
from ..models import Task, TaskPriority, TaskStatus
from ..policy import Actor
from ..schemas import (
    CommentCreate,
    SearchOptions,
    SortOrder,
    TaskCreate,
    TaskFilter,
    TaskResponse,
    TaskSortField,
    TaskStats,
    TaskUpdate,
    UserSummary,
)
from ..storage import ObjectStorage
from ..utils import envelope, parse_date_bound

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _date_param(name: str, value: Optional[str], end_of_day: bool):
    try:
        return parse_date_bound(value, end_of_day=end_of_day)
    except ValueError:
        raise ValidationFailed.for_field(name, f"Invalid {name} format. Use YYYY-MM-DD or ISO 8601")


def _present(values: Optional[list[str]]) -> list[str]:
    # Clients send empty strings for unset filters
    return [value.strip() for value in values or [] if value and value.strip()]


def _enum_param(name: str, values: Optional[list[str]], enum_cls: Type[Enum]) -> Optional[list]:
    items = _present(values)
    if not items:
        return None
    try:
        return [enum_cls(item) for item in items]
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationFailed.for_field(name, f"Invalid {name}. Allowed values: {allowed}")


def _id_param(name: str, value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationFailed.for_field(name, f"Invalid {name}: must be a user id")


async def task_responses(db: AsyncSession, tasks: Iterable[Task]) -> list[TaskResponse]:
    """Serialize tasks with comment authors resolved"""
    tasks = list(tasks)
    authors = await crud.comments.load_comment_authors(db, tasks)

    responses = []
    for task in tasks:
        response = TaskResponse.model_validate(task)
        for comment in response.comments:
            author = authors.get(comment.author_id)
            if author is not None:
                comment.author = UserSummary.model_validate(author)
        responses.append(response)
    return responses


async def task_data(db: AsyncSession, task: Task) -> dict:
    (response,) = await task_responses(db, [task])
    return {"task": response}


@router.get("/")
async def list_tasks(
    search: Optional[str] = Query(None, max_length=100),
    status_: Optional[list[str]] = Query(None, alias="status"),
    priority: Optional[list[str]] = Query(None),
    assigned_to: Optional[str] = Query(None),
    created_by: Optional[str] = Query(None),
    tags: Optional[list[str]] = Query(None),
    due_date_from: Optional[str] = Query(None),
    due_date_to: Optional[str] = Query(None),
    is_overdue: bool = Query(False),
    include_archived: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: TaskSortField = Query("created_at"),
    sort_order: SortOrder = Query("desc"),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Search tasks visible to the caller with filters and pagination"""
    task_filter = TaskFilter(
        search=search or None,
        status=_enum_param("status", status_, TaskStatus),
        priority=_enum_param("priority", priority, TaskPriority),
        assigned_to=_id_param("assigned_to", assigned_to),
        created_by=_id_param("created_by", created_by),
        tags=_present(tags) or None,
        due_date_from=_date_param("due_date_from", due_date_from, end_of_day=False),
        due_date_to=_date_param("due_date_to", due_date_to, end_of_day=True),
        is_overdue=is_overdue,
        include_archived=include_archived,
    )
    options = SearchOptions(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)

    result = await crud.tasks.search_tasks(db, task_filter, options, actor)
    return envelope({
        "items": await task_responses(db, result["items"]),
        "pagination": result["pagination"],
    })


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_task(
    task: TaskCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Create a new task owned by the caller"""
    db_task = await crud.tasks.create_task(db, task, actor)
    return envelope(await task_data(db, db_task), "Task created successfully")


@router.get("/stats")
async def get_task_stats(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Task counts for the caller's dashboard"""
    stats = await crud.tasks.get_task_stats(db, actor)
    return envelope(TaskStats(**stats))


@router.get("/{task_id}")
async def get_task(
    task_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Get a specific task by ID"""
    task = await crud.tasks.get_task_for_actor(db, task_id, actor)
    return envelope(await task_data(db, task))


@router.put("/{task_id}")
async def update_task(
    task_id: int,
    task_update: TaskUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Update a specific task"""
    task = await crud.tasks.update_task(db, task_id, task_update, actor)
    return envelope(await task_data(db, task), "Task updated successfully")


@router.delete("/{task_id}")
async def delete_task(
    task_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """Delete a specific task and its stored files"""
    task = await crud.tasks.delete_task(db, task_id, actor)
    await crud.attachments.release_attachments(storage, task.attachments or [])
    return envelope(message="Task deleted successfully")


@router.post("/{task_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    task_id: int,
    comment: CommentCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    task = await crud.comments.add_comment(db, task_id, comment.text, actor)
    return envelope(await task_data(db, task), "Comment added successfully")


@router.put("/{task_id}/comments/{comment_id}")
async def update_comment(
    task_id: int,
    comment_id: str,
    comment: CommentCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    task = await crud.comments.update_comment(db, task_id, comment_id, comment.text, actor)
    return envelope(await task_data(db, task), "Comment updated successfully")


@router.delete("/{task_id}/comments/{comment_id}")
async def delete_comment(
    task_id: int,
    comment_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    task = await crud.comments.delete_comment(db, task_id, comment_id, actor)
    return envelope(await task_data(db, task), "Comment deleted successfully")
