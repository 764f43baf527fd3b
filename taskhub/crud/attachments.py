import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from ..errors import Forbidden, NotFound, ValidationFailed
from ..models import Task, utcnow
from ..policy import Actor, can_modify
from ..storage import ObjectStorage, StoredObject
from .tasks import get_task, save_task

logger = logging.getLogger(__name__)

MAX_ATTACHMENTS = 3


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class UploadLimits:
    max_attachments: int = MAX_ATTACHMENTS
    max_bytes: int = 5 * 1024 * 1024
    allowed_types: tuple[str, ...] = ("application/pdf",)


def _find_attachment(task: Task, attachment_id: str) -> dict[str, Any]:
    for attachment in task.attachments or []:
        if attachment.get("id") == attachment_id:
            return attachment
    raise NotFound("File not found")


def check_batch(
    files: Sequence[tuple[str, str, Optional[int]]],
    existing: int,
    limits: UploadLimits,
) -> None:
    """Validate ``(filename, content_type, size)`` triples against the limits.

    A size of None is not checked; callers pass it when the size is not
    known before the body is read.
    """
    if not files:
        raise ValidationFailed.for_field("documents", "No files uploaded")

    if existing + len(files) > limits.max_attachments:
        raise ValidationFailed.for_field(
            "documents", f"Maximum {limits.max_attachments} files allowed per task"
        )

    errors = []
    for filename, content_type, size in files:
        if content_type not in limits.allowed_types:
            errors.append({
                "field": "documents",
                "message": f"File type not allowed for {filename}: {content_type}",
            })
        elif size is not None and size > limits.max_bytes:
            errors.append({
                "field": "documents",
                "message": f"File too large: {filename}. Maximum size: {limits.max_bytes // (1024 * 1024)}MB",
            })
    if errors:
        raise ValidationFailed("Invalid upload", errors)


def _validate_batch(task: Task, files: Sequence[UploadedFile], limits: UploadLimits) -> None:
    check_batch(
        [(upload.filename, upload.content_type, len(upload.data)) for upload in files],
        len(task.attachments or []),
        limits,
    )


async def _discard(storage: ObjectStorage, stored: Sequence[StoredObject]) -> None:
    for item in stored:
        try:
            await storage.delete(item.key)
        except Exception:
            logger.exception("Failed to clean up stored object %s", item.key)


async def add_attachments(
    db: AsyncSession,
    storage: ObjectStorage,
    task_id: int,
    files: Sequence[UploadedFile],
    actor: Actor,
    limits: UploadLimits = UploadLimits(),
    now: Optional[datetime] = None,
) -> Task:
    """Store a batch of files and attach them all, or attach none"""
    task = await get_task(db, task_id)
    if not can_modify(task, actor.id, actor.role):
        raise Forbidden("Not authorized to upload files to this task")

    # The cap is checked against the record as loaded; concurrent uploads may race
    _validate_batch(task, files, limits)

    stored: list[StoredObject] = []
    try:
        for upload in files:
            stored.append(await storage.save(upload.data, upload.filename, upload.content_type))
    except Exception:
        logger.error("Upload to storage failed for task %s, discarding %d stored files", task_id, len(stored))
        await _discard(storage, stored)
        raise

    stamp = (now or utcnow()).isoformat()
    new_attachments = [
        {
            "id": uuid.uuid4().hex,
            "filename": item.filename,
            "original_name": upload.filename,
            "url": item.url,
            "storage_key": item.key,
            "size": len(upload.data),
            "mime_type": upload.content_type,
            "uploaded_by": actor.id,
            "uploaded_at": stamp,
        }
        for upload, item in zip(files, stored)
    ]

    task.attachments = [*(task.attachments or []), *new_attachments]
    flag_modified(task, "attachments")
    try:
        await save_task(db, task)
    except Exception:
        await db.rollback()
        await _discard(storage, stored)
        raise

    logger.info("User %s attached %d files to task %s", actor.id, len(files), task_id)
    return task


async def delete_attachment(
    db: AsyncSession,
    storage: ObjectStorage,
    task_id: int,
    attachment_id: str,
    actor: Actor,
) -> Task:
    task = await get_task(db, task_id)
    if not can_modify(task, actor.id, actor.role):
        raise Forbidden("Not authorized to delete files from this task")

    attachment = _find_attachment(task, attachment_id)
    task.attachments = [a for a in task.attachments if a.get("id") != attachment_id]
    flag_modified(task, "attachments")
    await save_task(db, task)

    await _discard(storage, [StoredObject(key=attachment["storage_key"], url=attachment["url"], filename=attachment["filename"])])
    return task


async def get_attachment(db: AsyncSession, task_id: int, attachment_id: str, actor: Actor) -> dict[str, Any]:
    task = await get_task(db, task_id)
    if not can_modify(task, actor.id, actor.role):
        raise Forbidden("Not authorized to view this task")
    return _find_attachment(task, attachment_id)


async def get_attachment_url(
    db: AsyncSession,
    storage: ObjectStorage,
    task_id: int,
    attachment_id: str,
    actor: Actor,
) -> dict[str, str]:
    """Regenerate the retrieval URL from the attachment's storage key"""
    attachment = await get_attachment(db, task_id, attachment_id, actor)
    return {
        "url": storage.url_for(attachment["storage_key"]),
        "original_url": attachment["url"],
        "filename": attachment["original_name"],
    }


async def release_attachments(storage: ObjectStorage, attachments: Sequence[dict[str, Any]]) -> None:
    """Delete the stored objects of a task that no longer exists"""
    await _discard(
        storage,
        [StoredObject(key=a["storage_key"], url=a["url"], filename=a["filename"]) for a in attachments],
    )
