from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..config import Settings
from ..crud.attachments import UploadedFile, UploadLimits, check_batch
from ..db import get_db
from ..deps import get_actor, get_app_settings, get_storage
from ..errors import NotFound
from ..policy import Actor
from ..storage import ObjectStorage
from ..utils import envelope
from .tasks import task_data

router = APIRouter(prefix="/tasks/{task_id}", tags=["attachments"])


@router.post("/upload")
async def upload_files(
    task_id: int,
    documents: list[UploadFile] = File(...),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    """Attach up to the per-task limit of files to a task"""
    limits = UploadLimits(
        max_attachments=settings.max_attachments,
        max_bytes=settings.max_upload_bytes,
        allowed_types=settings.allowed_upload_types,
    )
    # Count, type and declared size are checked before any body is read
    declared = [
        (document.filename or "document", document.content_type or "application/octet-stream", document.size)
        for document in documents
    ]
    check_batch(declared, 0, limits)

    files = []
    for document in documents:
        files.append(
            UploadedFile(
                filename=document.filename or "document",
                content_type=document.content_type or "application/octet-stream",
                data=await document.read(),
            )
        )

    task = await crud.attachments.add_attachments(db, storage, task_id, files, actor, limits)
    return envelope(await task_data(db, task), "Files uploaded successfully")


@router.get("/files/{file_id}/url")
async def get_file_url(
    task_id: int,
    file_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """Regenerate the retrieval URL for an attachment"""
    info = await crud.attachments.get_attachment_url(db, storage, task_id, file_id, actor)
    return envelope(info)


@router.get("/files/{file_id}/download")
async def download_file(
    task_id: int,
    file_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """Send the file as an attachment named after the upload, or redirect to remote storage"""
    attachment = await crud.attachments.get_attachment(db, task_id, file_id, actor)
    path = storage.local_path(attachment["storage_key"])
    if path is None:
        return RedirectResponse(storage.url_for(attachment["storage_key"]))
    if not path.is_file():
        raise NotFound("File not found")
    return FileResponse(path, media_type=attachment["mime_type"], filename=attachment["original_name"])


@router.delete("/files/{file_id}")
async def delete_file(
    task_id: int,
    file_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    task = await crud.attachments.delete_attachment(db, storage, task_id, file_id, actor)
    return envelope(await task_data(db, task), "File deleted successfully")
