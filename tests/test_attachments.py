import pytest

from taskhub import crud
from taskhub.crud.attachments import UploadedFile, UploadLimits
from taskhub.errors import Forbidden, ValidationFailed

from .factories import actor_for, make_task
from .fakes import FakeStorage


def _pdf(name="doc.pdf", size=10):
    return UploadedFile(filename=name, content_type="application/pdf", data=b"%" * size)


@pytest.mark.asyncio
async def test_upload_attaches_all_files(db, alice, storage):
    task = await make_task(db, alice)
    task = await crud.attachments.add_attachments(db, storage, task.id, [_pdf("a.pdf"), _pdf("b.pdf")], actor_for(alice))

    assert [a["original_name"] for a in task.attachments] == ["a.pdf", "b.pdf"]
    assert all(a["uploaded_by"] == alice.id for a in task.attachments)
    assert len(storage.objects) == 2


@pytest.mark.asyncio
async def test_cap_rejects_whole_batch(db, alice, storage):
    task = await make_task(db, alice)
    task = await crud.attachments.add_attachments(db, storage, task.id, [_pdf("a.pdf"), _pdf("b.pdf")], actor_for(alice))

    with pytest.raises(ValidationFailed) as excinfo:
        await crud.attachments.add_attachments(db, storage, task.id, [_pdf("c.pdf"), _pdf("d.pdf")], actor_for(alice))
    assert excinfo.value.message == "Maximum 3 files allowed per task"

    await db.refresh(task)
    assert len(task.attachments) == 2
    assert storage.save_calls == 2


@pytest.mark.asyncio
async def test_wrong_type_and_size_rejected_before_storing(db, alice, storage):
    task = await make_task(db, alice)
    files = [
        UploadedFile(filename="notes.txt", content_type="text/plain", data=b"hi"),
        _pdf("big.pdf", size=200),
    ]
    with pytest.raises(ValidationFailed) as excinfo:
        await crud.attachments.add_attachments(
            db, storage, task.id, files, actor_for(alice), UploadLimits(max_bytes=100)
        )
    assert len(excinfo.value.errors) == 2
    assert storage.save_calls == 0


@pytest.mark.asyncio
async def test_storage_failure_discards_stored_files(db, alice):
    storage = FakeStorage(fail_on_call=2)
    task = await make_task(db, alice)

    with pytest.raises(OSError):
        await crud.attachments.add_attachments(db, storage, task.id, [_pdf("a.pdf"), _pdf("b.pdf")], actor_for(alice))

    assert storage.objects == {}
    assert len(storage.deleted) == 1
    await db.refresh(task)
    assert task.attachments == []


@pytest.mark.asyncio
async def test_unrelated_user_cannot_upload(db, alice, carol, storage):
    task = await make_task(db, alice)
    with pytest.raises(Forbidden):
        await crud.attachments.add_attachments(db, storage, task.id, [_pdf()], actor_for(carol))


@pytest.mark.asyncio
async def test_delete_attachment_and_download_url(db, alice, storage):
    task = await make_task(db, alice)
    task = await crud.attachments.add_attachments(db, storage, task.id, [_pdf("a.pdf")], actor_for(alice))
    attachment = task.attachments[0]

    info = await crud.attachments.get_attachment_url(db, storage, task.id, attachment["id"], actor_for(alice))
    assert info["url"] == f"https://files.test/{attachment['storage_key']}"
    assert info["filename"] == "a.pdf"

    task = await crud.attachments.delete_attachment(db, storage, task.id, attachment["id"], actor_for(alice))
    assert task.attachments == []
    assert storage.deleted == [attachment["storage_key"]]


def test_check_batch_skips_unknown_sizes():
    limits = UploadLimits(max_bytes=100)
    crud.attachments.check_batch([("a.pdf", "application/pdf", None)], 0, limits)

    with pytest.raises(ValidationFailed) as excinfo:
        crud.attachments.check_batch([("a.pdf", "application/pdf", 101)], 0, limits)
    assert excinfo.value.errors[0]["field"] == "documents"
