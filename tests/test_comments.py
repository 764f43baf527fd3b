import pytest

from taskhub import crud
from taskhub.errors import Forbidden, NotFound

from .factories import actor_for, make_task


@pytest.mark.asyncio
async def test_assignee_can_comment(db, alice, bob):
    task = await make_task(db, alice, bob)
    task = await crud.comments.add_comment(db, task.id, "Started on this", actor_for(bob))

    assert len(task.comments) == 1
    comment = task.comments[0]
    assert comment["text"] == "Started on this"
    assert comment["author_id"] == bob.id
    assert comment["id"]


@pytest.mark.asyncio
async def test_unrelated_user_cannot_comment(db, alice, carol):
    task = await make_task(db, alice)
    with pytest.raises(Forbidden):
        await crud.comments.add_comment(db, task.id, "Drive-by", actor_for(carol))


@pytest.mark.asyncio
async def test_creator_cannot_edit_assignees_comment(db, alice, bob):
    task = await make_task(db, alice, bob)
    task = await crud.comments.add_comment(db, task.id, "Original", actor_for(bob))
    comment_id = task.comments[0]["id"]

    with pytest.raises(Forbidden):
        await crud.comments.update_comment(db, task.id, comment_id, "Edited by creator", actor_for(alice))

    await db.refresh(task)
    assert task.comments[0]["text"] == "Original"


@pytest.mark.asyncio
async def test_author_and_admin_can_edit_and_delete(db, alice, bob, admin):
    task = await make_task(db, alice, bob)
    task = await crud.comments.add_comment(db, task.id, "Original", actor_for(bob))
    comment_id = task.comments[0]["id"]

    task = await crud.comments.update_comment(db, task.id, comment_id, "Edited", actor_for(bob))
    assert task.comments[0]["text"] == "Edited"

    task = await crud.comments.delete_comment(db, task.id, comment_id, actor_for(admin))
    assert task.comments == []


@pytest.mark.asyncio
async def test_missing_comment(db, alice):
    task = await make_task(db, alice)
    with pytest.raises(NotFound):
        await crud.comments.delete_comment(db, task.id, "nope", actor_for(alice))
