import pytest

from taskhub import crud
from taskhub.config import Settings
from taskhub.errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationFailed
from taskhub.schemas import PasswordChange, UserAdminUpdate, UserFilter, UserLogin, UserRegister, UserSearchOptions

from .factories import TEST_PASSWORD, actor_for, make_task

SETTINGS = Settings(jwt_secret="access-secret", jwt_refresh_secret="refresh-secret", bcrypt_rounds=4)


@pytest.mark.asyncio
async def test_register_and_login(db):
    user, tokens = await crud.users.register_user(
        db, UserRegister(name="Erin Gray", email="erin@example.com", password="abc123"), SETTINGS
    )
    assert user.role == "user"
    assert len(user.refresh_tokens) == 1
    assert tokens["access_token"] and tokens["refresh_token"]

    user, _ = await crud.users.authenticate(db, UserLogin(email="ERIN@example.com", password="abc123"), SETTINGS)
    assert user.last_login is not None
    assert len(user.refresh_tokens) == 2


@pytest.mark.asyncio
async def test_register_duplicate_email(db, alice):
    with pytest.raises(Conflict):
        await crud.users.register_user(
            db, UserRegister(name="Alice Again", email=alice.email, password="abc123"), SETTINGS
        )


@pytest.mark.asyncio
async def test_login_wrong_password_and_inactive(db, alice):
    with pytest.raises(Unauthorized):
        await crud.users.authenticate(db, UserLogin(email=alice.email, password="wrong123"), SETTINGS)

    alice.is_active = False
    await db.commit()
    with pytest.raises(Forbidden):
        await crud.users.authenticate(db, UserLogin(email=alice.email, password=TEST_PASSWORD), SETTINGS)


@pytest.mark.asyncio
async def test_refresh_rotates_token(db, alice):
    _, tokens = await crud.users.authenticate(db, UserLogin(email=alice.email, password=TEST_PASSWORD), SETTINGS)

    _, rotated = await crud.users.refresh_session(db, tokens["refresh_token"], SETTINGS)
    assert rotated["refresh_token"] != tokens["refresh_token"]

    with pytest.raises(Unauthorized):
        await crud.users.refresh_session(db, tokens["refresh_token"], SETTINGS)


@pytest.mark.asyncio
async def test_logout_revokes_refresh_token(db, alice):
    _, tokens = await crud.users.authenticate(db, UserLogin(email=alice.email, password=TEST_PASSWORD), SETTINGS)
    await crud.users.logout(db, alice, tokens["refresh_token"])

    with pytest.raises(Unauthorized):
        await crud.users.refresh_session(db, tokens["refresh_token"], SETTINGS)


@pytest.mark.asyncio
async def test_change_password_checks_current(db, alice):
    with pytest.raises(ValidationFailed):
        await crud.users.change_password(
            db, alice, PasswordChange(current_password="wrong123", new_password="fresh456"), SETTINGS
        )

    await crud.users.change_password(
        db, alice, PasswordChange(current_password=TEST_PASSWORD, new_password="fresh456"), SETTINGS
    )
    user, _ = await crud.users.authenticate(db, UserLogin(email=alice.email, password="fresh456"), SETTINGS)
    assert user.id == alice.id


@pytest.mark.asyncio
async def test_ensure_admin_is_idempotent(db):
    first = await crud.users.ensure_admin(db, "root@example.com", "admin123", SETTINGS)
    second = await crud.users.ensure_admin(db, "root@example.com", "admin123", SETTINGS)
    assert first.id == second.id
    assert first.is_admin


@pytest.mark.asyncio
async def test_user_visibility(db, alice, bob, admin):
    with pytest.raises(Forbidden):
        await crud.users.get_user_for_actor(db, bob.id, actor_for(alice))

    await make_task(db, alice, bob)
    user, stats = await crud.users.get_user_for_actor(db, bob.id, actor_for(admin))
    assert user.id == bob.id
    assert stats == {"created_tasks": 0, "assigned_tasks": 1}


@pytest.mark.asyncio
async def test_list_users_filters(db, alice, bob, admin):
    result = await crud.users.list_users(db, UserFilter(role="admin"), UserSearchOptions())
    assert [user.id for user in result["items"]] == [admin.id]

    result = await crud.users.list_users(db, UserFilter(search="bob"), UserSearchOptions())
    assert result["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_update_user_email_conflict(db, alice, bob):
    with pytest.raises(Conflict):
        await crud.users.update_user(db, alice.id, UserAdminUpdate(email=bob.email))

    user = await crud.users.update_user(db, alice.id, UserAdminUpdate(role="admin", is_active=False))
    assert user.role == "admin"
    assert user.is_active is False


@pytest.mark.asyncio
async def test_delete_user_rules(db, alice, bob, admin):
    with pytest.raises(ValidationFailed):
        await crud.users.delete_user(db, admin.id, actor_for(admin))

    await make_task(db, alice, bob)
    with pytest.raises(ValidationFailed) as excinfo:
        await crud.users.delete_user(db, bob.id, actor_for(admin))
    assert "1 associated tasks" in excinfo.value.message

    carol_id = (await crud.users.register_user(
        db, UserRegister(name="Carol White", email="carol@example.com", password="abc123"), SETTINGS
    ))[0].id
    await crud.users.delete_user(db, carol_id, actor_for(admin))
    with pytest.raises(NotFound):
        await crud.users.get_user(db, carol_id)


@pytest.mark.asyncio
async def test_register_race_on_unique_email(db, alice, monkeypatch):
    async def email_looks_free(db, email, current=None):
        return None

    monkeypatch.setattr(crud.users, "_ensure_email_free", email_looks_free)
    email = alice.email

    with pytest.raises(Conflict) as excinfo:
        await crud.users.register_user(
            db, UserRegister(name="Alice Again", email=email, password="abc123"), SETTINGS
        )
    assert excinfo.value.message == "Email already in use"

    existing = await crud.users.get_user_by_email(db, email)
    assert existing is not None
    assert existing.name != "Alice Again"
