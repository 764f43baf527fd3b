import pytest
from pydantic import ValidationError

from taskhub.errors import field_errors_from_pydantic
from taskhub.schemas import PasswordChange, SearchOptions, TaskCreate, TaskUpdate, UserRegister

from .factories import future, past


def test_create_rejects_past_due_date():
    with pytest.raises(ValidationError) as excinfo:
        TaskCreate(title="Ship release", due_date=past(1))
    errors = field_errors_from_pydantic(excinfo.value.errors())
    assert errors == [{"field": "due_date", "message": "Due date must be in the future"}]


def test_create_accepts_future_due_date():
    task = TaskCreate(title="Ship release", due_date=future(1))
    assert task.due_date > past(0)


def test_update_accepts_past_due_date():
    update = TaskUpdate(due_date=past(10))
    assert update.due_date is not None


def test_update_rejects_explicit_null_title():
    with pytest.raises(ValidationError):
        TaskUpdate(title=None)


def test_update_allows_clearing_assignee():
    update = TaskUpdate(assigned_to=None)
    assert update.model_dump(exclude_unset=True) == {"assigned_to": None}


def test_tag_length_limit():
    with pytest.raises(ValidationError):
        TaskCreate(title="Ship release", tags=["x" * 21])


def test_register_normalizes_email_and_checks_password():
    user = UserRegister(name="Erin Gray", email="Erin@Example.com", password="abc123")
    assert user.email == "erin@example.com"

    with pytest.raises(ValidationError):
        UserRegister(name="Erin Gray", email="erin@example.com", password="abcdef")


def test_register_rejects_digits_in_name():
    with pytest.raises(ValidationError):
        UserRegister(name="R2D2", email="r2@example.com", password="abc123")


def test_new_password_must_differ():
    with pytest.raises(ValidationError):
        PasswordChange(current_password="abc123", new_password="abc123")


def test_search_limit_bounds():
    with pytest.raises(ValidationError):
        SearchOptions(limit=101)
    with pytest.raises(ValidationError):
        SearchOptions(page=0)
