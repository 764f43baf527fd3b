import re
from datetime import datetime
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .models import TaskPriority, TaskStatus, UserRole, utcnow
from .utils import to_naive_utc

NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[A-Za-z])(?=.*\d)")

TaskSortField = Literal["created_at", "updated_at", "due_date", "priority", "status", "title", "completed_at"]
UserSortField = Literal["created_at", "updated_at", "name", "email", "last_login"]
SortOrder = Literal["asc", "desc"]


def _check_password(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValueError("Password must contain at least one letter and one number")
    return value


def _check_name(value: str) -> str:
    if not NAME_PATTERN.match(value):
        raise ValueError("Name can only contain letters and spaces")
    return value


def _lower(value: str) -> str:
    return value.lower()


def _check_tags(tags: list[str]) -> list[str]:
    if any(len(tag) > 20 for tag in tags):
        raise ValueError("Each tag must be a string with max 20 characters")
    return tags


Email = Annotated[EmailStr, AfterValidator(_lower)]
PersonName = Annotated[str, Field(min_length=2, max_length=50), AfterValidator(_check_name)]
NewPassword = Annotated[str, Field(min_length=6, max_length=72), AfterValidator(_check_password)]
TagList = Annotated[list[str], AfterValidator(_check_tags)]


class StrictModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# Tasks

class TaskCreate(StrictModel):
    title: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    assigned_to: Optional[int] = None
    tags: TagList = Field(default_factory=list)
    estimated_hours: Optional[float] = Field(None, ge=0, le=1000)
    actual_hours: Optional[float] = Field(None, ge=0, le=1000)

    @field_validator("due_date")
    @classmethod
    def due_date_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Only enforced when creating; updates may set any date
        value = to_naive_utc(value)
        if value is not None and value <= utcnow():
            raise ValueError("Due date must be in the future")
        return value


class TaskUpdate(StrictModel):
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[int] = None
    tags: Optional[TagList] = None
    estimated_hours: Optional[float] = Field(None, ge=0, le=1000)
    actual_hours: Optional[float] = Field(None, ge=0, le=1000)
    is_archived: Optional[bool] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def reject_null_required(self) -> "TaskUpdate":
        for name in ("title", "status", "priority", "tags", "is_archived"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    avatar: Optional[str] = None


class CommentResponse(BaseModel):
    id: str
    text: str
    author_id: int
    author: Optional[UserSummary] = None
    created_at: datetime
    updated_at: datetime


class AttachmentResponse(BaseModel):
    id: str
    filename: str
    original_name: str
    url: str
    storage_key: str
    size: int
    mime_type: str
    uploaded_by: int
    uploaded_at: datetime


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[datetime] = None
    created_by: UserSummary = Field(validation_alias="creator")
    assigned_to: Optional[UserSummary] = Field(None, validation_alias="assignee")
    tags: list[str]
    attachments: list[AttachmentResponse]
    comments: list[CommentResponse]
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    completed_at: Optional[datetime] = None
    is_archived: bool
    is_overdue: bool
    created_at: datetime
    updated_at: datetime


class TaskFilter(BaseModel):
    search: Optional[str] = None
    status: Optional[list[TaskStatus]] = None
    priority: Optional[list[TaskPriority]] = None
    assigned_to: Optional[int] = None
    created_by: Optional[int] = None
    tags: Optional[list[str]] = None
    due_date_from: Optional[datetime] = None
    due_date_to: Optional[datetime] = None
    is_overdue: bool = False
    include_archived: bool = False


class SearchOptions(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    sort_by: TaskSortField = "created_at"
    sort_order: SortOrder = "desc"


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class TaskPage(BaseModel):
    items: list[TaskResponse]
    pagination: Pagination


class TaskStats(BaseModel):
    total_tasks: int
    tasks_by_status: dict[str, int]
    tasks_by_priority: dict[str, int]
    overdue_tasks: int
    completed_this_week: int


class CommentCreate(StrictModel):
    text: str = Field(..., min_length=1, max_length=500)


# Users and auth

class UserRegister(StrictModel):
    name: PersonName
    email: Email
    password: NewPassword


class UserLogin(StrictModel):
    email: Email
    password: str = Field(..., min_length=1, max_length=72)


class ProfileUpdate(StrictModel):
    name: Optional[PersonName] = None
    email: Optional[Email] = None
    avatar: Optional[str] = Field(None, max_length=500)


class PasswordChange(StrictModel):
    current_password: str = Field(..., min_length=1, max_length=72)
    new_password: NewPassword

    @model_validator(mode="after")
    def new_differs(self) -> "PasswordChange":
        if self.new_password == self.current_password:
            raise ValueError("New password must be different from current password")
        return self


class UserAdminUpdate(StrictModel):
    name: Optional[PersonName] = None
    email: Optional[Email] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: UserRole
    avatar: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UserFilter(BaseModel):
    search: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class UserSearchOptions(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    sort_by: UserSortField = "created_at"
    sort_order: SortOrder = "desc"


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
