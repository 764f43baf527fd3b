from datetime import datetime
from typing import Any, Iterable, Optional

from .models import Task, TaskStatus, utcnow


def apply_status_change(task: Task, changes: dict[str, Any], now: Optional[datetime] = None) -> dict[str, Any]:
    """Keep completed_at in step with the status carried by ``changes``.

    Entering ``completed`` stamps completed_at unless it is already set;
    any other status clears it. Transitions themselves are unrestricted.
    Returns ``changes`` with the completed_at entry added when needed.
    """
    if "status" not in changes:
        return changes

    status = changes["status"]
    if isinstance(status, TaskStatus):
        status = status.value
        changes["status"] = status

    if status == TaskStatus.COMPLETED.value:
        already_completed = task.status == TaskStatus.COMPLETED.value and task.completed_at is not None
        if not already_completed:
            changes["completed_at"] = now or utcnow()
    else:
        changes["completed_at"] = None
    return changes


def normalize_tags(tags: Optional[Iterable[str]]) -> list[str]:
    """Trim and lowercase tags, dropping blanks and keeping order"""
    if not tags:
        return []
    return [tag.strip().lower() for tag in tags if tag and tag.strip()]
