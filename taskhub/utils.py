import math
import re
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Optional, Union


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC"""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_date_bound(value: Union[str, date, datetime, None], end_of_day: bool = False) -> Optional[datetime]:
    """Parse a filter bound; a bare date covers the whole day"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)

    text = value.strip()
    if "T" not in text and " " not in text:
        day = date.fromisoformat(text)
        return datetime.combine(day, time.max if end_of_day else time.min)
    return to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))


def page_count(total: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return math.ceil(total / limit)


def clean_filename(name: str) -> str:
    """Strip directories and characters that do not belong in a stored name"""
    name = Path(name or "").name
    name = re.sub(r"\s+", "_", name.strip())
    name = re.sub(r"[^\w\-.]", "", name)
    return name or "file"


def envelope(data: Any = None, message: Optional[str] = None) -> dict[str, Any]:
    """Success body shared by every endpoint"""
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
