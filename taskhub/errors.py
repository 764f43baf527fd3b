from typing import Optional


class TaskHubError(Exception):
    """Base class for failures the transport layer maps to a status code"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(TaskHubError):
    status_code = 404


class Forbidden(TaskHubError):
    status_code = 403


class Unauthorized(TaskHubError):
    status_code = 401


class Conflict(TaskHubError):
    status_code = 400


class ValidationFailed(TaskHubError):
    status_code = 400

    def __init__(self, message: str = "Validation failed", errors: Optional[list[dict]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailed":
        return cls(message, [{"field": field, "message": message}])


def field_errors_from_pydantic(errors: list[dict]) -> list[dict]:
    """Flatten pydantic error dicts into field/message pairs"""
    result = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        message = error.get("msg", "Invalid value")
        # pydantic prefixes messages raised from validators
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        result.append({"field": ".".join(loc) or "body", "message": message})
    return result
