from . import attachments, comments, tasks, users

__all__ = ["attachments", "comments", "tasks", "users"]
