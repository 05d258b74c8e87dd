from .documents import Document
from .events import Event
from .login_tokens import LoginToken
from .reminder_jobs import ReminderJob, ReminderStatusEnum
from .user_sessions import UserSession
from .users import DEFAULT_NOTIFICATION_INTERVALS, User

__all__ = [
    "DEFAULT_NOTIFICATION_INTERVALS",
    "Document",
    "Event",
    "LoginToken",
    "ReminderJob",
    "ReminderStatusEnum",
    "User",
    "UserSession",
]
