from app.notifications.models import Notice
from app.notifications.schemas import EntityKind, NoticeDraft, NoticePriority, NoticeType
from app.notifications.service import NotificationService

__all__ = [
    "EntityKind",
    "Notice",
    "NoticeDraft",
    "NoticePriority",
    "NoticeType",
    "NotificationService",
]
