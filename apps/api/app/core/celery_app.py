import logging

from celery import Celery

from app.core.config import get_settings
from app.core.database import SessionLocal

settings = get_settings()
logger = logging.getLogger("app.tasks")

celery_app = Celery("notifications_api", broker=settings.redis_url, backend=settings.redis_url)


@celery_app.task(name="app.tasks.run_reminder_checks")
def run_reminder_checks() -> dict[str, int]:
    from app.notifications.reminders import ReminderScanService

    session = SessionLocal()
    try:
        return ReminderScanService().run_all_checks(session).as_dict()
    finally:
        session.close()


@celery_app.task(name="app.tasks.cleanup_duplicates")
def cleanup_duplicates(user_id: str, notice_type: str | None = None, entity_id: str | None = None) -> int | None:
    from app.notifications.maintenance import NoticeMaintenance
    from app.notifications.schemas import NoticeType

    session = SessionLocal()
    try:
        return NoticeMaintenance().cleanup_duplicates(
            session,
            user_id,
            NoticeType(notice_type) if notice_type else None,
            entity_id,
        )
    finally:
        session.close()
