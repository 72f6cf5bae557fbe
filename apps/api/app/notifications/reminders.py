from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from decimal import Decimal

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.failures import report_store_failure
from app.crm.gateway import COMPLETED_TASK_STATUS, CrmGateway, SqlCrmGateway, TaskSnapshot
from app.metrics import observe_reminder_scan
from app.notifications.generator import NoticeGenerator
from app.notifications.models import Notice
from app.notifications.schemas import NoticeDraft, NoticeType
from app.notifications.service import NotificationService


logger = logging.getLogger("app.notifications.reminders")
tracer = trace.get_tracer("app.notifications.reminders")

OVERDUE_REMINDER_DAYS = (1, 7, 14, 30)
CLOSE_REMINDER_DAYS = (7, 3, 1)
STALE_DEAL_AGE = timedelta(days=7)
TASK_REMINDER_TYPES = (
    NoticeType.TASK_DUE_TODAY,
    NoticeType.TASK_OVERDUE,
    NoticeType.MEETING_TODAY,
    NoticeType.TASK_DUE_TOMORROW,
)


@dataclass
class ReminderScanSummary:
    stale_removed: int = 0
    overdue: int = 0
    due_today: int = 0
    due_tomorrow: int = 0
    meetings: int = 0
    deals_closing: int = 0
    high_value: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def format_meeting_time(task: TaskSnapshot) -> str:
    if task.start_time is None:
        return "All day"
    return task.start_time.strftime("%I:%M %p")


class ReminderScanService:
    """Periodic sweeps over CRM tasks and deals that feed the notice pipeline.

    Re-running a scan is harmless: the per-type dedup windows suppress repeats
    and deal close reminders replace their previous copy.
    """

    component = "reminder_scan"

    def __init__(
        self,
        notifications: NotificationService | None = None,
        gateway_factory: Callable[[Session], CrmGateway] = SqlCrmGateway,
    ) -> None:
        self.notifications = notifications or NotificationService()
        self.gateway_factory = gateway_factory

    @property
    def generator(self) -> NoticeGenerator:
        return self.notifications.generator

    def _today(self) -> date:
        return self.notifications.clock().date()

    def _emit(self, session: Session, draft: NoticeDraft) -> int:
        return 1 if self.notifications.create_notice(session, draft) is not None else 0

    def check_overdue_tasks(self, session: Session) -> int:
        today = self._today()
        gateway = self.gateway_factory(session)
        created = 0
        tasks = gateway.list_open_tasks(today - timedelta(days=max(OVERDUE_REMINDER_DAYS)), today - timedelta(days=1))
        for task in tasks:
            days_past_due = (today - task.due_date).days
            if task.recipient_id is None or days_past_due not in OVERDUE_REMINDER_DAYS:
                continue
            created += self._emit(
                session, self.generator.task_overdue(task.recipient_id, task.title, task.id, days_past_due)
            )
        return created

    def check_upcoming_tasks(self, session: Session) -> tuple[int, int]:
        today = self._today()
        tomorrow = today + timedelta(days=1)
        gateway = self.gateway_factory(session)
        due_today = due_tomorrow = 0
        for task in gateway.list_open_tasks(today, tomorrow):
            if task.recipient_id is None:
                continue
            if task.due_date == today:
                due_today += self._emit(session, self.generator.task_due_today(task.recipient_id, task.title, task.id))
            else:
                due_tomorrow += self._emit(
                    session, self.generator.task_due_tomorrow(task.recipient_id, task.title, task.id)
                )
        return due_today, due_tomorrow

    def check_todays_meetings(self, session: Session) -> int:
        today = self._today()
        gateway = self.gateway_factory(session)
        created = 0
        for meeting in gateway.list_open_tasks(today, today, kind="meeting"):
            if meeting.recipient_id is None:
                continue
            created += self._emit(
                session,
                self.generator.meeting_today(
                    meeting.recipient_id, meeting.title, format_meeting_time(meeting), meeting.id
                ),
            )
        return created

    def check_deals_approaching_close(self, session: Session) -> int:
        today = self._today()
        gateway = self.gateway_factory(session)
        created = 0
        horizon = today + timedelta(days=max(CLOSE_REMINDER_DAYS))
        for deal in gateway.list_open_deals_closing_between(today + timedelta(days=1), horizon):
            days_until_close = (deal.close_date - today).days
            if deal.owner_user_id is None or days_until_close not in CLOSE_REMINDER_DAYS:
                continue
            created += self._emit(
                session,
                self.generator.deal_close_approaching(deal.owner_user_id, deal.title, deal.id, days_until_close),
            )
        return created

    def check_high_value_deals(self, session: Session) -> int:
        gateway = self.gateway_factory(session)
        threshold = Decimal(get_settings().high_value_deal_threshold)
        updated_before = self.notifications.clock() - STALE_DEAL_AGE
        created = 0
        for deal in gateway.list_stale_high_value_deals(threshold, updated_before):
            if deal.owner_user_id is None:
                continue
            created += self._emit(
                session, self.generator.deal_high_value(deal.owner_user_id, deal.title, deal.id, deal.value)
            )
        return created

    def cleanup_stale_reminders(self, session: Session, user_id: str | None = None) -> int | None:
        """Delete task reminders whose task is gone, completed, or no longer matches its date."""
        store = self.notifications.store
        gateway = self.gateway_factory(session)
        try:
            notices = store.list_by_types(session, TASK_REMINDER_TYPES, user_id)
            tasks = gateway.tasks_by_ids(sorted({item.entity_id for item in notices if item.entity_id}))
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, "cleanup_stale", exc, recipient_id=user_id)
            return None

        today = self._today()
        stale = [
            notice.id
            for notice in notices
            if _is_stale(notice, tasks.get(notice.entity_id or ""), today)
        ]
        deleted = store.delete_ids(session, stale, operation="cleanup_stale")
        if deleted:
            logger.info("notice.stale_removed", extra={"recipient_id": user_id, "deleted": deleted})
        return deleted

    def run_all_checks(self, session: Session) -> ReminderScanSummary:
        summary = ReminderScanSummary()
        started = time.perf_counter()
        with tracer.start_as_current_span("notifications.reminder_scan") as span:
            summary.stale_removed = self.cleanup_stale_reminders(session) or 0
            summary.overdue = self._guarded(session, "check_overdue_tasks", self.check_overdue_tasks) or 0
            upcoming = self._guarded(session, "check_upcoming_tasks", self.check_upcoming_tasks)
            if upcoming is not None:
                summary.due_today, summary.due_tomorrow = upcoming
            summary.meetings = self._guarded(session, "check_todays_meetings", self.check_todays_meetings) or 0
            summary.deals_closing = (
                self._guarded(session, "check_deals_approaching_close", self.check_deals_approaching_close) or 0
            )
            summary.high_value = self._guarded(session, "check_high_value_deals", self.check_high_value_deals) or 0
            for key, value in summary.as_dict().items():
                span.set_attribute(key, value)
        observe_reminder_scan(time.perf_counter() - started)
        logger.info("reminder_scan.finished", extra={"operation": "run_all_checks", "summary": summary.as_dict()})
        return summary

    def _guarded(self, session: Session, operation: str, check: Callable[[Session], object]):
        try:
            return check(session)
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, operation, exc)
            return None


def _is_stale(notice: Notice, task: TaskSnapshot | None, today: date) -> bool:
    if task is None or task.status == COMPLETED_TASK_STATUS:
        return True
    if notice.notice_type == NoticeType.TASK_DUE_TODAY:
        return task.due_date != today
    if notice.notice_type == NoticeType.TASK_OVERDUE:
        return task.due_date is None or task.due_date >= today
    if notice.notice_type == NoticeType.MEETING_TODAY:
        return task.kind != "meeting" or task.due_date != today
    if notice.notice_type == NoticeType.TASK_DUE_TOMORROW:
        return task.due_date != today + timedelta(days=1)
    return False
