"""
Notification Service - routes alerts to the responsible staff and records every delivery
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.exceptions import AlertServiceError, NotFound, StoreUnavailable, ValidationError
from app.database.repositories.alert_repository import AlertRepository
from app.database.repositories.user_repository import UserRepository
from app.models.alert import AlertSeverity, ChannelType
from app.models.user import User, UserRole
from app.notifications.base import NotificationChannel
from app.notifications.email_channel import EmailChannel
from app.notifications.in_app_channel import InAppChannel
from app.notifications.realtime import RealtimeTransport
from app.notifications.sms_channel import SMSChannel
from app.notifications.templates import TransientAlert, build_alert_message, build_summary_message
from app.services.notification_dispatcher import DispatchSummary, NotificationDispatcher
from app.services.recipient_resolver import RecipientResolver

logger = logging.getLogger(__name__)

REPORT_PERIODS = {"daily": timedelta(days=1), "weekly": timedelta(days=7)}
SYSTEM_LEVEL_SEVERITY = {"info": AlertSeverity.LOW.value, "warning": AlertSeverity.MEDIUM.value}


class NotificationService:
    """
    Owns the notification channels for the lifetime of the application.

    Built once at startup, started, stored on ``app.state`` and handed to
    request handlers through a dependency. Celery workers build their own.
    """

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        session_factory: Optional[Callable[[], Session]] = None,
        frontend_url: str = "http://localhost:3000",
    ):
        self.channels: List[NotificationChannel] = list(channels)
        self.dispatcher = NotificationDispatcher(self.channels)
        self.session_factory = session_factory
        self.frontend_url = frontend_url
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: Optional[Callable[[], Session]] = None,
        transport: Optional[RealtimeTransport] = None,
    ) -> "NotificationService":
        channels: List[NotificationChannel] = [
            EmailChannel.from_settings(settings),
            SMSChannel.from_settings(settings),
        ]
        if transport is not None:
            channels.append(InAppChannel(transport))
        return cls(channels, session_factory=session_factory, frontend_url=settings.frontend_url)

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        for channel in self.channels:
            channel.start()
            if not channel.configured:
                logger.warning(f"Notification channel '{channel.channel}' is not configured; deliveries will fail")
        self._started = True
        logger.info(f"Notification service started with channels: {[c.channel for c in self.channels]}")

    def shutdown(self) -> None:
        for channel in self.channels:
            channel.close()
        self._started = False
        logger.info("Notification service stopped")

    def __enter__(self) -> "NotificationService":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def _ensure_started(self) -> None:
        if not self._started:
            raise RuntimeError("NotificationService.start() has not been called")

    def dispatch(self, db: Session, alert, recipients: Optional[List[User]] = None) -> DispatchSummary:
        """
        Notify the recipients of ``alert`` and append the delivery log.

        Recipients default to the resolver's selection. All entries of the run
        are stored with a single append.
        """
        self._ensure_started()
        if recipients is None:
            recipients = RecipientResolver(db).resolve(alert)

        message = build_alert_message(alert, self.frontend_url)
        entries = self.dispatcher.deliver(message, recipients, alert.severity)

        try:
            AlertRepository(db).append_notifications(alert.id, entries)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not record notification deliveries") from e

        summary = self.dispatcher.summarize(entries)
        logger.info(
            f"Dispatched alert {alert.alert_id} to {len(recipients)} recipients: "
            f"{summary.sent_count} sent, {summary.failed_count} failed"
        )
        return summary

    def dispatch_alert_by_id(self, alert_id: int, trigger: str = "created") -> Optional[DispatchSummary]:
        """Background entry point: loads the alert in a fresh session and dispatches it"""
        if self.session_factory is None:
            raise RuntimeError("NotificationService has no session factory")

        db = self.session_factory()
        try:
            alert = AlertRepository(db).get(alert_id)
            if alert is None:
                logger.warning(f"Alert {alert_id} vanished before '{trigger}' dispatch")
                return None
            return self.dispatch(db, alert)
        except (AlertServiceError, SQLAlchemyError) as e:
            logger.error(f"'{trigger}' dispatch for alert {alert_id} failed: {e}")
            return None
        finally:
            db.close()

    def send_system_notification(
        self,
        db: Session,
        title: str,
        message: str,
        level: str = "info",
        target_roles: Optional[List[str]] = None,
    ) -> DispatchSummary:
        """Send a transient alert-shaped message to active users in ``target_roles``"""
        self._ensure_started()
        roles = target_roles or [UserRole.ADMIN.value]
        try:
            users = UserRepository(db).get_active_by_roles(roles)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not load notification recipients") from e

        notice = TransientAlert(
            title=title,
            description=message,
            severity=SYSTEM_LEVEL_SEVERITY.get(level, AlertSeverity.LOW.value),
        )
        entries = self.dispatcher.deliver(build_alert_message(notice, self.frontend_url), users, notice.severity)
        summary = self.dispatcher.summarize(entries)
        logger.info(f"System notification '{title}' sent to roles {roles}: {summary.sent_count} sent")
        return summary

    def send_summary_report(self, db: Session, period: str = "daily", target_roles: Optional[List[str]] = None) -> DispatchSummary:
        """Email a severity summary of the last day or week to report subscribers"""
        self._ensure_started()
        if period not in REPORT_PERIODS:
            raise ValidationError(f"Unknown report period '{period}'", field_errors={"period": "daily or weekly"})

        end = datetime.utcnow()
        start = end - REPORT_PERIODS[period]
        roles = target_roles or [UserRole.ADMIN.value]
        try:
            subscribers = UserRepository(db).get_report_subscribers(roles)
            counts = AlertRepository(db).severity_summary(start)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not build summary report") from e

        entries = []
        for user in subscribers:
            if not user.email:
                continue
            message = build_summary_message(period, user.full_name, start, end, counts, self.frontend_url)
            entries.extend(
                self.dispatcher.deliver(
                    message,
                    [user],
                    AlertSeverity.LOW.value,
                    channel_names=[ChannelType.EMAIL.value],
                )
            )
        summary = self.dispatcher.summarize(entries)
        logger.info(f"{period} summary report: {summary.sent_count} sent, {summary.failed_count} failed")
        return summary

    def send_test_notification(self, db: Session) -> DispatchSummary:
        """Send a test message to the first active admin"""
        self._ensure_started()
        try:
            admins = UserRepository(db).get_active_admins()
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not load notification recipients") from e
        if not admins:
            raise NotFound("No admin users found for testing")

        notice = TransientAlert(
            title="Test Notification",
            description="This is a test notification to verify the notification system is working properly.",
        )
        entries = self.dispatcher.deliver(build_alert_message(notice, self.frontend_url), admins[:1], notice.severity)
        return self.dispatcher.summarize(entries)
