"""
Notification fan-out for a single alert.

For every recipient the dispatcher picks the channels allowed by the user's
preferences and the alert's severity, sends sequentially, and turns every
attempt into a delivery log entry. One failing channel or recipient never
stops the rest.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from app.core.exceptions import DispatchFailure
from app.models.alert import AlertSeverity, ChannelType, DeliveryStatus
from app.models.user import User
from app.notifications.base import NotificationChannel
from app.notifications.templates import AlertMessage

logger = logging.getLogger(__name__)

SMS_SEVERITIES = frozenset({AlertSeverity.HIGH.value, AlertSeverity.CRITICAL.value})


@dataclass
class DispatchSummary:
    sent_count: int = 0
    failed_count: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "details": self.details,
        }


class NotificationDispatcher:
    """Sends one rendered message through every applicable channel"""

    def __init__(self, channels: Iterable[NotificationChannel]):
        self.channels: Dict[str, NotificationChannel] = {channel.channel: channel for channel in channels}

    def channels_for(self, user: User, severity: str) -> List[NotificationChannel]:
        """Channels ``user`` should be reached on for an alert of ``severity``"""
        selected = []

        email = self.channels.get(ChannelType.EMAIL.value)
        if email and user.email and user.notify_email:
            selected.append(email)

        sms = self.channels.get(ChannelType.SMS.value)
        if sms and severity in SMS_SEVERITIES and user.phone and user.notify_sms:
            selected.append(sms)

        in_app = self.channels.get(ChannelType.IN_APP.value)
        if in_app and user.notify_in_app is not False:
            selected.append(in_app)

        return selected

    def deliver(
        self,
        message: AlertMessage,
        recipients: Iterable[User],
        severity: str,
        channel_names: Optional[Iterable[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Send ``message`` to every recipient and return one log entry per attempt.

        Args:
            message: Rendered message
            recipients: Users to notify
            severity: Severity driving the SMS rule
            channel_names: Restrict delivery to these channels

        Returns:
            Entries shaped like ``AlertNotification`` columns
        """
        allowed = set(channel_names) if channel_names is not None else None
        entries = []

        for user in recipients:
            for channel in self.channels_for(user, severity):
                if allowed is not None and channel.channel not in allowed:
                    continue
                entries.append(self._attempt(channel, user, message))

        return entries

    def _attempt(self, channel: NotificationChannel, user: User, message: AlertMessage) -> Dict[str, Any]:
        entry = {
            "channel": channel.channel,
            "recipient": channel.address_for(user) or str(user.id),
            "recipient_type": channel.recipient_type,
            "user_id": user.id,
            "sent_at": datetime.utcnow(),
        }
        try:
            entry["delivery_id"] = channel.send(user, message)
            entry["delivery_status"] = DeliveryStatus.SENT.value
        except DispatchFailure as e:
            logger.warning(f"{channel.channel} delivery to user {user.id} failed: {e.message}")
            entry["delivery_status"] = DeliveryStatus.FAILED.value
            entry["error_message"] = e.message[:1000]
        except Exception as e:
            logger.exception(f"Unexpected {channel.channel} error for user {user.id}")
            entry["delivery_status"] = DeliveryStatus.FAILED.value
            entry["error_message"] = f"Unexpected error: {e}"[:1000]
        return entry

    @staticmethod
    def summarize(entries: List[Dict[str, Any]]) -> DispatchSummary:
        summary = DispatchSummary()
        for entry in entries:
            if entry["delivery_status"] == DeliveryStatus.SENT.value:
                summary.sent_count += 1
            else:
                summary.failed_count += 1
            summary.details.append({
                "user_id": entry["user_id"],
                "channel": entry["channel"],
                "recipient": entry["recipient"],
                "status": entry["delivery_status"],
                "delivery_id": entry.get("delivery_id"),
                "error": entry.get("error_message"),
            })
        return summary
