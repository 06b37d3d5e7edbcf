from .base import NotificationChannel
from .email_channel import EmailChannel
from .sms_channel import SMSChannel
from .in_app_channel import InAppChannel, ALERT_EVENT, user_room
from .realtime import ConnectionManager, RealtimeTransport, WebSocketTransport, BROADCAST_ROOM
from .templates import AlertMessage, TransientAlert, build_alert_message, build_summary_message

__all__ = [
    "NotificationChannel",
    "EmailChannel",
    "SMSChannel",
    "InAppChannel",
    "ALERT_EVENT",
    "user_room",
    "ConnectionManager",
    "RealtimeTransport",
    "WebSocketTransport",
    "BROADCAST_ROOM",
    "AlertMessage",
    "TransientAlert",
    "build_alert_message",
    "build_summary_message",
]
