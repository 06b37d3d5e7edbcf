import logging
import uuid
from typing import Optional

from app.core.exceptions import DispatchFailure
from app.models.alert import ChannelType, RecipientType
from app.models.user import User
from .base import NotificationChannel
from .realtime import RealtimeTransport
from .templates import AlertMessage

logger = logging.getLogger(__name__)

ALERT_EVENT = "alert_notification"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


class InAppChannel(NotificationChannel):
    """Pushes alert payloads to the user's realtime room"""

    channel = ChannelType.IN_APP.value
    recipient_type = RecipientType.USER.value

    def __init__(self, transport: RealtimeTransport):
        self.transport = transport

    def address_for(self, user: User) -> Optional[str]:
        return user_room(user.id)

    def send(self, user: User, message: AlertMessage) -> str:
        delivery_id = uuid.uuid4().hex
        payload = dict(message.payload, notification_id=delivery_id)
        room = user_room(user.id)
        try:
            self.transport.emit(room, ALERT_EVENT, payload)
        except DispatchFailure:
            raise
        except Exception as e:
            logger.warning(f"Realtime emit to {room} failed: {e}")
            raise DispatchFailure(f"Realtime emit failed: {e}", channel=self.channel, recipient=room) from e
        return delivery_id
