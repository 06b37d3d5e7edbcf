"""
SMS notification channel.

Twilio REST delivery. Bodies longer than one SMS segment are trimmed.
"""

import logging
import re
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from app.core.config import Settings
from app.core.exceptions import DispatchFailure
from app.models.alert import ChannelType, RecipientType
from app.models.user import User
from .base import NotificationChannel
from .templates import AlertMessage, SMS_MAX_LENGTH

logger = logging.getLogger(__name__)

PHONE_REGEX = re.compile(r"^\+?[1-9]\d{6,14}$")


class SMSChannel(NotificationChannel):
    """SMS delivery channel"""

    channel = ChannelType.SMS.value
    recipient_type = RecipientType.PHONE.value

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        client: Optional[Client] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SMSChannel":
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_phone_number,
        )

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def start(self) -> None:
        if self._client is None and self.configured:
            self._client = Client(self.account_sid, self.auth_token)

    def close(self) -> None:
        self._client = None

    def address_for(self, user: User) -> Optional[str]:
        return user.phone or None

    def validate_recipient(self, recipient: str) -> bool:
        """Validate phone number format (E.164)"""
        return bool(PHONE_REGEX.match(recipient))

    def send(self, user: User, message: AlertMessage) -> str:
        phone = user.phone
        if not self.configured:
            raise DispatchFailure("SMS channel is not configured", channel=self.channel, recipient=phone)
        if not phone or not self.validate_recipient(phone):
            raise DispatchFailure("Invalid phone number", channel=self.channel, recipient=phone)

        self.start()
        body = message.sms[:SMS_MAX_LENGTH]
        try:
            result = self._client.messages.create(to=phone, from_=self.from_number, body=body)
        except (TwilioException, OSError) as e:
            logger.error(f"SMS delivery to {phone} failed: {e}")
            raise DispatchFailure(f"SMS delivery failed: {e}", channel=self.channel, recipient=phone) from e

        logger.info(f"SMS sent to {phone}: {result.sid}")
        return result.sid
