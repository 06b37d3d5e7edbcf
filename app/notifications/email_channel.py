import logging
import smtplib
from email.errors import MessageError
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

from app.core.config import Settings
from app.core.exceptions import DispatchFailure
from app.models.alert import ChannelType, RecipientType
from app.models.user import User
from .base import NotificationChannel
from .templates import AlertMessage

logger = logging.getLogger(__name__)


class EmailChannel(NotificationChannel):
    """SMTP email delivery"""

    channel = ChannelType.EMAIL.value
    recipient_type = RecipientType.EMAIL.value

    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_address: str = "Smart City <noreply@smartcity.gov>",
        use_tls: bool = True,
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailChannel":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            from_address=settings.smtp_from,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def address_for(self, user: User) -> Optional[str]:
        return user.email or None

    def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> str:
        """Send one multipart email and return its Message-ID"""
        if not self.configured:
            raise DispatchFailure("Email channel is not configured", channel=self.channel, recipient=to_email)

        message_id = make_msgid(domain="smartcity.gov")
        msg = MIMEMultipart("alternative")
        # Header values must stay on one line
        msg["Subject"] = " ".join(subject.split())
        msg["From"] = self.from_address
        msg["To"] = to_email
        msg["Message-ID"] = message_id

        if text_content:
            msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, MessageError, OSError) as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            raise DispatchFailure(f"SMTP delivery failed: {e}", channel=self.channel, recipient=to_email) from e

        logger.info(f"Email sent successfully to {to_email}")
        return message_id

    def send(self, user: User, message: AlertMessage) -> str:
        return self.send_email(user.email, message.subject, message.html, message.text)
