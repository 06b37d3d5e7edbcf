"""Abstract base for notification delivery channels"""

from abc import ABC, abstractmethod
from typing import Optional

from app.models.user import User
from .templates import AlertMessage


class NotificationChannel(ABC):
    """Delivers one rendered message to one user"""

    channel: str = ""
    recipient_type: str = ""

    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    def address_for(self, user: User) -> Optional[str]:
        """Channel-specific address of ``user``, or None if the user has none"""

    @abstractmethod
    def send(self, user: User, message: AlertMessage) -> str:
        """
        Send ``message`` to ``user``.

        Returns:
            Provider delivery id

        Raises:
            DispatchFailure: if the channel could not hand the message over
        """

    def start(self) -> None:
        pass

    def close(self) -> None:
        pass
