"""
Operator notifications.

When the kill-switch fires, the operator is told what happened and what
state the instance was left in. Delivery problems are logged and never
raised: a broken mail server must not mask the update failure itself.
"""

from __future__ import annotations

import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import TYPE_CHECKING

from platform_updater.logging import get_logger

if TYPE_CHECKING:
    from platform_updater.config import NotificationConfig

logger = get_logger(__name__)

SUBJECT_PREFIX = "[platform-updater]"


class Notifier(ABC):
    """Sends a message to the operator."""

    @abstractmethod
    def notify(self, subject: str, body: str) -> bool:
        """
        Deliver a notification.

        Returns:
            True if the message was handed off, False otherwise.
        """


class LoggingNotifier(Notifier):
    """Writes notifications to the log. Used when email is not configured."""

    def notify(self, subject: str, body: str) -> bool:
        logger.warning(
            "Operator notification",
            extra={"subject": subject, "body": body},
        )
        return True


class EmailNotifier(Notifier):
    """
    Sends notifications by SMTP.

    Attributes:
        config: SMTP and address settings.
    """

    def __init__(self, config: NotificationConfig, *, timeout: float = 30.0) -> None:
        self.config = config
        self._timeout = timeout

    def _build_message(self, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"{SUBJECT_PREFIX} {subject}"
        msg["From"] = self.config.from_address
        msg["To"] = self.config.to_address
        msg.set_content(body)
        return msg

    def notify(self, subject: str, body: str) -> bool:
        if not self.config.to_address:
            logger.warning(
                "No operator address configured, notification dropped",
                extra={"subject": subject},
            )
            return False

        message = self._build_message(subject, body)
        try:
            with smtplib.SMTP(
                self.config.smtp_host, self.config.smtp_port, timeout=self._timeout
            ) as server:
                if self.config.use_tls:
                    server.starttls()
                if self.config.username and self.config.password:
                    server.login(self.config.username, self.config.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Failed to send notification",
                extra={"subject": subject, "error": str(e)},
            )
            return False

        logger.info(
            "Notification sent",
            extra={"subject": subject, "to": self.config.to_address},
        )
        return True


def build_notifier(config: NotificationConfig) -> Notifier:
    """Return the notifier matching the configuration."""
    if config.enabled:
        return EmailNotifier(config)
    return LoggingNotifier()
