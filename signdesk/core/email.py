"""
Email Utilities for SignDesk
File: signdesk/core/email.py
Mail delivery through fastapi-mail. Connection settings are resolved once
per operation and handed to the gateway explicitly.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from fastapi_mail import FastMail, MessageSchema, ConnectionConfig, MessageType

from signdesk.core.config import Settings, get_settings
from signdesk.core.results import NotificationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailSettings:
    server: Optional[str]
    port: int
    username: str
    password: str
    from_email: Optional[str]
    from_name: str
    starttls: bool
    ssl_tls: bool
    suppress_send: bool
    owner_email: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.from_email) and (bool(self.server) or self.suppress_send)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MailSettings":
        s = settings or get_settings()
        return cls(
            server=s.MAIL_SERVER,
            port=s.MAIL_PORT,
            username=s.MAIL_USERNAME,
            password=s.MAIL_PASSWORD,
            from_email=s.MAIL_FROM,
            from_name=s.MAIL_FROM_NAME,
            starttls=s.MAIL_STARTTLS,
            ssl_tls=s.MAIL_SSL_TLS,
            suppress_send=s.MAIL_SUPPRESS_SEND,
            owner_email=s.OWNER_NOTIFICATION_EMAIL,
        )


def build_connection_config(mail: MailSettings) -> ConnectionConfig:
    if not mail.is_configured:
        raise NotificationError("Email not configured")
    try:
        return _connection_config(mail)
    except ValueError as e:
        raise NotificationError(f"Invalid mail configuration: {e}")


def _connection_config(mail: MailSettings) -> ConnectionConfig:
    return ConnectionConfig(
        MAIL_USERNAME=mail.username,
        MAIL_PASSWORD=mail.password,
        MAIL_FROM=mail.from_email,
        MAIL_FROM_NAME=mail.from_name,
        MAIL_PORT=mail.port,
        MAIL_SERVER=mail.server or "localhost",
        MAIL_STARTTLS=mail.starttls,
        MAIL_SSL_TLS=mail.ssl_tls,
        USE_CREDENTIALS=bool(mail.username),
        VALIDATE_CERTS=True,
        SUPPRESS_SEND=1 if mail.suppress_send else 0,
    )


class NotificationGateway:
    """Sends one HTML email; raises NotificationError on any failure"""

    async def send(self, mail: MailSettings, to: str, subject: str, html: str) -> None:
        fm = FastMail(build_connection_config(mail))
        message = MessageSchema(
            subject=subject,
            recipients=[to],
            body=html,
            subtype=MessageType.html
        )
        try:
            await fm.send_message(message)
        except Exception as e:
            logger.error(f"Failed to send email to {to}: {str(e)}")
            raise NotificationError(f"Failed to send email: {str(e)}")

        if mail.suppress_send:
            logger.info(f"EMAIL SIMULATION (suppressed) to {to}: {subject}")
        else:
            logger.info(f"Email sent to {to}: {subject}")
