"""SMTP mail transport for moderation notifications.

Renders the kind-specific template and sends it as a multipart/alternative
message (plain text plus HTML). Transport failures are reported as a
DeliveryResult; the caller decides whether to retry.
"""

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Optional

from vigil_core.domain.services.email_templates import get_email_template
from vigil_core.providers.base import DeliveryResult, Notifier

logger = logging.getLogger(__name__)


@dataclass
class SmtpConfig:
    """SMTP connection settings.

    Attributes:
        host: SMTP server host
        port: SMTP server port
        username: Optional login user
        password: Optional login password
        use_tls: Whether to upgrade the connection with STARTTLS
        timeout: Socket timeout in seconds
        sender: From header
    """

    host: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    timeout: float = 10.0
    sender: str = '"Content Moderation" <moderation@vigil.local>'

    def __post_init__(self):
        if not self.host:
            raise ValueError("SMTP host is required")


class SmtpNotifier(Notifier):
    """Notifier that delivers through an SMTP relay."""

    def __init__(self, config: SmtpConfig):
        self.config = config

    def build_message(
        self,
        kind: str,
        recipient_email: str,
        recipient_name: str,
        template_data: dict[str, Any],
    ) -> MIMEMultipart:
        rendered = get_email_template(kind).render(recipient_name, template_data)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = rendered.subject
        msg["From"] = self.config.sender
        msg["To"] = recipient_email
        msg["Message-ID"] = make_msgid(domain="vigil.local")
        msg.attach(MIMEText(rendered.text_body, "plain", "utf-8"))
        msg.attach(MIMEText(rendered.html_body, "html", "utf-8"))
        return msg

    def send(
        self,
        kind: str,
        recipient_email: str,
        recipient_name: str,
        template_data: dict[str, Any],
    ) -> DeliveryResult:
        msg = self.build_message(kind, recipient_email, recipient_name, template_data)
        message_id = msg["Message-ID"]

        try:
            with smtplib.SMTP(
                self.config.host, self.config.port, timeout=self.config.timeout
            ) as server:
                if self.config.use_tls:
                    server.starttls()
                if self.config.username and self.config.password:
                    server.login(self.config.username, self.config.password)
                refused = server.send_message(msg)
        except smtplib.SMTPRecipientsRefused as e:
            logger.warning(f"Recipient {recipient_email} refused: {e.recipients}")
            return DeliveryResult(
                success=False,
                error_message=f"Recipient refused: {recipient_email}",
                retryable=False,
            )
        except smtplib.SMTPResponseException as e:
            # 5xx replies are permanent, 4xx are temporary
            permanent = 500 <= e.smtp_code < 600
            return DeliveryResult(
                success=False,
                error_message=f"SMTP {e.smtp_code}: {_decode(e.smtp_error)}",
                retryable=not permanent,
            )
        except (smtplib.SMTPException, OSError) as e:
            return DeliveryResult(
                success=False,
                error_message=f"SMTP transport error: {e}",
                retryable=True,
            )

        if refused and recipient_email in refused:
            return DeliveryResult(
                success=False,
                error_message=f"Recipient refused: {recipient_email}",
                retryable=False,
            )

        logger.info(f"Sent {kind} email to {recipient_email} ({message_id})")
        return DeliveryResult(success=True, message_id=message_id)


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def get_notifier() -> SmtpNotifier:
    """Create an SmtpNotifier from settings."""
    from vigil_core.config import get_settings

    settings = get_settings()
    return SmtpNotifier(
        SmtpConfig(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout,
            sender=settings.mail_from,
        )
    )


__all__ = ["SmtpConfig", "SmtpNotifier", "get_notifier"]
