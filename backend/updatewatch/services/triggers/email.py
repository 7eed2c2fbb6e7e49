"""Email (SMTP) trigger provider."""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any, Sequence

import aiosmtplib

from updatewatch.exceptions import TriggerDeliveryError
from updatewatch.schemas.container import Container
from updatewatch.schemas.trigger import SmtpConfiguration
from updatewatch.services.triggers.base import (
    TriggerProvider,
    render_batch_body,
    render_batch_title,
    render_simple_body,
    render_simple_title,
)
from updatewatch.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


class SmtpTrigger(TriggerProvider):
    """Email SMTP notification provider.

    Not reentrant: messages go out one at a time over the configured server.
    """

    provider_type = "smtp"
    configuration_schema = SmtpConfiguration
    sensitive_fields = ("pass",)

    async def trigger(self, container: Container) -> Any:
        return await self.send_mail(
            render_simple_title(self.configuration, container),
            render_simple_body(self.configuration, container),
        )

    async def trigger_batch(self, containers: Sequence[Container]) -> Any:
        return await self.send_mail(
            render_batch_title(self.configuration, containers),
            render_batch_body(self.configuration, containers),
        )

    def build_message(self, subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.configuration.from_
        msg["To"] = self.configuration.to

        msg.attach(MIMEText(body, "plain"))
        html_body = f"""
            <html>
            <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; padding: 20px;">
                <h2 style="margin: 0 0 15px; font-size: 18px;">{escape(subject)}</h2>
                <p style="margin: 0; white-space: pre-wrap; color: #333;">{escape(body)}</p>
            </body>
            </html>
            """
        msg.attach(MIMEText(html_body, "html"))
        return msg

    async def send_mail(self, subject: str, body: str) -> dict[str, Any]:
        """Send one email.

        Raises:
            TriggerDeliveryError: On SMTP or connection failure
        """
        msg = self.build_message(subject, body)
        tls = self.configuration.tls
        try:
            await aiosmtplib.send(
                msg,
                hostname=self.configuration.host,
                port=self.configuration.port,
                username=self.configuration.user,
                password=self.configuration.pass_,
                use_tls=tls.enabled,
                validate_certs=tls.verify,
            )
        except aiosmtplib.SMTPException as e:
            logger.error(f"[smtp] SMTP error: {sanitize_log_message(str(e))}")
            raise TriggerDeliveryError(self.provider_type, f"SMTP error: {e}") from e
        except (ConnectionError, TimeoutError, OSError) as e:
            logger.error(f"[smtp] Connection error: {sanitize_log_message(str(e))}")
            raise TriggerDeliveryError(self.provider_type, f"Connection error: {e}") from e

        logger.info(f"[smtp] Sent notification: {sanitize_log_message(subject)}")
        return {"to": self.configuration.to, "subject": subject}
