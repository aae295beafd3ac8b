"""
Email delivery backends.

All backends implement ``send(template, data) -> DeliveryResult``. ``data``
must contain ``to`` (recipient address) plus the template context. Backends
are synchronous; the dispatcher runs them in a worker thread.
"""

import time
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from partsflow.core.config import Settings, get_settings
from partsflow.core.errors import UpstreamFailure
from partsflow.core.logging import get_logger
from partsflow.services.notifications.templates import TemplateEngine

logger = get_logger(__name__)

NON_RETRYABLE_SES_ERRORS = {
    "MessageRejected",
    "MailFromDomainNotVerified",
    "ConfigurationSetDoesNotExist",
}


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailSender(Protocol):
    def send(self, template: str, data: Mapping[str, Any]) -> DeliveryResult: ...


class SESEmailSender:
    """Sends rendered templates through AWS SES with retry on transient errors."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        templates: Optional[TemplateEngine] = None,
        client: Any = None,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
    ):
        self.settings = settings or get_settings()
        self.templates = templates or TemplateEngine()
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = client or boto3.client("ses", region_name=self.settings.aws_region)

    def send(self, template: str, data: Mapping[str, Any]) -> DeliveryResult:
        """
        Render and send one email.

        Raises:
            UpstreamFailure: If SES rejects the message or stays unreachable
        """
        rendered = self.templates.render_email(template, dict(data))
        params = {
            "Source": self.settings.email_from,
            "Destination": {"ToAddresses": [data["to"]]},
            "Message": {
                "Subject": {"Data": rendered["subject"], "Charset": "UTF-8"},
                "Body": {
                    "Text": {"Data": str(data.get("body", "")), "Charset": "UTF-8"},
                    "Html": {"Data": rendered["html_body"], "Charset": "UTF-8"},
                },
            },
        }

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                response = self._client.send_email(**params)
                logger.info(
                    "Email sent via SES",
                    template=template,
                    message_id=response["MessageId"],
                )
                return DeliveryResult(success=True, message_id=response["MessageId"])
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")
                last_error = e
                if error_code in NON_RETRYABLE_SES_ERRORS:
                    raise UpstreamFailure(
                        f"SES rejected message: {error_code}",
                        upstream="ses",
                        template=template,
                    ) from e
                logger.warning("SES client error", attempt=attempt + 1, error_code=error_code)
            except BotoCoreError as e:
                last_error = e
                logger.warning("SES connection error", attempt=attempt + 1, error=str(e))

            if attempt < self.max_retries - 1:
                time.sleep(self.retry_backoff * (2**attempt))

        raise UpstreamFailure(
            "SES unavailable after retries",
            upstream="ses",
            template=template,
        ) from last_error


class OutboxEmailSender:
    """Writes rendered emails as .eml files for local development."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        templates: Optional[TemplateEngine] = None,
        outbox_dir: Optional[Path] = None,
    ):
        self.settings = settings or get_settings()
        self.templates = templates or TemplateEngine()
        self.outbox_dir = Path(outbox_dir or self.settings.email_outbox_dir)

    def send(self, template: str, data: Mapping[str, Any]) -> DeliveryResult:
        rendered = self.templates.render_email(template, dict(data))

        message = EmailMessage()
        message["From"] = self.settings.email_from
        message["To"] = data["to"]
        message["Subject"] = rendered["subject"]
        message["Date"] = formatdate(localtime=True)
        message_id = make_msgid(domain="partsflow.local")
        message["Message-ID"] = message_id
        message.set_content(str(data.get("body", "")))
        message.add_alternative(rendered["html_body"], subtype="html")

        self.outbox_dir.mkdir(parents=True, exist_ok=True)
        path = self.outbox_dir / f"{int(time.time())}-{template}-{uuid.uuid4().hex[:8]}.eml"
        path.write_bytes(bytes(message))

        logger.info("Email written to outbox", template=template, path=str(path))
        return DeliveryResult(success=True, message_id=message_id)


class NullEmailSender:
    def send(self, template: str, data: Mapping[str, Any]) -> DeliveryResult:
        logger.debug("Email delivery disabled", template=template)
        return DeliveryResult(success=True, message_id=None)


def build_email_sender(settings: Optional[Settings] = None) -> EmailSender:
    settings = settings or get_settings()
    if settings.email_backend == "ses":
        return SESEmailSender(settings=settings)
    if settings.email_backend == "outbox":
        return OutboxEmailSender(settings=settings)
    return NullEmailSender()
