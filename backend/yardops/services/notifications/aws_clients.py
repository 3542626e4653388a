"""
AWS SES client wrapper with error handling.

Sends plain multipart e-mail through ``send_email`` and e-mail with PDF
attachments through ``send_raw_email``. A single attempt is made per call;
retrying is the outbox worker's job.
"""

import base64
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from functools import lru_cache
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    EndpointConnectionError,
)

from yardops.core.config import get_settings
from yardops.core.logging import get_logger

logger = get_logger(__name__)

# Errors that will not succeed on retry either.
PERMANENT_ERROR_CODES = frozenset(
    {"MessageRejected", "MailFromDomainNotVerified", "ConfigurationSetDoesNotExist"}
)


class SESClientError(Exception):
    """Exception for SES send failures."""

    def __init__(self, message: str, permanent: bool = False, **context: Any) -> None:
        """
        Initialize SES client error.

        Args:
            message: Error message
            permanent: True when retrying cannot help
            **context: Additional error context
        """
        super().__init__(message)
        self.permanent = permanent
        self.context = context


def build_raw_message(
    sender: str,
    to_addresses: list[str],
    subject: str,
    body_text: str,
    body_html: Optional[str],
    attachments: list[dict[str, str]],
    bcc_addresses: Optional[list[str]] = None,
) -> bytes:
    """
    Build a MIME message with attachments.

    Args:
        attachments: Dicts with ``filename``, ``content_type`` and
            base64 ``content_b64``
    """
    message = MIMEMultipart("mixed")
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = ", ".join(to_addresses)
    if bcc_addresses:
        message["Bcc"] = ", ".join(bcc_addresses)

    body = MIMEMultipart("alternative")
    body.attach(MIMEText(body_text, "plain", "utf-8"))
    if body_html:
        body.attach(MIMEText(body_html, "html", "utf-8"))
    message.attach(body)

    for attachment in attachments:
        _, _, subtype = attachment.get(
            "content_type", "application/octet-stream"
        ).partition("/")
        part = MIMEApplication(
            base64.b64decode(attachment["content_b64"]),
            _subtype=subtype or "octet-stream",
        )
        part.add_header("Content-Disposition", "attachment", filename=attachment["filename"])
        message.attach(part)

    return message.as_bytes()


class SESClient:
    """AWS SES client wrapper."""

    def __init__(
        self,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        region_name: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ) -> None:
        """
        Initialize SES client.

        Args:
            aws_access_key_id: AWS access key ID (defaults to settings)
            aws_secret_access_key: AWS secret access key (defaults to settings)
            region_name: AWS region name (defaults to settings)
            timeout_seconds: Connect/read timeout (defaults to settings)
        """
        settings = get_settings()
        timeout = timeout_seconds or settings.email_timeout_seconds
        self.default_sender = settings.ses_sender

        self._client = boto3.client(
            "ses",
            aws_access_key_id=aws_access_key_id or settings.aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key or settings.aws_secret_access_key,
            region_name=region_name or settings.aws_region,
            config=Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 1},
            ),
        )

        logger.info(
            "SES client initialized",
            region=region_name or settings.aws_region,
            timeout_seconds=timeout,
        )

    def send_email(
        self,
        to_addresses: list[str],
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        from_address: Optional[str] = None,
        bcc_addresses: Optional[list[str]] = None,
        attachments: Optional[list[dict[str, str]]] = None,
    ) -> dict[str, Any]:
        """
        Send e-mail via AWS SES.

        Returns:
            Dictionary containing message ID and delivery status

        Raises:
            SESClientError: If the send fails
        """
        from_address = from_address or self.default_sender

        if not to_addresses:
            raise SESClientError(
                "At least one recipient email address is required",
                permanent=True,
                to_addresses=to_addresses,
            )

        try:
            if attachments:
                raw = build_raw_message(
                    from_address,
                    to_addresses,
                    subject,
                    body_text,
                    body_html,
                    attachments,
                    bcc_addresses,
                )
                response = self._client.send_raw_email(
                    Source=from_address,
                    Destinations=[*to_addresses, *(bcc_addresses or [])],
                    RawMessage={"Data": raw},
                )
            else:
                destination: dict[str, Any] = {"ToAddresses": to_addresses}
                if bcc_addresses:
                    destination["BccAddresses"] = bcc_addresses
                message: dict[str, Any] = {
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": body_text, "Charset": "UTF-8"}},
                }
                if body_html:
                    message["Body"]["Html"] = {"Data": body_html, "Charset": "UTF-8"}
                response = self._client.send_email(
                    Source=from_address,
                    Destination=destination,
                    Message=message,
                )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            error_message = e.response.get("Error", {}).get("Message", str(e))
            logger.warning(
                "SES client error",
                error_code=error_code,
                error_message=error_message,
                to_addresses=to_addresses,
            )
            raise SESClientError(
                f"SES error: {error_message}",
                permanent=error_code in PERMANENT_ERROR_CODES,
                error_code=error_code,
                to_addresses=to_addresses,
            ) from e
        except (BotoConnectionError, EndpointConnectionError, BotoCoreError) as e:
            logger.warning("SES connection error", error=str(e), to_addresses=to_addresses)
            raise SESClientError(
                f"SES connection error: {e}",
                to_addresses=to_addresses,
            ) from e

        message_id = response["MessageId"]
        logger.info(
            "Email sent successfully via SES",
            message_id=message_id,
            to_addresses=to_addresses,
            has_attachments=bool(attachments),
        )
        return {"message_id": message_id, "status": "sent"}


@lru_cache
def get_ses_client() -> SESClient:
    """Shared SES client built from settings."""
    return SESClient()
