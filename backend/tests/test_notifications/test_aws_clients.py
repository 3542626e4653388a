"""
Tests for the SES wrapper, raw MIME building and the template engine.
"""

import base64
from email import message_from_bytes
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from yardops.services.notifications.aws_clients import (
    SESClient,
    SESClientError,
    build_raw_message,
)
from yardops.services.notifications.templates import (
    TemplateEngine,
    TemplateNotFoundError,
    TemplateRenderError,
)

PDF = {
    "filename": "label.pdf",
    "content_type": "application/pdf",
    "content_b64": base64.b64encode(b"%PDF-1.4").decode("ascii"),
}


@pytest.fixture
def boto_client() -> MagicMock:
    with patch("yardops.services.notifications.aws_clients.boto3.client") as factory:
        client = MagicMock()
        client.send_email.return_value = {"MessageId": "m-1"}
        client.send_raw_email.return_value = {"MessageId": "m-2"}
        factory.return_value = client
        yield client


def _client_error(code: str, message: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, "SendEmail")


# ============================================================================
# SES Client Tests
# ============================================================================


class TestSESClient:
    def test_plain_send(self, boto_client: MagicMock) -> None:
        result = SESClient().send_email(
            ["maria@example.com"],
            "Subject",
            "Body",
            "<p>Body</p>",
            bcc_addresses=["audit@example.com"],
        )

        assert result == {"message_id": "m-1", "status": "sent"}
        kwargs = boto_client.send_email.call_args.kwargs
        assert kwargs["Destination"] == {
            "ToAddresses": ["maria@example.com"],
            "BccAddresses": ["audit@example.com"],
        }
        assert kwargs["Message"]["Body"]["Html"]["Data"] == "<p>Body</p>"

    def test_attachments_use_raw_send(self, boto_client: MagicMock) -> None:
        result = SESClient().send_email(
            ["maria@example.com"], "Subject", "Body", attachments=[PDF]
        )

        assert result["message_id"] == "m-2"
        boto_client.send_email.assert_not_called()
        kwargs = boto_client.send_raw_email.call_args.kwargs
        assert kwargs["Destinations"] == ["maria@example.com"]

    def test_rejected_message_is_permanent(self, boto_client: MagicMock) -> None:
        boto_client.send_email.side_effect = _client_error(
            "MessageRejected", "Email address is not verified."
        )

        with pytest.raises(SESClientError) as exc_info:
            SESClient().send_email(["maria@example.com"], "Subject", "Body")

        assert exc_info.value.permanent is True
        assert str(exc_info.value) == "SES error: Email address is not verified."

    def test_throttling_is_transient(self, boto_client: MagicMock) -> None:
        boto_client.send_email.side_effect = _client_error("Throttling", "Rate exceeded")

        with pytest.raises(SESClientError) as exc_info:
            SESClient().send_email(["maria@example.com"], "Subject", "Body")

        assert exc_info.value.permanent is False

    def test_connection_error_is_transient(self, boto_client: MagicMock) -> None:
        boto_client.send_email.side_effect = EndpointConnectionError(
            endpoint_url="https://email.us-east-1.amazonaws.com"
        )

        with pytest.raises(SESClientError, match="SES connection error"):
            SESClient().send_email(["maria@example.com"], "Subject", "Body")

    def test_recipient_required(self, boto_client: MagicMock) -> None:
        with pytest.raises(SESClientError) as exc_info:
            SESClient().send_email([], "Subject", "Body")

        assert exc_info.value.permanent is True


def test_build_raw_message() -> None:
    raw = build_raw_message(
        "service@example.com",
        ["maria@example.com"],
        "Refund receipt",
        "Body",
        "<p>Body</p>",
        [PDF],
        ["audit@example.com"],
    )

    message = message_from_bytes(raw)
    assert message["Subject"] == "Refund receipt"
    assert message["Bcc"] == "audit@example.com"
    parts = [part for part in message.walk() if part.get_filename()]
    assert parts[0].get_filename() == "label.pdf"
    assert parts[0].get_content_type() == "application/pdf"
    assert parts[0].get_payload(decode=True) == b"%PDF-1.4"


# ============================================================================
# Template Engine Tests
# ============================================================================


class TestTemplateEngine:
    def test_missing_variable_fails_instead_of_rendering_blank(self) -> None:
        with pytest.raises(TemplateRenderError):
            TemplateEngine().render_email("tracking", {"order_no": "ORD-100"})

    def test_unknown_template(self) -> None:
        with pytest.raises(TemplateNotFoundError):
            TemplateEngine().render_email("no_such_email", {})

    def test_currency_filter(self) -> None:
        assert TemplateEngine._format_currency("1234.5") == "$1,234.50"
        assert TemplateEngine._format_currency(None) == "$0.00"

    def test_date_filter(self) -> None:
        assert TemplateEngine._format_date("2025-10-15T17:00:00Z") == "October 15, 2025"
