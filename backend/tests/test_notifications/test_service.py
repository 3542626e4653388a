"""
Test suite for the notification outbox.

Templates are the real Jinja2 files; the database session and SES client are
mocks, so the tests cover rendering, validation and delivery bookkeeping.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from yardops.core.config import get_settings
from yardops.database.models.notification import EmailOutbox, OutboxStatus
from yardops.services.notifications.aws_clients import SESClientError
from yardops.services.notifications.service import (
    Attachment,
    NotificationService,
    NotificationValidationError,
    clean_customer_name,
    clean_first_name,
    format_return_address,
)
from yardops.services.notifications.templates import TemplateEngine
from yardops.services.orders.enums import (
    CustomerReason,
    EmailKind,
    ReplacementLeg,
    ShippingMethod,
    YardStatus,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def ses_client() -> MagicMock:
    client = MagicMock()
    client.send_email.return_value = {"message_id": "ses-message-1", "status": "sent"}
    return client


@pytest.fixture
def notification_service(mock_session, ses_client) -> NotificationService:
    return NotificationService(
        mock_session, ses_client=ses_client, template_engine=TemplateEngine()
    )


@pytest.fixture
def order(order_factory, yard_factory):
    yard = yard_factory(
        status=YardStatus.PART_SHIPPED,
        tracking_no="1Z999AA10123456784",
        eta="2025-10-12",
        shipper_name="UPS",
        tracking_link="https://ups.example/track/1Z999",
        part_price=Decimal("200"),
        shipping_details="Yard shipping: 25",
        stock_no="STK-9",
    )
    return order_factory("ORD-100", yards=[yard])


@pytest.fixture
def pdf() -> Attachment:
    return Attachment(filename="receipt.pdf", content=b"%PDF-1.4")


def _row(**overrides) -> EmailOutbox:
    values = {
        "order_no": "ORD-100",
        "kind": EmailKind.TRACKING,
        "sender": "service@example.com",
        "recipient": "maria@example.com",
        "bcc": [],
        "subject": "Tracking Details / Order No. ORD-100",
        "html_body": "<p>Body</p>",
        "text_body": "Body",
        "attachments": [],
        "status": OutboxStatus.PENDING,
        "attempts": 0,
    }
    values.update(overrides)
    return EmailOutbox(**values)


# ============================================================================
# Helper Tests
# ============================================================================


class TestHelpers:
    def test_clean_first_name(self) -> None:
        assert clean_first_name("Ana, Sales") == "Ana"
        assert clean_first_name("  ", "System") == "System"
        assert clean_first_name(None, "Team Member") == "Team Member"

    def test_clean_customer_name_collapses_repeats(self) -> None:
        assert clean_customer_name("Maaaaaria Lopez") == "Maaaria Lopez"
        assert clean_customer_name("Anna") == "Anna"

    def test_format_return_address(self) -> None:
        assert format_return_address("12 S Main St Dallas TX 75227") == (
            "12 S Main St, Dallas, TX, 75227"
        )

    def test_format_return_address_leaves_other_shapes(self) -> None:
        assert format_return_address("PO Box 7, Dallas") == "PO Box 7, Dallas"
        assert format_return_address(None) == ""


# ============================================================================
# Queue Tests
# ============================================================================


class TestQueue:
    async def test_tracking_email_is_rendered_into_outbox(
        self, notification_service: NotificationService, mock_session, order
    ) -> None:
        row = await notification_service.queue_tracking(order, 1, order.yards[0], "Ana")

        assert row.kind == EmailKind.TRACKING
        assert row.recipient == "maria@example.com"
        assert row.subject == "Tracking Details / Order No. ORD-100"
        assert "1Z999AA10123456784" in row.html_body
        assert "Hi Maria Lopez," in row.html_body
        assert "Ana" in row.text_body
        assert row.status == OutboxStatus.PENDING
        assert row.attempts == 0
        mock_session.add.assert_called_once_with(row)
        mock_session.flush.assert_awaited_once()

    async def test_missing_customer_email(
        self, notification_service: NotificationService, mock_session, order
    ) -> None:
        order.email = ""

        with pytest.raises(NotificationValidationError, match="No customer email"):
            await notification_service.queue_tracking(order, 1, order.yards[0], "Ana")

        mock_session.add.assert_not_called()

    async def test_purchase_order_goes_to_yard(
        self, notification_service: NotificationService, order, pdf
    ) -> None:
        settings = get_settings()

        row = await notification_service.queue_purchase_order(
            order, 1, order.yards[0], "Ana", [pdf]
        )

        assert row.recipient == "yard@example.com"
        assert row.sender == settings.ses_purchase_sender
        assert row.bcc == []
        assert row.subject == "Purchase Order | ORD-100 | 2015 Honda Accord Engine"
        assert "$225.00" in row.html_body
        assert "STK-9" in row.html_body
        assert row.attachments[0]["filename"] == "receipt.pdf"

    async def test_purchase_order_without_yard_email(
        self, notification_service: NotificationService, order
    ) -> None:
        order.yards[0].email = None

        with pytest.raises(NotificationValidationError, match="No yard email provided"):
            await notification_service.queue_purchase_order(order, 1, order.yards[0], "Ana")

    async def test_customer_shipping_replacement_formats_address(
        self, notification_service: NotificationService, order
    ) -> None:
        yard = order.yards[0]
        yard.customer_shipping_method_replacement = ShippingMethod.CUSTOMER_SHIPPING.value
        yard.cust_ship_to_rep = "12 S Main St Dallas TX 75227"

        row = await notification_service.queue_replacement(
            order, 1, yard, ReplacementLeg.CUSTOMER, "Ana"
        )

        assert row.kind == EmailKind.REPLACEMENT_CUSTOMER
        assert "12 S Main St, Dallas, TX, 75227" in row.html_body
        assert row.attachments == []

    async def test_junked_part_blocks_customer_replacement(
        self, notification_service: NotificationService, order
    ) -> None:
        order.yards[0].cust_reason = CustomerReason.JUNKED

        with pytest.raises(NotificationValidationError, match="junked"):
            await notification_service.queue_replacement(
                order, 1, order.yards[0], ReplacementLeg.CUSTOMER, "Ana"
            )

    async def test_yard_replacement_requires_tracking(
        self, notification_service: NotificationService, order
    ) -> None:
        with pytest.raises(NotificationValidationError, match="Yard replacement leg is missing"):
            await notification_service.queue_replacement(
                order, 1, order.yards[0], ReplacementLeg.YARD, "Ana"
            )

    async def test_refund_confirmation_needs_receipt(
        self, notification_service: NotificationService, order
    ) -> None:
        with pytest.raises(NotificationValidationError, match="pdfFile"):
            await notification_service.queue_refund_confirmation(
                order, Decimal("100"), "Ana", None
            )

    async def test_refund_confirmation(
        self, notification_service: NotificationService, order, pdf
    ) -> None:
        row = await notification_service.queue_refund_confirmation(
            order, Decimal("100"), "Ana", pdf
        )

        assert row.kind == EmailKind.REFUND_CONFIRMATION
        assert row.subject.startswith("Refund Processed for Your Order ORD-100")
        assert row.attachments[0]["content_type"] == "application/pdf"

    async def test_yard_refund_lists_every_missing_input(
        self, notification_service: NotificationService, order
    ) -> None:
        with pytest.raises(NotificationValidationError) as exc_info:
            await notification_service.queue_yard_refund(order, 1, order.yards[0], "Ana", None)

        message = str(exc_info.value)
        assert "pdfFile" in message
        assert "refund amount" in message
        assert "refund reason" in message

    async def test_cancellation_defaults_amount(
        self, notification_service: NotificationService, order
    ) -> None:
        order.cust_ref_amount = Decimal("500")

        row = await notification_service.queue_cancellation(order, "")

        assert row.subject == "Order Cancellation | ORD-100"
        assert "$500.00" in row.html_body


# ============================================================================
# Delivery Tests
# ============================================================================


class TestDispatch:
    async def test_successful_send_marks_row_sent(
        self, notification_service: NotificationService, ses_client
    ) -> None:
        row = _row(bcc=["audit@example.com"])

        delivered = await notification_service.dispatch(row)

        assert delivered is True
        assert row.status == OutboxStatus.SENT
        assert row.message_id == "ses-message-1"
        assert row.attempts == 1
        assert row.sent_at is not None
        kwargs = ses_client.send_email.call_args.kwargs
        assert kwargs["to_addresses"] == ["maria@example.com"]
        assert kwargs["bcc_addresses"] == ["audit@example.com"]
        assert kwargs["attachments"] is None

    async def test_transient_failure_leaves_row_retryable(
        self, notification_service: NotificationService, ses_client
    ) -> None:
        ses_client.send_email.side_effect = SESClientError("SES error: Throttling")
        row = _row()

        delivered = await notification_service.dispatch(row)

        assert delivered is False
        assert row.status == OutboxStatus.FAILED
        assert row.last_error == "SES error: Throttling"
        assert row.attempts == 1

    async def test_permanent_failure_exhausts_attempts(
        self, notification_service: NotificationService, ses_client
    ) -> None:
        ses_client.send_email.side_effect = SESClientError(
            "SES error: Email address is not verified.", permanent=True
        )
        row = _row()

        await notification_service.dispatch(row)

        assert row.attempts == get_settings().email_max_attempts

    async def test_retry_failed_counts_outcomes(
        self, notification_service: NotificationService, mock_session, ses_client
    ) -> None:
        rows = [_row(status=OutboxStatus.FAILED, attempts=1) for _ in range(2)]
        result = MagicMock()
        result.scalars.return_value.all.return_value = rows
        mock_session.execute = AsyncMock(return_value=result)
        ses_client.send_email.side_effect = [
            {"message_id": "ses-message-2"},
            SESClientError("SES connection error: timeout"),
        ]

        stats = await notification_service.retry_failed(limit=10)

        assert stats == {"retried": 2, "sent": 1, "failed": 1}
        assert rows[0].status == OutboxStatus.SENT
        assert rows[1].attempts == 2
        assert mock_session.commit.await_count == 2
