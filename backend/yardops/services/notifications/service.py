"""
Notification service: renders workflow e-mails into the outbox and delivers them.

Workflow actions call one of the ``queue_*`` methods inside their own
transaction. Each one validates what the e-mail needs, renders the template
and adds an ``EmailOutbox`` row. After the caller commits, ``dispatch`` sends
the rows through SES and records the outcome on them. A failed send never
undoes the business change; the row stays ``failed`` and the outbox worker
retries it later.
"""

import asyncio
import base64
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from yardops.core.config import Settings, get_settings
from yardops.core.logging import get_logger
from yardops.database.models.notification import EmailOutbox, OutboxStatus
from yardops.database.models.order import Order, Yard
from yardops.services.notifications.aws_clients import SESClient, SESClientError, get_ses_client
from yardops.services.notifications.templates import (
    TemplateEngine,
    TemplateEngineError,
    get_template_engine,
)
from yardops.services.orders.accounting import parse_shipping_value
from yardops.services.orders.enums import EmailKind, ReplacementLeg, ShippingMethod
from yardops.services.orders.escalation import (
    customer_replacement_email_errors,
    return_email_errors,
    yard_replacement_email_errors,
)

logger = get_logger(__name__)

_REPEATED_CHARS = re.compile(r"(.)\1{3,}")
_STATE = re.compile(r"^[A-Za-z]{2}$")
_ZIP = re.compile(r"^\d{5}$")


class NotificationServiceError(Exception):
    """Base exception for notification service errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class NotificationValidationError(NotificationServiceError):
    """Raised when an e-mail cannot be built from the order as it stands."""

    pass


class NotificationDeliveryError(NotificationServiceError):
    """Raised when SES rejects or fails to accept an e-mail."""

    pass


@dataclass(frozen=True)
class Attachment:
    """An uploaded file to send with an e-mail."""

    filename: str
    content: bytes
    content_type: str = "application/pdf"

    def to_outbox(self) -> dict[str, str]:
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "content_b64": base64.b64encode(self.content).decode("ascii"),
        }


def clean_first_name(value: Optional[str], default: str = "") -> str:
    """First name of the acting user: the part before any comma."""
    name = (value or "").split(",")[0].strip()
    return name or default


def clean_customer_name(value: Optional[str]) -> str:
    """Collapse runs of four or more identical characters down to three."""
    return _REPEATED_CHARS.sub(lambda m: m.group(1) * 3, (value or "").strip())


def customer_display_name(order: Order) -> str:
    name = order.customer_name or " ".join(p for p in (order.f_name, order.l_name) if p)
    return clean_customer_name(name) or "Customer"


def format_return_address(raw: Optional[str]) -> str:
    """
    Add commas to a one-line US address.

    Example:
        >>> format_return_address("12 S Main St Dallas TX 75227")
        '12 S Main St, Dallas, TX, 75227'
    """
    raw = (raw or "").strip()
    parts = raw.split()
    if len(parts) >= 4 and _STATE.match(parts[-2]) and _ZIP.match(parts[-1]):
        return f"{' '.join(parts[:-3])}, {parts[-3]}, {parts[-2]}, {parts[-1]}"
    return raw


class NotificationService:
    """
    Builds workflow e-mails into the outbox and delivers them through SES.

    Attributes:
        db: Request database session
        ses_client: SES client, created lazily so queueing never needs AWS
        template_engine: Jinja2 template engine
    """

    def __init__(
        self,
        db_session: AsyncSession,
        ses_client: Optional[SESClient] = None,
        template_engine: Optional[TemplateEngine] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db_session
        self._ses_client = ses_client
        self.template_engine = template_engine or get_template_engine()
        self.settings = settings or get_settings()

    @property
    def ses_client(self) -> SESClient:
        if self._ses_client is None:
            self._ses_client = get_ses_client()
        return self._ses_client

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    def _base_context(self, order: Order, first_name: str) -> dict[str, Any]:
        return {
            "brand_name": self.settings.brand_name,
            "brand_phone": self.settings.brand_phone,
            "brand_email": self.settings.ses_sender,
            "brand_site": "www.50starsautoparts.com",
            "logo_url": self.settings.brand_logo_url,
            "first_name": first_name,
            "customer_name": customer_display_name(order),
            "order": order,
            "order_no": order.order_no,
            "vehicle": " ".join(
                str(p) for p in (order.year, order.make, order.model, order.part_required) if p
            ),
        }

    @staticmethod
    def _customer_email(order: Order) -> str:
        email = (order.email or "").strip()
        if not email:
            raise NotificationValidationError(
                "No customer email on file", order_no=order.order_no
            )
        return email

    async def queue(
        self,
        *,
        kind: EmailKind,
        order: Order,
        recipient: str,
        template: str,
        context: dict[str, Any],
        yard_index: Optional[int] = None,
        sender: Optional[str] = None,
        bcc: Optional[list[str]] = None,
        attachments: Sequence[Attachment] = (),
    ) -> EmailOutbox:
        """
        Render ``template`` and add an outbox row in the current transaction.

        Raises:
            NotificationServiceError: If the template cannot be rendered
        """
        try:
            rendered = self.template_engine.render_email(template, context)
        except TemplateEngineError as e:
            raise NotificationServiceError(
                f"Failed to render email: {e}",
                order_no=order.order_no,
                template=template,
            ) from e

        row = EmailOutbox(
            order_no=order.order_no,
            yard_index=yard_index,
            kind=kind,
            sender=sender or self.settings.ses_sender,
            recipient=recipient,
            bcc=list(self.settings.ses_bcc_list if bcc is None else bcc),
            subject=rendered["subject"],
            html_body=rendered["html_body"],
            text_body=rendered["text_body"],
            attachments=[a.to_outbox() for a in attachments],
            status=OutboxStatus.PENDING,
            attempts=0,
        )
        self.db.add(row)
        await self.db.flush()

        logger.info(
            "Email queued",
            outbox_id=row.id,
            kind=kind.value,
            order_no=order.order_no,
            yard_index=yard_index,
        )
        return row

    async def dispatch(self, row: EmailOutbox) -> bool:
        """
        Try to deliver one outbox row and record the outcome on it.

        Returns:
            True if SES accepted the message
        """
        row.attempts = (row.attempts or 0) + 1
        try:
            result = await asyncio.to_thread(
                self.ses_client.send_email,
                to_addresses=[row.recipient],
                subject=row.subject,
                body_text=row.text_body or row.subject,
                body_html=row.html_body,
                from_address=row.sender,
                bcc_addresses=row.bcc or None,
                attachments=row.attachments or None,
            )
        except SESClientError as e:
            row.mark_failed(str(e))
            if e.permanent:
                row.attempts = max(row.attempts, self.settings.email_max_attempts)
            logger.error(
                "Email delivery failed",
                outbox_id=row.id,
                kind=row.kind.value,
                order_no=row.order_no,
                attempts=row.attempts,
                error=str(e),
            )
            return False

        row.mark_sent(result.get("message_id"))
        logger.info(
            "Email delivered",
            outbox_id=row.id,
            kind=row.kind.value,
            order_no=row.order_no,
            message_id=row.message_id,
        )
        return True

    async def retry_failed(self, limit: int = 50) -> dict[str, int]:
        """
        Re-send failed or stuck rows that still have attempts left.

        Returns:
            Counts of rows retried, sent and still failing
        """
        stmt = (
            select(EmailOutbox)
            .where(
                EmailOutbox.status.in_([OutboxStatus.PENDING, OutboxStatus.FAILED]),
                EmailOutbox.attempts < self.settings.email_max_attempts,
            )
            .order_by(EmailOutbox.created_at)
            .limit(limit)
        )
        rows = (await self.db.execute(stmt)).scalars().all()

        sent = 0
        for row in rows:
            if await self.dispatch(row):
                sent += 1
            await self.db.commit()

        stats = {"retried": len(rows), "sent": sent, "failed": len(rows) - sent}
        logger.info("Outbox retry pass finished", **stats)
        return stats

    # ------------------------------------------------------------------
    # Workflow e-mails
    # ------------------------------------------------------------------

    async def queue_tracking(self, order: Order, yard_index: int, yard: Yard, first_name: str) -> EmailOutbox:
        """Tracking details for a yard that just shipped."""
        context = self._base_context(order, first_name)
        context.update(
            tracking_no=yard.tracking_no,
            eta=yard.eta,
            shipper_name=yard.shipper_name,
            tracking_link=yard.tracking_link,
        )
        return await self.queue(
            kind=EmailKind.TRACKING,
            order=order,
            yard_index=yard_index,
            recipient=self._customer_email(order),
            template="tracking",
            context=context,
        )

    async def queue_delivery(self, order: Order, yard_index: int, yard: Yard, first_name: str) -> EmailOutbox:
        """Delivery confirmation for a yard whose part arrived."""
        context = self._base_context(order, first_name)
        context.update(
            tracking_no=yard.tracking_no,
            shipper_name=yard.shipper_name,
            tracking_link=yard.tracking_link,
        )
        return await self.queue(
            kind=EmailKind.DELIVERY,
            order=order,
            yard_index=yard_index,
            recipient=self._customer_email(order),
            template="delivery",
            context=context,
        )

    async def queue_replacement(
        self,
        order: Order,
        yard_index: int,
        yard: Yard,
        leg: ReplacementLeg,
        first_name: str,
        attachment: Optional[Attachment] = None,
    ) -> EmailOutbox:
        """
        Replacement e-mail for one leg.

        The customer leg asks the customer to send the part back (with a
        shipping document for own or yard shipping); the yard leg sends the
        replacement's tracking details.

        Raises:
            NotificationValidationError: If the leg is not ready to e-mail
        """
        if leg == ReplacementLeg.CUSTOMER:
            errors = customer_replacement_email_errors(yard, attachment is not None)
        else:
            errors = yard_replacement_email_errors(yard)
        if errors:
            raise NotificationValidationError(
                " ".join(errors), order_no=order.order_no, yard_index=yard_index, leg=leg.value
            )

        context = self._base_context(order, first_name)
        attachments: list[Attachment] = []
        if leg == ReplacementLeg.YARD:
            template = "tracking"
            context.update(
                tracking_no=yard.yard_tracking_number,
                eta=yard.yard_tracking_eta,
                shipper_name=yard.yard_shipper,
                tracking_link=yard.yard_tracking_link,
            )
        elif yard.customer_shipping_method_replacement == ShippingMethod.CUSTOMER_SHIPPING.value:
            template = "replacement_customer_shipping"
            context["return_address"] = format_return_address(yard.cust_ship_to_rep)
        else:
            template = "replacement_shipping_document"
            attachments.append(attachment)

        kind = (
            EmailKind.REPLACEMENT_CUSTOMER
            if leg == ReplacementLeg.CUSTOMER
            else EmailKind.REPLACEMENT_YARD
        )
        return await self.queue(
            kind=kind,
            order=order,
            yard_index=yard_index,
            recipient=self._customer_email(order),
            template=template,
            context=context,
            attachments=attachments,
        )

    async def queue_return(
        self,
        order: Order,
        yard_index: int,
        yard: Yard,
        first_name: str,
        attachment: Optional[Attachment] = None,
    ) -> EmailOutbox:
        """
        Return instructions for the customer.

        Raises:
            NotificationValidationError: If the return leg is not ready to e-mail
        """
        errors = return_email_errors(yard, attachment is not None)
        if errors:
            raise NotificationValidationError(
                " ".join(errors), order_no=order.order_no, yard_index=yard_index
            )

        context = self._base_context(order, first_name)
        context["return_address"] = format_return_address(yard.cust_ship_to_ret)
        return await self.queue(
            kind=EmailKind.RETURN,
            order=order,
            yard_index=yard_index,
            recipient=self._customer_email(order),
            template="return_shipping_document" if attachment else "return_instructions",
            context=context,
            attachments=[attachment] if attachment else [],
        )

    async def queue_refund_confirmation(
        self,
        order: Order,
        amount: Optional[Decimal],
        first_name: str,
        attachment: Optional[Attachment],
    ) -> EmailOutbox:
        """
        Refund receipt for the customer.

        Raises:
            NotificationValidationError: If the amount or receipt is missing
        """
        if not first_name:
            raise NotificationValidationError("firstName is required", order_no=order.order_no)
        if amount is None:
            raise NotificationValidationError("Refunded amount is missing.", order_no=order.order_no)
        if attachment is None:
            raise NotificationValidationError(
                "Attach the required document (pdfFile).", order_no=order.order_no
            )

        context = self._base_context(order, first_name)
        context["amount"] = amount
        return await self.queue(
            kind=EmailKind.REFUND_CONFIRMATION,
            order=order,
            recipient=self._customer_email(order),
            template="refund_confirmation",
            context=context,
            attachments=[attachment],
        )

    async def queue_yard_refund(
        self,
        order: Order,
        yard_index: int,
        yard: Yard,
        first_name: str,
        attachment: Optional[Attachment],
        return_tracking: str = "",
    ) -> EmailOutbox:
        """
        Ask a yard to refund a charge.

        Raises:
            NotificationValidationError: If the yard has no e-mail, no amount
                or reason to collect, or the purchase order is not attached
        """
        errors = []
        if attachment is None:
            errors.append("Attach the required document (pdfFile).")
        if yard.refund_to_collect is None:
            errors.append("Enter the refund amount to collect.")
        if not (yard.refund_reason or "").strip():
            errors.append("Enter the refund reason.")
        if errors:
            raise NotificationValidationError(
                " ".join(errors), order_no=order.order_no, yard_index=yard_index
            )
        yard_email = (yard.email or "").strip()
        if not yard_email:
            raise NotificationValidationError(
                "No yard email found for this yard entry",
                order_no=order.order_no,
                yard_index=yard_index,
            )

        context = self._base_context(order, first_name)
        context.update(
            yard_agent=yard.agent_name or "Yard",
            refund_to_collect=yard.refund_to_collect,
            refund_reason=yard.refund_reason,
            stock_no=yard.stock_no or "N/A",
            return_tracking=return_tracking or yard.return_tracking_cust or "",
        )
        return await self.queue(
            kind=EmailKind.YARD_REFUND_REQUEST,
            order=order,
            yard_index=yard_index,
            recipient=yard_email,
            template="yard_refund_request",
            context=context,
            sender=self.settings.ses_purchase_sender,
            bcc=[],
            attachments=[attachment],
        )

    async def queue_purchase_order(
        self,
        order: Order,
        yard_index: int,
        yard: Yard,
        first_name: str,
        attachments: Sequence[Attachment] = (),
    ) -> EmailOutbox:
        """
        Purchase order to the yard.

        Raises:
            NotificationValidationError: If the yard has no e-mail address
        """
        yard_email = (yard.email or "").strip()
        if not yard_email:
            raise NotificationValidationError(
                "No yard email provided. PO not sent.",
                order_no=order.order_no,
                yard_index=yard_index,
            )

        part_price = yard.part_price or Decimal("0")
        shipping = Decimal("0")
        if "yard shipping" in (yard.shipping_details or "").lower():
            shipping = parse_shipping_value(yard.shipping_details)
            shipping_label = f"${shipping:,.2f}" if shipping else "Included"
        else:
            shipping_label = "Own Shipping"

        context = self._base_context(order, first_name)
        context.update(
            yard=yard,
            part_price=part_price,
            shipping_label=shipping_label,
            grand_total=part_price + shipping,
        )
        return await self.queue(
            kind=EmailKind.PURCHASE_ORDER,
            order=order,
            yard_index=yard_index,
            recipient=yard_email,
            template="purchase_order",
            context=context,
            sender=self.settings.ses_purchase_sender,
            bcc=[],
            attachments=attachments,
        )

    async def queue_cancellation(
        self, order: Order, first_name: str, amount: Optional[Decimal] = None
    ) -> EmailOutbox:
        """Order cancellation notice with the amount being refunded."""
        context = self._base_context(order, first_name or "Team Member")
        context["amount"] = amount if amount is not None else (order.cust_ref_amount or Decimal("0"))
        context["order_date"] = order.order_date
        return await self.queue(
            kind=EmailKind.CANCELLATION,
            order=order,
            recipient=self._customer_email(order),
            template="cancellation",
            context=context,
        )

    async def queue_reimbursement(
        self, order: Order, first_name: str, amount: Optional[Decimal] = None
    ) -> EmailOutbox:
        """Goodwill reimbursement confirmation."""
        context = self._base_context(order, first_name)
        context["amount"] = amount if amount is not None else (order.reimbursement_amount or Decimal("0"))
        return await self.queue(
            kind=EmailKind.REIMBURSEMENT,
            order=order,
            recipient=self._customer_email(order),
            template="reimbursement",
            context=context,
        )


def get_notification_service(db_session: AsyncSession) -> NotificationService:
    """Factory function to create notification service instance."""
    return NotificationService(db_session)
