"""
Order service orchestrating the yard workflow, refunds and e-mail.

Every write follows the same shape: load the order, validate the whole
request, mutate the order and yard in memory, commit. E-mails are queued as
outbox rows inside that transaction and delivered after the commit, so a
failed delivery never rolls back the business change; it is reported on the
result as ``email_status="failed"`` and left for the outbox retry worker.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from yardops.core.logging import get_logger
from yardops.core.timeutils import format_stamp, utcnow
from yardops.database.models.notification import EmailOutbox
from yardops.database.models.order import Order, Yard
from yardops.schemas.orders import (
    ActualGPRequest,
    CancelOnlyRequest,
    CustRefundRequest,
    DisputeRequest,
    NoteRequest,
    OrderCreateRequest,
    OrderUpdateRequest,
    PaymentStatusRequest,
    ReimbursementRequest,
    RefundOnlyRequest,
    RefundStatusRequest,
    YardCreateRequest,
    YardEditRequest,
    YardUpdateRequest,
)
from yardops.services.notifications.service import (
    Attachment,
    NotificationService,
    NotificationServiceError,
    clean_first_name,
)
from yardops.services.orders.accounting import compute_actual_gp, format_shipping_details
from yardops.services.orders.enums import (
    CheckboxState,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReplacementLeg,
    YardStatus,
)
from yardops.services.orders.escalation import (
    VOIDABLE_LEG_FIELDS,
    blank_value,
    shape_escalation,
    validate_escalation,
)
from yardops.services.orders.notes import (
    change_notes,
    cleared_summary,
    diff_fields,
    format_note,
    history_line,
    human_label,
    push_unique,
    wire_name,
)
from yardops.services.orders.repository import OrderRepository, YardVersionConflictError
from yardops.services.orders.state_machine import (
    StateTransitionError,
    YardStateMachine,
    YardValidationError,
)
from yardops.services.search.elasticsearch_client import ElasticsearchClient
from yardops.services.search.search_service import reindex_order

logger = get_logger(__name__)

EMAIL_SENT = "sent"
EMAIL_FAILED = "failed"

GP_TOLERANCE = Decimal("0.0001")

PRICING_FIELDS = frozenset({"sold_price", "cost_price", "shipping_fee", "sales_tax"})

LABEL_FIELDS = ("tracking_no", "eta", "shipper_name", "tracking_link", "shipping_details")

CHECKBOX_FIELDS = ("collect_refund_checkbox", "ups_claim_checkbox", "store_credit_checkbox")

REFUND_FIELDS = (
    "refund_status",
    "refunded_amount",
    "refunded_date",
    "refund_to_collect",
    "refund_reason",
    "store_credit",
    *CHECKBOX_FIELDS,
)

LEG_TITLES = {
    "customer": "Replacement (Part from customer)",
    "yard": "Replacement (Part from yard)",
    "return": "Return (Part from customer)",
}

# Status -> (outbox builder name, label used in history lines)
STATUS_EMAILS = {
    YardStatus.PART_SHIPPED: ("queue_tracking", "tracking"),
    YardStatus.PART_DELIVERED: ("queue_delivery", "delivery"),
}


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderValidationError(OrderServiceError):
    """Raised when a request is rejected before any write."""

    pass


@dataclass
class WorkflowResult:
    """Outcome of a workflow action."""

    message: str
    order: Order
    email_status: Optional[str] = None


def _json_value(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, (Decimal, datetime)):
        return str(value)
    return value


def _snapshot(obj: Any, fields: Iterable[str]) -> dict[str, Any]:
    return {field: getattr(obj, field) for field in fields}


def _is_set(value: Any) -> bool:
    return value not in (None, "")


class OrderService:
    """
    Order and yard workflow operations.

    Attributes:
        repository: Order repository for data access
        state_machine: Yard status state machine
        notifications: Outbox-backed e-mail service
    """

    def __init__(
        self,
        session: AsyncSession,
        notification_service: Optional[NotificationService] = None,
        es_client: Optional[ElasticsearchClient] = None,
    ):
        self.session = session
        self.repository = OrderRepository(session)
        self.state_machine = YardStateMachine()
        self.notifications = notification_service or NotificationService(session)
        self._es_client = es_client

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    async def _commit(
        self,
        order: Order,
        rows: Sequence[EmailOutbox] = (),
        sent_line: Optional[str] = None,
        failed_line: Optional[str] = None,
    ) -> Optional[str]:
        """
        Commit the business change, then deliver any queued e-mail.

        Returns:
            None when nothing was queued, otherwise ``"sent"`` or ``"failed"``
        """
        await self.repository.flush(order)
        await self.session.commit()

        email_status = None
        if rows:
            delivered = True
            for row in rows:
                delivered = await self.notifications.dispatch(row) and delivered
            if delivered and sent_line:
                order.add_history(sent_line)
            elif not delivered and failed_line:
                errors = "; ".join(row.last_error for row in rows if row.last_error)
                order.add_history(f"{failed_line}: {errors}" if errors else failed_line)
            await self.session.commit()
            email_status = EMAIL_SENT if delivered else EMAIL_FAILED

        await reindex_order(order, self._es_client)
        return email_status

    @staticmethod
    def _check_version(order: Order, yard: Yard, expected: Optional[int]) -> None:
        if expected is not None and expected != yard.version:
            raise YardVersionConflictError(
                "Yard was modified by another user; reload and try again",
                order_no=order.order_no,
                yard_index=yard.position,
                expected_version=expected,
                current_version=yard.version,
            )

    async def _load_yard(
        self, order_no: str, yard_index: int, expected_version: Optional[int] = None
    ) -> tuple[Order, Yard]:
        order = await self.repository.get_order(order_no)
        yard = self.repository.get_yard(order, yard_index)
        self._check_version(order, yard, expected_version)
        return order, yard

    @staticmethod
    def _refresh_actual_gp(order: Order) -> None:
        order.actual_gp = compute_actual_gp(order)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def create_order(self, request: OrderCreateRequest, first_name: str) -> Order:
        """
        Create an order.

        Raises:
            DuplicateOrderError: If the order number already exists
        """
        first_name = clean_first_name(first_name, "System")
        order = await self.repository.create_order(request.model_dump())
        order.order_history = [history_line("Order placed", first_name)]
        await self._commit(order)
        logger.info("Order placed", order_no=order.order_no, sales_agent=order.sales_agent)
        return order

    async def get_order(self, order_no: str) -> Order:
        return await self.repository.get_order(order_no)

    async def update_order(
        self, order_no: str, request: OrderUpdateRequest, first_name: str
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "System")
        order = await self.repository.get_order(order_no)
        updates = request.model_dump(exclude_unset=True)

        before = _snapshot(order, updates)
        for field, value in updates.items():
            setattr(order, field, value)
        changed = diff_fields(before, _snapshot(order, updates), updates)

        if PRICING_FIELDS.intersection(changed):
            order.gross_profit = order.compute_gross_profit()
        if PRICING_FIELDS.intersection(changed) or "order_status" in changed:
            self._refresh_actual_gp(order)

        if changed:
            labels = ", ".join(human_label(field) for field in changed)
            order.add_history(history_line(f"Order updated ({labels})", first_name))
        await self._commit(order)

        message = (
            f"Order {order.order_no} updated successfully"
            if changed
            else "No meaningful changes detected"
        )
        return WorkflowResult(message, order)

    # ------------------------------------------------------------------
    # Yards
    # ------------------------------------------------------------------

    async def add_yard(
        self, order_no: str, request: YardCreateRequest, first_name: str
    ) -> WorkflowResult:
        """
        Attach a new yard to an order.

        Raises:
            OrderValidationError: If both own and yard shipping are given
        """
        first_name = clean_first_name(first_name, "System")
        if request.own_shipping is not None and request.yard_shipping is not None:
            raise OrderValidationError(
                "Provide either ownShipping or yardShipping, not both.",
                order_no=order_no,
            )

        order = await self.repository.get_order(order_no)
        data = request.model_dump(
            exclude={"own_shipping", "yard_shipping", "shipping_details", "order_status"}
        )
        data["shipping_details"] = request.shipping_details or format_shipping_details(
            request.own_shipping, request.yard_shipping
        )
        if not data.get("address"):
            parts = (request.street, request.city, request.state, request.zipcode)
            data["address"] = " ".join(p for p in parts if p) or None

        yard = await self.repository.add_yard(order, data)
        order.order_status = request.order_status or yard.status.order_status
        order.add_history(history_line(f"Yard {yard.position} Located", first_name))
        self._refresh_actual_gp(order)
        await self._commit(order)

        return WorkflowResult(f"Yard {yard.position} added successfully", order)

    async def edit_yard(
        self,
        order_no: str,
        yard_index: int,
        request: YardEditRequest,
        first_name: str,
    ) -> WorkflowResult:
        """Edit contact and pricing details of a yard, noting what changed."""
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index, request.expected_version)

        updates = request.model_dump(
            exclude_unset=True,
            exclude={"expected_version", "own_shipping", "yard_shipping"},
        )
        shipping_fields = request.model_fields_set & {"own_shipping", "yard_shipping"}
        if shipping_fields:
            if request.own_shipping is not None and request.yard_shipping is not None:
                raise OrderValidationError(
                    "Provide either ownShipping or yardShipping, not both.",
                    order_no=order_no,
                    yard_index=yard_index,
                )
            updates["shipping_details"] = format_shipping_details(
                request.own_shipping, request.yard_shipping
            )

        now = utcnow()
        before = _snapshot(yard, updates)
        for field, value in updates.items():
            setattr(yard, field, value)
        changed = diff_fields(before, _snapshot(yard, updates), updates)

        for message in change_notes(before, _snapshot(yard, updates), changed):
            yard.add_note(format_note(first_name, message, now))
        if {"part_price", "shipping_details", "others"}.intersection(changed):
            self._refresh_actual_gp(order)
        await self._commit(order)

        message = (
            f"Yard {yard_index} updated successfully"
            if changed
            else "No meaningful changes detected"
        )
        return WorkflowResult(message, order)

    async def update_yard(
        self,
        order_no: str,
        yard_index: int,
        request: YardUpdateRequest,
        first_name: str,
    ) -> WorkflowResult:
        """
        Apply one yard intent: label void, escalation save or status update.

        Raises:
            YardVersionConflictError: If ``expectedVersion`` is stale
            StateTransitionError: If the status change is not allowed
            YardValidationError: If required fields are missing
        """
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index, request.expected_version)

        if request.void_label:
            return await self._void_label(order, yard, yard_index, first_name)
        if request.escalation is not None:
            self._save_escalation(order, yard, yard_index, request.escalation, first_name)
            await self._commit(order)
            return WorkflowResult(f"Yard {yard_index} escalation saved", order)
        return await self._update_status(order, yard, yard_index, request, first_name)

    async def _update_status(
        self,
        order: Order,
        yard: Yard,
        yard_index: int,
        request: YardUpdateRequest,
        first_name: str,
    ) -> WorkflowResult:
        now = utcnow()
        target = request.status
        previous = yard.status
        fields = {
            attr: getattr(request, attr)
            for attr in ("tracking_no", "eta", "shipper_name", "tracking_link", "escalation_cause")
            if getattr(request, attr) is not None
        }

        derived = self.state_machine.apply_transition(yard, target, fields, now)
        order.order_status = request.order_status or derived
        status_changed = previous != target

        if status_changed:
            order.add_history(
                history_line(f"Yard {yard_index} status updated to {target.value}", first_name, now)
            )
            if target == YardStatus.ESCALATION and yard.escalation_cause is not None:
                yard.add_note(
                    format_note(
                        first_name, f'Escalation Reason: "{yard.escalation_cause.value}"', now
                    )
                )

        rows: list[EmailOutbox] = []
        sent_line = failed_line = None
        if status_changed and target in STATUS_EMAILS:
            builder, label = STATUS_EMAILS[target]
            sent_line = (
                f"Yard {yard_index} marked as {target.value} "
                f"({label} email sent by {first_name}) on {format_stamp(now)}"
            )
            try:
                rows.append(
                    await getattr(self.notifications, builder)(order, yard_index, yard, first_name)
                )
            except NotificationServiceError as e:
                logger.warning(
                    "Status email could not be queued",
                    order_no=order.order_no,
                    yard_index=yard_index,
                    status=target.value,
                    error=str(e),
                )
                order.add_history(f"Failed to send {label} email for Yard {yard_index}: {e}")
                await self._commit(order)
                return WorkflowResult(
                    f"Yard {yard_index} status updated to {target.value}, but email failed",
                    order,
                    EMAIL_FAILED,
                )
            failed_line = f"Failed to send {label} email for Yard {yard_index}"

        email_status = await self._commit(order, rows, sent_line, failed_line)

        message = f"Yard {yard_index} status updated to {target.value}"
        if email_status == EMAIL_SENT:
            message += ", email sent"
        elif email_status == EMAIL_FAILED:
            message += ", but email failed"
        return WorkflowResult(message, order, email_status)

    def _reset_to_po_sent(self, order: Order, yard: Yard) -> dict[str, Any]:
        """Clear the label fields and put the yard back to Yard PO Sent."""
        cleared = {
            field: getattr(yard, field) for field in LABEL_FIELDS if _is_set(getattr(yard, field))
        }
        for field in LABEL_FIELDS:
            setattr(yard, field, "")
        yard.status = YardStatus.YARD_PO_SENT
        order.order_status = OrderStatus.YARD_PROCESSING
        return cleared

    @staticmethod
    def _record_label(yard: Yard, leg: str, cleared: dict[str, Any], first_name: str, now: datetime) -> None:
        if not cleared:
            return
        entry = {wire_name(field): _json_value(value) for field, value in cleared.items()}
        entry.update(leg=leg, voidedAt=now.isoformat(), voidedBy=first_name)
        yard.label_history = [*(yard.label_history or []), entry]

    async def _void_label(
        self, order: Order, yard: Yard, yard_index: int, first_name: str
    ) -> WorkflowResult:
        if yard.status != YardStatus.LABEL_CREATED:
            raise StateTransitionError(
                "Label can only be voided while the yard is in Label created",
                current_state=yard.status,
                target_state=YardStatus.YARD_PO_SENT,
                order_no=order.order_no,
                yard_index=yard_index,
            )

        now = utcnow()
        cleared = self._reset_to_po_sent(order, yard)
        yard.label_voided_date = now
        self._record_label(yard, "label", cleared, first_name, now)

        detail = f"Cleared → {cleared_summary(cleared)}" if cleared else "(No label details found)"
        yard.add_note(format_note(first_name, f"Label voided. {detail}", now))
        order.add_history(history_line(f"Yard {yard_index} label voided", first_name, now))
        self._refresh_actual_gp(order)
        await self._commit(order)

        logger.info("Label voided", order_no=order.order_no, yard_index=yard_index)
        return WorkflowResult(f"Yard {yard_index} label voided", order)

    async def cancel_shipment(
        self,
        order_no: str,
        yard_index: int,
        first_name: str,
        expected_version: Optional[int] = None,
    ) -> WorkflowResult:
        """
        Cancel a shipped part and return the yard to Yard PO Sent.

        Raises:
            StateTransitionError: If the yard is not in Part shipped
        """
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index, expected_version)
        if yard.status != YardStatus.PART_SHIPPED:
            raise StateTransitionError(
                "Shipment can only be cancelled while the yard is in Part shipped",
                current_state=yard.status,
                target_state=YardStatus.YARD_PO_SENT,
                order_no=order_no,
                yard_index=yard_index,
            )

        now = utcnow()
        cleared = self._reset_to_po_sent(order, yard)
        yard.shipment_cancelled_date = now
        self._record_label(yard, "shipment", cleared, first_name, now)

        detail = f"Cleared → {cleared_summary(cleared)}" if cleared else "(No tracking details found)"
        yard.add_note(format_note(first_name, f"Shipment cancelled. {detail}", now))
        order.add_history(history_line(f"Yard {yard_index} shipment cancelled", first_name, now))
        self._refresh_actual_gp(order)
        await self._commit(order)

        return WorkflowResult(f"Yard {yard_index} shipment cancelled", order)

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    def _save_escalation(
        self, order: Order, yard: Yard, yard_index: int, state, first_name: str
    ) -> None:
        errors = validate_escalation(state)
        if errors:
            raise YardValidationError(
                " ".join(errors),
                fields=errors,
                order_no=order.order_no,
                yard_index=yard_index,
            )

        now = utcnow()
        fields = shape_escalation(state)
        before = _snapshot(yard, fields)
        previous = yard.status

        self.state_machine.apply_transition(yard, YardStatus.ESCALATION, fields, now)
        yard.esc_ticked = "Yes"
        if yard.escalation_date is None:
            yard.escalation_date = now
        if order.order_status != OrderStatus.ESCALATION:
            order.order_status = OrderStatus.ESCALATION

        after = _snapshot(yard, fields)
        for message in change_notes(before, after, diff_fields(before, after, fields)):
            yard.add_note(format_note(first_name, message, now))
        if previous != YardStatus.ESCALATION:
            order.add_history(
                history_line(f"Yard {yard_index} status updated to Escalation", first_name, now)
            )
        self._refresh_actual_gp(order)

    async def void_leg(
        self, order_no: str, yard_index: int, leg: str, first_name: str
    ) -> WorkflowResult:
        """
        Void one escalation leg's label, leaving the other legs untouched.

        Args:
            leg: ``customer``, ``yard`` or ``return``
        """
        if leg not in VOIDABLE_LEG_FIELDS:
            raise OrderValidationError(f"Unknown escalation leg: {leg}", leg=leg)

        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index)
        now = utcnow()

        fields = VOIDABLE_LEG_FIELDS[leg]
        cleared = {field: getattr(yard, field) for field in fields if _is_set(getattr(yard, field))}
        for field in fields:
            setattr(yard, field, blank_value(field))
        self._record_label(yard, leg, cleared, first_name, now)

        title = LEG_TITLES[leg]
        detail = f"Cleared → {cleared_summary(cleared)}" if cleared else "(No label details found)"
        yard.add_note(format_note(first_name, f"{title} label voided. {detail}", now))
        self._refresh_actual_gp(order)
        await self._commit(order)

        return WorkflowResult(f"{title} label voided for Yard {yard_index}", order)

    # ------------------------------------------------------------------
    # Payment, refund and store credit
    # ------------------------------------------------------------------

    async def update_payment_status(
        self,
        order_no: str,
        yard_index: int,
        request: PaymentStatusRequest,
        first_name: str,
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index, request.expected_version)
        now = utcnow()

        yard.payment_status = request.payment_status
        if request.payment_status == PaymentStatus.CARD_CHARGED:
            yard.card_charged_date = request.card_charged_date or now
        else:
            yard.card_charged_date = request.card_charged_date

        order.add_history(
            history_line(
                f"Yard {yard_index} payment status set to {request.payment_status.value}",
                first_name,
                now,
            )
        )
        self._refresh_actual_gp(order)
        await self._commit(order)
        return WorkflowResult("Yard payment status updated successfully", order)

    async def update_refund_status(
        self,
        order_no: str,
        yard_index: int,
        request: RefundStatusRequest,
        first_name: str,
    ) -> WorkflowResult:
        """
        Update a yard's refund fields and refund flags.

        At most one of the collect-refund, UPS-claim and store-credit flags
        may be ticked; ticking one unticks the others.

        Raises:
            OrderValidationError: If more than one flag is ticked
            YardValidationError: If Refund collected lacks amount or date
        """
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index, request.expected_version)

        ticked = [
            field for field in CHECKBOX_FIELDS if getattr(request, field) == CheckboxState.TICKED
        ]
        if len(ticked) > 1:
            raise OrderValidationError(
                "Only one of collectRefundCheckbox, upsClaimCheckbox or "
                "storeCreditCheckbox can be ticked.",
                fields=[wire_name(f) for f in ticked],
            )

        provided = request.model_dump(exclude_unset=True, exclude={"expected_version"})
        updates: dict[str, Any] = {
            field: provided[field]
            for field in ("refund_to_collect", "refund_reason", "refunded_amount", "refunded_date")
            if field in provided
        }

        if ticked:
            updates.update({field: CheckboxState.UNTICKED for field in CHECKBOX_FIELDS})
            updates[ticked[0]] = CheckboxState.TICKED
        else:
            updates.update({f: provided[f] for f in CHECKBOX_FIELDS if provided.get(f) is not None})

        if request.refund_status == RefundStatus.REFUND_COLLECTED:
            amount = updates.get("refunded_amount", yard.refunded_amount)
            date = updates.get("refunded_date", yard.refunded_date)
            missing = [
                name
                for name, value in (("refundedAmount", amount), ("refundedDate", date))
                if value is None
            ]
            if missing:
                raise YardValidationError(
                    f"Missing required fields for Refund collected: {', '.join(missing)}",
                    fields=missing,
                )
            updates["collect_refund_checkbox"] = CheckboxState.UNTICKED
            updates["ups_claim_checkbox"] = CheckboxState.UNTICKED
        elif request.refund_status == RefundStatus.REFUND_NOT_COLLECTED:
            updates["refunded_amount"] = Decimal("0")
        if request.refund_status is not None:
            updates["refund_status"] = request.refund_status

        now = utcnow()
        before = _snapshot(yard, REFUND_FIELDS)
        for field, value in updates.items():
            setattr(yard, field, value)
        yard.store_credit = (
            yard.refunded_amount
            if yard.store_credit_checkbox == CheckboxState.TICKED
            else None
        )

        after = _snapshot(yard, REFUND_FIELDS)
        for message in change_notes(before, after, diff_fields(before, after, REFUND_FIELDS)):
            yard.add_note(format_note(first_name, message, now))
        self._refresh_actual_gp(order)
        await self._commit(order)
        return WorkflowResult("Yard refund status updated successfully", order)

    async def store_credits(self) -> list[dict[str, Any]]:
        """Yards holding store credit, one entry per yard."""
        return [
            {
                "order_no": order.order_no,
                "yard_index": yard.position,
                "yard_name": yard.yard_name,
                "store_credit": yard.store_credit,
                "refunded_date": yard.refunded_date,
            }
            for order, yard in await self.repository.list_store_credits()
        ]

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    @staticmethod
    def _note_text(request: NoteRequest) -> tuple[str, str]:
        note, author = request.note.strip(), request.author.strip()
        if not note or not author:
            raise OrderValidationError("Missing note, author, or timestamp.")
        return note, author

    async def add_yard_note(
        self, order_no: str, yard_index: int, request: NoteRequest
    ) -> list[str]:
        note, author = self._note_text(request)
        order, yard = await self._load_yard(order_no, yard_index)
        yard.add_note(format_note(clean_first_name(author, author), note))
        await self._commit(order)
        return list(yard.notes)

    async def add_support_note(self, order_no: str, request: NoteRequest) -> list[str]:
        note, author = self._note_text(request)
        order = await self.repository.get_order(order_no)
        order.support_notes = push_unique(
            order.support_notes, format_note(clean_first_name(author, author), note)
        )
        await self._commit(order)
        return list(order.support_notes)

    # ------------------------------------------------------------------
    # Order-level refund, dispute, cancellation
    # ------------------------------------------------------------------

    async def cust_refund(
        self,
        order_no: str,
        request: CustRefundRequest,
        first_name: str,
        attachment: Optional[Attachment] = None,
    ) -> WorkflowResult:
        """
        Record a customer refund, optionally e-mailing the receipt.

        The status becomes the requested one, else "Order Cancelled" when a
        cancellation date is given, else "Refunded" when an amount is given.
        """
        first_name = clean_first_name(first_name, "System")
        order = await self.repository.get_order(order_no)
        now = utcnow()
        amount = request.amount

        order.cust_refund_date = request.cust_refund_date or now
        if request.cust_ref_amount is not None:
            order.cust_ref_amount = request.cust_ref_amount
        if amount is not None:
            order.cust_refunded_amount = amount
        if request.cancelled_date is not None:
            order.cancelled_date = request.cancelled_date
        if request.cancellation_reason is not None:
            order.cancellation_reason = request.cancellation_reason

        if request.order_status is not None:
            order.order_status = request.order_status
        elif request.cancelled_date is not None:
            order.order_status = OrderStatus.ORDER_CANCELLED
        elif amount is not None:
            order.order_status = OrderStatus.REFUNDED

        action = f"Refund of ${amount:,.2f} recorded" if amount is not None else "Refund recorded"
        order.add_history(history_line(action, first_name, now))
        self._refresh_actual_gp(order)

        rows = []
        if attachment is not None:
            rows.append(
                await self.notifications.queue_refund_confirmation(
                    order, amount, first_name, attachment
                )
            )
        email_status = await self._commit(
            order,
            rows,
            sent_line=history_line("Refund confirmation email sent", first_name),
            failed_line="Failed to send refund confirmation email",
        )

        message = "Refund details saved successfully"
        if email_status == EMAIL_FAILED:
            message += ", but email failed"
        return WorkflowResult(message, order, email_status)

    async def dispute(
        self, order_no: str, request: DisputeRequest, first_name: str
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "System")
        order = await self.repository.get_order(order_no)
        now = utcnow()

        order.disputed_date = request.disputed_date or now
        order.dispute_reason = request.dispute_reason
        if request.disputed_ref_amount is not None:
            order.cust_refunded_amount = request.disputed_ref_amount
        order.order_status = OrderStatus.DISPUTE
        order.add_history(history_line("Order marked as Dispute", first_name, now))
        self._refresh_actual_gp(order)
        await self._commit(order)
        return WorkflowResult("Order marked as Dispute successfully.", order)

    async def cancel_only(
        self, order_no: str, request: CancelOnlyRequest, first_name: str
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "System")
        order = await self.repository.get_order(order_no)
        now = utcnow()

        order.cancelled_date = now
        order.cancellation_reason = request.cancellation_reason
        if request.cancelled_ref_amount is not None:
            order.cust_ref_amount = request.cancelled_ref_amount
        order.order_status = OrderStatus.ORDER_CANCELLED
        order.add_history(history_line("Order cancelled", first_name, now))
        self._refresh_actual_gp(order)
        await self._commit(order)
        return WorkflowResult("Order cancelled and saved successfully (no email sent).", order)

    async def refund_only(
        self, order_no: str, request: RefundOnlyRequest, first_name: str
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "System")
        order = await self.repository.get_order(order_no)
        now = utcnow()

        if request.cust_refunded_amount is not None:
            order.cust_refunded_amount = request.cust_refunded_amount
        order.cust_refund_date = now
        order.order_status = OrderStatus.REFUNDED
        order.add_history(history_line("Order refunded", first_name, now))
        self._refresh_actual_gp(order)
        await self._commit(order)
        return WorkflowResult("Refund saved successfully (no email sent).", order)

    async def reimbursement(
        self, order_no: str, request: ReimbursementRequest, first_name: str
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "System")
        order = await self.repository.get_order(order_no)
        now = utcnow()

        order.reimbursement_amount = request.reimbursement_amount
        order.reimbursement_date = request.reimbursement_date or now
        order.add_history(history_line("Reimbursement recorded", first_name, now))
        await self._commit(order)
        return WorkflowResult("Reimbursement details updated", order)

    async def update_actual_gp(
        self, order_no: str, request: ActualGPRequest, first_name: str
    ) -> WorkflowResult:
        """Set actual GP, or recompute it when no value is supplied."""
        first_name = clean_first_name(first_name, "System")
        order = await self.repository.get_order(order_no)

        value = request.actual_gp
        if value is None:
            value = compute_actual_gp(order)
        current = order.actual_gp

        if current is not None and abs(value - current) <= GP_TOLERANCE:
            return WorkflowResult("Actual GP unchanged", order)

        order.actual_gp = value
        order.add_history(history_line(f"Actual GP updated to {value:.2f}", first_name))
        await self._commit(order)
        return WorkflowResult(f"Actual GP updated to {value:.2f}", order)

    # ------------------------------------------------------------------
    # E-mail operations
    # ------------------------------------------------------------------

    async def _send(
        self, order: Order, row: EmailOutbox, label: str, first_name: str
    ) -> WorkflowResult:
        email_status = await self._commit(
            order,
            [row],
            sent_line=history_line(f"{label} email sent", first_name),
            failed_line=f"Failed to send {label} email",
        )
        if email_status == EMAIL_SENT:
            return WorkflowResult(f"{label} email sent successfully", order, email_status)
        return WorkflowResult(
            f"{label} email queued, but email failed", order, email_status
        )

    async def send_tracking_email(
        self, order_no: str, yard_index: int, first_name: str
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index)
        row = await self.notifications.queue_tracking(order, yard_index, yard, first_name)
        return await self._send(order, row, f"Yard {yard_index} tracking", first_name)

    async def send_delivery_email(
        self, order_no: str, yard_index: int, first_name: str
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index)
        row = await self.notifications.queue_delivery(order, yard_index, yard, first_name)
        return await self._send(order, row, f"Yard {yard_index} delivery", first_name)

    def _require_confirmation(self, confirm: bool, order_no: str) -> None:
        if not confirm:
            raise OrderValidationError(
                "Sending this email requires confirmation (confirm=true).",
                order_no=order_no,
            )

    async def _persist_escalation_first(
        self, order: Order, yard: Yard, yard_index: int, escalation, first_name: str
    ) -> None:
        if escalation is None:
            return
        self._save_escalation(order, yard, yard_index, escalation, first_name)
        await self._commit(order)

    async def send_replacement_email(
        self,
        order_no: str,
        yard_index: int,
        leg: ReplacementLeg,
        first_name: str,
        attachment: Optional[Attachment] = None,
        escalation=None,
        confirm: bool = False,
        expected_version: Optional[int] = None,
    ) -> WorkflowResult:
        """
        Persist the escalation state (when given), then e-mail one replacement leg.

        Raises:
            OrderValidationError: If the send was not confirmed
            NotificationValidationError: If the leg is not ready to e-mail
        """
        self._require_confirmation(confirm, order_no)
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index, expected_version)
        await self._persist_escalation_first(order, yard, yard_index, escalation, first_name)

        row = await self.notifications.queue_replacement(
            order, yard_index, yard, leg, first_name, attachment
        )
        label = "customer" if leg == ReplacementLeg.CUSTOMER else "yard"
        return await self._send(
            order, row, f"Yard {yard_index} replacement ({label})", first_name
        )

    async def send_return_email(
        self,
        order_no: str,
        yard_index: int,
        first_name: str,
        attachment: Optional[Attachment] = None,
        escalation=None,
        confirm: bool = False,
        expected_version: Optional[int] = None,
    ) -> WorkflowResult:
        self._require_confirmation(confirm, order_no)
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index, expected_version)
        await self._persist_escalation_first(order, yard, yard_index, escalation, first_name)

        row = await self.notifications.queue_return(order, yard_index, yard, first_name, attachment)
        return await self._send(order, row, f"Yard {yard_index} return", first_name)

    async def send_refund_confirmation(
        self,
        order_no: str,
        first_name: str,
        attachment: Optional[Attachment],
        amount: Optional[Decimal] = None,
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name)
        order = await self.repository.get_order(order_no)
        if amount is None:
            amount = (
                order.cust_refunded_amount
                if order.cust_refunded_amount is not None
                else order.cust_ref_amount
            )
        row = await self.notifications.queue_refund_confirmation(
            order, amount, first_name, attachment
        )
        return await self._send(order, row, "Refund confirmation", first_name)

    async def send_yard_refund_email(
        self,
        order_no: str,
        yard_index: int,
        first_name: str,
        attachment: Optional[Attachment],
        refund_to_collect: Optional[Decimal] = None,
        refund_reason: Optional[str] = None,
        return_tracking: str = "",
    ) -> WorkflowResult:
        """Ask the yard to refund; amount and reason are saved onto the yard first."""
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index)
        if refund_to_collect is not None:
            yard.refund_to_collect = refund_to_collect
        if refund_reason is not None:
            yard.refund_reason = refund_reason

        row = await self.notifications.queue_yard_refund(
            order, yard_index, yard, first_name, attachment, return_tracking
        )
        return await self._send(order, row, f"Yard {yard_index} refund request", first_name)

    async def send_po_email(
        self,
        order_no: str,
        yard_index: int,
        first_name: str,
        attachments: Sequence[Attachment] = (),
    ) -> WorkflowResult:
        """
        E-mail the purchase order to the yard and move it to Yard PO Sent.

        A yard already past Yard located keeps its status; the PO is re-sent.
        """
        first_name = clean_first_name(first_name, "System")
        order, yard = await self._load_yard(order_no, yard_index)
        row = await self.notifications.queue_purchase_order(
            order, yard_index, yard, first_name, attachments
        )

        now = utcnow()
        if yard.status == YardStatus.YARD_LOCATED:
            order.order_status = self.state_machine.apply_transition(
                yard, YardStatus.YARD_PO_SENT, {}, now
            )
        order.add_history(f"Yard {yard_index} PO sent by {first_name} on {format_stamp(now)}")

        email_status = await self._commit(
            order, [row], failed_line=f"Failed to send PO email for Yard {yard_index}"
        )
        if email_status == EMAIL_SENT:
            return WorkflowResult(f"PO sent to Yard {yard_index}", order, email_status)
        return WorkflowResult(
            f"PO saved for Yard {yard_index}, but email failed", order, email_status
        )

    async def send_cancellation_email(
        self, order_no: str, first_name: str, amount: Optional[Decimal] = None
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "Team Member")
        order = await self.repository.get_order(order_no)
        row = await self.notifications.queue_cancellation(order, first_name, amount)
        return await self._send(order, row, "Cancellation", first_name)

    async def send_reimbursement_email(
        self, order_no: str, first_name: str, amount: Optional[Decimal] = None
    ) -> WorkflowResult:
        first_name = clean_first_name(first_name, "System")
        order = await self.repository.get_order(order_no)
        row = await self.notifications.queue_reimbursement(order, first_name, amount)
        return await self._send(order, row, "Reimbursement", first_name)


def get_order_service(session: AsyncSession) -> OrderService:
    """Factory function to create order service instance."""
    return OrderService(session)
