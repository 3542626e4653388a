"""Order, yard and escalation enums for the fulfilment workflow.

Enum values are the exact labels the dashboard displays and stores, so they
are compared and persisted verbatim.
"""

from enum import Enum
from typing import Dict


class OrderStatus(str, Enum):
    """Order level status shown on the dashboard."""

    PLACED = "Placed"
    CUSTOMER_APPROVED = "Customer Approved"
    YARD_PROCESSING = "Yard Processing"
    IN_TRANSIT = "In Transit"
    ESCALATION = "Escalation"
    ORDER_FULFILLED = "Order Fulfilled"
    ORDER_CANCELLED = "Order Cancelled"
    REFUNDED = "Refunded"
    DISPUTE = "Dispute"
    VOIDED = "Voided"
    PARTIALLY_CHARGED = "Partially charged order"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert a display label to OrderStatus.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value)
        except ValueError:
            valid_values = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Invalid order status: {value}. Valid values are: {valid_values}"
            )


class YardStatus(str, Enum):
    """Fulfilment status of one yard attempt.

    Valid transitions:
    - Yard located -> Yard PO Sent, Escalation
    - Yard PO Sent -> Label created, PO cancelled, Escalation
    - Label created -> Part shipped, PO cancelled, Escalation
      (label void returns to Yard PO Sent)
    - Part shipped -> Part delivered, Escalation
      (shipment cancel returns to Yard PO Sent)
    - Part delivered -> Escalation
    - Escalation -> Yard PO Sent, Label created, Part shipped, Part delivered
      (escTicked stays "Yes")
    - PO cancelled -> (stable)
    """

    YARD_LOCATED = "Yard located"
    YARD_PO_SENT = "Yard PO Sent"
    LABEL_CREATED = "Label created"
    PO_CANCELLED = "PO cancelled"
    PART_SHIPPED = "Part shipped"
    PART_DELIVERED = "Part delivered"
    ESCALATION = "Escalation"

    @classmethod
    def from_string(cls, value: str) -> "YardStatus":
        try:
            return cls(value)
        except ValueError:
            valid_values = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Invalid yard status: {value}. Valid values are: {valid_values}"
            )

    @property
    def order_status(self) -> OrderStatus:
        """Order level status derived from this yard status."""
        return ORDER_STATUS_MAP[self]


ORDER_STATUS_MAP: Dict[YardStatus, OrderStatus] = {
    YardStatus.YARD_LOCATED: OrderStatus.YARD_PROCESSING,
    YardStatus.YARD_PO_SENT: OrderStatus.YARD_PROCESSING,
    YardStatus.LABEL_CREATED: OrderStatus.YARD_PROCESSING,
    YardStatus.PO_CANCELLED: OrderStatus.YARD_PROCESSING,
    YardStatus.PART_SHIPPED: OrderStatus.IN_TRANSIT,
    YardStatus.PART_DELIVERED: OrderStatus.ORDER_FULFILLED,
    YardStatus.ESCALATION: OrderStatus.ESCALATION,
}


class PaymentStatus(str, Enum):
    CARD_CHARGED = "Card charged"
    CARD_NOT_CHARGED = "Card not charged"


class RefundStatus(str, Enum):
    REFUND_COLLECTED = "Refund collected"
    REFUND_NOT_COLLECTED = "Refund not collected"


class CheckboxState(str, Enum):
    TICKED = "Ticked"
    UNTICKED = "Unticked"


class EscalationProcess(str, Enum):
    REPLACEMENT = "Replacement"
    RETURN = "Return"
    JUNK = "Junk"


class EscalationCause(str, Enum):
    DAMAGED = "Damaged"
    DEFECTIVE = "Defective"
    INCORRECT = "Incorrect"
    NOT_PROGRAMMING = "Not programming"
    PERSONAL_REASON = "Personal reason"
    OTHER = "Other"


class CustomerReason(str, Enum):
    """Disposition of the customer's part during a replacement."""

    NONE = ""
    JUNKED = "Junked"
    RETURN = "Return"


class ShippingMethod(str, Enum):
    CUSTOMER_SHIPPING = "Customer shipping"
    OWN_SHIPPING = "Own shipping"
    YARD_SHIPPING = "Yard shipping"


class ReplacementLeg(str, Enum):
    """Direction of a replacement shipment."""

    CUSTOMER = "customer"
    YARD = "yard"


class EmailKind(str, Enum):
    """Kinds of transactional e-mail sent from the workflow."""

    TRACKING = "tracking"
    DELIVERY = "delivery"
    REPLACEMENT_CUSTOMER = "replacement-customer"
    REPLACEMENT_YARD = "replacement-yard"
    RETURN = "return"
    REFUND_CONFIRMATION = "refund-confirmation"
    YARD_REFUND_REQUEST = "yard-refund-request"
    PURCHASE_ORDER = "purchase-order"
    CANCELLATION = "cancellation"
    REIMBURSEMENT = "reimbursement"
