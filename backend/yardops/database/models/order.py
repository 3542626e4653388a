"""
Order and yard models for the parts brokerage workflow.

An order is keyed by its human order number and owns an ordered list of
yards, one per supplier attempt. Yards are addressed by 1-based position and
carry their own version stamp so concurrent edits of the same yard conflict
instead of overwriting each other.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Type

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from yardops.database.base import BaseModel, create_table_args
from yardops.services.orders.enums import (
    CheckboxState,
    CustomerReason,
    EscalationCause,
    EscalationProcess,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    YardStatus,
)


def enum_type(enum_cls: Type[Enum], name: str) -> SQLEnum:
    """Store enum display values (not member names) as plain strings."""
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
        length=64,
    )


def money() -> Numeric:
    return Numeric(12, 2)


class Order(BaseModel):
    """
    Customer order.

    ``gross_profit`` is the quoted margin (sold - cost - shipping - tax);
    ``actual_gp`` is recomputed from what the yards were actually charged.
    ``order_history`` and ``support_notes`` are append-only lists of
    human-readable lines.
    """

    __tablename__ = "orders"

    order_no: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Human order number",
    )
    order_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the order was placed",
    )

    # Customer
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))
    f_name: Mapped[Optional[str]] = mapped_column(String(120))
    l_name: Mapped[Optional[str]] = mapped_column(String(120))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(64))
    sales_agent: Mapped[Optional[str]] = mapped_column(String(120), index=True)
    billing: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    shipping: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    # Vehicle and part
    year: Mapped[Optional[str]] = mapped_column(String(8))
    make: Mapped[Optional[str]] = mapped_column(String(64))
    model: Mapped[Optional[str]] = mapped_column(String(64))
    part_required: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    part_no: Mapped[Optional[str]] = mapped_column(String(120))
    vin: Mapped[Optional[str]] = mapped_column(String(32))
    warranty: Mapped[Optional[int]] = mapped_column(Integer)

    # Pricing
    sold_price: Mapped[Decimal] = mapped_column(money(), nullable=False, default=Decimal("0"))
    cost_price: Mapped[Decimal] = mapped_column(money(), nullable=False, default=Decimal("0"))
    shipping_fee: Mapped[Decimal] = mapped_column(money(), nullable=False, default=Decimal("0"))
    sales_tax: Mapped[Decimal] = mapped_column(money(), nullable=False, default=Decimal("0"))
    gross_profit: Mapped[Decimal] = mapped_column(money(), nullable=False, default=Decimal("0"))
    actual_gp: Mapped[Optional[Decimal]] = mapped_column(money())

    order_status: Mapped[OrderStatus] = mapped_column(
        enum_type(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PLACED,
        comment="Dashboard order status",
    )

    # Refund, cancellation, dispute, reimbursement
    cust_ref_amount: Mapped[Optional[Decimal]] = mapped_column(money())
    cust_refund_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cust_refunded_amount: Mapped[Optional[Decimal]] = mapped_column(money())
    cancelled_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    disputed_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    dispute_reason: Mapped[Optional[str]] = mapped_column(Text)
    reimbursement_amount: Mapped[Optional[Decimal]] = mapped_column(money())
    reimbursement_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    order_history: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    support_notes: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)

    yards: Mapped[list["Yard"]] = relationship(
        "Yard",
        back_populates="order",
        order_by="Yard.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = create_table_args(
        UniqueConstraint("order_no", name="uq_orders_order_no"),
        Index("idx_orders_order_date", "order_date"),
        Index("idx_orders_status_date", "order_status", "order_date"),
        Index("idx_orders_cancelled_date", "cancelled_date"),
        Index("idx_orders_refund_date", "cust_refund_date"),
        Index("idx_orders_disputed_date", "disputed_date"),
        comment="Customer part orders",
    )

    def compute_gross_profit(self) -> Decimal:
        """Quoted margin: sold price less cost, shipping and tax."""
        return (
            (self.sold_price or Decimal("0"))
            - (self.cost_price or Decimal("0"))
            - (self.shipping_fee or Decimal("0"))
            - (self.sales_tax or Decimal("0"))
        )

    def yard_at(self, yard_index: int) -> Optional["Yard"]:
        """Return the yard at a 1-based index, or None when out of range."""
        if yard_index < 1 or yard_index > len(self.yards):
            return None
        return self.yards[yard_index - 1]

    def add_history(self, line: str) -> None:
        self.order_history = [*(self.order_history or []), line]


class Yard(BaseModel):
    """
    One supplier attempt on an order.

    Leg fields for escalations are plain strings because the workflow blanks
    them to "" when a process or leg does not apply. Numeric own-shipping
    values are blanked to NULL.
    """

    __tablename__ = "yards"

    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="1-based index of the yard within its order",
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Optimistic concurrency stamp",
    )

    # Contact
    yard_name: Mapped[str] = mapped_column(String(255), nullable=False)
    agent_name: Mapped[Optional[str]] = mapped_column(String(120))
    yard_rating: Mapped[Optional[str]] = mapped_column(String(32))
    phone: Mapped[Optional[str]] = mapped_column(String(64))
    alt_no: Mapped[Optional[str]] = mapped_column(String(64))
    ext: Mapped[Optional[str]] = mapped_column(String(16))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    street: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(120))
    state: Mapped[Optional[str]] = mapped_column(String(64))
    zipcode: Mapped[Optional[str]] = mapped_column(String(16))
    address: Mapped[Optional[str]] = mapped_column(Text)
    country: Mapped[Optional[str]] = mapped_column(String(64))
    stock_no: Mapped[Optional[str]] = mapped_column(String(120))
    warranty: Mapped[Optional[int]] = mapped_column(Integer)

    # Status
    status: Mapped[YardStatus] = mapped_column(
        enum_type(YardStatus, "yard_status"),
        nullable=False,
        default=YardStatus.YARD_LOCATED,
    )
    po_sent_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    po_cancelled_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    part_shipped_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    delivered_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    label_voided_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    shipment_cancelled_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Payment and pricing
    payment_status: Mapped[Optional[PaymentStatus]] = mapped_column(
        enum_type(PaymentStatus, "yard_payment_status")
    )
    card_charged_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    part_price: Mapped[Optional[Decimal]] = mapped_column(money())
    shipping_details: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    others: Mapped[Optional[Decimal]] = mapped_column(money())

    # Tracking
    tracking_no: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    eta: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    shipper_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    tracking_link: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Refund
    refund_status: Mapped[Optional[RefundStatus]] = mapped_column(
        enum_type(RefundStatus, "yard_refund_status")
    )
    refunded_amount: Mapped[Optional[Decimal]] = mapped_column(money())
    refunded_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refund_to_collect: Mapped[Optional[Decimal]] = mapped_column(money())
    refund_reason: Mapped[Optional[str]] = mapped_column(Text)
    store_credit: Mapped[Optional[Decimal]] = mapped_column(money())
    collect_refund_checkbox: Mapped[CheckboxState] = mapped_column(
        enum_type(CheckboxState, "checkbox_state"),
        nullable=False,
        default=CheckboxState.UNTICKED,
    )
    ups_claim_checkbox: Mapped[CheckboxState] = mapped_column(
        enum_type(CheckboxState, "checkbox_state"),
        nullable=False,
        default=CheckboxState.UNTICKED,
    )
    store_credit_checkbox: Mapped[CheckboxState] = mapped_column(
        enum_type(CheckboxState, "checkbox_state"),
        nullable=False,
        default=CheckboxState.UNTICKED,
    )

    # Escalation
    esc_ticked: Mapped[str] = mapped_column(String(8), nullable=False, default="")
    escalation_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    escalation_process: Mapped[Optional[EscalationProcess]] = mapped_column(
        enum_type(EscalationProcess, "escalation_process")
    )
    escalation_cause: Mapped[Optional[EscalationCause]] = mapped_column(
        enum_type(EscalationCause, "escalation_cause")
    )
    cust_reason: Mapped[CustomerReason] = mapped_column(
        enum_type(CustomerReason, "customer_reason"),
        nullable=False,
        default=CustomerReason.NONE,
    )

    # Replacement: part from customer
    cust_ship_to_rep: Mapped[str] = mapped_column(Text, nullable=False, default="")
    customer_shipping_method_replacement: Mapped[str] = mapped_column(
        String(32), nullable=False, default=""
    )
    cust_own_ship_replacement: Mapped[Optional[Decimal]] = mapped_column(money())
    customer_shipper_replacement: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    customer_tracking_number_replacement: Mapped[str] = mapped_column(
        String(120), nullable=False, default=""
    )
    customer_eta_replacement: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    cust_replacement_delivery: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    # Replacement: part from yard
    yard_shipping_status: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    yard_shipping_method: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    yard_own_shipping: Mapped[Optional[Decimal]] = mapped_column(money())
    yard_shipper: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    yard_tracking_number: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    yard_tracking_eta: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    yard_tracking_link: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Return
    cust_ship_to_ret: Mapped[str] = mapped_column(Text, nullable=False, default="")
    customer_shipping_method_return: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    cust_own_shipping_return: Mapped[Optional[Decimal]] = mapped_column(money())
    customer_shipper_return: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    return_tracking_cust: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    cust_ret_part_eta: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    cust_return_delivery: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    notes: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    label_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )

    order: Mapped[Order] = relationship("Order", back_populates="yards")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = create_table_args(
        UniqueConstraint("order_id", "position", name="uq_yards_order_position"),
        CheckConstraint("position >= 1", name="ck_yards_position_positive"),
        CheckConstraint(
            "(CASE WHEN collect_refund_checkbox = 'Ticked' THEN 1 ELSE 0 END"
            " + CASE WHEN ups_claim_checkbox = 'Ticked' THEN 1 ELSE 0 END"
            " + CASE WHEN store_credit_checkbox = 'Ticked' THEN 1 ELSE 0 END) <= 1",
            name="ck_yards_single_refund_flag",
        ),
        Index("idx_yards_tracking_no", "tracking_no"),
        Index("idx_yards_store_credit", "store_credit"),
        comment="Supplier attempts per order",
    )

    def add_note(self, note: str) -> bool:
        """Append a note unless it repeats the most recent one."""
        current = list(self.notes or [])
        if current and current[-1] == note:
            return False
        self.notes = [*current, note]
        return True
