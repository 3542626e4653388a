"""
Order and yard Pydantic schemas for API request/response validation.

Wire names are the camelCase keys the dashboard has always used (``soldP``,
``custreplacementDelivery``); Python attributes are snake_case and match the
ORM columns so payloads can be applied to models directly.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from yardops.services.orders.enums import (
    CheckboxState,
    CustomerReason,
    EscalationCause,
    EscalationProcess,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ShippingMethod,
    YardStatus,
)


class WireModel(BaseModel):
    """Base for camelCase request and response bodies."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        from_attributes=True,
    )


# ============================================================================
# Orders
# ============================================================================


class OrderCreateRequest(WireModel):
    """New order as entered on the Add Order page."""

    order_no: str = Field(..., min_length=1, max_length=64)
    order_date: datetime
    customer_name: Optional[str] = None
    f_name: Optional[str] = None
    l_name: Optional[str] = None
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = None
    sales_agent: Optional[str] = None
    billing: dict[str, Any] = Field(default_factory=dict)
    shipping: dict[str, Any] = Field(default_factory=dict)
    year: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    part_required: Optional[str] = Field(None, alias="pReq")
    description: Optional[str] = Field(None, alias="desc")
    part_no: Optional[str] = None
    vin: Optional[str] = Field(None, max_length=32)
    warranty: Optional[int] = Field(None, ge=0)
    sold_price: Decimal = Field(Decimal("0"), alias="soldP", ge=0)
    cost_price: Decimal = Field(Decimal("0"), alias="costP", ge=0)
    shipping_fee: Decimal = Field(Decimal("0"), ge=0)
    sales_tax: Decimal = Field(Decimal("0"), alias="salestax", ge=0)
    order_status: OrderStatus = OrderStatus.PLACED

    @field_validator("order_no")
    @classmethod
    def normalize_order_no(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v: Optional[str]) -> Optional[str]:
        if v and ("@" not in v or "." not in v.split("@")[-1]):
            raise ValueError("Invalid email format")
        return v.lower() if v else v

    @model_validator(mode="after")
    def fill_customer_name(self) -> "OrderCreateRequest":
        if not self.customer_name:
            parts = [p for p in (self.f_name, self.l_name) if p]
            self.customer_name = " ".join(parts) or None
        return self


class OrderUpdateRequest(WireModel):
    """Partial order edit; only supplied fields are written."""

    customer_name: Optional[str] = None
    f_name: Optional[str] = None
    l_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    sales_agent: Optional[str] = None
    billing: Optional[dict[str, Any]] = None
    shipping: Optional[dict[str, Any]] = None
    year: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    part_required: Optional[str] = Field(None, alias="pReq")
    description: Optional[str] = Field(None, alias="desc")
    part_no: Optional[str] = None
    vin: Optional[str] = None
    warranty: Optional[int] = Field(None, ge=0)
    sold_price: Optional[Decimal] = Field(None, alias="soldP", ge=0)
    cost_price: Optional[Decimal] = Field(None, alias="costP", ge=0)
    shipping_fee: Optional[Decimal] = Field(None, ge=0)
    sales_tax: Optional[Decimal] = Field(None, alias="salestax", ge=0)
    order_status: Optional[OrderStatus] = None


class CustRefundRequest(WireModel):
    cust_refund_date: Optional[datetime] = None
    cust_refunded_amount: Optional[Decimal] = Field(None, ge=0)
    cust_ref_amount: Optional[Decimal] = Field(None, ge=0)
    cancelled_ref_amount: Optional[Decimal] = Field(None, ge=0)
    cancelled_date: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    order_status: Optional[OrderStatus] = None

    @property
    def amount(self) -> Optional[Decimal]:
        """First supplied of cancelled, requested and refunded amounts."""
        for value in (self.cancelled_ref_amount, self.cust_ref_amount, self.cust_refunded_amount):
            if value is not None:
                return value
        return None


class DisputeRequest(WireModel):
    disputed_date: Optional[datetime] = None
    dispute_reason: Optional[str] = None
    disputed_ref_amount: Optional[Decimal] = Field(None, ge=0)


class CancelOnlyRequest(WireModel):
    cancellation_reason: Optional[str] = None
    cancelled_ref_amount: Optional[Decimal] = Field(None, ge=0)


class RefundOnlyRequest(WireModel):
    cust_refunded_amount: Optional[Decimal] = Field(None, ge=0)


class ReimbursementRequest(WireModel):
    reimbursement_amount: Optional[Decimal] = Field(None, ge=0)
    reimbursement_date: Optional[datetime] = None


class ActualGPRequest(WireModel):
    """Omit ``actualGP`` to recompute it from the charged yards."""

    actual_gp: Optional[Decimal] = Field(None, alias="actualGP")


class NoteRequest(WireModel):
    note: str = Field("", max_length=5000)
    author: str = Field("", max_length=120)


class CancelShipmentRequest(WireModel):
    yard_index: int = Field(..., ge=1)
    expected_version: Optional[int] = None


# ============================================================================
# Yards
# ============================================================================


class YardCreateRequest(WireModel):
    """Attach a new supplier attempt to an order."""

    yard_name: str = Field(..., min_length=1, max_length=255)
    agent_name: Optional[str] = None
    yard_rating: Optional[str] = None
    phone: Optional[str] = None
    alt_no: Optional[str] = Field(None, alias="altPhone")
    ext: Optional[str] = None
    email: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    stock_no: Optional[str] = None
    warranty: Optional[int] = Field(None, ge=0)
    part_price: Optional[Decimal] = Field(None, ge=0)
    own_shipping: Optional[Decimal] = Field(None, ge=0)
    yard_shipping: Optional[Decimal] = Field(None, ge=0)
    shipping_details: Optional[str] = None
    others: Optional[Decimal] = Field(None, ge=0)
    status: YardStatus = YardStatus.YARD_LOCATED
    order_status: Optional[OrderStatus] = None


class YardEditRequest(WireModel):
    """Contact and pricing edits that do not change the yard's status."""

    yard_name: Optional[str] = Field(None, min_length=1, max_length=255)
    agent_name: Optional[str] = None
    yard_rating: Optional[str] = None
    phone: Optional[str] = None
    alt_no: Optional[str] = Field(None, alias="altPhone")
    ext: Optional[str] = None
    email: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    stock_no: Optional[str] = None
    warranty: Optional[int] = Field(None, ge=0)
    part_price: Optional[Decimal] = Field(None, ge=0)
    own_shipping: Optional[Decimal] = Field(None, ge=0)
    yard_shipping: Optional[Decimal] = Field(None, ge=0)
    others: Optional[Decimal] = Field(None, ge=0)
    expected_version: Optional[int] = None


class CustomerReplacementLeg(WireModel):
    """Replacement leg: customer ships the original part back."""

    ship_to: str = ""
    method: Optional[ShippingMethod] = None
    own_shipping: Optional[Decimal] = Field(None, ge=0)
    shipper: str = ""
    tracking_number: str = ""
    eta: str = ""
    delivery_status: str = ""


class YardReplacementLeg(WireModel):
    """Replacement leg: yard ships the replacement part to the customer."""

    shipping_status: str = ""
    method: Optional[ShippingMethod] = None
    own_shipping: Optional[Decimal] = Field(None, ge=0)
    shipper: str = ""
    tracking_number: str = ""
    eta: str = ""
    tracking_link: str = ""


class ReturnLeg(WireModel):
    """Return leg: customer ships the part back for a refund."""

    ship_to: str = ""
    method: Optional[ShippingMethod] = None
    own_shipping: Optional[Decimal] = Field(None, ge=0)
    shipper: str = ""
    tracking_number: str = ""
    eta: str = ""
    delivery_status: str = ""


class ReplacementEscalation(WireModel):
    escalation_process: Literal["Replacement"]
    escalation_cause: Optional[EscalationCause] = None
    cust_reason: CustomerReason = CustomerReason.NONE
    customer_leg: CustomerReplacementLeg = Field(default_factory=CustomerReplacementLeg)
    yard_leg: YardReplacementLeg = Field(default_factory=YardReplacementLeg)


class ReturnEscalation(WireModel):
    escalation_process: Literal["Return"]
    escalation_cause: Optional[EscalationCause] = None
    return_leg: ReturnLeg = Field(default_factory=ReturnLeg)


class JunkEscalation(WireModel):
    escalation_process: Literal["Junk"]
    escalation_cause: Optional[EscalationCause] = None


EscalationState = Annotated[
    Union[ReplacementEscalation, ReturnEscalation, JunkEscalation],
    Field(discriminator="escalation_process"),
]


class YardUpdateRequest(WireModel):
    """
    Body of ``PUT /orders/{orderNo}/additionalInfo/{yardIndex}``.

    Exactly one intent per request: ``voidLabel``, an ``escalation`` save, or
    a status update (with tracking fields where the status needs them).
    """

    status: Optional[YardStatus] = None
    tracking_no: Optional[str] = None
    eta: Optional[str] = None
    shipper_name: Optional[str] = None
    tracking_link: Optional[str] = None
    escalation_cause: Optional[EscalationCause] = None
    escalation: Optional[EscalationState] = None
    void_label: bool = False
    order_status: Optional[OrderStatus] = None
    expected_version: Optional[int] = None

    @model_validator(mode="after")
    def single_intent(self) -> "YardUpdateRequest":
        intents = [self.void_label, self.escalation is not None, self.status is not None]
        if sum(bool(i) for i in intents) > 1:
            raise ValueError("Send only one of voidLabel, escalation or status")
        if not any(intents):
            raise ValueError("One of voidLabel, escalation or status is required")
        return self


class PaymentStatusRequest(WireModel):
    payment_status: PaymentStatus
    card_charged_date: Optional[datetime] = None
    expected_version: Optional[int] = None


class RefundStatusRequest(WireModel):
    refund_status: Optional[RefundStatus] = None
    refunded_amount: Optional[Decimal] = Field(None, ge=0)
    refunded_date: Optional[datetime] = None
    refund_to_collect: Optional[Decimal] = Field(None, ge=0)
    refund_reason: Optional[str] = None
    collect_refund_checkbox: Optional[CheckboxState] = None
    ups_claim_checkbox: Optional[CheckboxState] = None
    store_credit_checkbox: Optional[CheckboxState] = None
    expected_version: Optional[int] = None


# ============================================================================
# Responses
# ============================================================================


class YardResponse(WireModel):
    position: int
    version: int
    yard_name: str
    agent_name: Optional[str] = None
    yard_rating: Optional[str] = None
    phone: Optional[str] = None
    alt_no: Optional[str] = Field(None, alias="altPhone")
    ext: Optional[str] = None
    email: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    stock_no: Optional[str] = None
    warranty: Optional[int] = None
    status: YardStatus
    po_sent_date: Optional[datetime] = None
    po_cancelled_date: Optional[datetime] = None
    part_shipped_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    label_voided_date: Optional[datetime] = None
    shipment_cancelled_date: Optional[datetime] = None
    payment_status: Optional[PaymentStatus] = None
    card_charged_date: Optional[datetime] = None
    part_price: Optional[Decimal] = None
    shipping_details: str = ""
    others: Optional[Decimal] = None
    tracking_no: str = ""
    eta: str = ""
    shipper_name: str = ""
    tracking_link: str = ""
    refund_status: Optional[RefundStatus] = None
    refunded_amount: Optional[Decimal] = None
    refunded_date: Optional[datetime] = None
    refund_to_collect: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    store_credit: Optional[Decimal] = None
    collect_refund_checkbox: CheckboxState
    ups_claim_checkbox: CheckboxState
    store_credit_checkbox: CheckboxState
    esc_ticked: str = ""
    escalation_date: Optional[datetime] = None
    escalation_process: Optional[EscalationProcess] = None
    escalation_cause: Optional[EscalationCause] = None
    cust_reason: CustomerReason = CustomerReason.NONE
    cust_ship_to_rep: str = ""
    customer_shipping_method_replacement: str = ""
    cust_own_ship_replacement: Optional[Decimal] = None
    customer_shipper_replacement: str = ""
    customer_tracking_number_replacement: str = ""
    customer_eta_replacement: str = Field("", alias="customerETAReplacement")
    cust_replacement_delivery: str = Field("", alias="custreplacementDelivery")
    yard_shipping_status: str = ""
    yard_shipping_method: str = ""
    yard_own_shipping: Optional[Decimal] = None
    yard_shipper: str = ""
    yard_tracking_number: str = ""
    yard_tracking_eta: str = Field("", alias="yardTrackingETA")
    yard_tracking_link: str = ""
    cust_ship_to_ret: str = ""
    customer_shipping_method_return: str = ""
    cust_own_shipping_return: Optional[Decimal] = None
    customer_shipper_return: str = ""
    return_tracking_cust: str = ""
    cust_ret_part_eta: str = Field("", alias="custretPartETA")
    cust_return_delivery: str = ""
    notes: list[str] = Field(default_factory=list)
    label_history: list[dict[str, Any]] = Field(default_factory=list)


class OrderResponse(WireModel):
    order_no: str
    order_date: datetime
    customer_name: Optional[str] = None
    f_name: Optional[str] = None
    l_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    sales_agent: Optional[str] = None
    billing: dict[str, Any] = Field(default_factory=dict)
    shipping: dict[str, Any] = Field(default_factory=dict)
    year: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    part_required: Optional[str] = Field(None, alias="pReq")
    description: Optional[str] = Field(None, alias="desc")
    part_no: Optional[str] = None
    vin: Optional[str] = None
    warranty: Optional[int] = None
    sold_price: Decimal = Field(..., alias="soldP")
    cost_price: Decimal = Field(..., alias="costP")
    shipping_fee: Decimal
    sales_tax: Decimal = Field(..., alias="salestax")
    gross_profit: Decimal = Field(..., alias="grossProfit")
    actual_gp: Optional[Decimal] = Field(None, alias="actualGP")
    order_status: OrderStatus
    cust_ref_amount: Optional[Decimal] = None
    cust_refund_date: Optional[datetime] = None
    cust_refunded_amount: Optional[Decimal] = None
    cancelled_date: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    disputed_date: Optional[datetime] = None
    dispute_reason: Optional[str] = None
    reimbursement_amount: Optional[Decimal] = None
    reimbursement_date: Optional[datetime] = None
    order_history: list[str] = Field(default_factory=list)
    support_notes: list[str] = Field(default_factory=list)
    yards: list[YardResponse] = Field(default_factory=list, alias="additionalInfo")


class OrderListResponse(WireModel):
    orders: list[OrderResponse]
    total_pages: int
    total_orders: int
    current_page: int
    start: datetime
    end: datetime


class WorkflowResponse(WireModel):
    """Result of a workflow action, with the e-mail outcome when one was sent."""

    message: str
    order: OrderResponse
    email_status: Optional[str] = None

    @classmethod
    def from_result(cls, result: Any) -> "WorkflowResponse":
        return cls(
            message=result.message,
            order=OrderResponse.model_validate(result.order),
            email_status=result.email_status,
        )


class NotesResponse(WireModel):
    message: str
    notes: list[str]


class StoreCreditEntry(WireModel):
    order_no: str
    yard_index: int
    yard_name: str
    store_credit: Decimal
    refunded_date: Optional[datetime] = None
