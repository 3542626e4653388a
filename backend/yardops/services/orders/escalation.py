"""Escalation payload shaping, validation and e-mail gating.

Everything here is pure: it maps an escalation variant to the full set of
yard columns and checks it, without touching the database. Columns that do
not apply to the chosen process or leg are always written blank ("" for text,
None for amounts) so stale leg data never survives a process change.
"""

from typing import Any, Dict, List, Optional

from yardops.schemas.orders import (
    CustomerReplacementLeg,
    JunkEscalation,
    ReplacementEscalation,
    ReturnEscalation,
    ReturnLeg,
    YardReplacementLeg,
)
from yardops.services.orders.enums import CustomerReason, EscalationProcess, ShippingMethod

CUSTOMER_LEG_FIELDS = (
    "cust_ship_to_rep",
    "customer_shipping_method_replacement",
    "cust_own_ship_replacement",
    "customer_shipper_replacement",
    "customer_tracking_number_replacement",
    "customer_eta_replacement",
    "cust_replacement_delivery",
)

YARD_LEG_FIELDS = (
    "yard_shipping_status",
    "yard_shipping_method",
    "yard_own_shipping",
    "yard_shipper",
    "yard_tracking_number",
    "yard_tracking_eta",
    "yard_tracking_link",
)

RETURN_LEG_FIELDS = (
    "cust_ship_to_ret",
    "customer_shipping_method_return",
    "cust_own_shipping_return",
    "customer_shipper_return",
    "return_tracking_cust",
    "cust_ret_part_eta",
    "cust_return_delivery",
)

AMOUNT_FIELDS = frozenset(
    {"cust_own_ship_replacement", "yard_own_shipping", "cust_own_shipping_return"}
)

# Fields cleared by the per-leg label void endpoints.
VOIDABLE_LEG_FIELDS: Dict[str, tuple] = {
    "customer": (
        "customer_tracking_number_replacement",
        "customer_eta_replacement",
        "customer_shipper_replacement",
        "customer_shipping_method_replacement",
        "cust_own_ship_replacement",
    ),
    "yard": (
        "yard_tracking_number",
        "yard_tracking_eta",
        "yard_shipper",
        "yard_shipping_method",
        "yard_own_shipping",
    ),
    "return": (
        "return_tracking_cust",
        "cust_ret_part_eta",
        "customer_shipper_return",
        "customer_shipping_method_return",
        "cust_own_shipping_return",
        "cust_return_delivery",
    ),
}


def blank_value(field: str) -> Any:
    return None if field in AMOUNT_FIELDS else ""


def _blank(fields) -> Dict[str, Any]:
    return {field: blank_value(field) for field in fields}


def _method_value(method: Optional[ShippingMethod]) -> str:
    return method.value if method is not None else ""


def _own_amount(method: Optional[ShippingMethod], amount):
    """Own-shipping amounts only survive when the leg uses own shipping."""
    return amount if method == ShippingMethod.OWN_SHIPPING else None


def _customer_leg_fields(leg: CustomerReplacementLeg) -> Dict[str, Any]:
    return {
        "cust_ship_to_rep": leg.ship_to,
        "customer_shipping_method_replacement": _method_value(leg.method),
        "cust_own_ship_replacement": _own_amount(leg.method, leg.own_shipping),
        "customer_shipper_replacement": leg.shipper,
        "customer_tracking_number_replacement": leg.tracking_number,
        "customer_eta_replacement": leg.eta,
        "cust_replacement_delivery": leg.delivery_status,
    }


def _yard_leg_fields(leg: YardReplacementLeg) -> Dict[str, Any]:
    return {
        "yard_shipping_status": leg.shipping_status,
        "yard_shipping_method": _method_value(leg.method),
        "yard_own_shipping": _own_amount(leg.method, leg.own_shipping),
        "yard_shipper": leg.shipper,
        "yard_tracking_number": leg.tracking_number,
        "yard_tracking_eta": leg.eta,
        "yard_tracking_link": leg.tracking_link,
    }


def _return_leg_fields(leg: ReturnLeg) -> Dict[str, Any]:
    return {
        "cust_ship_to_ret": leg.ship_to,
        "customer_shipping_method_return": _method_value(leg.method),
        "cust_own_shipping_return": _own_amount(leg.method, leg.own_shipping),
        "customer_shipper_return": leg.shipper,
        "return_tracking_cust": leg.tracking_number,
        "cust_ret_part_eta": leg.eta,
        "cust_return_delivery": leg.delivery_status,
    }


def shape_escalation(state) -> Dict[str, Any]:
    """
    Map an escalation variant to the complete set of escalation columns.

    Args:
        state: ReplacementEscalation, ReturnEscalation or JunkEscalation

    Returns:
        Dict keyed by yard attribute covering every escalation column

    Example:
        >>> fields = shape_escalation(ReplacementEscalation(
        ...     escalation_process="Replacement", cust_reason="Junked"))
        >>> fields["cust_ship_to_rep"], fields["return_tracking_cust"]
        ('', '')
    """
    fields: Dict[str, Any] = {
        "escalation_process": EscalationProcess(state.escalation_process),
        "escalation_cause": state.escalation_cause,
    }

    if isinstance(state, ReplacementEscalation):
        fields["cust_reason"] = state.cust_reason
        if state.cust_reason == CustomerReason.JUNKED:
            fields.update(_blank(CUSTOMER_LEG_FIELDS))
        else:
            fields.update(_customer_leg_fields(state.customer_leg))
        fields.update(_yard_leg_fields(state.yard_leg))
        fields.update(_blank(RETURN_LEG_FIELDS))
    elif isinstance(state, ReturnEscalation):
        fields["cust_reason"] = CustomerReason.NONE
        fields.update(_blank(CUSTOMER_LEG_FIELDS))
        fields.update(_blank(YARD_LEG_FIELDS))
        fields.update(_return_leg_fields(state.return_leg))
    elif isinstance(state, JunkEscalation):
        fields["cust_reason"] = CustomerReason.NONE
        fields.update(_blank(CUSTOMER_LEG_FIELDS))
        fields.update(_blank(YARD_LEG_FIELDS))
        fields.update(_blank(RETURN_LEG_FIELDS))
    else:
        raise TypeError(f"Unsupported escalation state: {type(state).__name__}")

    return fields


def _own_shipping_errors(leg, suffix: str = "") -> List[str]:
    if leg.method != ShippingMethod.OWN_SHIPPING:
        return []
    errors = []
    if leg.own_shipping is None:
        errors.append(f"Enter the own shipping value{suffix} before saving.")
    if not leg.shipper:
        errors.append(f"Select the shipper name{suffix} before saving.")
    if not leg.tracking_number:
        errors.append(f"Enter the tracking number{suffix} before saving.")
    return errors


def validate_escalation(state) -> List[str]:
    """
    Return the human-readable problems that block saving ``state``.

    An empty list means the escalation can be saved.
    """
    errors: List[str] = []
    if state.escalation_cause is None:
        errors.append("Escalation reason is required.")

    if isinstance(state, ReplacementEscalation):
        if state.cust_reason != CustomerReason.JUNKED:
            errors.extend(_own_shipping_errors(state.customer_leg))
        errors.extend(_own_shipping_errors(state.yard_leg, " for the yard shipment"))
    elif isinstance(state, ReturnEscalation):
        errors.extend(_own_shipping_errors(state.return_leg, " for the return"))

    return errors


# ============================================================================
# E-mail gating
# ============================================================================


def customer_replacement_email_errors(yard, has_attachment: bool) -> List[str]:
    """Problems blocking the Part-from-Customer replacement e-mail."""
    if yard.cust_reason == CustomerReason.JUNKED:
        return ["Customer part was junked; no return shipment to request."]
    errors = []
    method = yard.customer_shipping_method_replacement
    if not method:
        errors.append("Select the customer shipping method.")
    if not (yard.cust_ship_to_rep or "").strip():
        errors.append("Enter the ship-to address.")
    if method in (ShippingMethod.OWN_SHIPPING.value, ShippingMethod.YARD_SHIPPING.value):
        if not has_attachment:
            errors.append("Attach the required document (pdfFile).")
    return errors


def yard_replacement_email_errors(yard) -> List[str]:
    """Problems blocking the Part-from-Yard (replacement tracking) e-mail."""
    required = (
        ("yard_shipping_status", "shipping status"),
        ("yard_shipping_method", "shipping method"),
        ("yard_shipper", "shipper"),
        ("yard_tracking_number", "tracking number"),
        ("yard_tracking_eta", "ETA"),
    )
    missing = [label for attr, label in required if not (getattr(yard, attr) or "").strip()]
    if missing:
        return [f"Yard replacement leg is missing: {', '.join(missing)}."]
    return []


def return_email_errors(yard, has_attachment: bool) -> List[str]:
    """Problems blocking the return-instructions e-mail."""
    errors = []
    if not (yard.cust_ship_to_ret or "").strip():
        errors.append("Enter the return address.")
    if (
        yard.customer_shipping_method_return == ShippingMethod.OWN_SHIPPING.value
        and not has_attachment
    ):
        errors.append("Attach the required document (pdfFile).")
    return errors
