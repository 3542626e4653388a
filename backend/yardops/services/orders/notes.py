"""Formatting of yard notes, support notes and order history lines."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from yardops.core.timeutils import format_stamp

SECTION_ORDER = (
    "Replacement (Part from customer)",
    "Replacement (Part from yard)",
    "Return (Part from customer)",
    "General",
)

# Return prefixes are checked first: several return fields also start with "customer_".
_SECTION_PREFIXES = (
    (("cust_ship_to_ret", "customer_shipping_method_return", "cust_own_shipping_return",
      "customer_shipper_return", "return_tracking", "cust_ret", "cust_return"),
     "Return (Part from customer)"),
    (("cust_ship_to_rep", "customer_", "cust_own_ship_replacement", "cust_replacement"),
     "Replacement (Part from customer)"),
    (("yard_shipping", "yard_own", "yard_shipper", "yard_tracking"),
     "Replacement (Part from yard)"),
)

_LABEL_OVERRIDES = {
    "alt_no": "Alt. Phone",
    "eta": "ETA",
    "customer_eta_replacement": "Customer ETA (Replacement)",
    "yard_tracking_eta": "Yard Tracking ETA",
    "cust_ret_part_eta": "Return ETA",
    "cust_replacement_delivery": "Customer Replacement Delivery",
    "cust_own_ship_replacement": "Customer Own Shipping (Replacement)",
    "cust_own_shipping_return": "Customer Own Shipping (Return)",
    "cust_ship_to_rep": "Ship To (Replacement)",
    "cust_ship_to_ret": "Ship To (Return)",
}


def format_note(author: str, message: str, when: Optional[datetime] = None) -> str:
    """
    Format a note the way the dashboard displays it.

    Example:
        >>> format_note("Ana", "Called yard", when)
        'Ana, 3 Oct, 2025 14:05 : Called yard'
    """
    return f"{author}, {format_stamp(when)} : {message}"


def push_unique(entries: Optional[List[str]], entry: str) -> List[str]:
    """Return a new list with ``entry`` appended unless it repeats the last one."""
    current = list(entries or [])
    if current and current[-1] == entry:
        return current
    current.append(entry)
    return current


def history_line(action: str, first_name: str, when: Optional[datetime] = None) -> str:
    """``"{action} by {first_name} on {stamp}"``."""
    return f"{action} by {first_name} on {format_stamp(when)}"


def human_label(field: str) -> str:
    if field in _LABEL_OVERRIDES:
        return _LABEL_OVERRIDES[field]
    return " ".join(part.capitalize() for part in field.split("_"))


def categorize_field(field: str) -> str:
    for prefixes, section in _SECTION_PREFIXES:
        if field.startswith(prefixes):
            return section
    return "General"


def _display(value: Any) -> str:
    if value is None or value == "":
        return "—"
    if hasattr(value, "value"):
        value = value.value
    return str(value).strip()


def diff_fields(
    before: Mapping[str, Any], after: Mapping[str, Any], fields: Iterable[str]
) -> List[str]:
    """Fields whose displayed value differs between ``before`` and ``after``."""
    return [f for f in fields if _display(before.get(f)) != _display(after.get(f))]


def change_notes(
    before: Mapping[str, Any], after: Mapping[str, Any], changed: Iterable[str]
) -> List[str]:
    """
    Build one message per section describing changed fields.

    Each message starts with a header line followed by
    ``"  • Label: old → new"`` lines.
    """
    grouped: Dict[str, List[str]] = {}
    for field in changed:
        section = categorize_field(field)
        grouped.setdefault(section, []).append(
            f"{human_label(field)}: {_display(before.get(field))} → {_display(after.get(field))}"
        )

    messages = []
    for section in SECTION_ORDER:
        if section not in grouped:
            continue
        header = "Updated" if section == "General" else f"Updated • Escalation — {section}"
        messages.append("\n".join([header, *(f"  • {line}" for line in grouped[section])]))
    return messages


def cleared_summary(cleared: Mapping[str, Any]) -> str:
    """``"trackingNo: 1Z9, eta: 10/12"`` for the values removed by a void."""
    return ", ".join(f"{wire_name(k)}: {_display(v)}" for k, v in cleared.items())


def wire_name(field: str) -> str:
    head, *rest = field.split("_")
    return head + "".join(part.capitalize() for part in rest)
