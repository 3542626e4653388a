"""Yard status state machine with transition and required-field validation.

A yard moves through sourcing, labelling, shipping and delivery; any live
state may escalate, and an escalated yard may resume fulfilment with its
``esc_ticked`` flag still set. Label voids and shipment cancellations are
explicit resets back to ``Yard PO Sent`` and are not part of the regular
transition table. Applying a transition never touches the database: the caller loads the
yard, applies the transition and commits.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from yardops.core.logging import get_logger
from yardops.database.models.order import Yard
from yardops.services.orders.enums import OrderStatus, YardStatus

logger = get_logger(__name__)


YARD_TRANSITIONS: Dict[YardStatus, Set[YardStatus]] = {
    YardStatus.YARD_LOCATED: {YardStatus.YARD_PO_SENT, YardStatus.ESCALATION},
    YardStatus.YARD_PO_SENT: {
        YardStatus.LABEL_CREATED,
        YardStatus.PO_CANCELLED,
        YardStatus.ESCALATION,
    },
    YardStatus.LABEL_CREATED: {
        YardStatus.PART_SHIPPED,
        YardStatus.PO_CANCELLED,
        YardStatus.ESCALATION,
    },
    YardStatus.PART_SHIPPED: {YardStatus.PART_DELIVERED, YardStatus.ESCALATION},
    YardStatus.PART_DELIVERED: {YardStatus.ESCALATION},
    YardStatus.ESCALATION: {
        YardStatus.YARD_PO_SENT,
        YardStatus.LABEL_CREATED,
        YardStatus.PART_SHIPPED,
        YardStatus.PART_DELIVERED,
    },
    YardStatus.PO_CANCELLED: set(),
}

# Explicit resets outside the transition table: source state -> action name.
RESETS: Dict[YardStatus, str] = {
    YardStatus.LABEL_CREATED: "voidLabel",
    YardStatus.PART_SHIPPED: "cancelShipment",
}

TRACKING_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("tracking_no", "trackingNo"),
    ("eta", "eta"),
    ("shipper_name", "shipperName"),
    ("tracking_link", "trackingLink"),
)

# Target status -> (model attribute, wire name) pairs that must be non-empty.
REQUIRED_FIELDS: Dict[YardStatus, Tuple[Tuple[str, str], ...]] = {
    YardStatus.LABEL_CREATED: TRACKING_FIELDS,
    YardStatus.PART_SHIPPED: TRACKING_FIELDS,
    YardStatus.ESCALATION: (("escalation_cause", "escalationCause"),),
}


class StateTransitionError(Exception):
    """Raised when an invalid yard status transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: YardStatus,
        target_state: YardStatus,
        **context: Any,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


class YardValidationError(Exception):
    """Raised when fields required for a write are missing or invalid."""

    def __init__(self, message: str, fields: Optional[List[str]] = None, **context: Any):
        super().__init__(message)
        self.fields = fields or []
        self.context = context


def validate_yard_status_transition(current: YardStatus, target: YardStatus) -> bool:
    """Check whether ``current -> target`` is allowed.

    Re-submitting the current status is a field edit and always allowed.
    """
    if current == target:
        return True
    return target in YARD_TRANSITIONS.get(current, set())


def get_allowed_yard_transitions(current: YardStatus) -> Set[YardStatus]:
    return set(YARD_TRANSITIONS.get(current, set()))


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def missing_required_fields(
    target: YardStatus,
    fields: Mapping[str, Any],
    yard: Optional[Yard] = None,
) -> List[str]:
    """Return wire names of required fields that are empty for ``target``.

    Values in ``fields`` take precedence; otherwise the yard's current value
    is used, so a partial update of an already populated yard passes.

    Args:
        target: Status being entered
        fields: Incoming values keyed by model attribute
        yard: Yard being updated, if any
    """
    missing = []
    for attr, wire_name in REQUIRED_FIELDS.get(target, ()):
        if attr in fields:
            value = fields[attr]
        else:
            value = getattr(yard, attr, None) if yard is not None else None
        if _is_blank(value):
            missing.append(wire_name)
    return missing


class YardStateMachine:
    """State machine for a single yard's fulfilment status.

    Guards run before a transition is applied; side effects stamp status
    dates on the yard after the new status is set.
    """

    def __init__(self):
        self._transition_guards: Dict[
            YardStatus, Callable[[Yard, Mapping[str, Any]], None]
        ] = {
            YardStatus.LABEL_CREATED: self._guard_required_fields,
            YardStatus.PART_SHIPPED: self._guard_required_fields,
            YardStatus.ESCALATION: self._guard_required_fields,
        }
        self._side_effects: Dict[YardStatus, Callable[[Yard, datetime], None]] = {
            YardStatus.YARD_PO_SENT: self._effect_po_sent,
            YardStatus.PO_CANCELLED: self._effect_po_cancelled,
            YardStatus.PART_SHIPPED: self._effect_part_shipped,
            YardStatus.PART_DELIVERED: self._effect_delivered,
            YardStatus.ESCALATION: self._effect_escalated,
        }

    def validate_transition(
        self,
        yard: Yard,
        target: YardStatus,
        fields: Mapping[str, Any],
    ) -> None:
        """Validate the status change and its required fields.

        Raises:
            StateTransitionError: If the transition is not allowed
            YardValidationError: If required fields are missing
        """
        current = yard.status
        if not validate_yard_status_transition(current, target):
            allowed = sorted(s.value for s in get_allowed_yard_transitions(current))
            hint = RESETS.get(current)
            raise StateTransitionError(
                f"Invalid transition from {current.value} to {target.value}",
                current_state=current,
                target_state=target,
                allowed_transitions=allowed,
                reset_action=hint,
            )

        guard = self._transition_guards.get(target)
        if guard is not None:
            guard(yard, {**fields, "_target": target})

    def apply_transition(
        self,
        yard: Yard,
        target: YardStatus,
        fields: Mapping[str, Any],
        now: datetime,
    ) -> OrderStatus:
        """Validate, write ``fields`` and the new status onto ``yard``.

        Args:
            yard: Yard being updated (mutated in place)
            target: New status
            fields: Other yard attributes to write, keyed by model attribute
            now: Timestamp used for status dates

        Returns:
            Order status implied by the new yard status
        """
        self.validate_transition(yard, target, fields)

        previous = yard.status
        for attr, value in fields.items():
            setattr(yard, attr, value)
        yard.status = target

        if previous != target:
            effect = self._side_effects.get(target)
            if effect is not None:
                effect(yard, now)
            logger.info(
                "Yard status transition applied",
                yard_id=yard.id,
                transition=f"{previous.value}->{target.value}",
            )

        return target.order_status

    # Guards

    def _guard_required_fields(self, yard: Yard, fields: Mapping[str, Any]) -> None:
        target = fields["_target"]
        missing = missing_required_fields(target, fields, yard)
        if missing:
            raise YardValidationError(
                f"Missing required fields for {target.value}: {', '.join(missing)}",
                fields=missing,
                target_status=target.value,
            )

    # Side effects

    def _effect_po_sent(self, yard: Yard, now: datetime) -> None:
        yard.po_sent_date = now

    def _effect_po_cancelled(self, yard: Yard, now: datetime) -> None:
        yard.po_cancelled_date = now

    def _effect_part_shipped(self, yard: Yard, now: datetime) -> None:
        yard.part_shipped_date = now

    def _effect_delivered(self, yard: Yard, now: datetime) -> None:
        yard.delivered_date = now

    def _effect_escalated(self, yard: Yard, now: datetime) -> None:
        yard.esc_ticked = "Yes"
        if yard.escalation_date is None:
            yard.escalation_date = now
