"""
Tests for the yard status state machine.

Covers the transition table, required tracking and escalation fields, the
status dates stamped as side effects and the order status each yard status
implies.
"""

from datetime import datetime, timezone

import pytest

from yardops.services.orders.enums import EscalationCause, OrderStatus, YardStatus
from yardops.services.orders.state_machine import (
    StateTransitionError,
    YardStateMachine,
    YardValidationError,
    get_allowed_yard_transitions,
    missing_required_fields,
    validate_yard_status_transition,
)

NOW = datetime(2025, 10, 3, 19, 5, tzinfo=timezone.utc)

TRACKING = {
    "tracking_no": "1Z999AA10123456784",
    "eta": "10/12/2025",
    "shipper_name": "UPS",
    "tracking_link": "https://ups.example/track/1Z999",
}


@pytest.fixture
def machine() -> YardStateMachine:
    return YardStateMachine()


# ============================================================================
# Transition Table Tests
# ============================================================================


class TestTransitionTable:
    """The allowed moves between yard statuses."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (YardStatus.YARD_LOCATED, YardStatus.YARD_PO_SENT),
            (YardStatus.YARD_PO_SENT, YardStatus.LABEL_CREATED),
            (YardStatus.YARD_PO_SENT, YardStatus.PO_CANCELLED),
            (YardStatus.LABEL_CREATED, YardStatus.PART_SHIPPED),
            (YardStatus.LABEL_CREATED, YardStatus.PO_CANCELLED),
            (YardStatus.PART_SHIPPED, YardStatus.PART_DELIVERED),
            (YardStatus.PART_DELIVERED, YardStatus.ESCALATION),
            (YardStatus.ESCALATION, YardStatus.PART_SHIPPED),
            (YardStatus.ESCALATION, YardStatus.PART_DELIVERED),
            (YardStatus.YARD_LOCATED, YardStatus.ESCALATION),
        ],
    )
    def test_allowed_transitions(self, current: YardStatus, target: YardStatus) -> None:
        assert validate_yard_status_transition(current, target) is True

    @pytest.mark.parametrize(
        "current,target",
        [
            (YardStatus.YARD_LOCATED, YardStatus.PART_SHIPPED),
            (YardStatus.YARD_LOCATED, YardStatus.LABEL_CREATED),
            (YardStatus.PART_SHIPPED, YardStatus.LABEL_CREATED),
            (YardStatus.PART_DELIVERED, YardStatus.PART_SHIPPED),
            (YardStatus.PO_CANCELLED, YardStatus.YARD_PO_SENT),
            (YardStatus.ESCALATION, YardStatus.PO_CANCELLED),
        ],
    )
    def test_rejected_transitions(self, current: YardStatus, target: YardStatus) -> None:
        assert validate_yard_status_transition(current, target) is False

    def test_same_status_is_a_field_edit(self) -> None:
        for status in YardStatus:
            assert validate_yard_status_transition(status, status) is True

    def test_po_cancelled_is_terminal(self) -> None:
        assert get_allowed_yard_transitions(YardStatus.PO_CANCELLED) == set()

    def test_escalation_resumes_fulfilment(self) -> None:
        assert get_allowed_yard_transitions(YardStatus.ESCALATION) == {
            YardStatus.YARD_PO_SENT,
            YardStatus.LABEL_CREATED,
            YardStatus.PART_SHIPPED,
            YardStatus.PART_DELIVERED,
        }

    def test_allowed_transitions_returns_copy(self) -> None:
        allowed = get_allowed_yard_transitions(YardStatus.YARD_LOCATED)
        allowed.add(YardStatus.PART_DELIVERED)

        assert YardStatus.PART_DELIVERED not in get_allowed_yard_transitions(
            YardStatus.YARD_LOCATED
        )

    @pytest.mark.parametrize(
        "status,expected",
        [
            (YardStatus.YARD_LOCATED, OrderStatus.YARD_PROCESSING),
            (YardStatus.YARD_PO_SENT, OrderStatus.YARD_PROCESSING),
            (YardStatus.LABEL_CREATED, OrderStatus.YARD_PROCESSING),
            (YardStatus.PO_CANCELLED, OrderStatus.YARD_PROCESSING),
            (YardStatus.PART_SHIPPED, OrderStatus.IN_TRANSIT),
            (YardStatus.PART_DELIVERED, OrderStatus.ORDER_FULFILLED),
            (YardStatus.ESCALATION, OrderStatus.ESCALATION),
        ],
    )
    def test_order_status_mapping(self, status: YardStatus, expected: OrderStatus) -> None:
        assert status.order_status == expected

    def test_from_string_lists_valid_values(self) -> None:
        with pytest.raises(ValueError, match="Valid values are"):
            YardStatus.from_string("Shipped")


# ============================================================================
# Required Field Tests
# ============================================================================


class TestRequiredFields:
    def test_label_created_requires_all_tracking_fields(self) -> None:
        missing = missing_required_fields(YardStatus.LABEL_CREATED, {})

        assert missing == ["trackingNo", "eta", "shipperName", "trackingLink"]

    def test_blank_strings_count_as_missing(self) -> None:
        fields = {**TRACKING, "tracking_link": "   "}

        assert missing_required_fields(YardStatus.PART_SHIPPED, fields) == ["trackingLink"]

    def test_existing_yard_values_satisfy_requirement(self, yard_factory) -> None:
        yard = yard_factory(status=YardStatus.LABEL_CREATED, **TRACKING)

        assert missing_required_fields(YardStatus.PART_SHIPPED, {}, yard) == []

    def test_incoming_blank_overrides_stored_value(self, yard_factory) -> None:
        yard = yard_factory(status=YardStatus.LABEL_CREATED, **TRACKING)

        missing = missing_required_fields(YardStatus.PART_SHIPPED, {"eta": ""}, yard)

        assert missing == ["eta"]

    def test_escalation_requires_cause(self) -> None:
        assert missing_required_fields(YardStatus.ESCALATION, {}) == ["escalationCause"]

    def test_statuses_without_requirements(self) -> None:
        assert missing_required_fields(YardStatus.YARD_PO_SENT, {}) == []
        assert missing_required_fields(YardStatus.PART_DELIVERED, {}) == []


# ============================================================================
# Apply Transition Tests
# ============================================================================


class TestApplyTransition:
    def test_label_created_without_tracking_link_keeps_status(
        self, machine: YardStateMachine, yard_factory
    ) -> None:
        yard = yard_factory(status=YardStatus.YARD_PO_SENT)
        fields = {**TRACKING, "tracking_link": ""}

        with pytest.raises(YardValidationError) as exc_info:
            machine.apply_transition(yard, YardStatus.LABEL_CREATED, fields, NOW)

        assert exc_info.value.fields == ["trackingLink"]
        assert yard.status == YardStatus.YARD_PO_SENT
        assert yard.tracking_no == ""

    def test_invalid_transition_reports_allowed_and_reset(
        self, machine: YardStateMachine, yard_factory
    ) -> None:
        yard = yard_factory(status=YardStatus.LABEL_CREATED)

        with pytest.raises(StateTransitionError) as exc_info:
            machine.apply_transition(yard, YardStatus.YARD_PO_SENT, {}, NOW)

        error = exc_info.value
        assert error.current_state == YardStatus.LABEL_CREATED
        assert error.target_state == YardStatus.YARD_PO_SENT
        assert error.context["reset_action"] == "voidLabel"
        assert "Part shipped" in error.context["allowed_transitions"]

    def test_po_sent_stamps_date(self, machine: YardStateMachine, yard_factory) -> None:
        yard = yard_factory()

        result = machine.apply_transition(yard, YardStatus.YARD_PO_SENT, {}, NOW)

        assert result == OrderStatus.YARD_PROCESSING
        assert yard.status == YardStatus.YARD_PO_SENT
        assert yard.po_sent_date == NOW

    def test_part_shipped_writes_fields_and_date(
        self, machine: YardStateMachine, yard_factory
    ) -> None:
        yard = yard_factory(status=YardStatus.LABEL_CREATED)

        result = machine.apply_transition(yard, YardStatus.PART_SHIPPED, TRACKING, NOW)

        assert result == OrderStatus.IN_TRANSIT
        assert yard.tracking_no == TRACKING["tracking_no"]
        assert yard.part_shipped_date == NOW

    def test_delivered_stamps_date(self, machine: YardStateMachine, yard_factory) -> None:
        yard = yard_factory(status=YardStatus.PART_SHIPPED, **TRACKING)

        result = machine.apply_transition(yard, YardStatus.PART_DELIVERED, {}, NOW)

        assert result == OrderStatus.ORDER_FULFILLED
        assert yard.delivered_date == NOW

    def test_po_cancelled_stamps_date(self, machine: YardStateMachine, yard_factory) -> None:
        yard = yard_factory(status=YardStatus.YARD_PO_SENT)

        machine.apply_transition(yard, YardStatus.PO_CANCELLED, {}, NOW)

        assert yard.po_cancelled_date == NOW

    def test_escalation_ticks_and_keeps_first_date(
        self, machine: YardStateMachine, yard_factory
    ) -> None:
        earlier = datetime(2025, 9, 1, tzinfo=timezone.utc)
        yard = yard_factory(status=YardStatus.PART_DELIVERED, escalation_date=earlier)

        result = machine.apply_transition(
            yard,
            YardStatus.ESCALATION,
            {"escalation_cause": EscalationCause.DAMAGED},
            NOW,
        )

        assert result == OrderStatus.ESCALATION
        assert yard.esc_ticked == "Yes"
        assert yard.escalation_date == earlier

    def test_leaving_escalation_keeps_flag(
        self, machine: YardStateMachine, yard_factory
    ) -> None:
        escalated_at = datetime(2025, 9, 28, tzinfo=timezone.utc)
        yard = yard_factory(
            status=YardStatus.ESCALATION,
            esc_ticked="Yes",
            escalation_date=escalated_at,
            escalation_cause=EscalationCause.DEFECTIVE,
        )

        result = machine.apply_transition(yard, YardStatus.PART_SHIPPED, TRACKING, NOW)

        assert result == OrderStatus.IN_TRANSIT
        assert yard.status == YardStatus.PART_SHIPPED
        assert yard.esc_ticked == "Yes"
        assert yard.escalation_date == escalated_at
        assert yard.part_shipped_date == NOW

    def test_leaving_escalation_still_requires_tracking(
        self, machine: YardStateMachine, yard_factory
    ) -> None:
        yard = yard_factory(status=YardStatus.ESCALATION, esc_ticked="Yes")

        with pytest.raises(YardValidationError):
            machine.apply_transition(yard, YardStatus.LABEL_CREATED, {}, NOW)

        assert yard.status == YardStatus.ESCALATION

    def test_escalation_without_cause_rejected(
        self, machine: YardStateMachine, yard_factory
    ) -> None:
        yard = yard_factory(status=YardStatus.PART_SHIPPED)

        with pytest.raises(YardValidationError) as exc_info:
            machine.apply_transition(yard, YardStatus.ESCALATION, {}, NOW)

        assert exc_info.value.fields == ["escalationCause"]
        assert yard.status == YardStatus.PART_SHIPPED

    def test_field_edit_does_not_restamp(
        self, machine: YardStateMachine, yard_factory
    ) -> None:
        shipped_at = datetime(2025, 10, 1, tzinfo=timezone.utc)
        yard = yard_factory(
            status=YardStatus.PART_SHIPPED, part_shipped_date=shipped_at, **TRACKING
        )

        machine.apply_transition(yard, YardStatus.PART_SHIPPED, {"eta": "10/20/2025"}, NOW)

        assert yard.eta == "10/20/2025"
        assert yard.part_shipped_date == shipped_at
