"""
Tests for note, history and change-summary formatting.
"""

from datetime import datetime, timezone

from yardops.services.orders.notes import (
    categorize_field,
    change_notes,
    cleared_summary,
    diff_fields,
    format_note,
    history_line,
    human_label,
    push_unique,
    wire_name,
)

WHEN = datetime(2025, 10, 3, 19, 5, tzinfo=timezone.utc)


def test_format_note_uses_business_time() -> None:
    assert format_note("Ana", "Called yard", WHEN) == "Ana, 3 Oct, 2025 14:05 : Called yard"


def test_history_line() -> None:
    line = history_line("Yard 1 label voided", "Ana", WHEN)

    assert line == "Yard 1 label voided by Ana on 3 Oct, 2025 14:05"


def test_push_unique_skips_repeat_of_last_entry() -> None:
    assert push_unique(["a", "b"], "b") == ["a", "b"]
    assert push_unique(["a", "b"], "a") == ["a", "b", "a"]
    assert push_unique(None, "a") == ["a"]


def test_push_unique_does_not_mutate_input() -> None:
    entries = ["a"]

    push_unique(entries, "b")

    assert entries == ["a"]


def test_labels_and_wire_names() -> None:
    assert human_label("alt_no") == "Alt. Phone"
    assert human_label("part_price") == "Part Price"
    assert wire_name("customer_tracking_number_replacement") == "customerTrackingNumberReplacement"


def test_categorize_field() -> None:
    assert categorize_field("customer_tracking_number_replacement") == (
        "Replacement (Part from customer)"
    )
    assert categorize_field("yard_tracking_eta") == "Replacement (Part from yard)"
    assert categorize_field("return_tracking_cust") == "Return (Part from customer)"
    assert categorize_field("customer_shipper_return") == "Return (Part from customer)"
    assert categorize_field("part_price") == "General"


def test_diff_fields_treats_none_and_blank_alike() -> None:
    before = {"eta": None, "yard_shipper": "UPS", "part_price": 10}
    after = {"eta": "", "yard_shipper": "FedEx", "part_price": 10}

    assert diff_fields(before, after, before) == ["yard_shipper"]


def test_change_notes_grouped_by_section() -> None:
    before = {"yard_shipper": "UPS", "part_price": 10}
    after = {"yard_shipper": "FedEx", "part_price": 12}

    messages = change_notes(before, after, ["part_price", "yard_shipper"])

    assert messages == [
        "Updated • Escalation — Replacement (Part from yard)\n  • Yard Shipper: UPS → FedEx",
        "Updated\n  • Part Price: 10 → 12",
    ]


def test_cleared_summary() -> None:
    summary = cleared_summary({"tracking_no": "1Z9", "eta": "10/12"})

    assert summary == "trackingNo: 1Z9, eta: 10/12"
