from datetime import datetime

import pytest

from order_status import (
    DEFAULT_CANCEL_REASON,
    FORWARD_FLOW,
    InvalidTransition,
    OrderStatus,
    build_status_update,
    check_transition,
    initial_status,
    parse_status,
)

NOW = datetime(2026, 3, 4, 10, 30)


def test_labels_are_case_sensitive():
    assert parse_status("Processing") is OrderStatus.PROCESSING
    with pytest.raises(ValueError):
        parse_status("processing")
    with pytest.raises(ValueError):
        parse_status("completed")


@pytest.mark.parametrize("current,target", [
    ("Pending_Payment", "Waiting_Approval"),
    ("Waiting_Approval", "Processing"),
    ("Processing", "Shipped"),
    ("Shipped", "Delivered"),
    ("Waiting_Approval", "Delivered"),
    ("Processing", "Processing"),
])
def test_forward_moves_are_legal(current, target):
    assert check_transition(current, target).value == target


@pytest.mark.parametrize("current", ["Pending_Payment", "Waiting_Approval", "Processing", "Shipped"])
def test_cancel_from_any_open_status(current):
    assert check_transition(current, "Cancelled") is OrderStatus.CANCELLED


def test_backwards_move_is_rejected():
    with pytest.raises(InvalidTransition):
        check_transition("Shipped", "Processing")


@pytest.mark.parametrize("terminal", ["Delivered", "Cancelled"])
@pytest.mark.parametrize("target", [s.value for s in OrderStatus])
def test_nothing_leaves_a_terminal_status(terminal, target):
    with pytest.raises(InvalidTransition) as exc:
        check_transition(terminal, target, enforce_order=False)
    assert terminal in str(exc.value)


def test_override_skips_ordering_but_not_terminal_check():
    assert check_transition("Shipped", "Waiting_Approval", enforce_order=False) is OrderStatus.WAITING_APPROVAL


def test_forward_flow_ends_in_delivered():
    assert FORWARD_FLOW[0] is OrderStatus.PENDING_PAYMENT
    assert FORWARD_FLOW[-1] is OrderStatus.DELIVERED


def test_delivered_marks_unpaid_order_paid():
    update = build_status_update({"status": "Shipped", "is_paid": False}, "Delivered", now=NOW)
    assert update["status"] == "Delivered"
    assert update["is_paid"] is True
    assert update["paid_at"] == NOW


def test_delivered_keeps_existing_payment_time():
    update = build_status_update({"status": "Shipped", "is_paid": True, "paid_at": datetime(2026, 1, 1)}, "Delivered", now=NOW)
    assert "paid_at" not in update
    assert "is_paid" not in update


def test_delivered_policy_can_be_turned_off():
    update = build_status_update({"status": "Shipped", "is_paid": False}, "Delivered", now=NOW, delivered_marks_paid=False)
    assert "is_paid" not in update


def test_cancel_reason_default_and_verbatim():
    default = build_status_update({"status": "Processing"}, "Cancelled", now=NOW)
    assert default["cancel_reason"] == DEFAULT_CANCEL_REASON
    assert default["cancelled_at"] == NOW

    given = build_status_update({"status": "Processing"}, "Cancelled", now=NOW, cancel_reason="  Out of stock ")
    assert given["cancel_reason"] == "  Out of stock "


def test_optional_fields_stored_when_supplied():
    eta = datetime(2026, 3, 8)
    update = build_status_update({"status": "Processing"}, "Shipped", now=NOW, estimated_delivery_date=eta, seller_note="via GHN")
    assert update["estimated_delivery_date"] == eta
    assert update["seller_note"] == "via GHN"


def test_initial_status_depends_on_payment_method():
    assert initial_status("COD") is OrderStatus.WAITING_APPROVAL
    assert initial_status("MOMO") is OrderStatus.PENDING_PAYMENT
