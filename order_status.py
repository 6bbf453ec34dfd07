"""
Order status state machine.

    Pending_Payment -> Waiting_Approval -> Processing -> Shipped -> Delivered
    any non-terminal status -> Cancelled

Delivered and Cancelled are terminal. A target status is legal from any
non-terminal status at or before it in the forward flow (re-asserting the
current status lets a seller update the note or delivery estimate), and
Cancelled is legal from every non-terminal status.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

DEFAULT_CANCEL_REASON = "Cancelled without a stated reason"


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "Pending_Payment"
    WAITING_APPROVAL = "Waiting_Approval"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


FORWARD_FLOW = (
    OrderStatus.PENDING_PAYMENT,
    OrderStatus.WAITING_APPROVAL,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
TERMINAL: FrozenSet[OrderStatus] = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})
NON_TERMINAL: FrozenSet[OrderStatus] = frozenset(s for s in OrderStatus if s not in TERMINAL)


def _legal_predecessors() -> Dict[OrderStatus, FrozenSet[OrderStatus]]:
    table = {}
    for index, target in enumerate(FORWARD_FLOW):
        table[target] = frozenset(s for s in FORWARD_FLOW[: index + 1] if s not in TERMINAL)
    table[OrderStatus.CANCELLED] = NON_TERMINAL
    return table


LEGAL_PREDECESSORS = _legal_predecessors()


class InvalidTransition(Exception):
    def __init__(self, current, target, message: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot change order status from {current} to {target}")


def parse_status(label) -> OrderStatus:
    """Case-sensitive lookup; raises ValueError for unknown labels."""
    if isinstance(label, OrderStatus):
        return label
    return OrderStatus(label)


def check_transition(current, target, enforce_order: bool = True) -> OrderStatus:
    current = parse_status(current)
    target = parse_status(target)
    if current in TERMINAL:
        raise InvalidTransition(current.value, target.value, f"Order is already {current.value}")
    if enforce_order and current not in LEGAL_PREDECESSORS[target]:
        raise InvalidTransition(current.value, target.value)
    return target


def build_status_update(
    order: dict,
    target,
    now: datetime,
    estimated_delivery_date: Optional[datetime] = None,
    seller_note: Optional[str] = None,
    cancel_reason: Optional[str] = None,
    delivered_marks_paid: bool = True,
    enforce_order: bool = True,
) -> dict:
    """Validate the move and return the ``$set`` document that applies it.

    Nothing is written here; the caller applies the update conditionally on
    the status it read so that a concurrent change is detected.
    """
    target = check_transition(order.get("status"), target, enforce_order=enforce_order)

    update = {"status": target.value, "updated_at": now}
    if estimated_delivery_date is not None:
        update["estimated_delivery_date"] = estimated_delivery_date
    if seller_note is not None:
        update["seller_note"] = seller_note

    if target is OrderStatus.DELIVERED and delivered_marks_paid and not order.get("is_paid"):
        update["is_paid"] = True
        update["paid_at"] = now

    if target is OrderStatus.CANCELLED:
        update["cancel_reason"] = cancel_reason if cancel_reason else DEFAULT_CANCEL_REASON
        update["cancelled_at"] = now

    return update


def initial_status(payment_method: str) -> OrderStatus:
    if payment_method == "COD":
        return OrderStatus.WAITING_APPROVAL
    return OrderStatus.PENDING_PAYMENT
