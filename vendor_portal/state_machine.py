"""
Vendor portion state machine (pure, no I/O).

Each vendor moves only its own portion of a shared order:

    New -> Preparing -> Ready for Pickup -> Picked Up
    New -> Cancelled

Items may be replaced only while accepting (New -> Preparing), which is when
grocery substitutions are confirmed. Resubmitting the current status, with
no items or exactly the stored items, is a no-op. When the last portion
reaches Ready for Pickup the whole order is promoted to Ready for Pickup.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import TypeAdapter, ValidationError

from .errors import (
    ForbiddenError,
    InvalidTransitionError,
    OrderNotUpdatableError,
    OrderValidationError,
)
from .schemas import Order, OrderItemDetail, OrderStatus, PortionStatus


ALLOWED_TRANSITIONS: FrozenSet[Tuple[PortionStatus, PortionStatus]] = frozenset([
    (PortionStatus.NEW, PortionStatus.PREPARING),
    (PortionStatus.NEW, PortionStatus.CANCELLED),
    (PortionStatus.PREPARING, PortionStatus.READY_FOR_PICKUP),
    (PortionStatus.READY_FOR_PICKUP, PortionStatus.PICKED_UP),
])

ITEM_ADJUSTMENT_TRANSITIONS: FrozenSet[Tuple[PortionStatus, PortionStatus]] = frozenset([
    (PortionStatus.NEW, PortionStatus.PREPARING),
])

TERMINAL_PORTION_STATES = frozenset([PortionStatus.PICKED_UP, PortionStatus.CANCELLED])
CLOSED_ORDER_STATES = frozenset([OrderStatus.COMPLETED, OrderStatus.CANCELLED])

_items_adapter = TypeAdapter(List[OrderItemDetail])


@dataclass(frozen=True)
class PortionChange:
    """Outcome of applying one vendor's update to an order."""
    order: Order
    changed: bool
    promoted: bool = False
    subtotal_delta: Decimal = Decimal("0")


def is_valid_transition(from_status: PortionStatus, to_status: PortionStatus) -> bool:
    return (from_status, to_status) in ALLOWED_TRANSITIONS


def allowed_next_statuses(from_status: PortionStatus) -> FrozenSet[PortionStatus]:
    return frozenset(to for (frm, to) in ALLOWED_TRANSITIONS if frm == from_status)


def subtotal_of(items: Iterable[OrderItemDetail]) -> Decimal:
    return sum((item.total_price for item in items), Decimal("0"))


def coerce_items(raw_items: Sequence[Union[OrderItemDetail, dict]]) -> List[OrderItemDetail]:
    """Validate item payloads; malformed input becomes OrderValidationError."""
    try:
        items = _items_adapter.validate_python(
            [i.model_dump() if isinstance(i, OrderItemDetail) else i for i in raw_items]
        )
    except ValidationError as e:
        raise OrderValidationError(
            "Invalid item data.", errors=e.errors(include_url=False, include_context=False)
        ) from e
    if not items:
        raise OrderValidationError("Updated items must not be empty.")
    item_ids = [i.item_id for i in items]
    if len(item_ids) != len(set(item_ids)):
        raise OrderValidationError("Updated items contain duplicate item ids.")
    return items


def apply_portion_change(
    order: Order,
    vendor_id: str,
    new_status: PortionStatus,
    updated_items: Optional[Sequence[Union[OrderItemDetail, dict]]] = None,
) -> PortionChange:
    """
    Compute the order that results from `vendor_id` moving its portion to
    `new_status`. The input order is not modified.

    Raises ForbiddenError, OrderNotUpdatableError, InvalidTransitionError or
    OrderValidationError; nothing is changed when any of them is raised.
    """
    try:
        new_status = PortionStatus(new_status)
    except ValueError:
        raise OrderValidationError(f"Unknown portion status: {new_status!r}.") from None
    portion = order.portion_for(vendor_id)
    if portion is None:
        raise ForbiddenError("This order does not concern you.", order_id=order.order_id)

    if order.overall_status in CLOSED_ORDER_STATES:
        raise OrderNotUpdatableError(
            f"Order is {order.overall_status.value} and can no longer be updated.",
            order_id=order.order_id,
        )

    current = portion.status
    if new_status == current:
        # a retried confirmation carrying the items already stored is still a no-op
        if updated_items is not None and coerce_items(updated_items) != portion.items:
            raise OrderValidationError(
                "Items can only be changed while accepting a new order.", order_id=order.order_id
            )
        return PortionChange(order=order, changed=False)

    if not is_valid_transition(current, new_status):
        raise InvalidTransitionError(
            f"Cannot move portion from '{current.value}' to '{new_status.value}'.",
            order_id=order.order_id,
            current=current.value,
            requested=new_status.value,
        )

    updates = {"status": new_status}
    delta = Decimal("0")
    if updated_items is not None:
        if (current, new_status) not in ITEM_ADJUSTMENT_TRANSITIONS:
            raise OrderValidationError(
                "Items can only be changed while accepting a new order.", order_id=order.order_id
            )
        items = coerce_items(updated_items)
        new_subtotal = subtotal_of(items)
        delta = new_subtotal - portion.vendor_subtotal
        updates["items"] = items
        updates["vendor_subtotal"] = new_subtotal

    portions = [
        p.model_copy(update=updates, deep=True) if p.vendor_id == vendor_id else p.model_copy(deep=True)
        for p in order.vendor_portions
    ]

    order_updates = {"vendor_portions": portions}
    if delta:
        order_updates["grand_total"] = order.grand_total + delta

    promoted = (
        new_status == PortionStatus.READY_FOR_PICKUP
        and all(p.status == PortionStatus.READY_FOR_PICKUP for p in portions)
    )
    if promoted:
        order_updates["overall_status"] = OrderStatus.READY_FOR_PICKUP

    return PortionChange(
        order=order.model_copy(update=order_updates),
        changed=True,
        promoted=promoted,
        subtotal_delta=delta,
    )
