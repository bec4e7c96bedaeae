"""
Order service: the operations vendors run against shared orders.

Every result is projected to the caller's own portion before it is returned,
so no vendor ever sees another vendor's items, subtotal or identifiers.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from .errors import ForbiddenError
from .order_store import OrderStore, Transaction
from .schemas import (
    ACTIVE_ORDER_STATUSES,
    Order,
    OrderItemDetail,
    PortionStatus,
    VendorDisplayOrder,
)
from .state_machine import PortionChange, apply_portion_change

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortionUpdateResult:
    order: VendorDisplayOrder
    changed: bool
    promoted: bool

    @property
    def stale_views(self) -> List[str]:
        """Views the presentation layer must refetch after this update."""
        if not self.changed:
            return []
        return ["/orders", f"/orders/{self.order.order_id}"]


def _newest_first(orders: List[VendorDisplayOrder]) -> List[VendorDisplayOrder]:
    # two stable sorts: order_id ascending breaks created_at ties
    orders = sorted(orders, key=lambda o: o.order_id)
    return sorted(orders, key=lambda o: o.created_at, reverse=True)


class OrderService:

    def __init__(self, store: OrderStore):
        self.store = store

    def apply_portion_update(
        self,
        order_id: str,
        vendor_id: str,
        new_status: Union[PortionStatus, str],
        updated_items: Optional[Sequence[Union[OrderItemDetail, dict]]] = None,
        timeout: Optional[float] = None,
    ) -> PortionUpdateResult:
        def update_portion(tx: Transaction) -> PortionChange:
            order = tx.get(order_id)
            change = apply_portion_change(order, vendor_id, new_status, updated_items)
            if change.changed:
                tx.update(change.order)
            return change

        try:
            change = self.store.run_transaction(update_portion, timeout=timeout)
        except ForbiddenError:
            logger.warning(f"Vendor {vendor_id} tried to update order {order_id} without a portion in it")
            raise

        portion = change.order.portion_for(vendor_id)
        if change.changed:
            logger.info(
                f"Order {order_id}: vendor {vendor_id} portion -> '{portion.status.value}'"
                + (f", subtotal delta {change.subtotal_delta}" if change.subtotal_delta else "")
                + (", order promoted to 'Ready for Pickup'" if change.promoted else "")
            )
        else:
            logger.info(f"Order {order_id}: vendor {vendor_id} resubmitted '{portion.status.value}', nothing to do")

        return PortionUpdateResult(
            order=VendorDisplayOrder.for_vendor(change.order, vendor_id),
            changed=change.changed,
            promoted=change.promoted,
        )

    def confirm_pickup(self, order_id: str, vendor_id: str, timeout: Optional[float] = None) -> PortionUpdateResult:
        """The customer collected this vendor's portion."""
        return self.apply_portion_update(order_id, vendor_id, PortionStatus.PICKED_UP, timeout=timeout)

    def list_active_orders_for_vendor(self, vendor_id: str) -> List[VendorDisplayOrder]:
        orders = self.store.query_orders(vendor_id, overall_statuses=ACTIVE_ORDER_STATUSES)
        relevant = [VendorDisplayOrder.for_vendor(o, vendor_id) for o in orders]
        result = _newest_first([o for o in relevant if o is not None])
        logger.info(f"Found {len(result)} active orders for vendor {vendor_id}")
        return result

    def list_ready_for_pickup(self, vendor_id: str) -> List[VendorDisplayOrder]:
        ready = []
        for order in self.store.query_orders(vendor_id):
            portion = order.portion_for(vendor_id)
            if portion is not None and portion.status == PortionStatus.READY_FOR_PICKUP:
                ready.append(VendorDisplayOrder.for_vendor(order, vendor_id))
        result = _newest_first(ready)
        logger.info(f"Found {len(result)} orders ready for pickup for vendor {vendor_id}")
        return result

    def get_order_for_vendor(self, order_id: str, vendor_id: str) -> VendorDisplayOrder:
        order: Order = self.store.get_order(order_id)
        display = VendorDisplayOrder.for_vendor(order, vendor_id)
        if display is None:
            logger.warning(f"Vendor {vendor_id} is not part of order {order_id}")
            raise ForbiddenError("This order does not concern you.", order_id=order_id)
        return display
