from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import List, Optional

from .api_auth import Identity, get_current_vendor
from .database import SessionLocal
from .order_service import OrderService, PortionUpdateResult
from .order_store import OrderStore
from .schemas import OrderItemDetail, PortionStatus, VendorDisplayOrder

router = APIRouter(prefix="/api", tags=["orders"])

class PortionStatusUpdate(BaseModel):
    new_status: PortionStatus
    # only accepted when confirming a new order (New -> Preparing)
    updated_items: Optional[List[OrderItemDetail]] = Field(None, min_length=1)

class PortionUpdateOut(BaseModel):
    success: bool = True
    changed: bool
    promoted: bool
    stale_views: List[str]
    order: VendorDisplayOrder


def get_order_service() -> OrderService:
    return OrderService(OrderStore(SessionLocal))

def _update_out(result: PortionUpdateResult) -> PortionUpdateOut:
    return PortionUpdateOut(
        changed=result.changed,
        promoted=result.promoted,
        stale_views=result.stale_views,
        order=result.order,
    )


# --- Orders ---

@router.get("/orders", response_model=List[VendorDisplayOrder])
def list_orders(identity: Identity = Depends(get_current_vendor), service: OrderService = Depends(get_order_service)):
    return service.list_active_orders_for_vendor(identity.vendor_id)

@router.get("/orders/{order_id}", response_model=VendorDisplayOrder)
def order_details(
    order_id: str,
    identity: Identity = Depends(get_current_vendor),
    service: OrderService = Depends(get_order_service),
):
    return service.get_order_for_vendor(order_id, identity.vendor_id)

@router.put("/orders/{order_id}/status", response_model=PortionUpdateOut)
def update_order_status(
    order_id: str,
    payload: PortionStatusUpdate,
    identity: Identity = Depends(get_current_vendor),
    service: OrderService = Depends(get_order_service),
):
    result = service.apply_portion_update(
        order_id,
        identity.vendor_id,
        payload.new_status,
        updated_items=payload.updated_items,
    )
    return _update_out(result)


# --- Pickup ---

@router.get("/pickup", response_model=List[VendorDisplayOrder])
def ready_for_pickup(identity: Identity = Depends(get_current_vendor), service: OrderService = Depends(get_order_service)):
    return service.list_ready_for_pickup(identity.vendor_id)

@router.post("/pickup/{order_id}/confirm", response_model=PortionUpdateOut)
def confirm_pickup(
    order_id: str,
    identity: Identity = Depends(get_current_vendor),
    service: OrderService = Depends(get_order_service),
):
    return _update_out(service.confirm_pickup(order_id, identity.vendor_id))
