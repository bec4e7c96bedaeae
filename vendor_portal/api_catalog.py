from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from enum import Enum
from typing import List, Optional
import logging

from .api_auth import Identity, get_current_vendor
from .api_inventory import InventoryItemOut, _placeholder_image
from .database import get_db
from .models import GlobalItem, InventoryItem

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/catalog", tags=["catalog"])


class SharedItemType(str, Enum):
    GROCERY = "grocery"
    MEDICAL = "medical"
    LIQUOR = "liquor"
    OTHER = "other"

# --- Schemas ---
class GlobalItemOut(BaseModel):
    item_id: str
    item_name: str
    generic_name: Optional[str] = None
    shared_item_type: str
    default_category: str
    default_unit: str
    brand: Optional[str] = None
    description: Optional[str] = None
    default_image_url: Optional[str] = None
    barcode: Optional[str] = None
    mrp: Optional[float] = None
    price: Optional[float] = None

    class Config:
        from_attributes = True

class LinkGlobalItemRequest(BaseModel):
    price: float = Field(..., ge=0)
    stock_quantity: int = Field(..., ge=0)
    mrp: Optional[float] = Field(None, ge=0) # overrides the catalogue MRP


# --- Endpoints ---

@router.get("", response_model=List[GlobalItemOut])
def list_global_items(
    item_type: SharedItemType,
    identity: Identity = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    items = db.query(GlobalItem)\
        .filter(GlobalItem.shared_item_type == item_type.value)\
        .order_by(GlobalItem.item_name, GlobalItem.item_id)\
        .all()
    logger.info(f"Found {len(items)} global '{item_type.value}' items")
    return items

@router.post("/{item_id}/link", response_model=InventoryItemOut, status_code=status.HTTP_201_CREATED)
def link_global_item(
    item_id: str,
    req: LinkGlobalItemRequest,
    identity: Identity = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    global_item = db.get(GlobalItem, item_id)
    if not global_item:
        raise HTTPException(status_code=404, detail="Global item not found")

    already_linked = db.query(InventoryItem).filter(
        InventoryItem.vendor_id == identity.vendor_id,
        InventoryItem.global_item_id == item_id,
    ).first()
    if already_linked:
        raise HTTPException(status_code=400, detail="Item is already in your inventory.")

    mrp = req.mrp if req.mrp is not None else global_item.mrp
    if mrp is not None and req.price > mrp:
        raise HTTPException(status_code=400, detail="Price cannot be higher than MRP.")

    new_item = InventoryItem(
        vendor_id=identity.vendor_id,
        global_item_id=global_item.item_id,
        item_name=global_item.item_name,
        vendor_item_category=global_item.default_category,
        unit=global_item.default_unit,
        price=req.price,
        mrp=mrp,
        stock_quantity=req.stock_quantity,
        description=global_item.description,
        image_url=global_item.default_image_url or _placeholder_image(global_item.item_name),
        brand=global_item.brand,
        barcode=global_item.barcode,
        is_custom_item=False,
        is_available=True,
    )
    db.add(new_item)
    db.commit()
    db.refresh(new_item)
    logger.info(f"Vendor {identity.vendor_id} linked global item {item_id} as {new_item.item_id}")
    return new_item
