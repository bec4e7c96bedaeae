from fastapi import APIRouter, Depends, HTTPException, File, UploadFile, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import quote
import logging

from .api_auth import Identity, get_current_vendor
from .csv_import import (
    CsvImportError,
    ImportedItem,
    csv_sample,
    dedupe_items,
    determine_column_mappings,
    get_ai_client,
    item_key,
    parse_csv,
    rows_to_items,
)
from .database import get_db
from .menu_import import MenuExtractionError, MenuImportError, extract_menu_items, extract_pdf_text, menu_items_to_imported
from .models import InventoryItem

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/inventory", tags=["inventory"])

MAX_CSV_BYTES = 2 * 1024 * 1024
MAX_MENU_BYTES = 10 * 1024 * 1024

# --- Schemas ---
class InventoryItemIn(BaseModel):
    item_name: str = Field(..., min_length=1)
    vendor_item_category: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    stock_quantity: int = Field(..., ge=0)
    unit: str = Field(..., min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    brand: Optional[str] = None
    barcode: Optional[str] = None
    is_available: bool = True

    @model_validator(mode="after")
    def _price_within_mrp(self):
        if self.mrp is not None and self.price > self.mrp:
            raise ValueError("Price cannot be higher than MRP.")
        return self

class InventoryItemOut(BaseModel):
    item_id: str
    vendor_id: str
    global_item_id: Optional[str] = None
    item_name: str
    vendor_item_category: str
    price: float
    mrp: Optional[float] = None
    stock_quantity: int
    unit: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    brand: Optional[str] = None
    barcode: Optional[str] = None
    is_custom_item: bool
    is_available: bool

    class Config:
        from_attributes = True

class DeleteSelectedRequest(BaseModel):
    item_ids: List[str] = Field(..., min_length=1)

class BulkAddRequest(BaseModel):
    items: List[ImportedItem] = Field(..., min_length=1)

class CsvPreviewOut(BaseModel):
    mappings: Dict[str, str]
    mapping_source: str # 'ai' or 'heuristic'
    parsed_items: List[ImportedItem]
    duplicates_skipped: int
    message: str

class MenuPreviewOut(BaseModel):
    parsed_items: List[ImportedItem]
    duplicates_skipped: int
    message: str


def _placeholder_image(item_name: str) -> str:
    return f"https://placehold.co/50x50.png?text={quote(item_name[:10])}"

def _vendor_item(db: Session, vendor_id: str, item_id: str) -> InventoryItem:
    item = db.query(InventoryItem).filter(
        InventoryItem.item_id == item_id,
        InventoryItem.vendor_id == vendor_id,
    ).first()
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item

def _existing_keys(db: Session, vendor_id: str) -> List[str]:
    rows = db.query(InventoryItem.item_name, InventoryItem.vendor_item_category)\
        .filter(InventoryItem.vendor_id == vendor_id).all()
    return [item_key(name, category) for name, category in rows]


# --- Endpoints ---

@router.get("", response_model=List[InventoryItemOut])
def list_inventory(identity: Identity = Depends(get_current_vendor), db: Session = Depends(get_db)):
    items = db.query(InventoryItem)\
        .filter(InventoryItem.vendor_id == identity.vendor_id)\
        .order_by(func.lower(InventoryItem.item_name), InventoryItem.item_id)\
        .all()
    logger.info(f"Found {len(items)} inventory items for vendor {identity.vendor_id}")
    return items

@router.post("", response_model=InventoryItemOut, status_code=status.HTTP_201_CREATED)
def add_custom_item(
    item: InventoryItemIn,
    identity: Identity = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    data = item.model_dump()
    data["image_url"] = data["image_url"] or _placeholder_image(item.item_name)
    new_item = InventoryItem(vendor_id=identity.vendor_id, is_custom_item=True, **data)
    db.add(new_item)
    db.commit()
    db.refresh(new_item)
    logger.info(f"Vendor {identity.vendor_id} added item {new_item.item_id} ({item.item_name})")
    return new_item

@router.put("/{item_id}", response_model=InventoryItemOut)
def update_item(
    item_id: str,
    item: InventoryItemIn,
    identity: Identity = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    existing = _vendor_item(db, identity.vendor_id, item_id)
    data = item.model_dump()
    data["image_url"] = data["image_url"] or _placeholder_image(item.item_name)
    if data["stock_quantity"] != existing.stock_quantity:
        existing.last_stock_update = datetime.now(timezone.utc)
    for field, value in data.items():
        setattr(existing, field, value)
    db.commit()
    db.refresh(existing)
    logger.info(f"Vendor {identity.vendor_id} updated item {item_id}")
    return existing

@router.delete("/{item_id}")
def delete_item(item_id: str, identity: Identity = Depends(get_current_vendor), db: Session = Depends(get_db)):
    existing = _vendor_item(db, identity.vendor_id, item_id)
    db.delete(existing)
    db.commit()
    logger.info(f"Vendor {identity.vendor_id} deleted item {item_id}")
    return {"deleted": True}

@router.post("/delete-selected")
def delete_selected(
    req: DeleteSelectedRequest,
    identity: Identity = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    # Only the caller's own items are touched; unknown ids are ignored
    deleted = db.query(InventoryItem).filter(
        InventoryItem.vendor_id == identity.vendor_id,
        InventoryItem.item_id.in_(req.item_ids),
    ).delete(synchronize_session=False)
    db.commit()
    logger.info(f"Vendor {identity.vendor_id} bulk-deleted {deleted} items")
    return {"success": True, "items_deleted": deleted, "message": f"{deleted} item(s) deleted successfully."}

@router.post("/remove-duplicates")
def remove_duplicates(identity: Identity = Depends(get_current_vendor), db: Session = Depends(get_db)):
    items = db.query(InventoryItem)\
        .filter(InventoryItem.vendor_id == identity.vendor_id)\
        .order_by(InventoryItem.created_at, InventoryItem.item_id)\
        .all()
    if not items:
        return {"success": True, "duplicates_removed": 0, "message": "Inventory is empty. No duplicates to remove."}

    seen = set()
    duplicates = []
    for item in items:
        key = item_key(item.item_name, item.vendor_item_category)
        if key in seen:
            duplicates.append(item)
        else:
            seen.add(key)

    if not duplicates:
        return {"success": True, "duplicates_removed": 0, "message": "No duplicate items found."}

    for item in duplicates:
        db.delete(item)
    db.commit()
    logger.info(f"Removed {len(duplicates)} duplicate items for vendor {identity.vendor_id}")
    return {
        "success": True,
        "duplicates_removed": len(duplicates),
        "message": f"Successfully removed {len(duplicates)} duplicate items.",
    }


# --- AI-assisted CSV import ---

@router.post("/import-csv", response_model=CsvPreviewOut)
async def import_csv(
    file: UploadFile = File(...),
    identity: Identity = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="CSV file is required.")
    if len(contents) > MAX_CSV_BYTES:
        raise HTTPException(status_code=400, detail="CSV file is too large.")
    try:
        text = contents.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded.")

    try:
        headers, rows = parse_csv(text)
        mappings, source = determine_column_mappings(csv_sample(text), headers, client=get_ai_client())
    except CsvImportError as e:
        raise HTTPException(status_code=400, detail=f"Failed to parse CSV file: {e}")

    parsed, skipped = dedupe_items(rows_to_items(rows, mappings), _existing_keys(db, identity.vendor_id))
    logger.info(
        f"CSV import for vendor {identity.vendor_id}: {len(rows)} rows, "
        f"{len(parsed)} new items, {skipped} duplicates ({source} mapping)"
    )
    return CsvPreviewOut(
        mappings=mappings,
        mapping_source=source,
        parsed_items=parsed,
        duplicates_skipped=skipped,
        message=f"{len(parsed)} items ready to add.",
    )

# --- AI-assisted menu PDF import (restaurants, cafes) ---

@router.post("/import-menu", response_model=MenuPreviewOut)
async def import_menu(
    file: UploadFile = File(...),
    identity: Identity = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="No file uploaded or file is empty.")
    if len(contents) > MAX_MENU_BYTES:
        raise HTTPException(status_code=400, detail="Menu PDF is too large.")
    if file.content_type and file.content_type != "application/pdf":
        raise HTTPException(status_code=400, detail="Invalid file type. Please upload a PDF.")

    try:
        text = extract_pdf_text(contents)
        raw_items = extract_menu_items(text, client=get_ai_client())
    except MenuExtractionError as e:
        raise HTTPException(status_code=502, detail=f"Failed to extract menu: {e}")
    except MenuImportError as e:
        raise HTTPException(status_code=400, detail=str(e))

    parsed, skipped = dedupe_items(menu_items_to_imported(raw_items), _existing_keys(db, identity.vendor_id))
    logger.info(
        f"Menu import for vendor {identity.vendor_id}: {len(raw_items)} extracted, "
        f"{len(parsed)} new items, {skipped} duplicates"
    )
    if not parsed and not skipped:
        message = "No menu items could be extracted from the PDF."
    else:
        message = f"{len(parsed)} items ready to add."
    return MenuPreviewOut(parsed_items=parsed, duplicates_skipped=skipped, message=message)

@router.post("/bulk-add", status_code=status.HTTP_201_CREATED)
def bulk_add(
    req: BulkAddRequest,
    identity: Identity = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    to_add, skipped = dedupe_items(req.items, _existing_keys(db, identity.vendor_id))
    for item in to_add:
        if item.mrp is not None and item.price > item.mrp:
            raise HTTPException(status_code=400, detail=f"Price cannot be higher than MRP for '{item.item_name}'.")
    db.add_all([
        InventoryItem(
            vendor_id=identity.vendor_id,
            is_custom_item=True,
            image_url=_placeholder_image(item.item_name),
            **item.model_dump(),
        )
        for item in to_add
    ])
    db.commit()
    logger.info(f"Vendor {identity.vendor_id} bulk-added {len(to_add)} items, skipped {skipped} duplicates")
    return {"success": True, "items_added": len(to_add), "duplicates_skipped": skipped}
