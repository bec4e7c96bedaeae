from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Boolean, JSON
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import func
import uuid

Base = declarative_base()

class Vendor(Base):
    __tablename__ = 'vendors'
    vendor_id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False) # "salt$hex" PBKDF2-SHA256
    shop_name = Column(String, nullable=False)
    store_category = Column(String, default="Other") # 'Grocery Store', 'Restaurant', 'Pharmacy', ...
    owner_name = Column(String)
    phone_country_code = Column(String)
    phone_number = Column(String)
    city = Column(String)
    shop_full_address = Column(String)
    latitude = Column(Float)
    longitude = Column(Float)
    opening_time = Column(String) # "HH:MM"
    closing_time = Column(String)
    weekly_close_on = Column(String)
    is_active = Column(Boolean, default=True)
    role = Column(String, default="vendor") # 'vendor' or 'admin'
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    inventory = relationship("InventoryItem", back_populates="vendor", cascade="all, delete-orphan")

class InventoryItem(Base):
    __tablename__ = 'inventory_items'
    item_id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    vendor_id = Column(String, ForeignKey('vendors.vendor_id'), index=True, nullable=False)
    global_item_id = Column(String, ForeignKey('global_items.item_id'), nullable=True) # set when linked from the catalogue
    item_name = Column(String, nullable=False)
    vendor_item_category = Column(String, nullable=False)
    stock_quantity = Column(Integer, default=0)
    price = Column(Float, nullable=False)
    mrp = Column(Float, nullable=True)
    unit = Column(String, nullable=False)
    description = Column(String)
    image_url = Column(String)
    brand = Column(String)
    barcode = Column(String)
    is_custom_item = Column(Boolean, default=True)
    is_available = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    last_stock_update = Column(DateTime(timezone=True), server_default=func.now())

    vendor = relationship("Vendor", back_populates="inventory")
    global_item = relationship("GlobalItem")

# Shared product catalogue that grocery, pharmacy and liquor vendors pick from
class GlobalItem(Base):
    __tablename__ = 'global_items'
    item_id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    item_name = Column(String, nullable=False, index=True)
    generic_name = Column(String)
    shared_item_type = Column(String, nullable=False, index=True) # 'grocery', 'medical', 'liquor', 'other'
    default_category = Column(String, nullable=False)
    default_unit = Column(String, nullable=False)
    brand = Column(String)
    description = Column(String)
    default_image_url = Column(String)
    barcode = Column(String)
    mrp = Column(Float)
    price = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

# Orders are stored as whole documents. `version` backs the conditional
# writes in order_store; `overall_status` and `created_at` are copies of the
# document fields kept for filtering.
class OrderRecord(Base):
    __tablename__ = 'orders'
    order_id = Column(String, primary_key=True)
    overall_status = Column(String, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    document = Column(JSON, nullable=False)

    vendors = relationship("OrderVendor", back_populates="order", cascade="all, delete-orphan")

class OrderVendor(Base):
    """Which vendors take part in an order (array-contains lookup)."""
    __tablename__ = 'order_vendors'
    order_id = Column(String, ForeignKey('orders.order_id'), primary_key=True)
    vendor_id = Column(String, primary_key=True, index=True)

    order = relationship("OrderRecord", back_populates="vendors")
