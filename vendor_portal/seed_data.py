from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging

from .database import SessionLocal, engine
from .models import Base, GlobalItem, Vendor
from .api_auth import hash_password
from .order_store import OrderStore
from .schemas import Order, OrderItemDetail, VendorOrderPortion, OrderStatus, PaymentStatus, CustomerInfo

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_PASSWORD = "demo123"

def _item(item_id, name, qty, price):
    price = Decimal(price)
    return OrderItemDetail(item_id=item_id, name=name, quantity=qty, price_per_item=price, total_price=price * qty)

def _portion(vendor, items, status="New"):
    return VendorOrderPortion(
        vendor_id=vendor.vendor_id,
        vendor_name=vendor.shop_name,
        vendor_type=vendor.store_category,
        vendor_address=vendor.shop_full_address,
        status=status,
        items=items,
        vendor_subtotal=sum((i.total_price for i in items), Decimal("0")),
    )

def demo_orders(grocer: Vendor, cafe: Vendor, now: datetime):
    platform_fee, gateway_fee = Decimal("10.00"), Decimal("4.50")

    def order(order_id, portions, minutes_ago, overall):
        subtotal = sum((p.vendor_subtotal for p in portions), Decimal("0"))
        return Order(
            order_id=order_id,
            customer_info=CustomerInfo(id="cust-001", name="Asha Rao", phone_number="+919800000001"),
            trip_start_location="Koramangala",
            trip_destination="Airport T2",
            created_at=now - timedelta(minutes=minutes_ago),
            overall_status=overall,
            payment_status=PaymentStatus.PAID,
            grand_total=subtotal + platform_fee + gateway_fee,
            platform_fee=platform_fee,
            payment_gateway_fee=gateway_fee,
            vendor_portions=portions,
        )

    return [
        order("ORD-1001", [
            _portion(grocer, [_item("milk-1l", "Milk 1L", 2, "30.00"), _item("bread", "Brown Bread", 1, "40.00")]),
            _portion(cafe, [_item("latte", "Cafe Latte", 2, "120.00")]),
        ], 5, OrderStatus.PENDING_CONFIRMATION),
        order("ORD-1002", [
            _portion(cafe, [_item("croissant", "Butter Croissant", 3, "90.00")], status="Preparing"),
        ], 30, OrderStatus.IN_PROGRESS),
        order("ORD-0999", [
            _portion(grocer, [_item("eggs-12", "Eggs (12)", 1, "84.00")], status="Picked Up"),
        ], 24 * 60, OrderStatus.COMPLETED),
    ]

def demo_global_items():
    return [
        GlobalItem(item_name="Amul Taaza Milk 1L", shared_item_type="grocery", default_category="Dairy",
                   default_unit="1 L", brand="Amul", mrp=68.0, price=66.0),
        GlobalItem(item_name="Aashirvaad Atta 5kg", shared_item_type="grocery", default_category="Staples",
                   default_unit="5 kg", brand="Aashirvaad", mrp=295.0),
        GlobalItem(item_name="Dolo 650", generic_name="Paracetamol 650mg", shared_item_type="medical",
                   default_category="Fever & Pain", default_unit="strip of 15", brand="Micro Labs", mrp=33.6),
    ]

def seed():
    # Ensure tables exist
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()

    try:
        # Check if vendors exist
        if db.query(Vendor).first():
            logger.info("Vendors table already seeded.")
            return

        grocer = Vendor(
            vendor_id="ven-grocer-001",
            email="grocer@demo.com",
            password_hash=hash_password(DEMO_PASSWORD),
            shop_name="Fresh Basket",
            store_category="Grocery Store",
            owner_name="Ravi Kumar",
            city="Bengaluru",
            shop_full_address="12 Market Road, Bengaluru",
        )
        cafe = Vendor(
            vendor_id="ven-cafe-001",
            email="cafe@demo.com",
            password_hash=hash_password(DEMO_PASSWORD),
            shop_name="Bean There",
            store_category="Cafe",
            owner_name="Meera Iyer",
            city="Bengaluru",
            shop_full_address="4 Lake View, Bengaluru",
        )
        db.add_all([grocer, cafe])
        db.commit()
        logger.info("Successfully seeded 2 demo vendors.")

        db.add_all(demo_global_items())
        db.commit()
        logger.info("Successfully seeded global catalogue items.")

        store = OrderStore(SessionLocal)
        for o in demo_orders(grocer, cafe, datetime.now(timezone.utc)):
            store.create_order(o)
        logger.info("Successfully seeded demo orders.")

    except Exception as e:
        logger.error(f"Seeding failed: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    seed()
