import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

# Point the app at a throwaway SQLite database before vendor_portal is imported
_DB_DIR = tempfile.mkdtemp(prefix="vendor_portal_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("JWT_SECRET", "test-secret")

from vendor_portal.database import SessionLocal, engine  # noqa: E402
from vendor_portal.models import Base, Vendor  # noqa: E402
from vendor_portal.order_service import OrderService  # noqa: E402
from vendor_portal.order_store import OrderStore  # noqa: E402
from vendor_portal.schemas import (  # noqa: E402
    Order,
    OrderItemDetail,
    OrderStatus,
    PaymentStatus,
    VendorOrderPortion,
)

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
PLATFORM_FEE = Decimal("10.00")
GATEWAY_FEE = Decimal("2.50")


def item(item_id, quantity, price):
    price = Decimal(price)
    return OrderItemDetail(
        item_id=item_id,
        name=item_id.replace("-", " ").title(),
        quantity=quantity,
        price_per_item=price,
        total_price=price * quantity,
    )


def portion(vendor_id, status="New", items=None):
    items = items if items is not None else [item(f"{vendor_id}-item", 1, "50.00")]
    return VendorOrderPortion(
        vendor_id=vendor_id,
        vendor_name=f"Shop {vendor_id}",
        status=status,
        items=items,
        vendor_subtotal=sum((i.total_price for i in items), Decimal("0")),
    )


def build_order(order_id="ORD-1", portions=None, overall_status=OrderStatus.PENDING_CONFIRMATION,
                minutes_ago=0):
    portions = portions or [portion("vendor-a")]
    subtotal = sum((p.vendor_subtotal for p in portions), Decimal("0"))
    return Order(
        order_id=order_id,
        created_at=BASE_TIME - timedelta(minutes=minutes_ago),
        overall_status=overall_status,
        payment_status=PaymentStatus.PAID,
        grand_total=subtotal + PLATFORM_FEE + GATEWAY_FEE,
        platform_fee=PLATFORM_FEE,
        payment_gateway_fee=GATEWAY_FEE,
        vendor_portions=portions,
    )


class FakeAI:
    """Stands in for the OpenAI client: records prompts, replays a canned answer."""

    def __init__(self, content=None, error=None):
        self.calls = []
        self._content = content
        self._error = error
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self._error:
            raise self._error
        message = SimpleNamespace(content=self._content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture(autouse=True)
def tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def store():
    return OrderStore(SessionLocal)


@pytest.fixture
def service(store):
    return OrderService(store)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from vendor_portal.main import app
    return TestClient(app)


@pytest.fixture
def auth_headers():
    """Create a vendor row and return bearer headers for it."""
    from vendor_portal.api_auth import create_access_token, hash_password

    def make(vendor_id="vendor-a", email=None):
        db = SessionLocal()
        try:
            vendor = db.get(Vendor, vendor_id)
            if vendor is None:
                vendor = Vendor(
                    vendor_id=vendor_id,
                    email=email or f"{vendor_id}@example.com",
                    password_hash=hash_password("secret123"),
                    shop_name=f"Shop {vendor_id}",
                )
                db.add(vendor)
                db.commit()
                db.refresh(vendor)
            token = create_access_token(vendor)
        finally:
            db.close()
        return {"Authorization": f"Bearer {token}"}

    return make
