"""
Order service and store tests against a real (SQLite) database.
"""

import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from conftest import GATEWAY_FEE, PLATFORM_FEE, build_order, item, portion
from vendor_portal.database import SessionLocal
from vendor_portal.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    OrderValidationError,
    StoreTimeoutError,
)
from vendor_portal.models import OrderRecord
from vendor_portal.order_service import OrderService
from vendor_portal.order_store import OrderStore
from vendor_portal.schemas import Order, OrderStatus, PortionStatus, VendorOrderPortion
from vendor_portal.state_machine import subtotal_of


class RacingStore(OrderStore):
    """Runs `race()` right after the first transactional read, before the commit."""

    def __init__(self, race, repeat=False, **kwargs):
        super().__init__(SessionLocal, **kwargs)
        self._race = race
        self._repeat = repeat

    def _new_transaction(self, session):
        tx = super()._new_transaction(session)
        race = self._race
        if not self._repeat:
            self._race = None
        if race is not None:
            original_get = tx.get

            def get(order_id):
                order = original_get(order_id)
                race()
                return order

            tx.get = get
        return tx


def raw_record(order_id):
    db = SessionLocal()
    try:
        record = db.get(OrderRecord, order_id)
        return record.version, record.document
    finally:
        db.close()


def two_vendor_order(order_id="ORD-1", status="Preparing", overall=OrderStatus.IN_PROGRESS, **kwargs):
    return build_order(
        order_id=order_id,
        portions=[
            portion("vendor-a", status=status, items=[item("rice", 2, "50.00")]),
            portion("vendor-b", status=status, items=[item("tea", 3, "10.00")]),
        ],
        overall_status=overall,
        **kwargs,
    )


def test_same_status_twice_changes_nothing(store, service):
    store.create_order(two_vendor_order())
    version_before, doc_before = raw_record("ORD-1")

    first = service.apply_portion_update("ORD-1", "vendor-a", PortionStatus.PREPARING)
    second = service.apply_portion_update("ORD-1", "vendor-a", "Preparing")

    assert not first.changed and not second.changed
    assert first.stale_views == []
    assert raw_record("ORD-1") == (version_before, doc_before)


def test_item_adjustment_on_confirmation(store, service):
    store.create_order(build_order(portions=[
        portion("vendor-a", items=[item("atta-5kg", 2, "50.00")]),
        portion("vendor-b", items=[item("soap", 1, "25.00")]),
    ]))
    before = store.get_order("ORD-1")
    assert before.portion_for("vendor-a").vendor_subtotal == Decimal("100.00")

    result = service.apply_portion_update("ORD-1", "vendor-a", PortionStatus.PREPARING, updated_items=[
        item("atta-5kg", 2, "50.00"),
        item("ghee-500g", 1, "20.00"),
    ])

    after = store.get_order("ORD-1")
    updated = after.portion_for("vendor-a")
    assert result.changed
    assert updated.status == PortionStatus.PREPARING
    assert updated.vendor_subtotal == Decimal("120.00") == subtotal_of(updated.items)
    assert after.grand_total - before.grand_total == Decimal("20.00")
    assert after.grand_total == sum(
        (p.vendor_subtotal for p in after.vendor_portions), Decimal("0")
    ) + PLATFORM_FEE + GATEWAY_FEE
    assert after.portion_for("vendor-b") == before.portion_for("vendor-b")
    assert result.stale_views == ["/orders", "/orders/ORD-1"]


def test_promotion_scenario(store, service):
    store.create_order(two_vendor_order())

    service.apply_portion_update("ORD-1", "vendor-b", PortionStatus.READY_FOR_PICKUP)
    assert store.get_order("ORD-1").overall_status == OrderStatus.IN_PROGRESS

    result = service.apply_portion_update("ORD-1", "vendor-a", PortionStatus.READY_FOR_PICKUP)
    assert result.promoted
    assert result.order.overall_status == OrderStatus.READY_FOR_PICKUP
    assert store.get_order("ORD-1").overall_status == OrderStatus.READY_FOR_PICKUP


def test_vendor_mismatch_is_forbidden_and_leaves_document_untouched(store, service):
    store.create_order(two_vendor_order())
    before = raw_record("ORD-1")

    with pytest.raises(ForbiddenError):
        service.apply_portion_update("ORD-1", "vendor-X", PortionStatus.READY_FOR_PICKUP)

    assert raw_record("ORD-1") == before


def test_missing_order_is_not_found(service):
    with pytest.raises(NotFoundError):
        service.apply_portion_update("NOPE", "vendor-a", PortionStatus.PREPARING)
    with pytest.raises(NotFoundError):
        service.get_order_for_vendor("NOPE", "vendor-a")


def test_rejected_update_writes_nothing(store, service):
    store.create_order(two_vendor_order(status="New", overall=OrderStatus.PENDING_CONFIRMATION))
    before = raw_record("ORD-1")

    with pytest.raises(InvalidTransitionError):
        service.apply_portion_update("ORD-1", "vendor-a", PortionStatus.READY_FOR_PICKUP)
    with pytest.raises(OrderValidationError):
        service.apply_portion_update("ORD-1", "vendor-a", PortionStatus.PREPARING, updated_items=[
            {"item_id": "rice", "name": "Rice", "quantity": -2, "price_per_item": "50.00", "total_price": "-100"},
        ])

    assert raw_record("ORD-1") == before


def test_interleaved_updates_for_different_vendors_are_both_kept(store):
    store.create_order(two_vendor_order())
    other_vendor = OrderService(store)

    def race():
        other_vendor.apply_portion_update("ORD-1", "vendor-b", PortionStatus.READY_FOR_PICKUP)

    racing = OrderService(RacingStore(race))
    result = racing.apply_portion_update("ORD-1", "vendor-a", PortionStatus.READY_FOR_PICKUP)

    final = store.get_order("ORD-1")
    assert final.portion_for("vendor-a").status == PortionStatus.READY_FOR_PICKUP
    assert final.portion_for("vendor-b").status == PortionStatus.READY_FOR_PICKUP
    # the retried attempt saw vendor-b's write, so promotion happened
    assert result.promoted
    assert final.overall_status == OrderStatus.READY_FOR_PICKUP
    version, _ = raw_record("ORD-1")
    assert version == 3


def test_duplicate_submission_racing_itself_is_applied_once(store):
    store.create_order(two_vendor_order(status="New", overall=OrderStatus.PENDING_CONFIRMATION))
    other = OrderService(store)

    def race():
        other.apply_portion_update("ORD-1", "vendor-a", PortionStatus.PREPARING, updated_items=[item("rice", 3, "50.00")])

    racing = OrderService(RacingStore(race))
    result = racing.apply_portion_update(
        "ORD-1", "vendor-a", PortionStatus.PREPARING, updated_items=[item("rice", 3, "50.00")]
    )

    # the retry finds the same items already confirmed and writes nothing more
    assert not result.changed
    assert raw_record("ORD-1")[0] == 2
    final = store.get_order("ORD-1")
    assert final.portion_for("vendor-a").vendor_subtotal == Decimal("150.00")
    assert final.grand_total == Decimal("192.50")


def test_conflict_after_exhausting_attempts(store):
    store.create_order(two_vendor_order(status="New", overall=OrderStatus.PENDING_CONFIRMATION))
    toggles = iter(range(100))

    def race():
        # bump the stored version behind the transaction's back on every attempt
        db = SessionLocal()
        try:
            record = db.get(OrderRecord, "ORD-1")
            record.version = record.version + 1
            record.document = dict(record.document, trip_destination=f"gate-{next(toggles)}")
            db.commit()
        finally:
            db.close()

    racing = OrderService(RacingStore(race, repeat=True, max_attempts=3))
    with pytest.raises(ConflictError):
        racing.apply_portion_update("ORD-1", "vendor-a", PortionStatus.PREPARING)

    assert store.get_order("ORD-1").portion_for("vendor-a").status == PortionStatus.NEW


def test_transaction_budget_surfaces_timeout(store):
    store.create_order(two_vendor_order(status="New", overall=OrderStatus.PENDING_CONFIRMATION))

    def race():
        db = SessionLocal()
        try:
            record = db.get(OrderRecord, "ORD-1")
            record.version = record.version + 1
            db.commit()
        finally:
            db.close()
        time.sleep(0.05)

    racing = OrderService(RacingStore(race, repeat=True, max_attempts=10))
    with pytest.raises(StoreTimeoutError):
        racing.apply_portion_update("ORD-1", "vendor-a", PortionStatus.PREPARING, timeout=0.01)


def test_confirm_pickup(store, service):
    store.create_order(build_order(portions=[portion("vendor-a", status="Ready for Pickup")],
                                   overall_status=OrderStatus.READY_FOR_PICKUP))
    result = service.confirm_pickup("ORD-1", "vendor-a")
    assert result.order.vendor_portion.status == PortionStatus.PICKED_UP

    # a repeat confirmation is a no-op
    assert not service.confirm_pickup("ORD-1", "vendor-a").changed


def test_confirm_pickup_requires_a_ready_portion(store, service):
    store.create_order(two_vendor_order())
    with pytest.raises(InvalidTransitionError):
        service.confirm_pickup("ORD-1", "vendor-a")


def test_active_orders_are_filtered_projected_and_sorted(store, service):
    store.create_order(two_vendor_order("ORD-OLD", minutes_ago=60))
    store.create_order(two_vendor_order("ORD-B", minutes_ago=5))
    store.create_order(two_vendor_order("ORD-A", minutes_ago=5))
    store.create_order(two_vendor_order("ORD-DONE", status="Picked Up", overall=OrderStatus.COMPLETED))
    store.create_order(two_vendor_order("ORD-GONE", status="Cancelled", overall=OrderStatus.CANCELLED))
    store.create_order(build_order("ORD-OTHER", portions=[portion("vendor-c")]))

    orders = service.list_active_orders_for_vendor("vendor-a")

    assert [o.order_id for o in orders] == ["ORD-A", "ORD-B", "ORD-OLD"]
    for o in orders:
        dumped = o.model_dump(mode="json")
        assert "vendor_portions" not in dumped
        assert dumped["vendor_portion"]["vendor_id"] == "vendor-a"
        assert "vendor-b" not in str(dumped)
        assert "tea" not in str(dumped)


def test_no_orders_is_an_empty_list(service):
    assert service.list_active_orders_for_vendor("vendor-a") == []
    assert service.list_ready_for_pickup("vendor-a") == []


def test_ready_for_pickup_uses_the_vendors_own_portion(store, service):
    store.create_order(build_order("ORD-1", portions=[
        portion("vendor-a", status="Ready for Pickup"),
        portion("vendor-b", status="Preparing"),
    ], overall_status=OrderStatus.IN_PROGRESS, minutes_ago=10))
    store.create_order(build_order("ORD-2", portions=[
        portion("vendor-a", status="Preparing"),
        portion("vendor-b", status="Ready for Pickup"),
    ], overall_status=OrderStatus.IN_PROGRESS))
    store.create_order(build_order("ORD-3", portions=[portion("vendor-a", status="Ready for Pickup")],
                                   overall_status=OrderStatus.READY_FOR_PICKUP))

    assert [o.order_id for o in service.list_ready_for_pickup("vendor-a")] == ["ORD-3", "ORD-1"]
    assert [o.order_id for o in service.list_ready_for_pickup("vendor-b")] == ["ORD-2"]


def test_order_details_for_non_member_is_forbidden(store, service):
    store.create_order(two_vendor_order())
    detail = service.get_order_for_vendor("ORD-1", "vendor-b")
    assert detail.vendor_portion.vendor_id == "vendor-b"
    with pytest.raises(ForbiddenError):
        service.get_order_for_vendor("ORD-1", "vendor-z")


def test_locked_database_is_reported_as_timeout(store):
    def locked(tx):
        raise OperationalError("UPDATE orders", {}, Exception("database is locked"))

    with pytest.raises(StoreTimeoutError):
        store.run_transaction(locked)


def test_other_database_errors_propagate(store):
    def broken(tx):
        raise OperationalError("UPDATE orders", {}, Exception("no such table: orders"))

    with pytest.raises(OperationalError):
        store.run_transaction(broken)


def test_portion_subtotal_must_match_its_items():
    with pytest.raises(ValidationError):
        VendorOrderPortion(vendor_id="vendor-a", items=[item("rice", 1, "50.00")], vendor_subtotal=Decimal("999"))


def test_grand_total_must_match_subtotals_and_fees():
    order = build_order(portions=[portion("vendor-a", items=[item("rice", 1, "50.00")])])
    with pytest.raises(ValidationError):
        Order.model_validate(dict(order.model_dump(), grand_total=Decimal("10.00")))


def test_totals_stay_consistent_in_storage_after_item_update(store, service):
    store.create_order(two_vendor_order(status="New", overall=OrderStatus.PENDING_CONFIRMATION))
    service.apply_portion_update("ORD-1", "vendor-b", PortionStatus.PREPARING, updated_items=[item("tea", 1, "10.00")])

    _, document = raw_record("ORD-1")
    stored = Order.model_validate(document)
    assert stored.portion_for("vendor-b").vendor_subtotal == Decimal("10.00")
    assert stored.grand_total == Decimal("100.00") + Decimal("10.00") + PLATFORM_FEE + GATEWAY_FEE


def test_created_at_is_normalised_to_utc():
    base = build_order().model_dump()
    naive = Order.model_validate(dict(base, created_at=datetime(2024, 5, 1, 13, 0)))
    assert naive.created_at == datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc)
    ist = Order.model_validate(dict(base, created_at=datetime(2024, 5, 1, 18, 30, tzinfo=timezone(timedelta(hours=5, minutes=30)))))
    assert ist.created_at.utcoffset() == timedelta(0)
    assert ist.created_at.hour == 13


def test_listing_mixes_naive_and_aware_timestamps(store, service):
    store.create_order(two_vendor_order("ORD-AWARE", status="Ready for Pickup"))
    naive = two_vendor_order("ORD-NAIVE", status="Ready for Pickup").model_dump()
    naive["created_at"] = datetime(2024, 5, 1, 13, 0)
    store.create_order(Order.model_validate(naive))

    assert [o.order_id for o in service.list_active_orders_for_vendor("vendor-a")] == ["ORD-NAIVE", "ORD-AWARE"]
    assert [o.order_id for o in service.list_ready_for_pickup("vendor-a")] == ["ORD-NAIVE", "ORD-AWARE"]
