import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from conftest import CART_ITEMS, T0

from storefront.repositories import record_store as rs
from storefront.services.activity_service import item_price_cents, item_quantity


def test_first_cart_activity_creates_session(recorder):
    cart = recorder.record_cart_activity("owner-1", {"email": " Ada@Example.COM ", "items": CART_ITEMS})
    assert cart["owner_id"] == "owner-1"
    assert cart["email"] == "ada@example.com"
    assert cart["total_cents"] == 2 * 29900 + 19900
    assert cart["item_count"] == 3
    assert cart["updated_at"] == T0
    assert cart["notified_at"] is None


def test_absent_fields_never_overwrite_present_ones(recorder, clock):
    recorder.record_cart_activity("owner-2", {"email": "bo@example.com", "items": CART_ITEMS})
    clock.advance(timedelta(minutes=3))
    cart = recorder.record_cart_activity("owner-2", {"email": None})
    assert cart["email"] == "bo@example.com"
    assert cart["items"] == CART_ITEMS
    assert cart["updated_at"] == T0 + timedelta(minutes=3)


def test_retry_with_same_payload_is_idempotent(recorder, store, clock):
    payload = {"email": "cy@example.com", "items": CART_ITEMS}
    first = recorder.record_cart_activity("owner-3", payload)
    store.update(rs.CARTS, {"owner_id": "owner-3"}, {"notified_at": T0})

    second = recorder.record_cart_activity("owner-3", payload)
    for key in ("items", "total_cents", "item_count", "email", "id"):
        assert second[key] == first[key]
    # same items is not a mutation, the idle period is unchanged
    assert second["notified_at"] == T0


def test_item_change_starts_a_new_idle_period(recorder, store, clock):
    recorder.record_cart_activity("owner-4", {"items": CART_ITEMS})
    store.update(rs.CARTS, {"owner_id": "owner-4"}, {"notified_at": T0, "superseded_at": T0})
    clock.advance(timedelta(hours=1))

    cart = recorder.record_cart_activity("owner-4", {"items": CART_ITEMS[:1]})
    assert cart["notified_at"] is None
    assert cart["superseded_at"] is None
    assert cart["total_cents"] == 2 * 29900
    assert cart["updated_at"] == T0 + timedelta(hours=1)


def test_checkout_capture_upserts_pending_record(recorder, clock):
    first = recorder.record_checkout_activity(
        "Dee@Example.com", {"cart": CART_ITEMS, "total_cents": 79700}
    )
    clock.advance(timedelta(minutes=2))
    second = recorder.record_checkout_activity(
        "dee@example.com",
        {"shipping_address": {"city": "Stockholm"}, "cart": None, "customer": {}},
    )

    assert second["id"] == first["id"]
    assert second["status"] == "pending"
    assert second["cart"] == CART_ITEMS
    assert second["total_cents"] == 79700
    assert second["shipping_address"] == {"city": "Stockholm"}
    assert second["created_at"] == T0
    assert second["last_activity_at"] == T0 + timedelta(minutes=2)
    assert second["recovery_count"] == 0
    assert len(first["id"]) == 32


def test_checkout_capture_never_touches_completed_record(recorder, store, clock):
    old = recorder.record_checkout_activity("eve@example.com", {"cart": CART_ITEMS})
    store.update(rs.CHECKOUTS, {"id": old["id"]}, {"status": "completed", "completed_at": T0})
    before = store.read_one(rs.CHECKOUTS, {"id": old["id"]}).value

    clock.advance(timedelta(days=1))
    new = recorder.record_checkout_activity("eve@example.com", {"cart": CART_ITEMS[:1]})

    assert new["id"] != old["id"]
    assert new["status"] == "pending"
    assert store.read_one(rs.CHECKOUTS, {"id": old["id"]}).value == before


def test_checkout_capture_gives_guest_cart_an_address(recorder, store, clock):
    recorder.record_cart_activity("guest-1", {"items": CART_ITEMS})
    clock.advance(timedelta(minutes=5))

    recorder.record_checkout_activity("G@Example.com", {"user_id": "guest-1", "cart": CART_ITEMS})

    cart = store.read_one(rs.CARTS, {"owner_id": "guest-1"}).value
    assert cart["email"] == "g@example.com"
    # capturing an address is not basket activity
    assert cart["updated_at"] == T0


def test_checkout_capture_keeps_existing_cart_email(recorder, store):
    recorder.record_cart_activity("owner-5", {"email": "own@example.com", "items": CART_ITEMS})
    recorder.record_checkout_activity("other@example.com", {"user_id": "owner-5"})
    assert store.read_one(rs.CARTS, {"owner_id": "owner-5"}).value["email"] == "own@example.com"


def test_checkout_capture_without_cart_creates_none(recorder, store):
    recorder.record_checkout_activity("nocart@example.com", {"user_id": "ghost"})
    assert store.read(rs.CARTS, {"owner_id": "ghost"}).value == []


def test_concurrent_first_captures_share_one_pending_checkout(recorder, store):
    workers = 4
    barrier = threading.Barrier(workers)

    def capture(i):
        barrier.wait()
        return recorder.record_checkout_activity("race@example.com", {"total_cents": 100 * i})

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(capture, range(workers)))

    assert len({r["id"] for r in results}) == 1
    pending = store.read(rs.CHECKOUTS, {"email": "race@example.com", "status": "pending"}).value
    assert len(pending) == 1


@pytest.mark.parametrize(
    "item,quantity,price_cents",
    [
        ({"quantity": 2, "price_cents": 29900}, 2, 29900),
        ({"quantity": None, "price": 299}, 1, 29900),
        ({"quantity": "3", "price": "19.90"}, 3, 1990),
        ({"quantity": "lots", "price": None}, 1, 0),
        ({"quantity": 0, "price_cents": -5}, 1, 0),
        ({}, 1, 0),
    ],
)
def test_item_fields_are_read_leniently(item, quantity, price_cents):
    assert item_quantity(item) == quantity
    assert item_price_cents(item) == price_cents
