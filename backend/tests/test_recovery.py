from datetime import timedelta

import pytest
from conftest import CART_ITEMS, T0

from storefront.models.lifecycle import can_transition
from storefront.repositories import record_store as rs
from storefront.services.exceptions import AlreadyCompleted, RecordNotFound, StoreError
from storefront.services.recovery_service import RecoveryResolver


def _capture(recorder, email="rec@example.com"):
    return recorder.record_checkout_activity(
        email,
        {
            "cart": CART_ITEMS,
            "total_cents": 79700,
            "customer": {"firstName": "Rita"},
            "shipping_method": {"id": "postnord"},
        },
    )


def test_recover_reactivates_and_counts(recorder, resolver, store, clock):
    checkout = _capture(recorder)

    clock.set(T0 + timedelta(minutes=30))
    first = resolver.recover_checkout(checkout["id"])
    assert first.record["status"] == "recovered"
    assert first.record["recovery_count"] == 1
    assert first.record["last_activity_at"] == T0 + timedelta(minutes=30)
    assert first.cart == CART_ITEMS
    assert first.customer == {"firstName": "Rita"}
    assert first.total_cents == 79700

    clock.set(T0 + timedelta(minutes=45))
    second = resolver.recover_checkout(checkout["id"])
    assert second.record["status"] == "recovered"
    assert second.record["recovery_count"] == 2
    assert second.record["recovered_at"] == T0 + timedelta(minutes=45)


def test_unknown_token(resolver):
    with pytest.raises(RecordNotFound):
        resolver.recover_checkout("does-not-exist")
    with pytest.raises(RecordNotFound):
        resolver.recover_payment("does-not-exist")


def test_completed_checkout_is_never_reopened(recorder, resolver, store, clock):
    checkout = _capture(recorder)
    store.update(rs.CHECKOUTS, {"id": checkout["id"]}, {"status": "completed", "completed_at": T0})
    before = store.read_one(rs.CHECKOUTS, {"id": checkout["id"]}).value

    clock.set(T0 + timedelta(days=2))
    for _ in range(3):
        with pytest.raises(AlreadyCompleted):
            resolver.recover_checkout(checkout["id"])

    assert store.read_one(rs.CHECKOUTS, {"id": checkout["id"]}).value == before


def test_status_stays_completed_under_sweeps_and_recovery(recorder, resolver, sweep, store, mailer, clock):
    checkout = _capture(recorder)
    resolver.recover_checkout(checkout["id"])
    store.update(
        rs.CHECKOUTS,
        {"id": checkout["id"], "status": {"$in": ["pending", "recovered"]}},
        {"status": "completed"},
    )

    clock.set(T0 + timedelta(hours=1))
    sweep.sweep(rs.CHECKOUTS)
    sweep.sweep_checkout_followups()
    with pytest.raises(AlreadyCompleted):
        resolver.recover_checkout(checkout["id"])
    recorder.record_checkout_activity("rec@example.com", {"cart": CART_ITEMS})

    assert store.read_one(rs.CHECKOUTS, {"id": checkout["id"]}).value["status"] == "completed"
    assert mailer.sent(kind="abandoned_checkout") == []


def test_recover_payment_by_retry_token(payment_failures, resolver, clock):
    failure = payment_failures.record_failure(
        "ORD-R1", email="pay@example.com", cart=CART_ITEMS, total_cents=79700
    )
    clock.set(T0 + timedelta(minutes=20))
    rec = resolver.recover_payment(failure["retry_token"])
    assert rec.record["order_number"] == "ORD-R1"
    assert rec.record["status"] == "recovered"
    assert rec.record["recovery_count"] == 1
    assert rec.email == "pay@example.com"


def test_store_failure_surfaces_as_retryable(broken_store, clock):
    with pytest.raises(StoreError) as exc:
        RecoveryResolver(broken_store, clock).recover_checkout("tok")
    assert exc.value.retryable is True


def test_transition_table_is_monotonic():
    assert can_transition("pending", "recovered")
    assert can_transition("recovered", "recovered")
    assert can_transition("pending", "completed")
    assert not can_transition("completed", "pending")
    assert not can_transition("completed", "recovered")
    assert not can_transition("recovered", "pending")
