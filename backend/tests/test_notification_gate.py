import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from conftest import CART_ITEMS, T0

from storefront.adapters.mock_mailer import MockMailerAdapter
from storefront.repositories import record_store as rs
from storefront.services import notification_gate as ng
from storefront.services.notification_gate import NotificationGate


def _checkout(recorder, email="gate@example.com"):
    return recorder.record_checkout_activity(email, {"cart": CART_ITEMS, "total_cents": 79700})


def _notice(checkout, now):
    return ng.checkout_notice(checkout, now - timedelta(minutes=10), now, {"recovery_url": "x"})


def test_sends_once_then_reports_already_notified(store, recorder, mailer, clock):
    checkout = _checkout(recorder)
    now = clock.advance(timedelta(minutes=11))
    gate = NotificationGate(store, mailer, clock)

    first = gate.try_notify(_notice(checkout, now))
    second = gate.try_notify(_notice(checkout, now))

    assert first.sent and first.reason == ng.SENT and first.message_id
    assert not second.sent and second.reason == ng.ALREADY_NOTIFIED
    assert len(mailer.sent(kind="abandoned_checkout")) == 1
    stored = store.read_one(rs.CHECKOUTS, {"id": checkout["id"]}).value
    assert stored["email_sent"] is True
    assert stored["notified_at"] == now


def test_dispatch_failure_does_not_roll_back_flag(store, recorder, clock):
    failing = MockMailerAdapter(fail_all=True)
    gate = NotificationGate(store, failing, clock)
    checkout = _checkout(recorder)
    now = clock.advance(timedelta(minutes=11))

    outcome = gate.try_notify(_notice(checkout, now))
    assert outcome.reason == ng.DISPATCH_FAILED
    assert outcome.error

    assert store.read_one(rs.CHECKOUTS, {"id": checkout["id"]}).value["email_sent"] is True
    retry = gate.try_notify(_notice(checkout, now))
    assert retry.reason == ng.ALREADY_NOTIFIED
    assert len(failing.failures) == 1


def test_activity_after_listing_makes_the_write_miss(store, recorder, mailer, clock):
    checkout = _checkout(recorder)
    now = clock.advance(timedelta(minutes=11))
    notice = _notice(checkout, now)

    # customer comes back between the sweep's list and its write
    _checkout(recorder)

    outcome = NotificationGate(store, mailer, clock).try_notify(notice)
    assert outcome.reason == ng.ALREADY_NOTIFIED
    assert mailer.outbox == []


def test_terminal_record_is_never_notified(store, recorder, mailer, clock):
    checkout = _checkout(recorder)
    store.update(rs.CHECKOUTS, {"id": checkout["id"]}, {"status": "completed"})
    now = clock.advance(timedelta(minutes=11))

    outcome = NotificationGate(store, mailer, clock).try_notify(_notice(checkout, now))
    assert outcome.reason == ng.ALREADY_NOTIFIED
    assert mailer.outbox == []


def test_missing_address_is_skipped_without_write(store, recorder, mailer, clock):
    cart = recorder.record_cart_activity("anon", {"items": CART_ITEMS})
    now = clock.advance(timedelta(minutes=31))
    notice = ng.cart_notice(cart, now - timedelta(minutes=30), now, {})

    outcome = NotificationGate(store, mailer, clock).try_notify(notice)
    assert outcome.reason == ng.NO_ADDRESS
    assert store.read_one(rs.CARTS, {"owner_id": "anon"}).value["notified_at"] is None


def test_store_failure_is_reported(broken_store, mailer, clock):
    checkout = {"id": "tok", "email": "x@example.com"}
    outcome = NotificationGate(broken_store, mailer, clock).try_notify(_notice(checkout, T0))
    assert outcome.reason == ng.STORE_ERROR
    assert mailer.outbox == []


def test_concurrent_gates_send_at_most_once(store, recorder, mailer, clock):
    checkout = _checkout(recorder)
    now = clock.advance(timedelta(minutes=11))
    workers = 8
    barrier = threading.Barrier(workers)

    def attempt(_):
        barrier.wait()
        return NotificationGate(store, mailer, clock).try_notify(_notice(checkout, now))

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(attempt, range(workers)))

    assert sum(1 for o in outcomes if o.sent) == 1
    assert all(o.reason in (ng.SENT, ng.ALREADY_NOTIFIED) for o in outcomes)
    assert len(mailer.outbox) == 1
