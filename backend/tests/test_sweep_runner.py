import os
from datetime import timedelta

import pytest
from conftest import CART_ITEMS, T0
from filelock import FileLock

from storefront.services.sweep_runner import SWEEP_KINDS, SweepRunner


@pytest.fixture
def runner(sweep, discounts, tmp_path):
    return SweepRunner(sweep, discounts, lock_dir=str(tmp_path / "locks"))


def test_every_kind_runs(runner):
    for kind in SWEEP_KINDS:
        report = runner.run(kind)
        assert isinstance(report, dict)
    assert runner.run("discount_expiry") == {"record_type": "discount_codes", "expired": 0}


def test_unknown_kind(runner):
    with pytest.raises(ValueError):
        runner.run("inventory")
    with pytest.raises(ValueError):
        runner.run_exclusive("inventory")


def test_run_exclusive_reports(runner, recorder, mailer, clock):
    recorder.record_cart_activity("r1", {"email": "r1@example.com", "items": CART_ITEMS})
    clock.set(T0 + timedelta(minutes=31))
    report = runner.run_exclusive("carts")
    assert report["record_type"] == "carts"
    assert report["notified"] == 1
    assert len(mailer.outbox) == 1


def test_overlapping_cycle_is_skipped(runner, recorder, mailer, clock):
    recorder.record_cart_activity("r2", {"email": "r2@example.com", "items": CART_ITEMS})
    clock.set(T0 + timedelta(minutes=31))
    os.makedirs(runner.lock_dir, exist_ok=True)

    held = FileLock(os.path.join(runner.lock_dir, "sweep_carts.lock"))
    with held:
        assert runner.run_exclusive("carts") is None
    assert mailer.outbox == []

    # other kinds are not blocked by the carts lock
    with held:
        assert runner.run_exclusive("abandoned_checkouts") is not None
