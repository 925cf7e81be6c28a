import logging
import os
import tempfile
from typing import Any, Callable, Dict, Optional

from filelock import FileLock, Timeout

from storefront.repositories import record_store as rs
from storefront.services.abandonment_sweep import AbandonmentSweep
from storefront.services.discount_service import DiscountService

log = logging.getLogger("lifecycle.runner")

SWEEP_KINDS = (
    "carts",
    "abandoned_checkouts",
    "checkout_followups",
    "payment_failures",
    "discount_reminders",
    "discount_expiry",
)


class SweepRunner:
    """
    Entry point for scheduled and manual sweeps.

    run_exclusive() holds a per-kind file lock for the duration of the sweep,
    so a cycle never starts while the previous one for the same kind is
    still running, in this process or another one.
    """

    def __init__(
        self,
        abandonment: AbandonmentSweep,
        discounts: DiscountService,
        lock_dir: Optional[str] = None,
        lock_timeout: float = 0.0,
    ):
        self.abandonment = abandonment
        self.discounts = discounts
        self.lock_dir = lock_dir or os.path.join(tempfile.gettempdir(), "storefront_sweep_locks")
        self.lock_timeout = lock_timeout
        self._jobs: Dict[str, Callable[[], Dict[str, Any]]] = {
            "carts": lambda: self.abandonment.sweep(rs.CARTS).as_dict(),
            "abandoned_checkouts": lambda: self.abandonment.sweep(rs.CHECKOUTS).as_dict(),
            "checkout_followups": lambda: self.abandonment.sweep_checkout_followups().as_dict(),
            "payment_failures": lambda: self.abandonment.sweep(rs.PAYMENT_FAILURES).as_dict(),
            "discount_reminders": lambda: self.discounts.sweep_reminders().as_dict(),
            "discount_expiry": self._expire_codes,
        }

    def _expire_codes(self) -> Dict[str, Any]:
        return {"record_type": rs.DISCOUNT_CODES, "expired": self.discounts.sweep_expired()}

    def run(self, kind: str) -> Dict[str, Any]:
        job = self._jobs.get(kind)
        if job is None:
            raise ValueError(f"Unknown sweep kind: {kind}")
        return job()

    def run_exclusive(self, kind: str) -> Optional[Dict[str, Any]]:
        if kind not in self._jobs:
            raise ValueError(f"Unknown sweep kind: {kind}")
        os.makedirs(self.lock_dir, exist_ok=True)
        lock = FileLock(os.path.join(self.lock_dir, f"sweep_{kind}.lock"))
        try:
            with lock.acquire(timeout=self.lock_timeout):
                return self.run(kind)
        except Timeout:
            log.info("sweep %s already running, skipping this cycle", kind)
            return None
