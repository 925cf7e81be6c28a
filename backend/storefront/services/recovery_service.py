import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from storefront.models.lifecycle import OPEN_STATUSES, RECOVERED, can_transition
from storefront.repositories import record_store as rs
from storefront.services.exceptions import AlreadyCompleted, RecordNotFound, unwrap
from storefront.utils.clock import Clock

log = logging.getLogger("lifecycle.recovery")


@dataclass
class RecoveredCheckout:
    record: Dict[str, Any]
    cart: Any
    customer: Optional[Dict]
    shipping_address: Optional[Dict]
    shipping_method: Optional[Dict]
    total_cents: int
    email: Optional[str]

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RecoveredCheckout":
        return cls(
            record=record,
            cart=record.get("cart") or [],
            customer=record.get("customer"),
            shipping_address=record.get("shipping_address"),
            shipping_method=record.get("shipping_method"),
            total_cents=record.get("total_cents") or 0,
            email=record.get("email"),
        )


class RecoveryResolver:
    """
    Turns a recovery link click back into a checkout snapshot.

    A completed record is never reopened: the reactivating write is
    conditional on the status still being open, and a completed record is
    reported as AlreadyCompleted without any write.
    """

    def __init__(self, store: rs.RecordStore, clock: Clock):
        self.store = store
        self.clock = clock

    def recover_checkout(self, token: str) -> RecoveredCheckout:
        return self._recover(rs.CHECKOUTS, {"id": token})

    def recover_payment(self, retry_token: str) -> RecoveredCheckout:
        return self._recover(rs.PAYMENT_FAILURES, {"retry_token": retry_token})

    def _recover(self, record_type: str, key: Dict[str, Any]) -> RecoveredCheckout:
        record = unwrap(self.store.read_one(record_type, key))
        if record is None:
            raise RecordNotFound(f"No {record_type} record for this link")
        if not can_transition(record["status"], RECOVERED):
            raise AlreadyCompleted("This checkout was already completed")

        now = self.clock.now()
        flt = dict(key)
        flt["status"] = {"$in": list(OPEN_STATUSES)}
        res = unwrap(
            self.store.update(
                record_type,
                flt,
                {
                    "status": RECOVERED,
                    "$inc": {"recovery_count": 1},
                    "last_activity_at": now,
                    "recovered_at": now,
                },
            )
        )
        if res.matched == 0:
            # completed between our read and write
            log.info("recovery of %s %s lost to completion", record_type, key)
            raise AlreadyCompleted("This checkout was already completed")

        record = unwrap(self.store.read_one(record_type, key))
        log.info(
            "%s %s recovered (count=%s)", record_type, key, record["recovery_count"]
        )
        return RecoveredCheckout.from_record(record)
