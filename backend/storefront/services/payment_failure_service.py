import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from storefront.models.lifecycle import OPEN_STATUSES, PENDING
from storefront.repositories import record_store as rs
from storefront.services.activity_service import normalize_email
from storefront.services.exceptions import unwrap
from storefront.utils.clock import Clock

log = logging.getLogger("lifecycle.payment_failures")


class PaymentFailureService:
    def __init__(self, store: rs.RecordStore, clock: Clock):
        self.store = store
        self.clock = clock

    def record_failure(
        self,
        order_number: str,
        email: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        cart: Optional[List[Dict]] = None,
        total_cents: int = 0,
        customer: Optional[Dict] = None,
        shipping_address: Optional[Dict] = None,
        shipping_method: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        """
        One live record per order. A repeated failure for the same order
        refreshes the open record instead of creating a second one, so the
        retry prompt is still sent at most once.
        """
        now = self.clock.now()
        email = normalize_email(email)
        open_key = {"order_number": order_number, "status": {"$in": list(OPEN_STATUSES)}}

        patch: Dict[str, Any] = {"failed_at": now, "last_activity_at": now}
        for field, value in (
            ("email", email),
            ("payment_intent_id", payment_intent_id),
            ("cart", cart),
            ("customer", customer),
            ("shipping_address", shipping_address),
            ("shipping_method", shipping_method),
        ):
            if value:
                patch[field] = value
        if total_cents:
            patch["total_cents"] = total_cents

        res = unwrap(self.store.update(rs.PAYMENT_FAILURES, open_key, patch))
        if res.matched:
            log.info("payment failure for %s refreshed", order_number)
            return unwrap(self.store.read_one(rs.PAYMENT_FAILURES, open_key))

        doc = dict(patch)
        doc.update(
            {
                "order_number": order_number,
                "retry_token": uuid4().hex,
                "status": PENDING,
                "recovery_count": 0,
            }
        )
        record = unwrap(self.store.create(rs.PAYMENT_FAILURES, doc))
        log.info("payment failure recorded for %s", order_number)
        return record
