"""
Periodic scan for abandoned carts, checkouts and failed payments.

Each candidate is processed on its own: idle re-check, superseding
completion check, then the notification gate. A failure on one record is
counted and logged, and the scan moves on.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from storefront.config import LifecycleWindows
from storefront.models.lifecycle import COMPLETED, OPEN_STATUSES, PENDING
from storefront.repositories import record_store as rs
from storefront.services import notification_gate as gate_mod
from storefront.services.activity_service import item_price_cents, item_quantity
from storefront.services.exceptions import unwrap
from storefront.services.notification_gate import NotificationGate, Notice
from storefront.utils.clock import Clock

log = logging.getLogger("lifecycle.sweep")

NOT_IDLE = "not-idle"
SUPERSEDED = "superseded"


@dataclass
class SweepReport:
    record_type: str
    scanned: int = 0
    notified: int = 0
    skipped: int = 0
    errored: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, key: Any, reason: str, error: Optional[str] = None):
        entry = {"key": key, "reason": reason}
        if error:
            entry["error"] = error
        self.details.append(entry)
        if reason == gate_mod.SENT:
            self.notified += 1
        elif reason in (gate_mod.DISPATCH_FAILED, gate_mod.STORE_ERROR, "error"):
            self.errored += 1
        else:
            self.skipped += 1

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def format_money(cents: Optional[int], currency: str = "SEK") -> str:
    return f"{(cents or 0) / 100:.2f} {currency}"


def format_items(items: Optional[List[Dict]], currency: str = "SEK") -> List[Dict]:
    out = []
    for it in items or []:
        qty = item_quantity(it)
        price = item_price_cents(it)
        out.append(
            {
                "name": it.get("name") or it.get("sku") or "Item",
                "quantity": qty,
                "price": format_money(price, currency),
                "line_total": format_money(price * qty, currency),
            }
        )
    return out


def customer_name(record: Dict) -> str:
    customer = record.get("customer") or {}
    name = customer.get("firstName") or customer.get("name")
    if name:
        return name
    email = record.get("email") or ""
    return email.split("@")[0] if email else "there"


def complete_record(
    store: rs.RecordStore, record_type: str, key: Dict, now: datetime, **extra
) -> int:
    """Move open checkout or payment-failure records to completed. Monotonic."""
    flt = dict(key)
    flt["status"] = {"$in": list(OPEN_STATUSES)}
    patch = {"status": COMPLETED, "completed_at": now}
    patch.update(extra)
    return unwrap(store.update(record_type, flt, patch)).matched


class AbandonmentSweep:
    def __init__(
        self,
        store: rs.RecordStore,
        dispatcher,
        clock: Clock,
        windows: LifecycleWindows,
        frontend_url: str = "",
        batch_limit: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.windows = windows
        self.frontend_url = frontend_url.rstrip("/")
        self.batch_limit = batch_limit
        self.gate = NotificationGate(store, dispatcher, clock)

    # -- candidate selection per record type --------------------------------

    def _plan(self, record_type: str) -> Dict[str, Any]:
        if record_type == rs.CARTS:
            return {
                "filter": {"notified_at": None, "superseded_at": None, "item_count": {"$gt": 0}},
                "activity": "updated_at",
                "threshold": self.windows.cart_idle_threshold,
                "superseded": self._cart_superseded,
                "notice": self._cart_notice,
            }
        if record_type == rs.CHECKOUTS:
            return {
                "filter": {"status": PENDING, "email_sent": False},
                "activity": "last_activity_at",
                "threshold": self.windows.checkout_idle_threshold,
                "superseded": self._checkout_superseded,
                "notice": self._checkout_notice,
            }
        if record_type == rs.PAYMENT_FAILURES:
            return {
                "filter": {"status": {"$in": list(OPEN_STATUSES)}, "email_sent": False},
                "activity": "last_activity_at",
                "threshold": self.windows.payment_retry_grace,
                "superseded": self._payment_superseded,
                "notice": self._payment_notice,
            }
        raise ValueError(f"No abandonment sweep for record type {record_type!r}")

    def sweep(
        self, record_type: str, idle_threshold: Optional[timedelta] = None
    ) -> SweepReport:
        plan = self._plan(record_type)
        return self._run(
            record_type,
            plan["filter"],
            plan["activity"],
            idle_threshold or plan["threshold"],
            plan["superseded"],
            plan["notice"],
        )

    def sweep_checkout_followups(
        self, idle_threshold: Optional[timedelta] = None
    ) -> SweepReport:
        """Second checkout reminder, sent once after the first one went out."""
        return self._run(
            rs.CHECKOUTS,
            {"status": PENDING, "email_sent": True, "followup_sent": False},
            "last_activity_at",
            idle_threshold or self.windows.checkout_followup_threshold,
            self._checkout_superseded,
            self._followup_notice,
        )

    def _run(
        self,
        record_type: str,
        flt: Dict,
        activity_field: str,
        threshold: timedelta,
        superseded: Callable[[Dict, datetime], bool],
        build_notice: Callable[[Dict, datetime, datetime], Notice],
    ) -> SweepReport:
        report = SweepReport(record_type=record_type)
        candidates = unwrap(
            self.store.read(record_type, flt, limit=self.batch_limit, order_by=activity_field)
        )

        for record in candidates:
            report.scanned += 1
            key = record["id"]
            try:
                now = self.clock.now()
                if now - record[activity_field] < threshold:
                    # activity may have resumed since the list was taken
                    report.add(key, NOT_IDLE)
                    continue
                if superseded(record, now):
                    report.add(key, SUPERSEDED)
                    continue
                outcome = self.gate.try_notify(build_notice(record, now - threshold, now))
                report.add(key, outcome.reason, outcome.error)
            except Exception as e:
                log.warning("sweep of %s %s failed", record_type, key, exc_info=True)
                report.add(key, "error", str(e))

        log.info(
            "sweep %s: scanned=%d notified=%d skipped=%d errored=%d",
            record_type,
            report.scanned,
            report.notified,
            report.skipped,
            report.errored,
        )
        return report

    # -- superseding completion ---------------------------------------------

    def _cart_superseded(self, cart: Dict, now: datetime) -> bool:
        since = {"$gte": cart["updated_at"]}
        order = unwrap(
            self.store.read_one(rs.ORDERS, {"owner_id": cart["owner_id"], "created_at": since})
        )
        if order is None and cart.get("email"):
            order = unwrap(
                self.store.read_one(
                    rs.ORDERS, {"customer_email": cart["email"], "created_at": since}
                )
            )
        if order is None:
            return False
        # updated_at in the filter keeps a newer basket from being retired
        unwrap(
            self.store.update(
                rs.CARTS,
                {"id": cart["id"], "superseded_at": None, "updated_at": cart["updated_at"]},
                {"superseded_at": now},
            )
        )
        log.debug("cart %s superseded by order %s", cart["owner_id"], order["order_number"])
        return True

    def _checkout_superseded(self, checkout: Dict, now: datetime) -> bool:
        order = unwrap(
            self.store.read_one(
                rs.ORDERS,
                {
                    "customer_email": checkout["email"],
                    "payment_status": "paid",
                    "created_at": {"$gte": checkout["created_at"]},
                },
            )
        )
        if order is None:
            return False
        complete_record(
            self.store,
            rs.CHECKOUTS,
            {"id": checkout["id"]},
            now,
            order_number=order["order_number"],
        )
        return True

    def _payment_superseded(self, failure: Dict, now: datetime) -> bool:
        order = unwrap(
            self.store.read_one(
                rs.ORDERS,
                {"order_number": failure["order_number"], "payment_status": "paid"},
            )
        )
        if order is None:
            return False
        complete_record(self.store, rs.PAYMENT_FAILURES, {"id": failure["id"]}, now)
        return True

    # -- notification payloads ----------------------------------------------

    def _cart_notice(self, cart: Dict, cutoff: datetime, now: datetime) -> Notice:
        currency = cart.get("currency") or "SEK"
        data = {
            "name": customer_name(cart),
            "items": format_items(cart.get("items"), currency),
            "total": format_money(cart.get("total_cents"), currency),
            "recovery_url": f"{self.frontend_url}/cart?recover={quote(cart['owner_id'])}",
        }
        return gate_mod.cart_notice(cart, cutoff, now, data)

    def _checkout_data(self, checkout: Dict) -> Dict:
        return {
            "name": customer_name(checkout),
            "items": format_items(checkout.get("cart")),
            "total": format_money(checkout.get("total_cents")),
            "recovery_url": f"{self.frontend_url}/checkout?recover={checkout['id']}",
        }

    def _checkout_notice(self, checkout: Dict, cutoff: datetime, now: datetime) -> Notice:
        return gate_mod.checkout_notice(checkout, cutoff, now, self._checkout_data(checkout))

    def _followup_notice(self, checkout: Dict, cutoff: datetime, now: datetime) -> Notice:
        return gate_mod.checkout_followup_notice(
            checkout, cutoff, now, self._checkout_data(checkout)
        )

    def _payment_notice(self, failure: Dict, cutoff: datetime, now: datetime) -> Notice:
        data = {
            "name": customer_name(failure),
            "order_number": failure["order_number"],
            "items": format_items(failure.get("cart")),
            "total": format_money(failure.get("total_cents")),
            "retry_url": (
                f"{self.frontend_url}/checkout?orderId={quote(failure['order_number'])}"
                f"&retry={failure['retry_token']}"
            ),
        }
        return gate_mod.payment_failure_notice(failure, cutoff, now, data)
