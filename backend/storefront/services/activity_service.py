import logging
import math
from typing import Any, Dict, List, Optional
from uuid import uuid4

from storefront.models.lifecycle import PENDING
from storefront.repositories import record_store as rs
from storefront.services.exceptions import StoreError, unwrap
from storefront.utils.clock import Clock
from storefront.utils.result import CONFLICT

log = logging.getLogger("lifecycle.activity")

MAX_CAPTURE_ATTEMPTS = 3

CHECKOUT_FIELDS = (
    "user_id",
    "cart",
    "total_cents",
    "customer",
    "shipping_address",
    "shipping_method",
)


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != {} and value != []


def _number(value: Any) -> Optional[float]:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def item_quantity(item: Dict) -> int:
    qty = _number(item.get("quantity"))
    return int(qty) if qty is not None and qty >= 1 else 1


def item_price_cents(item: Dict) -> int:
    """Unit price in cents; a bare `price` is in whole currency units."""
    cents = _number(item.get("price_cents"))
    if cents is None:
        price = _number(item.get("price"))
        cents = price * 100 if price is not None else 0
    return max(int(round(cents)), 0)


def cart_totals(items: List[Dict]) -> Dict[str, int]:
    total = 0
    count = 0
    for it in items:
        qty = item_quantity(it)
        total += item_price_cents(it) * qty
        count += qty
    return {"total_cents": total, "item_count": count}


class ActivityRecorder:
    """
    The only writer during live interaction. Each call upserts the customer's
    lifecycle record and refreshes its activity timestamp; abandonment itself
    is decided later by the sweep.
    """

    def __init__(self, store: rs.RecordStore, clock: Clock):
        self.store = store
        self.clock = clock

    def record_cart_activity(self, owner_id: str, payload: Dict[str, Any]) -> Dict:
        now = self.clock.now()
        email = normalize_email(payload.get("email"))
        items = payload.get("items")
        if items is not None:
            items = [dict(it) for it in items]

        existing = unwrap(self.store.read_one(rs.CARTS, {"owner_id": owner_id}))
        if existing is None:
            doc = {
                "owner_id": owner_id,
                "email": email,
                "items": items or [],
                "currency": payload.get("currency") or "SEK",
                "created_at": now,
                "updated_at": now,
            }
            doc.update(cart_totals(doc["items"]))
            res = self.store.create(rs.CARTS, doc)
            if res.ok:
                log.debug("cart created for owner %s", owner_id)
                return res.value
            if res.kind != CONFLICT:
                raise StoreError(f"{res.kind}: {res.detail}")
            # lost a concurrent first write for the same owner, merge into it
            existing = unwrap(self.store.read_one(rs.CARTS, {"owner_id": owner_id}))

        patch: Dict[str, Any] = {"updated_at": now}
        if email:
            patch["email"] = email
        if _present(payload.get("currency")):
            patch["currency"] = payload["currency"]
        if items is not None and items != existing["items"]:
            # a new idle period starts with every item change
            patch["items"] = items
            patch.update(cart_totals(items))
            patch["notified_at"] = None
            patch["superseded_at"] = None

        unwrap(self.store.update(rs.CARTS, {"owner_id": owner_id}, patch))
        return unwrap(self.store.read_one(rs.CARTS, {"owner_id": owner_id}))

    def record_checkout_activity(self, email: str, payload: Dict[str, Any]) -> Dict:
        """
        Refresh the customer's pending checkout, or open a new one.

        At most one pending checkout exists per email (unique partial index),
        so a lost race on the create falls back to refreshing the winner's
        record.
        """
        email = normalize_email(email)
        if not email:
            raise ValueError("email is required")
        fields = {k: payload[k] for k in CHECKOUT_FIELDS if _present(payload.get(k))}

        checkout = None
        for _ in range(MAX_CAPTURE_ATTEMPTS):
            checkout = self._capture_checkout(email, fields)
            if checkout is not None:
                break
        if checkout is None:
            raise StoreError(f"Could not capture checkout for {email}")

        if fields.get("user_id"):
            self._attach_cart_email(fields["user_id"], email)
        return checkout

    def _capture_checkout(self, email: str, fields: Dict[str, Any]) -> Optional[Dict]:
        now = self.clock.now()
        existing = unwrap(
            self.store.read_one(rs.CHECKOUTS, {"email": email, "status": PENDING})
        )
        if existing is not None:
            patch = dict(fields)
            patch["last_activity_at"] = now
            res = unwrap(
                self.store.update(
                    rs.CHECKOUTS, {"id": existing["id"], "status": PENDING}, patch
                )
            )
            if res.matched == 1:
                return unwrap(self.store.read_one(rs.CHECKOUTS, {"id": existing["id"]}))
            # completed or recovered in between; start a fresh snapshot instead
            log.info("checkout %s left pending during capture, creating new", existing["id"])

        doc = {
            "id": uuid4().hex,
            "email": email,
            "status": PENDING,
            "created_at": now,
            "last_activity_at": now,
            "recovery_count": 0,
        }
        doc.update(fields)
        res = self.store.create(rs.CHECKOUTS, doc)
        if res.ok:
            return res.value
        if res.kind != CONFLICT:
            raise StoreError(f"{res.kind}: {res.detail}")
        log.debug("concurrent capture for %s, refreshing the winner", email)
        return None

    def _attach_cart_email(self, owner_id: str, email: str) -> None:
        # fill only a missing address; updated_at is left alone so the
        # cart's idle clock keeps running
        res = self.store.update(rs.CARTS, {"owner_id": owner_id, "email": None}, {"email": email})
        if not res.ok:
            log.warning("could not attach %s to cart %s: %s", email, owner_id, res.detail)
        elif res.value.matched:
            log.debug("cart %s picked up email from checkout", owner_id)
