import logging
from typing import Dict, List, Optional
from uuid import uuid4

from storefront.repositories import record_store as rs
from storefront.services.abandonment_sweep import complete_record
from storefront.services.activity_service import cart_totals, normalize_email
from storefront.services.discount_service import DiscountService, calculate_discount_amount
from storefront.services.exceptions import AlreadyCompleted, RecordNotFound, unwrap
from storefront.services.payment_failure_service import PaymentFailureService
from storefront.utils.clock import Clock

log = logging.getLogger("lifecycle.orders")

PAID = "paid"
FAILED = "failed"


class OrderServiceException(Exception):
    pass


class OrderService:
    """
    The order events that close lifecycle records: placing an order retires
    the cart, payment confirmation completes checkouts and payment failures
    and redeems the discount code, a failed payment opens a retry record.
    """

    def __init__(
        self,
        store: rs.RecordStore,
        clock: Clock,
        discounts: DiscountService,
        payment_failures: Optional[PaymentFailureService] = None,
    ):
        self.store = store
        self.clock = clock
        self.discounts = discounts
        self.payment_failures = payment_failures or PaymentFailureService(store, clock)

    def _gen_order_number(self) -> str:
        return f"ORD-{uuid4().hex[:10].upper()}"

    def _get(self, order_number: str) -> Dict:
        order = unwrap(self.store.read_one(rs.ORDERS, {"order_number": order_number}))
        if order is None:
            raise RecordNotFound(f"Order not found: {order_number}")
        return order

    def place_order(
        self,
        owner_id: Optional[str],
        email: Optional[str],
        items: List[Dict],
        total_cents: Optional[int] = None,
        discount_code: Optional[str] = None,
    ) -> Dict:
        """
        items: list of {sku, name, quantity, price_cents}
        The discount code is only checked here; it is redeemed once the
        order is paid.
        """
        if not items:
            raise OrderServiceException("Order has no items")
        email = normalize_email(email)
        if total_cents is None:
            total_cents = cart_totals(items)["total_cents"]

        code = None
        if discount_code:
            check = self.discounts.validate(discount_code)
            if not check.valid:
                raise OrderServiceException(f"Discount code rejected: {check.reason}")
            code = check.code
            total_cents -= calculate_discount_amount(total_cents, check.percentage)

        now = self.clock.now()
        order = unwrap(
            self.store.create(
                rs.ORDERS,
                {
                    "order_number": self._gen_order_number(),
                    "owner_id": owner_id,
                    "customer_email": email,
                    "status": "placed",
                    "payment_status": "pending",
                    "total_cents": total_cents,
                    "discount_code": code,
                    "items": items,
                    "created_at": now,
                },
            )
        )

        # the basket that became this order is no longer abandonable
        if owner_id:
            unwrap(
                self.store.update(
                    rs.CARTS,
                    {"owner_id": owner_id, "superseded_at": None, "updated_at": {"$lte": now}},
                    {"superseded_at": now},
                )
            )
        log.info("order %s placed (%s)", order["order_number"], email)
        return self._response(order)

    def mark_paid(self, order_number: str) -> Dict:
        order = self._get(order_number)
        now = self.clock.now()
        res = unwrap(
            self.store.update(
                rs.ORDERS,
                {"order_number": order_number, "payment_status": {"$ne": PAID}},
                {"payment_status": PAID, "status": PAID, "paid_at": now},
            )
        )
        if res.matched == 0:
            log.info("order %s already paid", order_number)

        # completion hooks are conditional and safe to repeat
        completed_checkouts = 0
        if order.get("customer_email"):
            completed_checkouts = complete_record(
                self.store,
                rs.CHECKOUTS,
                {"email": order["customer_email"]},
                now,
                order_number=order_number,
            )
        completed_failures = complete_record(
            self.store, rs.PAYMENT_FAILURES, {"order_number": order_number}, now
        )

        redemption = None
        if order.get("discount_code") and res.matched:
            redemption = self.discounts.redeem(order["discount_code"], order_number)
            if not redemption.ok:
                log.warning(
                    "discount %s on paid order %s not redeemed: %s",
                    order["discount_code"],
                    order_number,
                    redemption.status,
                )

        order = self._get(order_number)
        resp = self._response(order)
        resp.update(
            {
                "completedCheckouts": completed_checkouts,
                "paymentFailureCompleted": completed_failures,
                "discountRedemption": redemption.status if redemption else None,
            }
        )
        return resp

    def mark_payment_failed(self, order_number: str, payment_intent_id: Optional[str] = None) -> Dict:
        order = self._get(order_number)
        res = unwrap(
            self.store.update(
                rs.ORDERS,
                {"order_number": order_number, "payment_status": {"$ne": PAID}},
                {"payment_status": FAILED, "status": FAILED, "payment_intent_id": payment_intent_id},
            )
        )
        if res.matched == 0:
            raise AlreadyCompleted(f"Order {order_number} is already paid")

        failure = self.payment_failures.record_failure(
            order_number,
            email=order.get("customer_email"),
            payment_intent_id=payment_intent_id,
            cart=order.get("items"),
            total_cents=order.get("total_cents") or 0,
        )
        resp = self._response(self._get(order_number))
        resp["retryToken"] = failure["retry_token"]
        return resp

    @staticmethod
    def _response(order: Dict) -> Dict:
        return {
            "orderId": order["id"],
            "orderNumber": order["order_number"],
            "status": order["status"],
            "paymentStatus": order["payment_status"],
            "totalCents": order["total_cents"],
            "discountCode": order.get("discount_code"),
        }
