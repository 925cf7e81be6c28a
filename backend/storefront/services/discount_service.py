"""
Newsletter discount codes: issuance, the 7-day reminder, expiry and
single-use redemption.

Expiry is always decided by comparing now with expires_at. The `expired`
column is only written by sweep_expired for reporting.
"""

import logging
import math
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from storefront.adapters import mailer
from storefront.config import LifecycleWindows
from storefront.repositories import record_store as rs
from storefront.services.abandonment_sweep import SweepReport
from storefront.services.activity_service import normalize_email
from storefront.services.exceptions import RecordNotFound, StoreError, unwrap
from storefront.services.notification_gate import (
    NotificationGate,
    discount_reminder_notice,
)
from storefront.utils.clock import Clock
from storefront.utils.result import CONFLICT

log = logging.getLogger("lifecycle.discounts")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_SUFFIX_LENGTH = 6
MAX_CODE_ATTEMPTS = 5
ANALYTICS_RECENT_DAYS = 30

OK = "ok"
NOT_FOUND = "not_found"
ALREADY_USED = "already_used"
EXPIRED = "expired"


@dataclass
class IssuedCode:
    record: Dict[str, Any]
    created: bool
    welcome_sent: bool = False


@dataclass
class CodeValidation:
    valid: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    percentage: int = 0
    expires_at: Optional[datetime] = None
    days_remaining: int = 0


@dataclass
class Redemption:
    status: str
    record: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status == OK


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def calculate_discount_amount(subtotal_cents: int, percentage: float) -> int:
    """Discount on the pre-tax subtotal, never more than the subtotal itself."""
    if not subtotal_cents or subtotal_cents <= 0:
        return 0
    if not percentage or percentage <= 0:
        return 0
    percentage = min(percentage, 100)
    amount = int(round(subtotal_cents * percentage / 100))
    return min(amount, subtotal_cents)


def days_remaining(expires_at: datetime, now: datetime) -> int:
    seconds = (expires_at - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)


class DiscountService:
    def __init__(
        self,
        store: rs.RecordStore,
        dispatcher,
        clock: Clock,
        windows: LifecycleWindows,
        prefix: str = "PEAK10",
        percentage: int = 10,
        frontend_url: str = "",
        batch_limit: Optional[int] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.windows = windows
        self.prefix = prefix
        self.percentage = percentage
        self.frontend_url = frontend_url.rstrip("/")
        self.batch_limit = batch_limit
        self.gate = NotificationGate(store, dispatcher, clock)

    def _new_code(self) -> str:
        suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
        return f"{self.prefix}-{suffix}"

    def _mail_data(self, record: Dict, now: datetime) -> Dict[str, Any]:
        return {
            "name": record.get("name") or record["email"].split("@")[0],
            "code": record["code"],
            "percentage": self.percentage,
            "expires_at": record["expires_at"].strftime("%Y-%m-%d"),
            "days_remaining": days_remaining(record["expires_at"], now),
            "shop_url": self.frontend_url or "/",
        }

    # -- issuance -----------------------------------------------------------

    def issue(self, email: str, name: Optional[str] = None, source: str = "newsletter") -> IssuedCode:
        """
        Return the subscriber's code, creating it on first subscription.

        The create is the race arbiter: only the caller whose insert wins sends
        the welcome email.
        """
        email = normalize_email(email)
        if not email:
            raise ValueError("email is required")

        existing = unwrap(self.store.read_one(rs.DISCOUNT_CODES, {"email": email}))
        if existing is not None:
            if existing.get("unsubscribed"):
                existing = self._resubscribe(email)
            return IssuedCode(record=existing, created=False)

        for _ in range(MAX_CODE_ATTEMPTS):
            now = self.clock.now()
            doc = {
                "email": email,
                "name": name,
                "source": source,
                "code": self._new_code(),
                "issued_at": now,
                "expires_at": now + self.windows.code_lifetime,
            }
            res = self.store.create(rs.DISCOUNT_CODES, doc)
            if res.ok:
                record = res.value
                sent = self.dispatcher.send(
                    mailer.NEWSLETTER_WELCOME, email, self._mail_data(record, now)
                )
                if not sent.success:
                    log.error("welcome email to %s was not delivered: %s", email, sent.error)
                log.info("issued %s to %s", record["code"], email)
                return IssuedCode(record=record, created=True, welcome_sent=sent.success)
            if res.kind != CONFLICT:
                raise StoreError(f"{res.kind}: {res.detail}")
            existing = unwrap(self.store.read_one(rs.DISCOUNT_CODES, {"email": email}))
            if existing is not None:
                return IssuedCode(record=existing, created=False)
            log.debug("code collision for %s, retrying", email)

        raise StoreError("Could not allocate a unique discount code")

    # -- subscription -------------------------------------------------------

    def unsubscribe(self, email: str) -> Dict[str, Any]:
        """Stop newsletter mail for this subscriber. The code itself stays valid."""
        email = normalize_email(email)
        if not email:
            raise ValueError("email is required")
        now = self.clock.now()
        res = unwrap(
            self.store.update(
                rs.DISCOUNT_CODES,
                {"email": email, "unsubscribed": False},
                {"unsubscribed": True, "unsubscribed_at": now},
            )
        )
        record = unwrap(self.store.read_one(rs.DISCOUNT_CODES, {"email": email}))
        if record is None:
            raise RecordNotFound("Subscriber not found")
        if res.matched:
            log.info("%s unsubscribed", email)
        return record

    def _resubscribe(self, email: str) -> Dict[str, Any]:
        unwrap(
            self.store.update(
                rs.DISCOUNT_CODES,
                {"email": email, "unsubscribed": True},
                {"unsubscribed": False, "unsubscribed_at": None},
            )
        )
        log.info("%s subscribed again", email)
        return unwrap(self.store.read_one(rs.DISCOUNT_CODES, {"email": email}))

    def analytics(self) -> Dict[str, Any]:
        now = self.clock.now()
        codes = unwrap(self.store.read(rs.DISCOUNT_CODES))
        total = len(codes)
        used = sum(1 for c in codes if c["used"])
        expired = sum(1 for c in codes if not c["used"] and now >= c["expires_at"])
        unsubscribed = sum(1 for c in codes if c["unsubscribed"])
        recent_cutoff = now - timedelta(days=ANALYTICS_RECENT_DAYS)
        return {
            "totalSubscribers": total,
            "activeSubscribers": total - unsubscribed,
            "unsubscribed": unsubscribed,
            "totalCodes": total,
            "usedCodes": used,
            "expiredCodes": expired,
            "activeCodes": total - used - expired,
            "remindersSent": sum(1 for c in codes if c["reminder_sent"]),
            "conversionRate": round(used / total * 100, 2) if total else 0.0,
            "recentSubscribers": sum(1 for c in codes if c["issued_at"] > recent_cutoff),
        }

    # -- reminder -----------------------------------------------------------

    def is_reminder_eligible(self, code: Dict[str, Any], now: datetime) -> bool:
        return (
            not code["used"]
            and not code["reminder_sent"]
            and not code.get("unsubscribed")
            and now < code["expires_at"]
            and now - code["issued_at"] >= self.windows.reminder_delay
        )

    def sweep_reminders(self) -> SweepReport:
        report = SweepReport(record_type=rs.DISCOUNT_CODES)
        now = self.clock.now()
        issued_cutoff = now - self.windows.reminder_delay
        candidates = unwrap(
            self.store.read(
                rs.DISCOUNT_CODES,
                {
                    "reminder_sent": False,
                    "used": False,
                    "unsubscribed": False,
                    "expires_at": {"$gt": now},
                    "issued_at": {"$lte": issued_cutoff},
                },
                limit=self.batch_limit,
                order_by="issued_at",
            )
        )
        for code in candidates:
            report.scanned += 1
            try:
                now = self.clock.now()
                if not self.is_reminder_eligible(code, now):
                    report.add(code["id"], "not-eligible")
                    continue
                notice = discount_reminder_notice(
                    code, now - self.windows.reminder_delay, now, self._mail_data(code, now)
                )
                outcome = self.gate.try_notify(notice)
                report.add(code["id"], outcome.reason, outcome.error)
            except Exception as e:
                log.warning("reminder for code %s failed", code["id"], exc_info=True)
                report.add(code["id"], "error", str(e))

        log.info(
            "discount reminders: scanned=%d notified=%d skipped=%d errored=%d",
            report.scanned,
            report.notified,
            report.skipped,
            report.errored,
        )
        return report

    # -- expiry -------------------------------------------------------------

    def sweep_expired(self) -> int:
        now = self.clock.now()
        res = unwrap(
            self.store.update(
                rs.DISCOUNT_CODES,
                {"used": False, "expired": False, "expires_at": {"$lte": now}},
                {"expired": True, "expired_at": now},
            )
        )
        if res.matched:
            log.info("marked %d discount codes expired", res.matched)
        return res.matched

    # -- validation / redemption --------------------------------------------

    def validate(self, code: str) -> CodeValidation:
        code = normalize_code(code)
        if not code:
            return CodeValidation(valid=False, reason=NOT_FOUND)
        record = unwrap(self.store.read_one(rs.DISCOUNT_CODES, {"code": code}))
        if record is None:
            return CodeValidation(valid=False, reason=NOT_FOUND, code=code)
        if record["used"]:
            return CodeValidation(valid=False, reason=ALREADY_USED, code=code)
        now = self.clock.now()
        if now >= record["expires_at"]:
            return CodeValidation(
                valid=False, reason=EXPIRED, code=code, expires_at=record["expires_at"]
            )
        return CodeValidation(
            valid=True,
            code=code,
            percentage=self.percentage,
            expires_at=record["expires_at"],
            days_remaining=days_remaining(record["expires_at"], now),
        )

    def redeem(self, code: str, order_number: Optional[str] = None) -> Redemption:
        code = normalize_code(code)
        if not code:
            return Redemption(status=NOT_FOUND)
        now = self.clock.now()
        res = unwrap(
            self.store.update(
                rs.DISCOUNT_CODES,
                {"code": code, "used": False, "expires_at": {"$gt": now}},
                {"used": True, "used_at": now, "used_in_order": order_number},
            )
        )
        record = unwrap(self.store.read_one(rs.DISCOUNT_CODES, {"code": code}))
        if res.matched == 1:
            log.info("code %s redeemed (order %s)", code, order_number)
            return Redemption(status=OK, record=record)
        if record is None:
            return Redemption(status=NOT_FOUND)
        if record["used"]:
            return Redemption(status=ALREADY_USED, record=record)
        return Redemption(status=EXPIRED, record=record)
