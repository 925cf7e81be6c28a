"""
At-most-once guard around outbound notifications.

The gate marks a record as notified with one conditional update whose filter
restates every precondition (not yet notified, not terminal, still idle). The
dispatcher is called only if that update matched the record, so concurrent
sweeps racing on the same record produce at most one send.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from storefront.adapters import mailer
from storefront.models.lifecycle import OPEN_STATUSES
from storefront.repositories import record_store as rs
from storefront.utils.clock import Clock

log = logging.getLogger("lifecycle.gate")

SENT = "sent"
ALREADY_NOTIFIED = "already-notified"
DISPATCH_FAILED = "dispatch-failed"
STORE_ERROR = "store-error"
NO_ADDRESS = "no-address"


@dataclass
class Notice:
    record_type: str
    key: Dict[str, Any]
    guard: Dict[str, Any]
    mark: Dict[str, Any]
    kind: str
    address: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def filter(self) -> Dict[str, Any]:
        flt = dict(self.guard)
        flt.update(self.key)
        return flt


@dataclass(frozen=True)
class NotifyOutcome:
    sent: bool
    reason: str
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationGate:
    def __init__(self, store: rs.RecordStore, dispatcher, clock: Clock):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock

    def try_notify(self, notice: Notice) -> NotifyOutcome:
        if not notice.address:
            return NotifyOutcome(sent=False, reason=NO_ADDRESS)

        res = self.store.update(notice.record_type, notice.filter, notice.mark)
        if not res.ok:
            log.warning(
                "mark-as-sent failed for %s %s: %s",
                notice.record_type,
                notice.key,
                res.detail,
            )
            return NotifyOutcome(sent=False, reason=STORE_ERROR, error=res.detail)

        if res.value.matched != 1:
            # another writer got there first, or the record is no longer eligible
            log.debug("skip %s %s: already handled", notice.record_type, notice.key)
            return NotifyOutcome(sent=False, reason=ALREADY_NOTIFIED)

        result = self.dispatcher.send(notice.kind, notice.address, notice.data)
        if not result.success:
            log.error(
                "%s notification to %s for %s %s was not delivered: %s",
                notice.kind,
                notice.address,
                notice.record_type,
                notice.key,
                result.error,
            )
            return NotifyOutcome(sent=False, reason=DISPATCH_FAILED, error=result.error)

        log.info("%s sent to %s (%s)", notice.kind, notice.address, result.id)
        return NotifyOutcome(sent=True, reason=SENT, message_id=result.id)


# Standard notices per record type. `cutoff` is now - idle threshold; pushing
# it into the guard means activity recorded after listing makes the write miss.


def cart_notice(cart: Dict, cutoff: datetime, now: datetime, data: Dict) -> Notice:
    return Notice(
        record_type=rs.CARTS,
        key={"id": cart["id"]},
        guard={
            "notified_at": None,
            "superseded_at": None,
            "item_count": {"$gt": 0},
            "updated_at": {"$lte": cutoff},
        },
        mark={"notified_at": now},
        kind=mailer.ABANDONED_CART,
        address=cart.get("email"),
        data=data,
    )


def checkout_notice(checkout: Dict, cutoff: datetime, now: datetime, data: Dict) -> Notice:
    return Notice(
        record_type=rs.CHECKOUTS,
        key={"id": checkout["id"]},
        guard={
            "email_sent": False,
            "status": {"$in": list(OPEN_STATUSES)},
            "last_activity_at": {"$lte": cutoff},
        },
        mark={"email_sent": True, "notified_at": now},
        kind=mailer.ABANDONED_CHECKOUT,
        address=checkout.get("email"),
        data=data,
    )


def checkout_followup_notice(
    checkout: Dict, cutoff: datetime, now: datetime, data: Dict
) -> Notice:
    return Notice(
        record_type=rs.CHECKOUTS,
        key={"id": checkout["id"]},
        guard={
            "email_sent": True,
            "followup_sent": False,
            "status": {"$in": list(OPEN_STATUSES)},
            "last_activity_at": {"$lte": cutoff},
        },
        mark={"followup_sent": True, "followup_sent_at": now},
        kind=mailer.ABANDONED_CHECKOUT_FOLLOWUP,
        address=checkout.get("email"),
        data=data,
    )


def payment_failure_notice(
    failure: Dict, cutoff: datetime, now: datetime, data: Dict
) -> Notice:
    return Notice(
        record_type=rs.PAYMENT_FAILURES,
        key={"id": failure["id"]},
        guard={
            "email_sent": False,
            "status": {"$in": list(OPEN_STATUSES)},
            "last_activity_at": {"$lte": cutoff},
        },
        mark={"email_sent": True, "notified_at": now},
        kind=mailer.PAYMENT_FAILED,
        address=failure.get("email"),
        data=data,
    )


def discount_reminder_notice(
    code: Dict, issued_cutoff: datetime, now: datetime, data: Dict
) -> Notice:
    return Notice(
        record_type=rs.DISCOUNT_CODES,
        key={"id": code["id"]},
        guard={
            "reminder_sent": False,
            "used": False,
            "unsubscribed": False,
            "expires_at": {"$gt": now},
            "issued_at": {"$lte": issued_cutoff},
        },
        mark={"reminder_sent": True, "reminder_sent_at": now},
        kind=mailer.DISCOUNT_REMINDER,
        address=code.get("email"),
        data=data,
    )
