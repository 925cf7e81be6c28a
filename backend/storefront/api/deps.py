from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException

from storefront.adapters.mailer import build_mailer
from storefront.config import LifecycleWindows, settings, windows_from_settings
from storefront.db import SessionLocal
from storefront.repositories.record_store import RecordStore
from storefront.services.abandonment_sweep import AbandonmentSweep
from storefront.services.activity_service import ActivityRecorder
from storefront.services.discount_service import DiscountService
from storefront.services.exceptions import (
    AlreadyCompleted,
    CodeAlreadyUsed,
    CodeExpired,
    LifecycleException,
    RecordNotFound,
    StoreError,
)
from storefront.services.order_service import OrderService
from storefront.services.payment_failure_service import PaymentFailureService
from storefront.services.recovery_service import RecoveryResolver
from storefront.services.sweep_runner import SweepRunner
from storefront.utils.clock import Clock, SystemClock


@lru_cache
def get_store() -> RecordStore:
    return RecordStore(SessionLocal)


@lru_cache
def get_dispatcher():
    return build_mailer(settings)


@lru_cache
def get_clock() -> Clock:
    return SystemClock()


@lru_cache
def get_windows() -> LifecycleWindows:
    return windows_from_settings(settings)


def build_discounts(store, dispatcher, clock, windows) -> DiscountService:
    return DiscountService(
        store,
        dispatcher,
        clock,
        windows,
        prefix=settings.DISCOUNT_CODE_PREFIX,
        percentage=settings.DISCOUNT_PERCENTAGE,
        frontend_url=settings.FRONTEND_URL,
        batch_limit=settings.SWEEP_BATCH_LIMIT,
    )


def build_runner(store, dispatcher, clock, windows) -> SweepRunner:
    sweep = AbandonmentSweep(
        store,
        dispatcher,
        clock,
        windows,
        frontend_url=settings.FRONTEND_URL,
        batch_limit=settings.SWEEP_BATCH_LIMIT,
    )
    return SweepRunner(
        sweep,
        build_discounts(store, dispatcher, clock, windows),
        lock_timeout=settings.SWEEP_LOCK_TIMEOUT_SECONDS,
    )


def get_activity(store=Depends(get_store), clock=Depends(get_clock)) -> ActivityRecorder:
    return ActivityRecorder(store, clock)


def get_resolver(store=Depends(get_store), clock=Depends(get_clock)) -> RecoveryResolver:
    return RecoveryResolver(store, clock)


def get_discounts(
    store=Depends(get_store),
    dispatcher=Depends(get_dispatcher),
    clock=Depends(get_clock),
    windows=Depends(get_windows),
) -> DiscountService:
    return build_discounts(store, dispatcher, clock, windows)


def get_orders(
    store=Depends(get_store),
    clock=Depends(get_clock),
    discounts=Depends(get_discounts),
) -> OrderService:
    return OrderService(store, clock, discounts, PaymentFailureService(store, clock))


def get_runner(
    store=Depends(get_store),
    dispatcher=Depends(get_dispatcher),
    clock=Depends(get_clock),
    windows=Depends(get_windows),
) -> SweepRunner:
    return build_runner(store, dispatcher, clock, windows)


def require_admin(x_admin_key: Optional[str] = Header(None)):
    if x_admin_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


def http_error(e: LifecycleException) -> HTTPException:
    """Expected lifecycle outcomes become distinct, friendly HTTP errors."""
    if isinstance(e, RecordNotFound):
        return HTTPException(404, {"message": str(e), "errorCode": "NOT_FOUND"})
    if isinstance(e, AlreadyCompleted):
        return HTTPException(409, {"message": str(e), "errorCode": "ALREADY_COMPLETED"})
    if isinstance(e, CodeAlreadyUsed):
        return HTTPException(409, {"message": str(e), "errorCode": "ALREADY_USED"})
    if isinstance(e, CodeExpired):
        return HTTPException(409, {"message": str(e), "errorCode": "EXPIRED"})
    if isinstance(e, StoreError):
        return HTTPException(
            503,
            {
                "message": "Temporarily unavailable, please try again",
                "errorCode": "STORE_ERROR",
                "retryable": True,
            },
        )
    return HTTPException(400, {"message": str(e), "errorCode": "INVALID"})
