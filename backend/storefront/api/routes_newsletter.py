from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from storefront.api.deps import get_discounts, http_error, require_admin
from storefront.services import discount_service as ds
from storefront.services.discount_service import DiscountService
from storefront.services.exceptions import (
    CodeAlreadyUsed,
    CodeExpired,
    LifecycleException,
    RecordNotFound,
)

router = APIRouter(prefix="/api/newsletter", tags=["newsletter"])


class SubscribeIn(BaseModel):
    email: str = Field(..., min_length=3)
    name: Optional[str] = None
    source: str = "newsletter"


class UnsubscribeIn(BaseModel):
    email: str = Field(..., min_length=3)


class DiscountCodeIn(BaseModel):
    discountCode: str
    orderNumber: Optional[str] = None


def _rejection(reason: str) -> LifecycleException:
    if reason == ds.ALREADY_USED:
        return CodeAlreadyUsed("This discount code has already been used")
    if reason == ds.EXPIRED:
        return CodeExpired("This discount code has expired")
    return RecordNotFound("Discount code not found")


@router.post("/subscribe", summary="Subscribe and receive a discount code")
def subscribe(payload: SubscribeIn, svc: DiscountService = Depends(get_discounts)):
    if "@" not in payload.email:
        raise HTTPException(status_code=400, detail="A valid email is required")
    try:
        issued = svc.issue(payload.email, payload.name, payload.source)
    except LifecycleException as e:
        raise http_error(e)
    record = issued.record
    now = svc.clock.now()
    return {
        "success": True,
        "message": (
            "Successfully subscribed to newsletter"
            if issued.created
            else "You're already subscribed! Here's your discount code."
        ),
        "alreadySubscribed": not issued.created,
        "discountCode": record["code"],
        "expiresAt": record["expires_at"],
        "used": record["used"],
        "daysRemaining": ds.days_remaining(record["expires_at"], now),
    }


@router.post("/validate-discount", summary="Check a discount code without using it")
def validate_discount(payload: DiscountCodeIn, svc: DiscountService = Depends(get_discounts)):
    try:
        check = svc.validate(payload.discountCode)
    except LifecycleException as e:
        raise http_error(e)
    if not check.valid:
        raise http_error(_rejection(check.reason))
    return {
        "success": True,
        "valid": True,
        "discountCode": check.code,
        "discountPercentage": check.percentage,
        "expiresAt": check.expires_at,
        "daysRemaining": check.days_remaining,
        "message": "Discount code is valid",
    }


@router.post("/use-discount", summary="Redeem a discount code")
def use_discount(payload: DiscountCodeIn, svc: DiscountService = Depends(get_discounts)):
    try:
        redemption = svc.redeem(payload.discountCode, payload.orderNumber)
    except LifecycleException as e:
        raise http_error(e)
    if not redemption.ok:
        raise http_error(_rejection(redemption.status))
    return {
        "success": True,
        "message": "Discount code marked as used",
        "discountCode": redemption.record["code"],
        "usedAt": redemption.record["used_at"],
    }


@router.post("/unsubscribe", summary="Stop newsletter emails")
def unsubscribe(payload: UnsubscribeIn, svc: DiscountService = Depends(get_discounts)):
    try:
        record = svc.unsubscribe(payload.email)
    except LifecycleException as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "success": True,
        "message": "Successfully unsubscribed from newsletter",
        "unsubscribedAt": record["unsubscribed_at"],
    }


@router.get(
    "/analytics",
    summary="Subscriber and discount code counts",
    dependencies=[Depends(require_admin)],
)
def analytics(svc: DiscountService = Depends(get_discounts)):
    try:
        data = svc.analytics()
    except LifecycleException as e:
        raise http_error(e)
    return {"success": True, "data": data}
