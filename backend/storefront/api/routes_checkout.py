from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from storefront.api.deps import get_activity, get_resolver, http_error
from storefront.services.activity_service import ActivityRecorder
from storefront.services.exceptions import LifecycleException
from storefront.services.recovery_service import RecoveredCheckout, RecoveryResolver

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


class EmailCaptureIn(BaseModel):
    email: str = Field(..., min_length=3)
    user_id: Optional[str] = None
    cart: Optional[List[Dict[str, Any]]] = None
    total_cents: Optional[int] = Field(None, ge=0)
    customer: Optional[Dict[str, Any]] = None
    shipping_address: Optional[Dict[str, Any]] = None
    shipping_method: Optional[Dict[str, Any]] = None


def recovered_body(rec: RecoveredCheckout) -> Dict[str, Any]:
    return {
        "success": True,
        "checkout": {
            "email": rec.email,
            "cart": rec.cart,
            "totalCents": rec.total_cents,
            "customer": rec.customer,
            "shippingAddress": rec.shipping_address,
            "shippingMethod": rec.shipping_method,
            "status": rec.record["status"],
            "recoveryCount": rec.record["recovery_count"],
        },
    }


@router.post("/email-capture", summary="Save checkout progress before payment")
def email_capture(payload: EmailCaptureIn, recorder: ActivityRecorder = Depends(get_activity)):
    if "@" not in payload.email:
        raise HTTPException(status_code=400, detail="A valid email is required")
    try:
        checkout = recorder.record_checkout_activity(
            payload.email, payload.model_dump(exclude={"email"})
        )
    except LifecycleException as e:
        raise http_error(e)
    return {"success": True, "checkoutId": checkout["id"], "status": checkout["status"]}


@router.get("/recover/{token}", summary="Resume an abandoned checkout")
def recover_checkout(token: str, resolver: RecoveryResolver = Depends(get_resolver)):
    try:
        rec = resolver.recover_checkout(token)
    except LifecycleException as e:
        raise http_error(e)
    body = recovered_body(rec)
    body["checkout"]["checkoutId"] = rec.record["id"]
    return body
