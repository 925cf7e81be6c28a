from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from storefront.api.deps import get_activity, http_error
from storefront.services.activity_service import ActivityRecorder
from storefront.services.exceptions import LifecycleException

router = APIRouter(prefix="/api/cart", tags=["cart"])


class CartItemIn(BaseModel):
    sku: str
    name: Optional[str] = None
    quantity: int = Field(..., gt=0)
    price_cents: int = Field(..., ge=0)


class CartActivityIn(BaseModel):
    owner_id: str = Field(..., min_length=1)
    email: Optional[str] = None
    items: Optional[List[CartItemIn]] = None
    currency: Optional[str] = None


@router.post("/activity", summary="Record a cart change")
def cart_activity(payload: CartActivityIn, recorder: ActivityRecorder = Depends(get_activity)):
    data = payload.model_dump(exclude={"owner_id"})
    if payload.items is not None:
        data["items"] = [it.model_dump() for it in payload.items]
    try:
        cart = recorder.record_cart_activity(payload.owner_id, data)
    except LifecycleException as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "ownerId": cart["owner_id"],
        "itemCount": cart["item_count"],
        "totalCents": cart["total_cents"],
        "currency": cart["currency"],
        "updatedAt": cart["updated_at"],
    }
