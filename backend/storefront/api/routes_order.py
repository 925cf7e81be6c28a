from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from storefront.api.deps import get_orders, http_error
from storefront.services.exceptions import LifecycleException
from storefront.services.order_service import OrderService, OrderServiceException

router = APIRouter(tags=["orders"])


class OrderItemIn(BaseModel):
    sku: str
    name: Optional[str] = None
    quantity: int = Field(..., gt=0)
    price_cents: int = Field(..., ge=0)


class CreateOrderIn(BaseModel):
    owner_id: Optional[str] = None
    email: Optional[str] = None
    items: List[OrderItemIn]
    total_cents: Optional[int] = Field(None, ge=0)
    discount_code: Optional[str] = None


class PaymentFailedIn(BaseModel):
    payment_intent_id: Optional[str] = None


@router.post("", summary="Place an order")
def create_order(payload: CreateOrderIn, svc: OrderService = Depends(get_orders)):
    try:
        return svc.place_order(
            payload.owner_id,
            payload.email,
            [it.model_dump() for it in payload.items],
            total_cents=payload.total_cents,
            discount_code=payload.discount_code,
        )
    except OrderServiceException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LifecycleException as e:
        raise http_error(e)


@router.post("/{order_number}/paid", summary="Payment confirmed for an order")
def order_paid(order_number: str, svc: OrderService = Depends(get_orders)):
    try:
        return svc.mark_paid(order_number)
    except LifecycleException as e:
        raise http_error(e)


@router.post("/{order_number}/payment-failed", summary="Payment attempt failed")
def order_payment_failed(
    order_number: str,
    payload: Optional[PaymentFailedIn] = None,
    svc: OrderService = Depends(get_orders),
):
    intent = payload.payment_intent_id if payload else None
    try:
        return svc.mark_payment_failed(order_number, intent)
    except LifecycleException as e:
        raise http_error(e)
