from fastapi import APIRouter, Depends

from storefront.api.deps import get_resolver, http_error
from storefront.api.routes_checkout import recovered_body
from storefront.services.exceptions import LifecycleException
from storefront.services.recovery_service import RecoveryResolver

router = APIRouter(prefix="/api/payment-failure", tags=["payment-failure"])


@router.get("/recover/{retry_token}", summary="Resume checkout after a failed payment")
def recover_payment(retry_token: str, resolver: RecoveryResolver = Depends(get_resolver)):
    try:
        rec = resolver.recover_payment(retry_token)
    except LifecycleException as e:
        raise http_error(e)
    body = recovered_body(rec)
    body["checkout"]["orderNumber"] = rec.record["order_number"]
    return body
