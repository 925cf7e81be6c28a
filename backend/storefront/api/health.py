from fastapi import APIRouter, Depends

from storefront.api.deps import get_dispatcher, get_store
from storefront.repositories.record_store import RecordStore

router = APIRouter()


@router.get("/health", tags=["health"])
def health(store: RecordStore = Depends(get_store), dispatcher=Depends(get_dispatcher)):
    db_ok = store.ping()
    mailer_ok = dispatcher.health_check()
    return {
        "status": "ok" if db_ok and mailer_ok else "degraded",
        "db": db_ok,
        "mailer": mailer_ok,
    }
