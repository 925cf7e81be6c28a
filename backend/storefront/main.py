import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront.api.deps import build_runner, get_clock, get_dispatcher, get_store, get_windows
from storefront.api.health import router as health_router
from storefront.api.routes_admin import router as admin_router
from storefront.api.routes_cart import router as cart_router
from storefront.api.routes_checkout import router as checkout_router
from storefront.api.routes_newsletter import router as newsletter_router
from storefront.api.routes_order import router as order_router
from storefront.api.routes_payment_failure import router as payment_failure_router
from storefront.config import configure_logging, settings
from storefront.db import init_db
from storefront.services.sweep_runner import SWEEP_KINDS

log = logging.getLogger("storefront")

# discount sweeps work on day-scale windows, hourly is plenty
SWEEP_INTERVALS = {
    "discount_reminders": 3600,
    "discount_expiry": 3600,
}


def start_scheduler() -> BackgroundScheduler:
    runner = build_runner(get_store(), get_dispatcher(), get_clock(), get_windows())
    scheduler = BackgroundScheduler()

    def sweep_job(kind: str):
        try:
            runner.run_exclusive(kind)
        except Exception:
            log.exception("scheduled sweep %s failed", kind)

    for kind in SWEEP_KINDS:
        scheduler.add_job(
            sweep_job,
            "interval",
            args=[kind],
            seconds=SWEEP_INTERVALS.get(kind, settings.SWEEP_INTERVAL_SECONDS),
            id=f"sweep_{kind}",
            max_instances=1,
            coalesce=True,
        )
    scheduler.start()
    log.info("sweep scheduler started (%d jobs)", len(SWEEP_KINDS))
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup
    configure_logging(settings.LOG_LEVEL)
    init_db()

    scheduler = start_scheduler() if settings.SCHEDULER_ENABLED else None
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


app = FastAPI(title="Storefront Lifecycle - Backend", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(cart_router, tags=["cart"])

app.include_router(checkout_router, tags=["checkout"])

app.include_router(payment_failure_router, tags=["payment-failure"])

app.include_router(newsletter_router, tags=["newsletter"])

app.include_router(order_router, prefix="/api/orders", tags=["orders"])

app.include_router(admin_router, tags=["admin"])


def run():
    import uvicorn

    uvicorn.run("storefront.main:app", host=settings.APP_HOST, port=settings.APP_PORT)
