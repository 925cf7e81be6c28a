import logging
import sys
from dataclasses import dataclass
from datetime import timedelta
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    FRONTEND_ORIGINS: List[str] = ["http://localhost:3000"]
    FRONTEND_URL: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # lifecycle windows, all relative to a stored timestamp
    CART_IDLE_MINUTES: int = 30
    CHECKOUT_IDLE_MINUTES: int = 10
    CHECKOUT_FOLLOWUP_MINUTES: int = 20
    PAYMENT_RETRY_GRACE_MINUTES: int = 10
    DISCOUNT_REMINDER_DAYS: int = 7
    DISCOUNT_LIFETIME_DAYS: int = 14

    SCHEDULER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: int = 300
    SWEEP_BATCH_LIMIT: int = 500
    SWEEP_LOCK_TIMEOUT_SECONDS: float = 0.0

    MAILER_BACKEND: str = "mock"  # mock, smtp
    MAIL_FROM: str = "Storefront <no-reply@localhost>"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASS: str = ""

    DISCOUNT_CODE_PREFIX: str = "PEAK10"
    DISCOUNT_PERCENTAGE: int = 10

    ADMIN_API_KEY: str = "change-this-admin-key"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()


@dataclass(frozen=True)
class LifecycleWindows:
    cart_idle_threshold: timedelta = timedelta(minutes=30)
    checkout_idle_threshold: timedelta = timedelta(minutes=10)
    checkout_followup_threshold: timedelta = timedelta(minutes=20)
    payment_retry_grace: timedelta = timedelta(minutes=10)
    reminder_delay: timedelta = timedelta(days=7)
    code_lifetime: timedelta = timedelta(days=14)


def windows_from_settings(s: Settings = settings) -> LifecycleWindows:
    return LifecycleWindows(
        cart_idle_threshold=timedelta(minutes=s.CART_IDLE_MINUTES),
        checkout_idle_threshold=timedelta(minutes=s.CHECKOUT_IDLE_MINUTES),
        checkout_followup_threshold=timedelta(minutes=s.CHECKOUT_FOLLOWUP_MINUTES),
        payment_retry_grace=timedelta(minutes=s.PAYMENT_RETRY_GRACE_MINUTES),
        reminder_delay=timedelta(days=s.DISCOUNT_REMINDER_DAYS),
        code_lifetime=timedelta(days=s.DISCOUNT_LIFETIME_DAYS),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
