from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

ABANDONED_CART = "abandoned_cart"
ABANDONED_CHECKOUT = "abandoned_checkout"
ABANDONED_CHECKOUT_FOLLOWUP = "abandoned_checkout_followup"
PAYMENT_FAILED = "payment_failed"
DISCOUNT_REMINDER = "discount_reminder"
NEWSLETTER_WELCOME = "newsletter_welcome"

SUBJECTS = {
    ABANDONED_CART: "You left something in your cart",
    ABANDONED_CHECKOUT: "Complete your purchase",
    ABANDONED_CHECKOUT_FOLLOWUP: "Your checkout is still waiting",
    PAYMENT_FAILED: "Your payment did not go through",
    DISCOUNT_REMINDER: "Your discount code is waiting",
    NEWSLETTER_WELCOME: "Welcome! Here is your discount code",
}


@dataclass(frozen=True)
class SendResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class Dispatcher(Protocol):
    """Send a named notification. Failures are returned, never raised."""

    def send(self, kind: str, address: str, data: Dict[str, Any]) -> SendResult: ...

    def health_check(self) -> bool: ...


def build_mailer(settings) -> Dispatcher:
    if settings.MAILER_BACKEND == "smtp":
        from storefront.adapters.smtp_mailer import SmtpMailerAdapter

        return SmtpMailerAdapter(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            user=settings.SMTP_USER,
            password=settings.SMTP_PASS,
            mail_from=settings.MAIL_FROM,
        )
    from storefront.adapters.mock_mailer import MockMailerAdapter

    return MockMailerAdapter()
