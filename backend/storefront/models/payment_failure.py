from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from storefront.db import Base


class PaymentFailure(Base):
    """Failed payment attempt for an order; same status shape as AbandonedCheckout."""

    __tablename__ = "payment_failures"
    id = Column(Integer, primary_key=True, autoincrement=True)
    retry_token = Column(String(64), unique=True, nullable=False, index=True)
    order_number = Column(String(32), nullable=False, index=True)
    payment_intent_id = Column(String(128), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    cart = Column(JSON, nullable=False, default=list)
    total_cents = Column(Integer, nullable=False, default=0)
    customer = Column(JSON, nullable=True)
    shipping_address = Column(JSON, nullable=True)
    shipping_method = Column(JSON, nullable=True)
    status = Column(
        String(32), nullable=False, default="pending", index=True
    )  # pending, recovered, completed
    email_sent = Column(Boolean, nullable=False, default=False)
    notified_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_activity_at = Column(DateTime(timezone=True), nullable=False, index=True)
    recovered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    recovery_count = Column(Integer, nullable=False, default=0)
