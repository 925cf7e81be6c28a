from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, text

from storefront.db import Base


class AbandonedCheckout(Base):
    __tablename__ = "abandoned_checkouts"
    __table_args__ = (
        # one open snapshot per customer; recovered and completed ones are history
        Index(
            "uq_abandoned_checkouts_pending_email",
            "email",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )
    id = Column(String(64), primary_key=True)  # opaque recovery token
    email = Column(String(255), nullable=False, index=True)
    user_id = Column(String(128), nullable=True)
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
    followup_sent = Column(Boolean, nullable=False, default=False)
    followup_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_activity_at = Column(DateTime(timezone=True), nullable=False, index=True)
    recovered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    recovery_count = Column(Integer, nullable=False, default=0)
    order_number = Column(String(32), nullable=True)
