from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String

from storefront.db import Base


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)
    owner_id = Column(String(128), nullable=True, index=True)
    customer_email = Column(String(255), nullable=True, index=True)
    status = Column(String(32), nullable=False, default="placed")  # placed, paid, failed
    payment_status = Column(
        String(32), nullable=False, default="pending"
    )  # pending, paid, failed
    payment_intent_id = Column(String(128), nullable=True)
    total_cents = Column(Integer, nullable=False, default=0)
    discount_code = Column(String(32), nullable=True)
    items = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    paid_at = Column(DateTime(timezone=True), nullable=True)
