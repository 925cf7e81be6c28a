from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String

from storefront.db import Base


class CartSession(Base):
    """
    A customer's live basket. One row per owner; never deleted, only
    superseded when an order is placed.

    notified_at is set once per idle period and cleared by the next mutation.
    """

    __tablename__ = "carts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(128), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True, index=True)
    items = Column(JSON, nullable=False, default=list)  # [{sku, name, quantity, price_cents}]
    item_count = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(10), nullable=False, default="SEK")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)
    notified_at = Column(DateTime(timezone=True), nullable=True)
    superseded_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<CartSession owner={self.owner_id} items={self.item_count}>"
