from sqlalchemy import Boolean, Column, DateTime, Integer, String

from storefront.db import Base


class DiscountCode(Base):
    """
    Single-use, time-boxed newsletter incentive. Kept after use or expiry
    for analytics.

    Redemption is decided by comparing now against expires_at; the expired
    flag is informational only.
    """

    __tablename__ = "discount_codes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    source = Column(String(64), nullable=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_in_order = Column(String(32), nullable=True)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    expired = Column(Boolean, nullable=False, default=False)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    unsubscribed = Column(Boolean, nullable=False, default=False)
    unsubscribed_at = Column(DateTime(timezone=True), nullable=True)
