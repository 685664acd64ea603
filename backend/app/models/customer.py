import uuid

from sqlalchemy import Column, String, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base


class Customer(Base):
    """Shop-scoped shopper identity. Guests never get a row."""

    __tablename__ = "customer"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shop = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    shopify_id = Column(String(255), nullable=True, unique=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    source = Column(String(32), nullable=False, default="WEBSITE")  # WEBSITE | SHOPIFY

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    sessions = relationship("ChatSession", back_populates="customer")

    __table_args__ = (
        UniqueConstraint("shop", "email", name="uq_customer_shop_email"),
    )
