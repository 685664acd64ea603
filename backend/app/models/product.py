import uuid

from sqlalchemy import Column, String, Text, Float, Integer, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base


class Product(Base):
    """Relational half of a catalog product; the vector record lives in the index."""

    __tablename__ = "product"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shop = Column(String(255), nullable=False, index=True)
    prod_id = Column(String(255), nullable=False)  # gid://shopify/Product/123

    title = Column(String(512), nullable=False)
    description = Column(Text, nullable=True)
    handle = Column(String(255), nullable=True)
    image = Column(String(1024), nullable=True)
    vendor = Column(String(255), nullable=True)
    product_type = Column(String(255), nullable=True)
    price = Column(Float, nullable=False, default=0.0)
    stock = Column(Integer, nullable=False, default=0)
    tags = Column(JSON, nullable=False, default=list)
    collections = Column(JSON, nullable=False, default=list)
    variants = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("shop", "prod_id", name="uq_product_shop_prod_id"),
    )


class Order(Base):
    __tablename__ = "shop_order"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shop = Column(String(255), nullable=False, index=True)
    shopify_order_id = Column(String(255), nullable=True)
    customer_id = Column(String(36), ForeignKey("customer.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_item"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), ForeignKey("shop_order.id"), nullable=False, index=True)
    product_id = Column(String(255), nullable=False, index=True)  # matches Product.prod_id
    product_name = Column(String(512), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Float, nullable=True)

    order = relationship("Order", back_populates="items")
