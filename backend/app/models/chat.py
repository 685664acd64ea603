import enum
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, BigInteger, Integer, Boolean, Float, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns
MessageIdType = BigInteger().with_variant(Integer(), "sqlite")


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatSession(Base):
    __tablename__ = "chat_session"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shop = Column(String(255), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customer.id"), nullable=True)
    is_guest = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    customer = relationship("Customer", back_populates="sessions")
    messages = relationship(
        "Message",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )

    __table_args__ = (
        Index("ix_chat_session_shop_customer_created", "shop", "customer_id", "created_at"),
    )


class Message(Base):
    __tablename__ = "message"

    id = Column(MessageIdType, primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("chat_session.id"), nullable=False, index=True)

    role = Column(String(20), nullable=False)  # user, assistant, system
    content = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    session = relationship("ChatSession", back_populates="messages")
    products = relationship("MessageProduct", back_populates="message", cascade="all, delete-orphan")


class MessageProduct(Base):
    """A product surfaced by an assistant message."""

    __tablename__ = "message_product"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    message_id = Column(MessageIdType, ForeignKey("message.id"), nullable=False, index=True)

    product_id = Column(String(255), nullable=False)  # external catalog id
    title = Column(String(512), nullable=False, default="")
    price = Column(Float, nullable=False, default=0.0)
    handle = Column(String(255), nullable=True)
    image = Column(String(1024), nullable=True)
    score = Column(Float, nullable=False, default=0.0)

    message = relationship("Message", back_populates="products")
