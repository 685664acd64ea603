import enum
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Integer, Boolean, Float, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base


class RequestType(str, enum.Enum):
    AI_CHAT = "AI_CHAT"
    KEYWORD_RESPONSE = "KEYWORD_RESPONSE"
    MANUAL_HANDOFF = "MANUAL_HANDOFF"


class MerchantPlan(Base):
    __tablename__ = "merchant_plan"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(64), nullable=False, unique=True)
    monthly_credits = Column(Integer, nullable=False)
    max_concurrent_chats = Column(Integer, nullable=False, default=2)
    price = Column(Float, nullable=False, default=0.0)
    features = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MerchantCredits(Base):
    """Running credit balance for one shop within the current billing period."""

    __tablename__ = "merchant_credits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shop = Column(String(255), nullable=False, unique=True)
    plan_id = Column(String(36), ForeignKey("merchant_plan.id"), nullable=False)

    total_credits = Column(Float, nullable=False, default=0.0)
    used_credits = Column(Float, nullable=False, default=0.0)
    remaining_credits = Column(Float, nullable=False, default=0.0)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    ai_enabled = Column(Boolean, nullable=False, default=True)
    auto_recharge = Column(Boolean, nullable=False, default=True)
    total_requests = Column(Integer, nullable=False, default=0)
    total_users = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    plan = relationship("MerchantPlan", lazy="joined")
    usage_logs = relationship("UsageLog", back_populates="merchant_credits")


class UsageLog(Base):
    __tablename__ = "usage_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shop = Column(String(255), nullable=False, index=True)
    merchant_credits_id = Column(String(36), ForeignKey("merchant_credits.id"), nullable=False, index=True)

    request_type = Column(String(32), nullable=False)
    credits_used = Column(Float, nullable=False, default=0.0)
    tokens_used = Column(Integer, nullable=True)
    response_time = Column(Integer, nullable=True)  # milliseconds
    session_id = Column(String(36), nullable=True)
    customer_id = Column(String(36), nullable=True)
    user_message = Column(String(100), nullable=True)
    was_successful = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    merchant_credits = relationship("MerchantCredits", back_populates="usage_logs")

    __table_args__ = (
        # Unique-user counting per billing period
        Index("ix_usage_log_credits_customer_created", "merchant_credits_id", "customer_id", "created_at"),
    )
