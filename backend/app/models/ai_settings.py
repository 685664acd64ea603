import uuid

from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func

from app.db.base import Base


class AISettings(Base):
    """Merchant personality/policy settings, one JSON document per shop."""

    __tablename__ = "ai_settings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shop = Column(String(255), nullable=False, unique=True)
    settings = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
