"""
SQLAlchemy model for receipt persistence.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, JSON, String

from receiptsplit.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReceiptModel(Base):
    __tablename__ = "receipts"

    id = Column(String(36), primary_key=True)
    access_token = Column(String(36), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    image_url = Column(String)
    image_type = Column(String(50))
    items = Column(JSON, nullable=False, default=list)
    people = Column(JSON, nullable=False, default=list)
    tax_rates = Column(JSON, nullable=False, default=list)
    tip_config = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
