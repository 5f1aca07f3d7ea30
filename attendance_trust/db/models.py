"""
SQLAlchemy ORM models for the fraud record archive
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.sql import func

from attendance_trust.db.database import Base


class FraudRecordRow(Base):
    """Archived copy of a FraudRecord for the reporting surface"""
    __tablename__ = "fraud_records"

    id = Column(Integer, primary_key=True, index=True)
    record_id = Column(String(64), unique=True, nullable=False)
    actor_id = Column(String(255), nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    fraud_type = Column(String(30), nullable=False)
    severity = Column(String(20), nullable=False)
    fraud_score = Column(Float, nullable=False)
    indicators = Column(JSON, nullable=False)
    device_fingerprint = Column(String(255), nullable=False)
    ip_address = Column(String(64))
    attempt_count = Column(Integer, default=0)
    successful_attempts = Column(Integer, default=0)
    blocked = Column(Boolean, default=False)
    resolved = Column(Boolean, default=False)
    notes = Column(Text)
    archived_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        Index("ix_fraud_records_actor_occurred", "actor_id", "occurred_at"),
    )
