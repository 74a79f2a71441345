"""
SQLAlchemy ORM models for FinPersona.

Includes:
    - Transaction (with the anomaly_checked processing flag)
    - Alert (persisted anomaly records)
    - Scenario (what-if text with its analysis and simulation)
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text, JSON, Index
)
from database import Base


class Transaction(Base):
    """
    A single income or expense entry owned by a user.

    Immutable once created except for the anomaly processing fields.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Float, nullable=False)
    category = Column(String)
    description = Column(String, nullable=False, default="")
    occurred_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    kind = Column(String, nullable=False, default="expense")  # expense|income

    # Anomaly processing
    anomaly_checked = Column(Boolean, default=False, nullable=False)
    processed_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_transactions_user_occurred', 'user_id', 'occurred_at'),
    )


class Alert(Base):
    """Anomaly alert shown to the user. Only read/dismissed ever change."""
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)  # spending_spike|large_transaction
    category = Column(String)
    amount = Column(Float)
    normal_range = Column(String)
    severity = Column(String)  # low|medium|high
    message = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    read = Column(Boolean, default=False, nullable=False)
    dismissed = Column(Boolean, default=False, nullable=False)


class Scenario(Base):
    """A what-if scenario stored verbatim with its projection."""
    __tablename__ = "scenarios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    scenario = Column(Text, nullable=False)
    timeframe = Column(Integer, nullable=False)
    analysis = Column(JSON)
    simulation = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)
