# models.py
# Role: SQLAlchemy ORM models for the Kwacha Tracker domain.
#       Users (one per registered device), mobile-money transactions synced
#       from parsed SMS messages, and the AI insights generated for them.

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from db import Base

TYPE_INCOME = "INCOME"
TYPE_EXPENSE = "EXPENSE"
TRANSACTION_TYPES = (TYPE_INCOME, TYPE_EXPENSE)

# Category whose EXPENSE rows count as money moved into savings
SAVINGS_CATEGORY = "SAVINGS"


def utc_now() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    One registered device.

    Created on first registration from a device id. Consent gates syncing and
    the daily analysis; the push token (fcm_token) is refreshed on every
    re-registration that carries one.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    device_id = Column(String(255), unique=True, nullable=False)
    fcm_token = Column(Text, nullable=True)
    operator = Column(String(50), nullable=False, default="UNKNOWN")
    is_premium = Column(Boolean, nullable=False, default=False)
    consent_given = Column(Boolean, nullable=False, default=False)
    consent_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)


class Transaction(Base):
    """
    ORM model representing a single mobile-money transaction.

    Each row comes from one SMS parsed on the device. The pair
    (user_id, sms_hash) is unique: re-syncing the same SMS is a no-op.
    Rows are never updated after insert.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "sms_hash", name="uq_transactions_user_sms_hash"),
        Index("idx_transactions_user_id", "user_id"),
        Index("idx_transactions_date", "date"),
        Index("idx_transactions_category", "category"),
        Index("idx_transactions_operator", "operator"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Signed amount in Kwacha
    amount = Column(Numeric(15, 2), nullable=False)

    # INCOME or EXPENSE
    type = Column(String(20), nullable=False)

    # Free-form tag from the device parser: DATA, AIRTIME, PAYMENT, SAVINGS, ...
    category = Column(String(50), nullable=False)

    # Mobile network: AIRTEL, MTN, ZAMTEL, ZEDMOBILE
    operator = Column(String(50), nullable=False)

    recipient = Column(Text, nullable=True)
    balance = Column(Numeric(15, 2), nullable=True)
    reference = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    # Fingerprint of the source SMS
    sms_hash = Column(BigInteger, nullable=False)

    # When the transaction happened (from the SMS), not when it was synced
    date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class Insight(Base):
    """An AI (or fallback) insight delivered to a user. Append-only."""

    __tablename__ = "user_insights"
    __table_args__ = (
        Index("idx_insights_user_id", "user_id"),
        Index("idx_insights_generated_at", "generated_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)
    priority = Column(String(20), nullable=False)
    generated_at = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, nullable=False, default=utc_now)
