# app/schemas.py
"""
Request/response bodies for the JSON API.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

# sms_hash is stored in a signed 64-bit column
SMS_HASH_MIN = -(2**63)
SMS_HASH_MAX = 2**63 - 1

# 9999-12-31T23:59:59.999Z
MAX_DATE_MS = 253402300799999


# -------------------------------------------------------------------
# Device auth
# -------------------------------------------------------------------

class RegisterRequest(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=255)
    fcm_token: str = ""
    operator: str = ""


class ConsentRequest(BaseModel):
    consent_given: bool


# -------------------------------------------------------------------
# Sync
# -------------------------------------------------------------------

class TransactionInput(BaseModel):
    """One transaction parsed from an SMS on the device."""

    amount: float = Field(..., allow_inf_nan=False)
    type: Literal["INCOME", "EXPENSE"]
    category: str = Field(..., min_length=1, max_length=50)
    operator: str = Field(..., min_length=1, max_length=50)
    recipient: Optional[str] = None
    balance: Optional[float] = Field(None, allow_inf_nan=False)
    reference: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    sms_hash: int = Field(..., ge=SMS_HASH_MIN, le=SMS_HASH_MAX)
    date: int = Field(..., ge=0, le=MAX_DATE_MS)  # Unix timestamp in milliseconds


class SyncRequest(BaseModel):
    device_id: str = Field(..., min_length=1)
    # Items are validated one by one during ingestion so a single malformed
    # transaction is skipped instead of failing the whole batch.
    transactions: List[Dict[str, Any]]
    timestamp: int


# -------------------------------------------------------------------
# Notifications
# -------------------------------------------------------------------

class NotifyRequest(BaseModel):
    token: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)


class BroadcastRequest(BaseModel):
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    target: Literal["all", "active", "specific"] = "all"
    user_ids: List[str] = Field(default_factory=list)
    scheduled_for: Optional[datetime] = None


class TriggerRequest(BaseModel):
    user_id: Optional[str] = None
