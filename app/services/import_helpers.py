# app/services/import_helpers.py
#
# Import Helper Functions
# Converts validated sync payload items into transaction rows, and computes
# the relative date windows used by analytics and pagination bounds used by
# the list endpoints.

from datetime import datetime, timedelta, timezone

from app.schemas import TransactionInput
from models import new_id

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


# ---- Transaction Conversion ----

def ms_to_datetime(value: int) -> datetime:
    """Unix milliseconds -> naive UTC datetime (the storage convention)."""
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).replace(tzinfo=None)


def datetime_to_ms(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def build_transaction_values(user_id: str, tx: TransactionInput) -> dict:
    """
    Convert one validated TransactionInput into a column -> value mapping
    ready for an INSERT into the transactions table.
    """
    return {
        "id": new_id(),
        "user_id": user_id,
        "amount": tx.amount,
        "type": tx.type,
        "category": tx.category,
        "operator": tx.operator,
        "recipient": tx.recipient or None,
        "balance": tx.balance,
        "reference": tx.reference or None,
        "description": tx.description or None,
        "sms_hash": tx.sms_hash,
        "date": ms_to_datetime(tx.date),
    }


# ---- Pagination ----

def clamp_page(limit: int | None, offset: int | None) -> tuple[int, int]:
    """
    Returns (limit, offset) within bounds.
    limit <= 0 or missing -> DEFAULT_PAGE_SIZE; limit > MAX_PAGE_SIZE -> MAX_PAGE_SIZE.
    Negative or missing offset -> 0.
    """
    if limit is None or limit <= 0:
        limit = DEFAULT_PAGE_SIZE
    elif limit > MAX_PAGE_SIZE:
        limit = MAX_PAGE_SIZE

    if offset is None or offset < 0:
        offset = 0

    return limit, offset


def page_to_offset(page: int | None, limit: int | None) -> tuple[int, int, int]:
    """
    Admin listings are 1-based page numbers.
    Returns (page, limit, offset) with limit clamped like clamp_page.
    """
    limit, _ = clamp_page(limit, 0)
    if page is None or page < 1:
        page = 1
    return page, limit, (page - 1) * limit


# ---- Date Range Utilities ----

def get_summary_start(period: str, now: datetime) -> datetime | None:
    """
    Start of the analytics summary window for 'week', 'month' or 'year'.
    Any other value means all time and returns None.
    """
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    if period == "year":
        return now - timedelta(days=365)
    return None


def get_trend_window(period: str, now: datetime) -> tuple[datetime, str]:
    """
    Returns (start, bucket) for the trends endpoint.
    bucket is 'day' for week/month windows and 'month' for the year window.
    Unknown periods fall back to the week window.
    """
    if period == "month":
        return now - timedelta(days=30), "day"
    if period == "year":
        return now - timedelta(days=365), "month"
    return now - timedelta(days=7), "day"
