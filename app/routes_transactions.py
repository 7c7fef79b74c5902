# app/routes_transactions.py
"""
Routes for syncing transactions from the device and listing them back.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from models import Transaction
from app.deps import get_current_user_id, get_db
from app.schemas import SyncRequest
from app.services.errors import ConsentRequiredError, PersistenceError
from app.services.import_helpers import datetime_to_ms
from app.services.ingest import list_transactions, sync_transactions

router = APIRouter(prefix="/api/v1")


def _optional_float(value) -> Optional[float]:
    return None if value is None else float(value)


def transaction_to_dict(t: Transaction) -> dict:
    return {
        "id": t.id,
        "amount": float(t.amount),
        "type": t.type,
        "category": t.category,
        "operator": t.operator,
        "recipient": t.recipient,
        "balance": _optional_float(t.balance),
        "reference": t.reference,
        "description": t.description,
        "date": datetime_to_ms(t.date),
    }


@router.post("/sync")
def sync(
    req: SyncRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Store a batch of transactions parsed on the device.

    Already-synced SMS (same sms_hash) and malformed items are skipped;
    the rest of the batch is committed together.
    """
    try:
        result = sync_transactions(db, user_id, req.transactions)
    except ConsentRequiredError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "message": "Sync completed",
        "inserted": result.inserted,
        "skipped": result.skipped,
        "failed": result.failed,
        "total": result.total,
    }


@router.get("/transactions")
def get_transactions(
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    rows, limit, offset = list_transactions(db, user_id, limit, offset)
    return {
        "transactions": [transaction_to_dict(t) for t in rows],
        "limit": limit,
        "offset": offset,
    }
