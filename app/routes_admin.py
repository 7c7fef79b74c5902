# app/routes_admin.py
"""
Operator API: statistics, user / insight / transaction browsing, manual
analysis trigger and notification broadcast.

Every route requires the X-Admin-Key header (see app/deps.py:verify_admin_key).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import Insight, Transaction, User, utc_now
from app.deps import get_db, get_dispatcher, get_generator, verify_admin_key
from app.schemas import BroadcastRequest, TriggerRequest
from app.services.import_helpers import datetime_to_ms, page_to_offset

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", dependencies=[Depends(verify_admin_key)])

ACTIVE_WINDOW = timedelta(days=7)

# Rough per-request price of one insight generation call
ESTIMATED_COST_PER_REQUEST = 0.003


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# -------------------------------------------------------------------
# Stats
# -------------------------------------------------------------------

@router.get("/stats")
def get_stats(db: Session = Depends(get_db)):
    now = utc_now()
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    total_users = db.query(func.count(User.id)).scalar() or 0
    active_users = (
        db.query(func.count(func.distinct(Transaction.user_id)))
        .filter(Transaction.created_at >= now - ACTIVE_WINDOW)
        .scalar()
        or 0
    )
    insights_today = (
        db.query(func.count(Insight.id)).filter(Insight.generated_at >= today_start).scalar() or 0
    )
    total_transactions = db.query(func.count(Transaction.id)).scalar() or 0

    return {
        "total_users": int(total_users),
        "active_users_7d": int(active_users),
        "insights_today": int(insights_today),
        "total_transactions": int(total_transactions),
        "api_usage": {
            "gemini_requests_today": int(insights_today),
            "estimated_cost": round(insights_today * ESTIMATED_COST_PER_REQUEST, 4),
        },
    }


# -------------------------------------------------------------------
# Users
# -------------------------------------------------------------------

def _user_stats_query(db: Session):
    tx_stats = (
        select(
            Transaction.user_id.label("user_id"),
            func.max(Transaction.created_at).label("last_sync"),
            func.count(Transaction.id).label("transaction_count"),
        )
        .group_by(Transaction.user_id)
        .subquery()
    )
    insight_stats = (
        select(
            Insight.user_id.label("user_id"),
            func.count(Insight.id).label("insights_count"),
        )
        .group_by(Insight.user_id)
        .subquery()
    )
    query = (
        db.query(
            User,
            tx_stats.c.last_sync,
            func.coalesce(tx_stats.c.transaction_count, 0),
            func.coalesce(insight_stats.c.insights_count, 0),
        )
        .outerjoin(tx_stats, tx_stats.c.user_id == User.id)
        .outerjoin(insight_stats, insight_stats.c.user_id == User.id)
    )
    return query, tx_stats


def _admin_user_dict(user: User, last_sync, transaction_count, insights_count) -> dict:
    return {
        "id": user.id,
        "device_id": user.device_id,
        "operator": user.operator,
        "has_push_token": bool(user.fcm_token),
        "consent_given": user.consent_given,
        "created_at": _iso(user.created_at),
        "last_sync": _iso(last_sync),
        "transaction_count": int(transaction_count),
        "insights_count": int(insights_count),
    }


@router.get("/users")
def get_users(
    page: int = Query(1),
    limit: int = Query(50),
    filter: str = Query("all"),
    db: Session = Depends(get_db),
):
    """Paginated users; filter=synced keeps users who synced in the last 7 days."""
    page, limit, offset = page_to_offset(page, limit)
    query, tx_stats = _user_stats_query(db)

    if filter == "synced":
        query = query.filter(tx_stats.c.last_sync >= utc_now() - ACTIVE_WINDOW)

    total = query.count()
    rows = query.order_by(User.created_at.desc()).limit(limit).offset(offset).all()

    return {
        "users": [_admin_user_dict(*row) for row in rows],
        "total": total,
        "page": page,
    }


@router.get("/users/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_db)):
    query, _ = _user_stats_query(db)
    row = query.filter(User.id == user_id).first()
    if row is None:
        raise HTTPException(status_code=404, detail="User not found")
    return _admin_user_dict(*row)


# -------------------------------------------------------------------
# Insights & transactions
# -------------------------------------------------------------------

@router.get("/insights")
def get_insights(
    page: int = Query(1),
    limit: int = Query(50),
    user_id: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    page, limit, offset = page_to_offset(page, limit)

    query = db.query(Insight)
    if user_id:
        query = query.filter(Insight.user_id == user_id)
    if date_from:
        query = query.filter(Insight.generated_at >= _naive_utc(date_from))
    if date_to:
        query = query.filter(Insight.generated_at <= _naive_utc(date_to))

    total = query.count()
    rows = query.order_by(Insight.generated_at.desc()).limit(limit).offset(offset).all()

    return {
        "insights": [
            {
                "id": i.id,
                "user_id": i.user_id,
                "title": i.title,
                "message": i.message,
                "category": i.category,
                "priority": i.priority,
                "generated_at": _iso(i.generated_at),
            }
            for i in rows
        ],
        "total": total,
        "page": page,
    }


@router.get("/transactions")
def get_transactions(
    page: int = Query(1),
    limit: int = Query(50),
    user_id: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    page, limit, offset = page_to_offset(page, limit)

    query = db.query(Transaction)
    if user_id:
        query = query.filter(Transaction.user_id == user_id)
    if category:
        query = query.filter(Transaction.category == category)
    if date_from:
        query = query.filter(Transaction.date >= _naive_utc(date_from))
    if date_to:
        query = query.filter(Transaction.date <= _naive_utc(date_to))

    total = query.count()
    rows = query.order_by(Transaction.date.desc()).limit(limit).offset(offset).all()

    return {
        "transactions": [
            {
                "id": t.id,
                "user_id": t.user_id,
                "type": t.type,
                "category": t.category,
                "operator": t.operator,
                "amount": float(t.amount),
                "balance": float(t.balance) if t.balance is not None else None,
                "description": t.description,
                "date": datetime_to_ms(t.date),
            }
            for t in rows
        ],
        "total": total,
        "page": page,
    }


# -------------------------------------------------------------------
# Actions
# -------------------------------------------------------------------

@router.post("/insights/trigger")
def trigger_insights(
    request: Request,
    background_tasks: BackgroundTasks,
    req: Optional[TriggerRequest] = None,
    generator=Depends(get_generator),
):
    """
    Kick off the full daily sweep in the background.
    There is no single-user variant: a user_id in the body still runs the
    sweep for everyone.
    """
    if generator is None:
        raise HTTPException(status_code=503, detail="AI insights are not enabled")

    background_tasks.add_task(request.app.state.daily_job)
    logger.info("Daily analysis triggered from admin API")

    if req is not None and req.user_id:
        return {"message": "Analysis triggered (all users - single-user not yet implemented)"}
    return {"message": "Analysis triggered for all users"}


def _broadcast_tokens(db: Session, req: BroadcastRequest) -> List[str]:
    has_token = [User.fcm_token.isnot(None), User.fcm_token != ""]

    if req.target == "specific":
        if not req.user_ids:
            return []
        rows = db.query(User.fcm_token).filter(User.id.in_(req.user_ids), *has_token).all()
    elif req.target == "active":
        rows = (
            db.query(User.fcm_token)
            .join(Transaction, Transaction.user_id == User.id)
            .filter(Transaction.created_at >= utc_now() - ACTIVE_WINDOW, *has_token)
            .distinct()
            .all()
        )
    else:
        rows = db.query(User.fcm_token).filter(*has_token).all()

    return [r[0] for r in rows]


@router.post("/broadcast")
def broadcast(
    req: BroadcastRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
):
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Push notifications are not enabled")

    scheduled = _naive_utc(req.scheduled_for)
    if scheduled is not None and scheduled > utc_now():
        raise HTTPException(status_code=400, detail="Scheduled broadcasts are not supported")

    tokens = _broadcast_tokens(db, req)
    if not tokens:
        raise HTTPException(status_code=400, detail="No tokens found")

    background_tasks.add_task(dispatcher.send_multicast, tokens, req.title, req.body)
    logger.info("Broadcasting notification to %d devices (target=%s)", len(tokens), req.target)

    return {"message": "Broadcasting notification", "count": len(tokens)}
