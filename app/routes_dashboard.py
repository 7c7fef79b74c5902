# app/routes_dashboard.py

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from models import utc_now
from .deps import get_current_user_id, get_db
from .services.aggregator import summarize, trends
from .services.import_helpers import get_summary_start, get_trend_window

router = APIRouter(prefix="/api/v1/analytics")


@router.get("/summary")
def analytics_summary(
    period: str = Query("month"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    # week / month / year; anything else is all time
    start = get_summary_start(period, utc_now())
    summary = summarize(db, user_id, start)
    summary["period"] = period
    return summary


@router.get("/trends")
def analytics_trends(
    period: str = Query("week"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    # Daily buckets for week/month, monthly buckets for year
    start, bucket = get_trend_window(period, utc_now())
    return {
        "trends": trends(db, user_id, start, bucket),
        "period": period,
    }
