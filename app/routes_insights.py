# app/routes_insights.py
"""
On-demand AI insights for the calling device, stored insight history,
and the direct push endpoint.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Insight
from app.deps import get_current_user_id, get_db, get_dispatcher, get_generator
from app.schemas import NotifyRequest
from app.services.aggregator import fetch_spending_data
from app.services.errors import InsightGenerationError, PushDeliveryError
from app.services.insights import fallback_insights, recent_insights, store_insights

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def insight_to_dict(i) -> dict:
    return {
        "title": i.title,
        "message": i.message,
        "category": i.category,
        "priority": i.priority,
        "generated_at": i.generated_at.isoformat(),
    }


@router.post("/insights/generate")
def generate_insights(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    generator=Depends(get_generator),
):
    """
    Analyze the caller's last 24 hours right now.

    No transactions -> nothing generated and no AI call. If the AI service
    is unreachable the deterministic fallback insights are returned instead.
    """
    if generator is None:
        raise HTTPException(status_code=503, detail="AI insights are not enabled")

    data = fetch_spending_data(db, user_id, "daily")
    if data.is_empty:
        return {"message": "No transactions to analyze", "insights": []}

    fallback = False
    try:
        insights = generator.analyze_spending(data)
    except InsightGenerationError as e:
        logger.warning("AI analysis failed for user %s, using fallback: %s", user_id, e)
        insights = fallback_insights(data)
        fallback = True

    try:
        store_insights(db, user_id, insights)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to store insights for user %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Failed to store insights")

    return {
        "insights": [insight_to_dict(i) for i in insights],
        "period": data.period,
        "analyzed": data.transaction_count,
        "fallback": fallback,
    }


@router.get("/insights")
def get_user_insights(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    rows: list[Insight] = recent_insights(db, user_id, limit=10)
    return {"insights": [insight_to_dict(i) for i in rows]}


@router.post("/notify", dependencies=[Depends(get_current_user_id)])
def notify(req: NotifyRequest, dispatcher=Depends(get_dispatcher)):
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Push notifications are not enabled")
    try:
        dispatcher.send(req.token, req.title, req.body)
    except PushDeliveryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"message": "Notification sent"}
