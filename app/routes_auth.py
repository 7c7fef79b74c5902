# app/routes_auth.py
"""
Device registration, consent and data deletion.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings
from models import Insight, Transaction, User, utc_now
from app.deps import get_current_user_id, get_db, get_settings
from app.schemas import ConsentRequest, RegisterRequest
from app.security import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


@router.post("/register")
def register(
    req: RegisterRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Register a new device or return a fresh token for a known one.
    A returning device updates its push token when one is provided.
    """
    user = db.query(User).filter(User.device_id == req.device_id).first()
    is_new = user is None

    try:
        if is_new:
            user = User(
                device_id=req.device_id,
                fcm_token=req.fcm_token or None,
                operator=req.operator or "UNKNOWN",
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            logger.info("Registered new device, user %s", user.id)
        elif req.fcm_token:
            user.fcm_token = req.fcm_token
            user.updated_at = utc_now()
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Registration failed for device %s: %s", req.device_id, e)
        raise HTTPException(status_code=500, detail="Failed to create user")

    token = create_access_token(
        user.id, req.device_id, settings.jwt_secret, settings.jwt_expiration_hours
    )

    return {
        "user_id": user.id,
        "token": token,
        "is_new_user": is_new,
        "expires_in": settings.jwt_expiration_hours * 3600,
    }


@router.put("/consent")
def update_consent(
    req: ConsentRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    user.consent_given = req.consent_given
    user.consent_date = utc_now() if req.consent_given else None
    user.updated_at = utc_now()
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Consent update failed for user %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Failed to update consent")

    return {"message": "Consent updated", "consent_given": req.consent_given}


@router.delete("/data")
def delete_data(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Delete everything stored for the caller: transactions and insights
    first, then the user row.
    """
    try:
        deleted_tx = (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .delete(synchronize_session=False)
        )
        db.query(Insight).filter(Insight.user_id == user_id).delete(synchronize_session=False)
        db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Data deletion failed for user %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Failed to delete user data")

    logger.info("Deleted user %s and %d transactions", user_id, deleted_tx)
    return {"message": "All data deleted"}
