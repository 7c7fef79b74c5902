# app/deps.py
# Role: Shared FastAPI dependencies.
#       Provides the database session, settings, AI/push services and the
#       authenticated user id. Everything is read from app.state, which
#       create_app() fills in, so tests can build an app around a fake store.

"""
Shared dependencies for the Kwacha Tracker API.
"""

import logging
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from config import Settings
from app.security import verify_token

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Database dependency
# -------------------------------------------------------------------

def get_db(request: Request) -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a database session and ensures it is closed.

    Typical usage in routes:
        db: Session = Depends(get_db)
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


# -------------------------------------------------------------------
# App services
# -------------------------------------------------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_generator(request: Request):
    """InsightGenerator, or None when AI insights are not configured."""
    return request.app.state.insight_generator


def get_dispatcher(request: Request):
    """PushDispatcher, or None when push notifications are not configured."""
    return request.app.state.push_dispatcher


# -------------------------------------------------------------------
# Device auth (Authorization: Bearer <token>)
# -------------------------------------------------------------------

def get_current_user_id(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization format")

    claims = verify_token(parts[1], settings.jwt_secret)
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    return claims["user_id"]


# -------------------------------------------------------------------
# Admin auth (X-Admin-Key: <ADMIN_API_KEY>)
# -------------------------------------------------------------------

def verify_admin_key(
    x_admin_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.admin_api_key:
        logger.error("ADMIN_API_KEY not configured, rejecting admin request")
        raise HTTPException(status_code=503, detail="Admin authentication not configured")
    if x_admin_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing X-Admin-Key header")
