# app/routes_root.py
"""
Root / basic endpoints (health).
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter()

API_VERSION = "1.1.0"


@router.get("/health")
def health(request: Request):
    """
    Health check: also reports which optional integrations are enabled.
    """
    state = request.app.state
    return {
        "status": "healthy",
        "version": API_VERSION,
        "time": datetime.now(timezone.utc).isoformat(),
        "ai_enabled": state.insight_generator is not None,
        "push_enabled": state.push_dispatcher is not None,
    }
