# app/services/insights.py
"""
AI spending insights.

Design goals:
- One short prompt per aggregate, one attempt per call (no retries)
- Strict output: a JSON array of {title, message, category, priority}
- Never returns an error for an unparseable answer: falls back to
  deterministic insights computed from the aggregate itself

Public API:
    InsightGenerator.analyze_spending(aggregate) -> list[InsightDraft]
    fallback_insights(aggregate) -> list[InsightDraft]
    notification_text(insights) -> (title, body)
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, List, Optional, Tuple

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError, field_validator

from sqlalchemy.orm import Session

from app.services.aggregator import SpendingAggregate
from app.services.errors import InsightGenerationError
from models import Insight, utc_now

logger = logging.getLogger(__name__)

_JSON_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

REQUEST_TIMEOUT_SECONDS = 30.0
MAX_OUTPUT_TOKENS = 500
TEMPERATURE = 0.7
MAX_INSIGHTS = 3

PRIORITIES = ("high", "medium", "low")

DEFAULT_NOTIFICATION = ("📊 Daily Summary", "Check your spending insights in the app!")


class InsightDraft(BaseModel):
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    category: str = "tip"
    priority: str = "medium"
    generated_at: datetime = Field(default_factory=utc_now)

    @field_validator("priority")
    @classmethod
    def _normalize_priority(cls, v: str) -> str:
        v = str(v or "").strip().lower()
        return v if v in PRIORITIES else "medium"


def _strip_json_fences(s: str) -> str:
    # Removes leading/trailing ```json fences if the model includes them.
    return _JSON_FENCE_RE.sub("", s).strip()


def _safe_json_loads(s: str) -> Optional[Any]:
    try:
        return json.loads(s)
    except ValueError:
        return None


def _k(amount: float, decimals: int = 2) -> str:
    return f"K{amount:.{decimals}f}"


def build_prompt(data: SpendingAggregate) -> str:
    breakdown = "".join(f"- {cat}: {_k(amount)}\n" for cat, amount in data.by_category.items())
    if not breakdown:
        breakdown = "- (no expenses)\n"

    return (
        'You are a friendly financial advisor for a Zambian mobile money tracking app called "Kwacha Tracker".\n'
        "\n"
        "Analyze this user's spending data and generate 2-3 personalized insights.\n"
        "\n"
        f"**Spending Data ({data.period}):**\n"
        f"- Total Income: {_k(data.total_income)}\n"
        f"- Total Expenses: {_k(data.total_expenses)}\n"
        f"- Net Balance: {_k(data.net_balance)}\n"
        f"- Savings Deposits: {_k(data.savings_deposits)}\n"
        f"- Transaction Count: {data.transaction_count}\n"
        "\n"
        "**Category Breakdown:**\n"
        f"{breakdown}"
        "\n"
        "**Instructions:**\n"
        "1. Be encouraging and positive, especially about savings\n"
        "2. Use Zambian Kwacha (K) for amounts\n"
        "3. Keep each insight under 50 words\n"
        "4. Focus on actionable tips\n"
        "5. If savings > 10% of income, congratulate them\n"
        "\n"
        "**Output Format (JSON array):**\n"
        "[\n"
        '  {"title": "...", "message": "...", "category": "spending|savings|tip", "priority": "high|medium|low"}\n'
        "]\n"
        "\n"
        "Only output valid JSON, no additional text."
    )


def parse_insights(text: str) -> Optional[List[InsightDraft]]:
    """
    Parse the model output. Returns None when it is not a non-empty JSON
    array of well-formed insights. At most MAX_INSIGHTS are kept.
    """
    data = _safe_json_loads(_strip_json_fences(text or ""))
    if not isinstance(data, list) or not data:
        return None

    now = utc_now()
    insights: List[InsightDraft] = []
    for raw in data[:MAX_INSIGHTS]:
        if not isinstance(raw, dict):
            return None
        try:
            insights.append(InsightDraft.model_validate({**raw, "generated_at": now}))
        except ValidationError:
            return None
    return insights


def fallback_insights(data: SpendingAggregate) -> List[InsightDraft]:
    """Pre-written insights derived only from the aggregate's numbers."""
    now = utc_now()
    insights: List[InsightDraft] = []

    if data.savings_deposits > 0:
        insights.append(InsightDraft(
            title="💰 Great Saving Habit!",
            message=f"You've saved {_k(data.savings_deposits, 0)} this period. Keep it up!",
            category="savings",
            priority="high",
            generated_at=now,
        ))

    if data.net_balance > 0:
        insights.append(InsightDraft(
            title="📈 Positive Balance",
            message=f"Your income exceeds expenses by {_k(data.net_balance, 0)}. Consider saving the surplus!",
            category="tip",
            priority="medium",
            generated_at=now,
        ))
    elif data.net_balance < 0:
        insights.append(InsightDraft(
            title="⚠️ Spending Alert",
            message=f"You've spent {_k(-data.net_balance, 0)} more than earned. Review your expenses.",
            category="spending",
            priority="high",
            generated_at=now,
        ))

    return insights


def notification_text(insights: List[InsightDraft]) -> Tuple[str, str]:
    """Pick the push title/body: first high-priority insight, else the first one."""
    if not insights:
        return DEFAULT_NOTIFICATION
    for insight in insights:
        if insight.priority == "high":
            return insight.title, insight.message
    return insights[0].title, insights[0].message


def store_insights(db: Session, user_id: str, insights: List[InsightDraft]) -> List[Insight]:
    """Append insights for a user. The caller commits."""
    rows = [
        Insight(
            user_id=user_id,
            title=i.title,
            message=i.message,
            category=i.category,
            priority=i.priority,
            generated_at=i.generated_at,
        )
        for i in insights
    ]
    db.add_all(rows)
    return rows


def recent_insights(db: Session, user_id: str, limit: int = 10) -> List[Insight]:
    return (
        db.query(Insight)
        .filter(Insight.user_id == user_id)
        .order_by(Insight.generated_at.desc())
        .limit(limit)
        .all()
    )


class InsightGenerator:
    """
    Wraps an OpenAI-compatible chat-completions client (Gemini by default).
    The client is injectable so tests can pass a stub.
    """

    def __init__(self, client: Any, model: str):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings) -> Optional["InsightGenerator"]:
        if not settings.ai_configured:
            return None
        client = OpenAI(
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            timeout=REQUEST_TIMEOUT_SECONDS,
            max_retries=0,
        )
        return cls(client, settings.gemini_model)

    def _generate_content(self, prompt: str) -> str:
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=TEMPERATURE,
                max_tokens=MAX_OUTPUT_TOKENS,
            )
        except OpenAIError as e:
            raise InsightGenerationError(f"API request failed: {e}") from e

        choices = getattr(resp, "choices", None) or []
        if not choices:
            raise InsightGenerationError("no content in response")
        return (choices[0].message.content or "").strip()

    def analyze_spending(self, data: SpendingAggregate) -> List[InsightDraft]:
        """
        Generate insights for a non-empty aggregate.

        Raises InsightGenerationError when the service call itself fails;
        an unusable answer is replaced by fallback_insights().
        """
        text = self._generate_content(build_prompt(data))
        insights = parse_insights(text)
        if insights is None:
            logger.warning("Failed to parse AI response for user %s, using fallback", data.user_id)
            return fallback_insights(data)
        return insights
