# app/services/aggregator.py
"""
Spending aggregation over a user's transactions.

fetch_spending_data() feeds the insight pipeline (daily / weekly / monthly
windows); summarize() and trends() back the analytics endpoints. Everything is
computed fresh from the transactions table on every call.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from models import SAVINGS_CATEGORY, TYPE_EXPENSE, TYPE_INCOME, Transaction, utc_now

PERIODS: Dict[str, timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}
DEFAULT_PERIOD = "daily"


@dataclass
class SpendingAggregate:
    user_id: str
    period: str
    total_income: float = 0.0
    total_expenses: float = 0.0
    net_balance: float = 0.0
    savings_deposits: float = 0.0
    transaction_count: int = 0
    by_category: Dict[str, float] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.transaction_count == 0

    def to_dict(self) -> dict:
        return asdict(self)


def _window_filters(user_id: str, start: Optional[datetime], end: Optional[datetime]):
    filters = [Transaction.user_id == user_id]
    if start is not None:
        filters.append(Transaction.date >= start)
    if end is not None:
        filters.append(Transaction.date <= end)
    return filters


def _totals(db: Session, filters) -> tuple[float, float, int]:
    income, expenses, count = (
        db.query(
            func.coalesce(
                func.sum(case((Transaction.type == TYPE_INCOME, Transaction.amount), else_=0)),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(case((Transaction.type == TYPE_EXPENSE, Transaction.amount), else_=0)),
                0,
            ).label("expenses"),
            func.count(Transaction.id).label("count"),
        )
        .filter(*filters)
        .one()
    )
    return float(income), float(expenses), int(count)


def _expenses_by_category(db: Session, filters) -> Dict[str, float]:
    total = func.coalesce(func.sum(Transaction.amount), 0)
    rows = (
        db.query(Transaction.category.label("category"), total.label("total"))
        .filter(*filters, Transaction.type == TYPE_EXPENSE)
        .group_by(Transaction.category)
        .order_by(total.desc())
        .all()
    )
    return {r.category: float(r.total) for r in rows}


def fetch_spending_data(
    db: Session,
    user_id: str,
    period: str = DEFAULT_PERIOD,
    now: Optional[datetime] = None,
) -> SpendingAggregate:
    """
    Aggregate a user's transactions with date in [now - period, now].
    Unknown period keywords fall back to daily.
    """
    if period not in PERIODS:
        period = DEFAULT_PERIOD
    now = now or utc_now()
    filters = _window_filters(user_id, now - PERIODS[period], now)

    income, expenses, count = _totals(db, filters)
    data = SpendingAggregate(
        user_id=user_id,
        period=period,
        total_income=income,
        total_expenses=expenses,
        net_balance=income - expenses,
        transaction_count=count,
    )
    if count == 0:
        return data

    data.by_category = _expenses_by_category(db, filters)

    savings = (
        db.query(func.coalesce(func.sum(Transaction.amount), 0))
        .filter(
            *filters,
            Transaction.category == SAVINGS_CATEGORY,
            Transaction.type == TYPE_EXPENSE,
        )
        .scalar()
    )
    data.savings_deposits = float(savings or 0)
    return data


def summarize(
    db: Session,
    user_id: str,
    start: Optional[datetime],
    end: Optional[datetime] = None,
) -> dict:
    """Totals plus category (expenses) and operator (all rows) breakdowns."""
    filters = _window_filters(user_id, start, end)
    income, expenses, count = _totals(db, filters)

    op_total = func.coalesce(func.sum(Transaction.amount), 0)
    operator_rows = (
        db.query(Transaction.operator.label("operator"), op_total.label("total"))
        .filter(*filters)
        .group_by(Transaction.operator)
        .order_by(op_total.desc())
        .all()
    )

    return {
        "total_income": income,
        "total_expenses": expenses,
        "net_balance": income - expenses,
        "by_category": _expenses_by_category(db, filters),
        "by_operator": {r.operator: float(r.total) for r in operator_rows},
        "transaction_count": count,
    }


def trends(db: Session, user_id: str, start: datetime, bucket: str = "day") -> List[dict]:
    """
    Income / expenses / net per day ('day') or per month ('month'), oldest first.
    Buckets without transactions are omitted.
    """
    rows = (
        db.query(Transaction.date, Transaction.type, Transaction.amount)
        .filter(*_window_filters(user_id, start, None))
        .all()
    )
    if not rows:
        return []

    df = pd.DataFrame([tuple(r) for r in rows], columns=["date", "type", "amount"])
    df["amount"] = df["amount"].astype(float)
    fmt = "%Y-%m" if bucket == "month" else "%Y-%m-%d"
    df["period"] = pd.to_datetime(df["date"]).dt.strftime(fmt)
    df["income"] = df["amount"].where(df["type"] == TYPE_INCOME, 0.0)
    df["expenses"] = df["amount"].where(df["type"] == TYPE_EXPENSE, 0.0)

    grouped = df.groupby("period", sort=True)[["income", "expenses"]].sum().reset_index()

    return [
        {
            "period": row.period,
            "income": float(row.income),
            "expenses": float(row.expenses),
            "net": float(row.income - row.expenses),
        }
        for row in grouped.itertuples(index=False)
    ]
