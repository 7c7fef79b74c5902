from datetime import timedelta

import pytest

from conftest import add_transaction, add_user, auth_headers
from models import utc_now
from app.services.aggregator import fetch_spending_data, summarize, trends


@pytest.fixture
def now():
    return utc_now().replace(microsecond=0)


@pytest.fixture
def seeded(session_factory, now):
    """
    Inside the last 24h:   income 1000, expenses 300 (AIRTIME 100, SAVINGS 150, DATA 50)
    Outside 24h, within 7d: expense 400 (AIRTIME), income 200
    Older than 30 days:     expense 999 (PAYMENT)
    """
    user_id = add_user(session_factory)
    recent = now - timedelta(hours=3)
    add_transaction(session_factory, user_id, 1000, type="INCOME", category="RECEIVED", date=recent)
    add_transaction(session_factory, user_id, 100, category="AIRTIME", date=recent)
    add_transaction(session_factory, user_id, 150, category="SAVINGS", date=recent)
    add_transaction(session_factory, user_id, 50, category="DATA", operator="MTN", date=recent)

    add_transaction(session_factory, user_id, 400, category="AIRTIME", date=now - timedelta(days=3))
    add_transaction(session_factory, user_id, 200, type="INCOME", category="RECEIVED", date=now - timedelta(days=4))

    add_transaction(session_factory, user_id, 999, category="PAYMENT", date=now - timedelta(days=45))
    return user_id


def test_daily_aggregate_matches_hand_computed_values(db, seeded, now):
    data = fetch_spending_data(db, seeded, "daily", now=now)

    assert data.period == "daily"
    assert data.transaction_count == 4
    assert data.total_income == 1000
    assert data.total_expenses == 300
    assert data.net_balance == 700
    assert data.savings_deposits == 150
    assert data.by_category == {"SAVINGS": 150, "AIRTIME": 100, "DATA": 50}


def test_weekly_window_includes_older_rows(db, seeded, now):
    data = fetch_spending_data(db, seeded, "weekly", now=now)

    assert data.transaction_count == 6
    assert data.total_income == 1200
    assert data.total_expenses == 700
    assert data.net_balance == 500
    assert data.by_category["AIRTIME"] == 500
    assert "PAYMENT" not in data.by_category


def test_savings_income_is_not_a_deposit(session_factory, db, now):
    user_id = add_user(session_factory)
    add_transaction(session_factory, user_id, 80, type="INCOME", category="SAVINGS", date=now - timedelta(hours=1))

    data = fetch_spending_data(db, user_id, "daily", now=now)

    assert data.savings_deposits == 0
    assert data.by_category == {}
    assert data.total_income == 80


def test_future_dated_rows_are_outside_the_window(session_factory, db, now):
    user_id = add_user(session_factory)
    add_transaction(session_factory, user_id, 10, date=now + timedelta(hours=2))

    assert fetch_spending_data(db, user_id, "daily", now=now).is_empty


def test_empty_window(session_factory, db, now):
    user_id = add_user(session_factory)
    add_transaction(session_factory, user_id, 10, date=now - timedelta(days=2))

    data = fetch_spending_data(db, user_id, "daily", now=now)

    assert data.is_empty
    assert data.transaction_count == 0
    assert data.total_expenses == 0
    assert data.by_category == {}


def test_unknown_period_falls_back_to_daily(db, seeded, now):
    data = fetch_spending_data(db, seeded, "fortnightly", now=now)
    assert data.period == "daily"
    assert data.transaction_count == 4


def test_other_users_are_not_counted(session_factory, db, seeded, now):
    other = add_user(session_factory)
    add_transaction(session_factory, other, 5000, type="INCOME", date=now - timedelta(hours=1))

    assert fetch_spending_data(db, seeded, "daily", now=now).total_income == 1000


def test_summarize_all_time_breaks_down_by_operator(db, seeded):
    summary = summarize(db, seeded, start=None)

    assert summary["transaction_count"] == 7
    assert summary["total_income"] == 1200
    assert summary["total_expenses"] == 1699
    assert summary["by_operator"] == {"AIRTEL": 2849, "MTN": 50}
    assert list(summary["by_category"])[0] == "PAYMENT"


def test_trends_group_by_day(session_factory, db, now):
    user_id = add_user(session_factory)
    day = (now - timedelta(days=2)).replace(hour=10, minute=0, second=0)
    add_transaction(session_factory, user_id, 300, type="INCOME", date=day)
    add_transaction(session_factory, user_id, 100, date=day + timedelta(hours=1))
    add_transaction(session_factory, user_id, 40, date=day + timedelta(days=1))

    rows = trends(db, user_id, now - timedelta(days=7), "day")

    assert rows == [
        {"period": day.strftime("%Y-%m-%d"), "income": 300.0, "expenses": 100.0, "net": 200.0},
        {"period": (day + timedelta(days=1)).strftime("%Y-%m-%d"), "income": 0.0, "expenses": 40.0, "net": -40.0},
    ]


def test_trends_empty(session_factory, db, now):
    user_id = add_user(session_factory)
    assert trends(db, user_id, now - timedelta(days=7)) == []


def test_summary_endpoint(client, app_sessions):
    user_id = add_user(app_sessions)
    add_transaction(app_sessions, user_id, 250, type="INCOME")
    add_transaction(app_sessions, user_id, 75, category="DATA")

    resp = client.get("/api/v1/analytics/summary?period=week", headers=auth_headers(user_id))

    assert resp.status_code == 200
    body = resp.json()
    assert body["period"] == "week"
    assert body["net_balance"] == 175
    assert body["by_category"] == {"DATA": 75}


def test_trends_endpoint(client, app_sessions):
    user_id = add_user(app_sessions)
    add_transaction(app_sessions, user_id, 20)

    resp = client.get("/api/v1/analytics/trends", headers=auth_headers(user_id))

    assert resp.status_code == 200
    assert resp.json()["period"] == "week"
    assert len(resp.json()["trends"]) == 1
