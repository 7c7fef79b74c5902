import json

import httpx
import pytest
from openai import APIConnectionError, OpenAIError

from conftest import StubChatClient, StubGenerator, add_transaction, add_user, auth_headers, count_rows
from models import Insight
from app.services.aggregator import SpendingAggregate
from app.services.errors import InsightGenerationError
from app.services.insights import (
    DEFAULT_NOTIFICATION,
    InsightDraft,
    InsightGenerator,
    build_prompt,
    fallback_insights,
    notification_text,
    parse_insights,
)


def _aggregate(**overrides):
    values = dict(
        user_id="u1",
        period="daily",
        total_income=1000.0,
        total_expenses=500.0,
        net_balance=500.0,
        savings_deposits=0.0,
        transaction_count=4,
        by_category={"AIRTIME": 300.0, "DATA": 200.0},
    )
    values.update(overrides)
    return SpendingAggregate(**values)


VALID_ANSWER = json.dumps([
    {"title": "Data costs", "message": "Try a weekly bundle", "category": "spending", "priority": "high"},
    {"title": "Nice", "message": "Income is steady", "category": "tip", "priority": "low"},
])


# -------------------------------------------------------------------
# Parsing
# -------------------------------------------------------------------

def test_parse_plain_json_array():
    insights = parse_insights(VALID_ANSWER)
    assert [i.title for i in insights] == ["Data costs", "Nice"]
    assert insights[0].priority == "high"


def test_parse_strips_code_fences():
    insights = parse_insights(f"```json\n{VALID_ANSWER}\n```")
    assert len(insights) == 2


def test_parse_keeps_at_most_three():
    many = json.dumps([{"title": f"t{i}", "message": "m"} for i in range(5)])
    assert [i.title for i in parse_insights(many)] == ["t0", "t1", "t2"]


def test_parse_normalizes_unknown_priority():
    answer = json.dumps([{"title": "t", "message": "m", "priority": "URGENT"}])
    assert parse_insights(answer)[0].priority == "medium"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "Here are some tips: save more.",
        "[]",
        '{"title": "t", "message": "m"}',
        '[{"title": "", "message": "m"}]',
        '["just a string"]',
    ],
)
def test_parse_rejects_unusable_answers(text):
    assert parse_insights(text) is None


def test_prompt_mentions_amounts_and_categories():
    prompt = build_prompt(_aggregate())
    assert "Total Income: K1000.00" in prompt
    assert "- AIRTIME: K300.00" in prompt
    assert "JSON array" in prompt


# -------------------------------------------------------------------
# Fallback + notification text
# -------------------------------------------------------------------

def test_fallback_for_positive_balance_without_savings():
    insights = fallback_insights(_aggregate())

    assert len(insights) == 1
    assert insights[0].title == "📈 Positive Balance"
    assert insights[0].category == "tip"
    assert insights[0].priority == "medium"
    assert "K500" in insights[0].message


def test_fallback_with_savings_and_overspending():
    data = _aggregate(total_income=100.0, total_expenses=400.0, net_balance=-300.0, savings_deposits=150.0)

    insights = fallback_insights(data)

    assert [i.title for i in insights] == ["💰 Great Saving Habit!", "⚠️ Spending Alert"]
    assert [i.priority for i in insights] == ["high", "high"]
    assert "K150" in insights[0].message
    assert "K300" in insights[1].message


def test_fallback_for_even_balance_is_empty():
    assert fallback_insights(_aggregate(total_income=50.0, total_expenses=50.0, net_balance=0.0)) == []


def test_fallback_is_deterministic():
    data = _aggregate(savings_deposits=20.0)
    first = [(i.title, i.message) for i in fallback_insights(data)]
    second = [(i.title, i.message) for i in fallback_insights(data)]
    assert first == second


def test_notification_prefers_first_high_priority():
    insights = [
        InsightDraft(title="a", message="A", priority="low"),
        InsightDraft(title="b", message="B", priority="high"),
        InsightDraft(title="c", message="C", priority="high"),
    ]
    assert notification_text(insights) == ("b", "B")


def test_notification_falls_back_to_first_then_default():
    assert notification_text([InsightDraft(title="a", message="A", priority="low")]) == ("a", "A")
    assert notification_text([]) == DEFAULT_NOTIFICATION


# -------------------------------------------------------------------
# Generator
# -------------------------------------------------------------------

def test_generator_sends_one_bounded_request():
    client = StubChatClient(content=VALID_ANSWER)
    generator = InsightGenerator(client, "gemini-2.5-flash")

    insights = generator.analyze_spending(_aggregate())

    assert len(insights) == 2
    assert len(client.requests) == 1
    request = client.requests[0]
    assert request["model"] == "gemini-2.5-flash"
    assert request["max_tokens"] == 500
    assert request["temperature"] == 0.7
    assert "AIRTIME" in request["messages"][0]["content"]


def test_generator_uses_fallback_for_prose_answer():
    generator = InsightGenerator(StubChatClient(content="Save more, spend less!"), "m")

    insights = generator.analyze_spending(_aggregate())

    assert [i.title for i in insights] == ["📈 Positive Balance"]


@pytest.mark.parametrize(
    "exc",
    [
        OpenAIError("quota exceeded"),
        APIConnectionError(request=httpx.Request("POST", "https://example.invalid/chat/completions")),
    ],
)
def test_generator_transport_failure_raises(exc):
    client = StubChatClient(exc=exc)
    generator = InsightGenerator(client, "m")

    with pytest.raises(InsightGenerationError):
        generator.analyze_spending(_aggregate())
    assert len(client.requests) == 1


def test_generator_without_api_key_is_disabled(settings):
    assert InsightGenerator.from_settings(settings) is None


# -------------------------------------------------------------------
# HTTP
# -------------------------------------------------------------------

def test_generate_without_transactions_skips_ai_call(client, app, app_sessions):
    user_id = add_user(app_sessions)

    resp = client.post("/api/v1/insights/generate", headers=auth_headers(user_id))

    assert resp.status_code == 200
    assert resp.json() == {"message": "No transactions to analyze", "insights": []}
    assert app.state.insight_generator.calls == []
    assert count_rows(app_sessions, Insight, user_id=user_id) == 0


def test_generate_stores_and_returns_insights(client, app, app_sessions):
    user_id = add_user(app_sessions)
    add_transaction(app_sessions, user_id, 120, category="AIRTIME")

    resp = client.post("/api/v1/insights/generate", headers=auth_headers(user_id))

    assert resp.status_code == 200
    body = resp.json()
    assert body["fallback"] is False
    assert body["analyzed"] == 1
    assert [i["title"] for i in body["insights"]] == ["Tip", "Alert"]
    assert count_rows(app_sessions, Insight, user_id=user_id) == 2

    listed = client.get("/api/v1/insights", headers=auth_headers(user_id)).json()["insights"]
    assert {i["title"] for i in listed} == {"Tip", "Alert"}


def test_generate_falls_back_when_ai_is_unreachable(client, app, app_sessions):
    user_id = add_user(app_sessions)
    add_transaction(app_sessions, user_id, 300, type="INCOME", category="RECEIVED")
    app.state.insight_generator = StubGenerator(
        fail_for=[user_id], exc=InsightGenerationError("API request failed")
    )

    resp = client.post("/api/v1/insights/generate", headers=auth_headers(user_id))

    assert resp.status_code == 200
    assert resp.json()["fallback"] is True
    assert [i["title"] for i in resp.json()["insights"]] == ["📈 Positive Balance"]
    assert count_rows(app_sessions, Insight, user_id=user_id) == 1


def test_generate_when_ai_disabled(client, app, app_sessions):
    user_id = add_user(app_sessions)
    app.state.insight_generator = None

    resp = client.post("/api/v1/insights/generate", headers=auth_headers(user_id))
    assert resp.status_code == 503


def test_notify_endpoint(client, app, app_sessions):
    user_id = add_user(app_sessions)
    payload = {"token": "device-token", "title": "Hi", "body": "Hello"}

    resp = client.post("/api/v1/notify", json=payload, headers=auth_headers(user_id))

    assert resp.status_code == 200
    assert app.state.push_dispatcher.sent == [("device-token", "Hi", "Hello", None)]


def test_notify_endpoint_reports_delivery_failure(client, app, app_sessions):
    user_id = add_user(app_sessions)
    payload = {"token": "stale", "title": "Hi", "body": "Hello"}
    app.state.push_dispatcher.fail_tokens.add("stale")

    resp = client.post("/api/v1/notify", json=payload, headers=auth_headers(user_id))
    assert resp.status_code == 502
