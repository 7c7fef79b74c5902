from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from config import Settings
from db import Base, make_engine, make_session_factory
from main import create_app
from models import Transaction, User, new_id, utc_now
from app.security import create_access_token
from app.services.errors import PushDeliveryError
from app.services.insights import InsightDraft

JWT_SECRET = "test-secret"
ADMIN_KEY = "test-admin-key"


# -------------------------------------------------------------------
# Stubs for the external services
# -------------------------------------------------------------------

class StubGenerator:
    """analyze_spending() returns canned insights; user ids in `fail_for` raise."""

    def __init__(self, fail_for=(), exc=RuntimeError("boom")):
        self.fail_for = set(fail_for)
        self.exc = exc
        self.calls = []

    def analyze_spending(self, data):
        self.calls.append(data.user_id)
        if data.user_id in self.fail_for:
            raise self.exc
        return [
            InsightDraft(title="Tip", message="Spend less on data", category="tip", priority="low"),
            InsightDraft(title="Alert", message="Airtime is up", category="spending", priority="high"),
        ]


class StubDispatcher:
    def __init__(self, fail_tokens=()):
        self.fail_tokens = set(fail_tokens)
        self.sent = []
        self.multicasts = []

    def send(self, token, title, body, data=None):
        if token in self.fail_tokens:
            raise PushDeliveryError("unregistered token")
        self.sent.append((token, title, body, data))
        return "projects/test/messages/1"

    def send_multicast(self, tokens, title, body, data=None):
        self.multicasts.append((list(tokens), title, body))
        return len(tokens), 0


class StubChatClient:
    """Mimics openai.OpenAI().chat.completions.create()."""

    def __init__(self, content=None, exc=None):
        self.content = content
        self.exc = exc
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        if self.exc is not None:
            raise self.exc
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


# -------------------------------------------------------------------
# Database fixtures
# -------------------------------------------------------------------

@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def session_factory(database_url):
    engine = make_engine(database_url)
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def add_user(session_factory, consent=True, fcm_token="fcm-token", device_id=None, created_at=None):
    with session_factory() as s:
        user = User(
            device_id=device_id or f"device-{new_id()}",
            fcm_token=fcm_token,
            consent_given=consent,
            consent_date=utc_now() if consent else None,
            created_at=created_at or utc_now(),
        )
        s.add(user)
        s.commit()
        return user.id


def add_transaction(
    session_factory,
    user_id,
    amount,
    type="EXPENSE",
    category="PAYMENT",
    operator="AIRTEL",
    date=None,
    sms_hash=None,
    created_at=None,
):
    with session_factory() as s:
        tx = Transaction(
            user_id=user_id,
            amount=amount,
            type=type,
            category=category,
            operator=operator,
            sms_hash=sms_hash if sms_hash is not None else abs(hash(new_id())) % (10**12),
            date=date or utc_now() - timedelta(hours=1),
            created_at=created_at or utc_now(),
        )
        s.add(tx)
        s.commit()
        return tx.id


def count_rows(session_factory, model, **filters):
    with session_factory() as s:
        return s.query(model).filter_by(**filters).count()


def candidate(sms_hash, amount=100.0, type="EXPENSE", category="AIRTIME", date=None, **extra):
    when = date or (utc_now() - timedelta(hours=2))
    item = {
        "amount": amount,
        "type": type,
        "category": category,
        "operator": "MTN",
        "sms_hash": sms_hash,
        "date": int((when - datetime(1970, 1, 1)).total_seconds() * 1000),
    }
    item.update(extra)
    return item


# -------------------------------------------------------------------
# App fixtures
# -------------------------------------------------------------------

@pytest.fixture
def settings(database_url):
    return Settings(
        database_url=database_url,
        jwt_secret=JWT_SECRET,
        admin_api_key=ADMIN_KEY,
        scheduler_enabled=False,
        firebase_credentials_path="",
        rate_limit_per_minute=1000,
    )


@pytest.fixture
def app(settings):
    application = create_app(settings)
    application.state.insight_generator = StubGenerator()
    application.state.push_dispatcher = StubDispatcher()
    application.state.sweep_delay = 0
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def app_sessions(app, client):
    # client first so the lifespan has created the tables
    return app.state.session_factory


def auth_headers(user_id, device_id="device"):
    token = create_access_token(user_id, device_id, JWT_SECRET, 1)
    return {"Authorization": f"Bearer {token}"}


ADMIN_HEADERS = {"X-Admin-Key": ADMIN_KEY}
