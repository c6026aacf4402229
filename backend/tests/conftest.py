"""
Pytest fixtures for the deal engine tests.

Provides the application, a per-test clean database, merchant/deal factories
and a recording push sender.
"""

from datetime import datetime, timezone

import pytest

from dangol import create_app
from dangol.extensions import db
from dangol.push import PushDeliveryError, PushSender
from dangol.services import deal_service, merchant_service
from dangol.services.deal_service import ValidityWindow


# 10:00 KST, inside the notification window
NOW = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)

SEOUL_CITY_HALL = (37.5665, 126.9780)

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'AUTO_NOTIFY_NEW_DEALS': False,
    'PUSH_SENDER': 'log',
    'CELERY': {
        'broker_url': 'memory://',
        'task_always_eager': True,
        'task_ignore_result': True,
    },
}


class RecordingPushSender(PushSender):
    """
    Captures sends. Endpoints in failing_endpoints raise PushDeliveryError;
    endpoints in transport_errors raise the mapped exception.
    """

    def __init__(self):
        self.sent = []
        self.failing_endpoints = set()
        self.transport_errors = {}

    def send(self, *, endpoint, p256dh_key, auth_key, payload):
        if endpoint in self.failing_endpoints:
            raise PushDeliveryError("410 Gone")
        if endpoint in self.transport_errors:
            raise self.transport_errors[endpoint]
        self.sent.append((endpoint, payload))


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def push_sender(app):
    """Swap in a recording sender for the duration of a test."""
    original = app.extensions['push_sender']
    sender = RecordingPushSender()
    app.extensions['push_sender'] = sender
    yield sender
    app.extensions['push_sender'] = original


@pytest.fixture(scope='function')
def make_merchant(db_session):
    counter = {'n': 0}

    def _make(lat=SEOUL_CITY_HALL[0], lng=SEOUL_CITY_HALL[1], name=None, address="서울시 중구 태평로1가 세종대로 110"):
        counter['n'] += 1
        return merchant_service.create_merchant(
            business_name=name or f"Merchant {counter['n']}",
            address=address,
            latitude=lat,
            longitude=lng,
            email=f"merchant{counter['n']}@dangol.test",
        )

    return _make


@pytest.fixture(scope='function')
def merchant(make_merchant):
    return make_merchant(name="Dangol Cafe")


@pytest.fixture(scope='function')
def make_deal(db_session):
    def _make(merchant, max_claims=10, hours=2, minutes=0, now=NOW, title="Americano 50% off"):
        return deal_service.create_deal(
            merchant.id,
            title,
            "Show the code at the counter",
            ValidityWindow.from_duration(hours, minutes),
            max_claims,
            now=now,
        )

    return _make


@pytest.fixture(scope='function')
def deal(make_deal, merchant):
    return make_deal(merchant)
