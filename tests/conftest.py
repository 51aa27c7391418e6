import itertools
import random

import pytest

from santaspin import create_app
from santaspin.extensions import db
from santaspin.models import Participant
from santaspin.policies import ADMIN_SESSION_KEY


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "WTF_CSRF_ENABLED": False,
        "SANTA_RANDOM_SEED": 1234,
        "SANTA_PAGE_SIZE": 25,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(app):
    client = app.test_client()
    with client.session_transaction() as sess:
        sess[ADMIN_SESSION_KEY] = True
    return client


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def make_participant(app):
    counter = itertools.count(1)

    def _make(name=None, department="PRODUCTION", group="north", **fields):
        n = next(counter)
        fields.setdefault("external_id", f"E{n:04d}")
        fields.setdefault("has_spun", False)
        fields.setdefault("has_been_spun", False)
        p = Participant(
            display_name=(name or f"STAFF {n}").upper(),
            department=department,
            group=group,
            **fields,
        )
        db.session.add(p)
        db.session.commit()
        return p

    return _make


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def publish(self, event, payload):
        self.events.append((event, payload))
        return 1


class BrokenNotifier:
    def publish(self, event, payload):
        raise RuntimeError("observer went away")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def broken_notifier():
    return BrokenNotifier()
