import itertools
from datetime import timedelta

import pytest

import realtime
from app import create_app
from auth import Principal, issue_token
from config import TestingConfig
from models import db, utcnow, User, Painting


class RecordingPublisher(realtime.EventPublisher):
    """Records every published event, then hands it to the real publisher."""

    def __init__(self, inner):
        self.inner = inner
        self.events = []

    def publish(self, room, event, payload):
        self.events.append((room, event, payload))
        self.inner.publish(room, event, payload)

    def named(self, event):
        return [(room, payload) for room, name, payload in self.events if name == event]


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def events(app):
    recorder = RecordingPublisher(app.extensions['event_publisher'])
    app.extensions['event_publisher'] = recorder
    return recorder


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(role='buyer', name=None):
        n = next(counter)
        user = User(name=name or f"{role.title()} {n}", email=f"{role}{n}@example.com", role=role)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def artist(make_user):
    return make_user('artist', 'Ada Artist')


@pytest.fixture
def buyer(make_user):
    return make_user('buyer', 'Bea Buyer')


@pytest.fixture
def other_buyer(make_user):
    return make_user('buyer', 'Cy Collector')


@pytest.fixture
def make_painting(artist):
    def _make(price=100, owner=None, **kwargs):
        painting = Painting(title=kwargs.pop('title', 'Untitled'), description='Oil on canvas',
                            price=price, artist_id=(owner or artist).id, **kwargs)
        db.session.add(painting)
        db.session.commit()
        return painting
    return _make


@pytest.fixture
def painting(make_painting):
    return make_painting(price=100)


@pytest.fixture
def headers(app):
    def _headers(user):
        return {'Authorization': f'Bearer {issue_token(user)}'}
    return _headers


@pytest.fixture
def principal():
    def _principal(user):
        return Principal(user.id, user.role, user.name)
    return _principal


@pytest.fixture
def expire_auction():
    def _expire(painting):
        painting.auction_end_time = utcnow() - timedelta(seconds=1)
        db.session.commit()
    return _expire
