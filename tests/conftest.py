"""Shared test fixtures for the trackboard test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limits off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: a board SENS with one user per role, plus an outsider
"""

from datetime import datetime, timedelta, timezone

import pytest

from trackboard import create_app
from trackboard.extensions import db as _db
from trackboard.models.board import BoardMember
from trackboard.models.user import User
from trackboard.services import board_service


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def make_user(email, name=None):
    user = User(email=email, name=name or email.split("@")[0].title())
    _db.session.add(user)
    _db.session.flush()
    return user


def sprint_dates(start_offset_days=0, length_days=14):
    start = datetime(2026, 1, 5, tzinfo=timezone.utc) + timedelta(days=start_offset_days)
    return start, start + timedelta(days=length_days)


@pytest.fixture
def seed_data(app, db_session):
    """Seed users with every role on board SENS and one non-member.

    Returns a dict of plain IDs so tests never depend on session state.
    """
    owner = make_user("owner@sens.dev", "Owner")
    admin = make_user("admin@sens.dev", "Admin")
    member = make_user("member@sens.dev", "Member")
    viewer = make_user("viewer@sens.dev", "Viewer")
    outsider = make_user("outsider@elsewhere.dev", "Outsider")
    _db.session.commit()

    board = board_service.create_board(owner.id, "Sensors", "SENS")

    for user, role in ((admin, "ADMIN"), (member, "MEMBER"), (viewer, "VIEWER")):
        _db.session.add(BoardMember(board_id=board.id, user_id=user.id, role=role))
    _db.session.commit()

    return {
        "owner_id": owner.id,
        "admin_id": admin.id,
        "member_id": member.id,
        "viewer_id": viewer.id,
        "outsider_id": outsider.id,
        "board_id": board.id,
        "backlog_id": board.backlog.id,
    }


@pytest.fixture
def dates():
    """Factory for (start, end) sprint windows: dates(offset_days, length_days)."""
    return sprint_dates
