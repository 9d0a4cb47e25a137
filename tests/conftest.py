import os
import pathlib
import sys
from datetime import datetime

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from colombus.app import create_app, db
from colombus.models import CoachAssignment, Formation, Session, User


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


@pytest.fixture
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    os.environ["FLASK_SKIP_SEED"] = "1"
    os.environ.pop("COACH_VALIDATION_ONLY", None)
    application = create_app()
    application.config["TESTING"] = True
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(email=None, *, rh=False, coach=False, archived=False, password=None):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            name=f"User {counter['n']}",
            is_consultant=True,
            is_rh=rh,
            is_coach=coach,
            archived=archived,
        )
        if password:
            user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_formation(app):
    def _make(title="Python avancé", active=True):
        formation = Formation(title=title, description="", active=active)
        db.session.add(formation)
        db.session.commit()
        return formation

    return _make


@pytest.fixture
def make_session(app):
    def _make(formation, capacity=10, status="open"):
        sess = Session(
            formation_id=formation.id,
            start_date=datetime(2026, 11, 2, 9, 0),
            end_date=datetime(2026, 11, 3, 17, 0),
            location="Paris",
            capacity=capacity,
            status=status,
        )
        db.session.add(sess)
        db.session.commit()
        return sess

    return _make


@pytest.fixture
def assign_coach(app):
    def _assign(coach, coachee):
        assignment = CoachAssignment(coach_id=coach.id, coachee_id=coachee.id)
        db.session.add(assignment)
        db.session.commit()
        return assignment

    return _assign
