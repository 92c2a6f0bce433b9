"""
Shared pytest fixtures for the notice-board test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - object_store: LocalObjectStore rooted in a per-test tmp dir
    - admin / staff / student: users holding one role each
    - make_user, auth_headers: helpers for ad-hoc users and bearer tokens
    - category: a seeded Category
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import ROLE_ADMIN, ROLE_STAFF, ROLE_STUDENT, User, UserRole
from app.models.notice import Category
from app.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def object_store(app, tmp_path):
    """Point the app's object store at a fresh directory for this test."""
    from app.integrations.storage_gateway import get_object_store

    old_folder = app.config["UPLOAD_FOLDER"]
    app.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")
    app.extensions.pop("object_store", None)
    yield get_object_store()
    app.extensions.pop("object_store", None)
    app.config["UPLOAD_FOLDER"] = old_folder


# ── Users & tokens ───────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: insert a user holding exactly ``role`` (no password)."""
    counter = {"n": 0}

    def _make(role=ROLE_STUDENT, email=None, full_name=None):
        counter["n"] += 1
        user = User(
            email=email or f"{role}{counter['n']}@uni.edu",
            full_name=full_name or f"{role.title()} {counter['n']}",
        )
        _db.session.add(user)
        _db.session.flush()
        _db.session.add(UserRole(user_id=user.id, role=role))
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user(ROLE_ADMIN, full_name="Ada Admin")


@pytest.fixture()
def staff(make_user):
    return make_user(ROLE_STAFF, full_name="Sam Staff")


@pytest.fixture()
def student(make_user):
    return make_user(ROLE_STUDENT, full_name="Stu Student")


@pytest.fixture()
def auth_headers():
    """Factory: Authorization header for a user."""
    def _headers(user, role="student"):
        return {"Authorization": f"Bearer {generate_access_token(user.id, role)}"}
    return _headers


@pytest.fixture()
def category():
    c = Category(name="Events", description="University events", color="#10B981")
    _db.session.add(c)
    _db.session.commit()
    return c
