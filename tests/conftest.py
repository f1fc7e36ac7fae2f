"""Test configuration and fixtures.

Each test gets its own file-backed SQLite database under tmp_path, so
threads that push their own app context see the same data.
"""
import pytest

from app import create_app
from config import TestConfig
from models import db
from security.accounts import create_user

PASSWORD = "correct-horse-1"


@pytest.fixture()
def app(tmp_path):
    class _Config(TestConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "test.db")
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    app = create_app(_Config)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def make_user(app):
    counter = {"n": 0}

    def _make_user(email=None, password=PASSWORD, phone_number=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        return create_user(email, password, phone_number=phone_number)

    return _make_user


@pytest.fixture()
def user(make_user):
    return make_user()
