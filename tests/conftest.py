import pytest
from werkzeug.security import generate_password_hash

from app.crm import create_app
from app.crm.auth import _login_attempts
from app.crm.db import session_scope
from app.crm.models import Base, Profile, User

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "pw"
CSRF = "test-csrf-token"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DETAIL_FETCH_WORKERS", "2")
    _login_attempts.clear()

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        u = User(email=ADMIN_EMAIL, password_hash=generate_password_hash(ADMIN_PASSWORD), is_active=True)
        u.profile = Profile(role="admin", full_name="Ada Admin")
        s.add(u)

    yield app
    engine.dispose()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def logged_in(client):
    r = client.post("/auth/login", data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert r.status_code == 302
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF
    return client


def form(**values):
    """POST body with the CSRF token the logged_in fixture planted."""
    return {"csrf_token": CSRF, **values}
