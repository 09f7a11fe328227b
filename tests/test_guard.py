from app.crm.auth import PasswordAuth
from app.crm.guard import GuardDecision, guard_decision
from app.crm.session_store import AuthChange, Identity, SessionStore


class _Auth:
    def __init__(self, change):
        self.change = change

    def current_change(self):
        return self.change


def test_no_store_is_loading():
    assert guard_decision(None) is GuardDecision.LOADING


def test_resolving_is_loading():
    assert guard_decision(SessionStore(_Auth(None))) is GuardDecision.LOADING


def test_unauthenticated_redirects():
    store = SessionStore(_Auth(AuthChange(None, reason="no_session")))
    store.resolve()
    assert guard_decision(store) is GuardDecision.REDIRECT


def test_authenticated_renders():
    store = SessionStore(_Auth(AuthChange(Identity(1, "a@example.com"), reason="restored")))
    store.resolve()
    assert guard_decision(store) is GuardDecision.RENDER


def test_failed_session_check_shows_loading_page(client, monkeypatch):
    def broken(self):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(PasswordAuth, "current_change", broken)
    r = client.get("/deals")
    assert r.status_code == 503
    assert r.headers["Retry-After"] == "2"
    assert "Loading..." in r.get_data(as_text=True)
