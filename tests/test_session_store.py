import pytest

from app.crm.errors import AuthError
from app.crm.session_store import AuthChange, Identity, ProfileView, SessionState, SessionStore

ALICE = Identity(id=1, email="alice@example.com")
ALICE_PROFILE = ProfileView(full_name="Alice", avatar_url=None, role="agent")


class FakeAuth:
    def __init__(self, change=None, *, sign_in_error=None, crash=False):
        self.change = change or AuthChange(None, reason="no_session")
        self.sign_in_error = sign_in_error
        self.crash = crash
        self.signed_out = []

    def current_change(self):
        if self.crash:
            raise RuntimeError("db down")
        return self.change

    def sign_in_with_password(self, email, password):
        if self.sign_in_error is not None:
            raise self.sign_in_error
        return ALICE, ALICE_PROFILE

    def sign_out(self, identity):
        self.signed_out.append(identity)


def _recorder(store):
    seen = []
    store.subscribe(lambda s: seen.append(s.state))
    return seen


def test_starts_resolving():
    store = SessionStore(FakeAuth())
    assert store.state is SessionState.RESOLVING
    assert store.loading is True
    assert store.identity is None


def test_resolve_without_session():
    store = SessionStore(FakeAuth())
    seen = _recorder(store)
    assert store.resolve() is SessionState.UNAUTHENTICATED
    assert store.loading is False
    assert seen == [SessionState.UNAUTHENTICATED]


def test_resolve_restores_identity_and_profile():
    store = SessionStore(FakeAuth(AuthChange(ALICE, ALICE_PROFILE, reason="restored")))
    store.resolve()
    assert store.is_authenticated
    assert store.identity == ALICE
    assert store.profile.display_name == "Alice"


def test_resolve_failure_stays_resolving():
    store = SessionStore(FakeAuth(crash=True))
    seen = _recorder(store)
    assert store.resolve() is SessionState.RESOLVING
    assert seen == []


def test_sign_in_notifies_once():
    store = SessionStore(FakeAuth())
    store.resolve()
    seen = _recorder(store)
    assert store.sign_in("alice@example.com", "pw") == ALICE
    assert seen == [SessionState.AUTHENTICATED]
    assert store.last_reason == "signed_in"


def test_sign_in_rejected_leaves_unauthenticated():
    store = SessionStore(FakeAuth(sign_in_error=AuthError("Invalid credentials.")))
    store.resolve()
    seen = _recorder(store)
    with pytest.raises(AuthError):
        store.sign_in("alice@example.com", "bad")
    assert store.state is SessionState.UNAUTHENTICATED
    # Already unauthenticated: no change, no notification.
    assert seen == []


def test_sign_in_collaborator_crash_becomes_auth_error():
    store = SessionStore(FakeAuth(sign_in_error=RuntimeError("boom")))
    with pytest.raises(AuthError):
        store.sign_in("alice@example.com", "pw")
    assert store.state is SessionState.UNAUTHENTICATED


def test_sign_out_clears_identity():
    auth = FakeAuth(AuthChange(ALICE, ALICE_PROFILE, reason="restored"))
    store = SessionStore(auth)
    store.resolve()
    seen = _recorder(store)
    store.sign_out()
    assert store.state is SessionState.UNAUTHENTICATED
    assert store.identity is None
    assert store.profile is None
    assert auth.signed_out == [ALICE]
    assert seen == [SessionState.UNAUTHENTICATED]


def test_repeated_change_does_not_renotify():
    store = SessionStore(FakeAuth())
    seen = _recorder(store)
    store.handle_auth_change(AuthChange(ALICE, ALICE_PROFILE, reason="restored"))
    store.handle_auth_change(AuthChange(ALICE, ALICE_PROFILE, reason="restored"))
    assert seen == [SessionState.AUTHENTICATED]


def test_profile_is_dropped_without_identity():
    store = SessionStore(FakeAuth())
    store.handle_auth_change(AuthChange(None, ALICE_PROFILE, reason="expired"))
    assert store.profile is None
    assert store.last_reason == "expired"


def test_unsubscribe():
    store = SessionStore(FakeAuth())
    seen = []
    unsubscribe = store.subscribe(lambda s: seen.append(s.state))
    unsubscribe()
    unsubscribe()
    store.resolve()
    assert seen == []
