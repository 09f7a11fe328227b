"""
Session Store: who is signed in for the current request.

States: RESOLVING (initial, until the first session check completes),
UNAUTHENTICATED, AUTHENTICATED. There is no terminal state; the store moves
between the last two for as long as it lives. Listeners are called
synchronously, once per actual change.

The store does not talk to the database or the cookie itself; that is the
auth collaborator's job (see ``app.crm.auth.PasswordAuth``). Anything with
``current_change()``, ``sign_in_with_password()`` and ``sign_out()`` works,
which is what the unit tests rely on.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from app.crm.errors import AuthError

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    RESOLVING = "resolving"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Identity:
    id: int
    email: str


@dataclass(frozen=True)
class ProfileView:
    full_name: str | None = None
    avatar_url: str | None = None
    role: str = "agent"

    @property
    def display_name(self) -> str:
        return self.full_name or ""


@dataclass(frozen=True)
class AuthChange:
    """Session event delivered by the auth collaborator."""

    identity: Identity | None
    profile: ProfileView | None = None
    reason: str = ""


class AuthCollaborator(Protocol):
    def current_change(self) -> AuthChange: ...

    def sign_in_with_password(self, email: str, password: str) -> tuple[Identity, ProfileView | None]: ...

    def sign_out(self, identity: Identity | None) -> None: ...


Listener = Callable[["SessionStore"], None]


class SessionStore:
    def __init__(self, auth: AuthCollaborator):
        self._auth = auth
        self._state = SessionState.RESOLVING
        self._identity: Identity | None = None
        self._profile: ProfileView | None = None
        self._listeners: list[Listener] = []
        self.last_reason: str = ""

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def profile(self) -> ProfileView | None:
        return self._profile

    @property
    def loading(self) -> bool:
        return self._state is SessionState.RESOLVING

    @property
    def is_authenticated(self) -> bool:
        return self._state is SessionState.AUTHENTICATED

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def resolve(self) -> SessionState:
        """
        Initial session check. A collaborator failure is logged and leaves the
        store RESOLVING so the guard keeps showing the loading placeholder.
        """
        try:
            change = self._auth.current_change()
        except Exception:
            logger.exception("Session resolution failed; staying in %s", self._state.value)
            return self._state
        self.handle_auth_change(change)
        return self._state

    def handle_auth_change(self, change: AuthChange) -> None:
        self.last_reason = change.reason
        self._apply(change.identity, change.profile if change.identity else None)

    def sign_in(self, email: str, password: str) -> Identity:
        try:
            identity, profile = self._auth.sign_in_with_password(email, password)
        except AuthError:
            self.last_reason = "sign_in_failed"
            self._apply(None, None)
            raise
        except Exception as e:
            logger.exception("Auth collaborator crashed during sign-in (email=%s)", email)
            self.last_reason = "sign_in_failed"
            self._apply(None, None)
            raise AuthError("Sign-in is unavailable right now.") from e
        self.last_reason = "signed_in"
        self._apply(identity, profile)
        return identity

    def sign_out(self) -> None:
        identity = self._identity
        try:
            self._auth.sign_out(identity)
        except Exception:
            logger.exception("Sign-out did not reach the auth collaborator (user_id=%s)", identity.id if identity else None)
        self.last_reason = "signed_out"
        self._apply(None, None)

    def _apply(self, identity: Identity | None, profile: ProfileView | None) -> None:
        new_state = SessionState.AUTHENTICATED if identity else SessionState.UNAUTHENTICATED
        changed = new_state is not self._state or identity != self._identity or profile != self._profile
        self._state = new_state
        self._identity = identity
        self._profile = profile
        if not changed:
            return
        for listener in list(self._listeners):
            listener(self)
