from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable, MutableMapping
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash

from app.crm.audit import record_event
from app.crm.datalist import FieldSpec, clean_input
from app.crm.db import db_session
from app.crm.errors import AuthError, ValidationError
from app.crm.models import User
from app.crm.session_store import AuthChange, Identity, ProfileView, SessionState, SessionStore

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

LOGIN_FIELDS = (
    FieldSpec("email", "Email", required=True, kind="email", required_message="Please input your email!"),
    FieldSpec("password", "Password", required=True, required_message="Please input your password!"),
)


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _identity_of(user: User) -> tuple[Identity, ProfileView | None]:
    identity = Identity(id=user.id, email=user.email)
    p = user.profile
    profile = ProfileView(full_name=p.full_name, avatar_url=p.avatar_url, role=p.role) if p else None
    return identity, profile


class PasswordAuth:
    """
    Auth collaborator backed by the users table and the signed session cookie.
    The cookie holds only user_id and an absolute expiry (epoch seconds).
    """

    def __init__(
        self,
        db: Session,
        cookie: MutableMapping,
        *,
        lifetime: timedelta,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.cookie = cookie
        self.lifetime = lifetime
        self.now = now

    def _clear(self) -> None:
        self.cookie.pop("user_id", None)
        self.cookie.pop("expires_at", None)

    def current_change(self) -> AuthChange:
        user_id = self.cookie.get("user_id")
        if not user_id:
            return AuthChange(None, reason="no_session")

        expires_at = self.cookie.get("expires_at")
        if not expires_at or float(expires_at) <= self.now().timestamp():
            self._clear()
            return AuthChange(None, reason="expired")

        user = self.db.get(User, int(user_id))
        if not user or not user.is_active:
            self._clear()
            return AuthChange(None, reason="revoked")

        identity, profile = _identity_of(user)
        return AuthChange(identity, profile, reason="restored")

    def sign_in_with_password(self, email: str, password: str) -> tuple[Identity, ProfileView | None]:
        email = (email or "").strip().lower()
        user = self.db.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password or ""):
            record_event(
                self.db,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                metadata={"email": email},
            )
            self.db.commit()
            raise AuthError("Invalid credentials.")

        self.cookie["user_id"] = user.id
        self.cookie["expires_at"] = (self.now() + self.lifetime).timestamp()
        identity, profile = _identity_of(user)
        record_event(self.db, actor=identity, action="auth.login", entity_type="User", entity_id=str(user.id))
        self.db.commit()
        return identity, profile

    def sign_out(self, identity: Identity | None) -> None:
        self._clear()
        if identity:
            record_event(self.db, actor=identity, action="auth.logout", entity_type="User", entity_id=str(identity.id))
            self.db.commit()


def _on_session_change(store: SessionStore) -> None:
    current_app.logger.debug(
        "Session %s (reason=%s request_id=%s)", store.state.value, store.last_reason, getattr(g, "request_id", None)
    )
    if store.state is SessionState.UNAUTHENTICATED and store.last_reason == "expired":
        flash("Your session has expired. Please sign in again.", "warning")


def load_session_store() -> None:
    """
    Builds g.session_store for this request and runs the initial session check.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    auth = PasswordAuth(
        db_session(),
        session,
        lifetime=timedelta(hours=int(current_app.config.get("SESSION_HOURS") or 8)),
    )
    store = SessionStore(auth)
    store.subscribe(_on_session_change)
    g.session_store = store
    store.resolve()


def _safe_next(nxt: str) -> str | None:
    # Only allow local paths to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


@bp.get("/login")
def login_get():
    store: SessionStore | None = getattr(g, "session_store", None)
    nxt = (request.args.get("next") or "").strip()
    if store is not None and store.is_authenticated:
        return redirect(_safe_next(nxt) or url_for("dashboard.index"))
    return render_template("auth/login.html", next=nxt, errors={}, values={})


@bp.post("/login")
def login_post():
    store: SessionStore = g.session_store
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    try:
        creds = clean_input(LOGIN_FIELDS, request.form)
    except ValidationError as e:
        values = {"email": request.form.get("email") or ""}
        return render_template("auth/login.html", next=nxt, errors=e.by_field(), values=values), 400

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    _record_attempt(ip)

    try:
        # Passwords are checked as typed, not stripped.
        store.sign_in(creds["email"], request.form.get("password") or "")
    except AuthError as e:
        current_app.logger.info("Sign in failed (email=%s request_id=%s): %s", creds["email"], g.request_id, e)
        flash("Failed to sign in", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    _login_attempts[ip].clear()
    return redirect(_safe_next(nxt) or url_for("dashboard.index"))


@bp.get("/logout")
def logout():
    store: SessionStore | None = getattr(g, "session_store", None)
    if store is not None:
        store.sign_out()
    return redirect(url_for("auth.login_get"))
