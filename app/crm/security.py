import hmac
import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate the CSRF token sent as a form field or X-CSRF-Token header."""
    token = req.headers.get("X-CSRF-Token") or req.form.get(CSRF_SESSION_KEY)
    expected = session.get(CSRF_SESSION_KEY)
    return bool(token and expected and hmac.compare_digest(str(token), str(expected)))
