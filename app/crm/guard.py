from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from functools import wraps
from typing import Any

from flask import g, redirect, render_template, request, url_for

from app.crm.session_store import SessionState, SessionStore


class GuardDecision(str, Enum):
    LOADING = "loading"
    REDIRECT = "redirect"
    RENDER = "render"


def guard_decision(store: SessionStore | None) -> GuardDecision:
    """Evaluated on every request; nothing is cached between requests."""
    if store is None or store.state is SessionState.RESOLVING:
        return GuardDecision.LOADING
    if store.state is SessionState.UNAUTHENTICATED:
        return GuardDecision.REDIRECT
    return GuardDecision.RENDER


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        store: SessionStore | None = getattr(g, "session_store", None)
        decision = guard_decision(store)
        if decision is GuardDecision.LOADING:
            return render_template("auth/loading.html"), 503, {"Retry-After": "2"}
        if decision is GuardDecision.REDIRECT:
            nxt = request.full_path or request.path
            # Avoid trailing '?' from full_path when there is no query string.
            if nxt.endswith("?"):
                nxt = nxt[:-1]
            return redirect(url_for("auth.login_get", next=nxt))
        return fn(*args, **kwargs)

    return wrapped
