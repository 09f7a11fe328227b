from __future__ import annotations

import threading

from app.crm.errors import FetchCancelled


class CancelToken:
    """
    Per-view cancellation flag. The app creates one per request and cancels it
    on teardown; fetch code checks it before handing results back to a view.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "view torn down") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FetchCancelled(self.reason or "cancelled")


def current_token() -> CancelToken:
    from flask import g

    token = getattr(g, "cancel_token", None)
    if token is None:
        token = CancelToken()
        g.cancel_token = token
    return token


def cancel_request_token(_exc: BaseException | None) -> None:
    from flask import g

    token: CancelToken | None = getattr(g, "cancel_token", None)
    if token is not None:
        token.cancel()
