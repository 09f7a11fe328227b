from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class CrmError(Exception):
    """Base class for errors raised by the CRM pages and their collaborators."""


class ValidationError(CrmError):
    """Client-side validation failed; nothing was sent to the store."""

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in self.errors))

    def by_field(self) -> dict[str, str]:
        return {e.field: e.message for e in self.errors}


class StoreError(CrmError):
    """The data client reported a failure (connection, query, constraint)."""

    def __init__(self, message: str, *, table: str | None = None, code: str | None = None):
        self.message = message
        self.table = table
        self.code = code
        super().__init__(message if not table else f"{table}: {message}")


class DetailNotFound(CrmError):
    """A detail fetch failed or the primary row does not exist."""


class AuthError(CrmError):
    """Sign-in was rejected or the auth collaborator failed."""


class FetchCancelled(CrmError):
    """The view that issued a fetch was torn down before the result arrived."""
