"""
Generic list / create / detail pattern shared by every entity page.

Each page describes its entity once with an ``EntityConfig`` (table, columns,
embeds, search field, ordering, form fields) and drives a ``DataList``:

    fetch_all(filter)  -> read rows; on failure keep the old rows and notify once
    create(form)       -> validate locally, insert, close the modal, re-fetch
    update(id, values) -> write, re-fetch

``fetch_detail`` loads one record plus related collections concurrently and
fails as a whole.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from app.crm.cancellation import CancelToken
from app.crm.errors import DetailNotFound, FetchCancelled, FieldError, StoreError, ValidationError
from app.crm.store import Embed, StoreClient, StoreResult, TableQuery

logger = logging.getLogger(__name__)

Notify = Callable[[str, str], None]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TRUTHY = {"1", "true", "on", "yes", "y"}


@dataclass(frozen=True)
class FieldSpec:
    """
    One input on a creation form.

    kind: text | textarea | email | number | integer | ref | relation | date | bool
    ("ref" is an integer id chosen from a dropdown; "relation" is a tagged
    "kind:id" dropdown value left for the entity's prepare hook).
    """

    name: str
    label: str
    required: bool = False
    kind: str = "text"
    choices: tuple[str, ...] | None = None
    min_value: int | float | None = None
    max_value: int | float | None = None
    required_message: str | None = None


@dataclass(frozen=True)
class EntityConfig:
    table: str
    label: str
    plural: str
    fields: tuple[FieldSpec, ...] = ()
    columns: str = "*"
    embeds: tuple[Embed, ...] = ()
    search_field: str | None = None
    order_by: str | None = None
    order_desc: bool = True
    defaults: Mapping[str, Any] = field(default_factory=dict)
    # Turns cleaned form input into the row to insert (e.g. tagged relations -> columns).
    prepare: Callable[[dict[str, Any]], dict[str, Any]] | None = None


@dataclass(frozen=True)
class Related:
    """A collection loaded next to a detail record, keyed by foreign key."""

    key: str
    table: str
    foreign_key: str
    columns: str = "*"
    embeds: tuple[Embed, ...] = ()
    match: tuple[tuple[str, Any], ...] = ()
    order_by: str | None = None
    order_desc: bool = True


def _clean_one(spec: FieldSpec, raw: Any) -> Any:
    if spec.kind == "bool":
        if isinstance(raw, bool):
            return raw
        return str(raw or "").strip().lower() in _TRUTHY

    value = raw.strip() if isinstance(raw, str) else raw
    if value is None or value == "":
        if spec.required:
            raise ValueError(spec.required_message or f"{spec.label} is required.")
        return None

    if spec.choices is not None and value not in spec.choices:
        raise ValueError(f"{spec.label} must be one of: {', '.join(spec.choices)}.")

    if spec.kind == "email":
        if not _EMAIL_RE.match(str(value)):
            raise ValueError(f"{spec.label} must be a valid email address.")
        return str(value).lower()

    if spec.kind == "number":
        try:
            number = Decimal(str(value).replace("$", "").replace(",", "").strip())
        except InvalidOperation:
            raise ValueError(f"{spec.label} must be a number.")
        if not number.is_finite():
            raise ValueError(f"{spec.label} must be a number.")
        if spec.min_value is not None and number < Decimal(str(spec.min_value)):
            raise ValueError(f"{spec.label} must be at least {spec.min_value}.")
        if spec.max_value is not None and number > Decimal(str(spec.max_value)):
            raise ValueError(f"{spec.label} must be at most {spec.max_value}.")
        return number

    if spec.kind in ("integer", "ref"):
        try:
            number = int(str(value))
        except ValueError:
            raise ValueError(f"Please select a valid {spec.label.lower()}." if spec.kind == "ref" else f"{spec.label} must be a whole number.")
        if spec.min_value is not None and number < spec.min_value:
            raise ValueError(f"{spec.label} must be at least {spec.min_value}.")
        if spec.max_value is not None and number > spec.max_value:
            raise ValueError(f"{spec.label} must be at most {spec.max_value}.")
        return number

    if spec.kind == "date":
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value))
        except ValueError:
            raise ValueError(f"{spec.label} must be a date (YYYY-MM-DD).")

    return value


def clean_input(fields: Sequence[FieldSpec], raw: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate and coerce form input. Raises ValidationError with exactly one
    message per failing field. Empty optional fields are left out so that
    column defaults apply.
    """
    cleaned: dict[str, Any] = {}
    errors: list[FieldError] = []
    for spec in fields:
        try:
            value = _clean_one(spec, raw.get(spec.name))
        except ValueError as e:
            errors.append(FieldError(spec.name, str(e)))
            continue
        if value is not None:
            cleaned[spec.name] = value
    if errors:
        raise ValidationError(errors)
    return cleaned


def run_parallel(
    queries: Mapping[str, TableQuery],
    *,
    token: CancelToken | None = None,
    max_workers: int = 4,
) -> dict[str, StoreResult]:
    """Execute queries concurrently and wait for all of them."""
    if not queries:
        return {}
    workers = max(1, min(len(queries), max_workers))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="crm-fetch") as pool:
        futures = {key: pool.submit(q.execute) for key, q in queries.items()}
        results = {key: fut.result() for key, fut in futures.items()}
    if token is not None:
        token.raise_if_cancelled()
    return results


def fetch_detail(
    client: StoreClient,
    config: EntityConfig,
    row_id: int,
    related: Sequence[Related] = (),
    *,
    token: CancelToken | None = None,
    max_workers: int = 4,
) -> dict[str, Any]:
    """
    Primary record under "record", each related collection under its key.
    Any failure (including a missing primary row) raises DetailNotFound.
    """
    queries: dict[str, TableQuery] = {
        "record": client.table(config.table).select(config.columns, embed=config.embeds).eq("id", row_id).single(),
    }
    for rel in related:
        q = client.table(rel.table).select(rel.columns, embed=rel.embeds).eq(rel.foreign_key, row_id)
        for column, value in rel.match:
            q = q.eq(column, value)
        if rel.order_by:
            q = q.order(rel.order_by, desc=rel.order_desc)
        queries[rel.key] = q

    try:
        results = run_parallel(queries, token=token, max_workers=max_workers)
    except FetchCancelled:
        raise
    except Exception as e:
        raise DetailNotFound(f"{config.label} {row_id}: fetch crashed") from e

    for key, result in results.items():
        if result.error is not None:
            raise DetailNotFound(f"{config.label} {row_id}: {key} failed ({result.error})") from result.error

    out: dict[str, Any] = {"record": results["record"].data}
    for rel in related:
        out[rel.key] = results[rel.key].data or []
    return out


def fetch_choices(client: StoreClient, table: str, columns: str = "id, name", *, order_by: str | None = "name") -> list[dict[str, Any]]:
    """Dropdown options. Failures are logged only; the form still renders."""
    q = client.table(table).select(columns)
    if order_by:
        q = q.order(order_by)
    result = q.execute()
    if result.error is not None:
        logger.error("Error fetching %s options: %s", table, result.error)
        return []
    return result.data or []


class DataList:
    """
    State of one entity list page: the rows on screen, the creation modal and
    its form. Notifications go through ``notify(message, category)``.
    """

    def __init__(
        self,
        config: EntityConfig,
        client: StoreClient,
        *,
        notify: Notify,
        token: CancelToken | None = None,
        on_created: Callable[[dict[str, Any]], None] | None = None,
        on_updated: Callable[[dict[str, Any]], None] | None = None,
    ):
        self.config = config
        self.client = client
        self.notify = notify
        self.token = token or CancelToken()
        self.on_created = on_created
        self.on_updated = on_updated

        self.rows: list[dict[str, Any]] = []
        self.loading = True
        self.search = ""
        self.modal_open = False
        self.form_values: dict[str, Any] = {}
        self.field_errors: dict[str, str] = {}

    def _query(self, filter: str | None) -> TableQuery:
        cfg = self.config
        q = self.client.table(cfg.table).select(cfg.columns, embed=cfg.embeds)
        if filter and cfg.search_field:
            q = q.ilike(cfg.search_field, f"%{filter}%")
        if cfg.order_by:
            q = q.order(cfg.order_by, desc=cfg.order_desc)
        return q

    def fetch_all(self, filter: str | None = None) -> list[dict[str, Any]]:
        self.search = (filter or "").strip()
        try:
            rows = self._query(self.search or None).execute().unwrap()
            self.token.raise_if_cancelled()
        except FetchCancelled:
            logger.info("Dropped %s fetch for a torn-down view", self.config.plural)
            return self.rows
        except Exception:
            logger.exception("Error fetching %s", self.config.plural)
            self.notify(f"Failed to fetch {self.config.plural}", "danger")
            return self.rows
        finally:
            self.loading = False
        self.rows = rows or []
        return self.rows

    def open_modal(self) -> None:
        self.modal_open = True

    def close_modal(self) -> None:
        self.modal_open = False
        self.form_values = {}
        self.field_errors = {}

    def create(self, raw: Mapping[str, Any], *, refresh: bool = True) -> dict[str, Any] | None:
        """
        Returns the inserted row, or None when validation or the store failed
        (the modal stays open with the entered values).
        """
        self.modal_open = True
        self.form_values = {spec.name: raw.get(spec.name) for spec in self.config.fields}
        try:
            cleaned = clean_input(self.config.fields, raw)
            payload = {**self.config.defaults, **cleaned}
            if self.config.prepare is not None:
                payload = self.config.prepare(payload)
        except ValidationError as e:
            self.field_errors = e.by_field()
            return None
        self.field_errors = {}

        try:
            created = self.client.table(self.config.table).insert([payload]).execute().unwrap()[0]
            self.token.raise_if_cancelled()
        except FetchCancelled:
            logger.info("Insert into %s finished after the view was torn down", self.config.table)
            return None
        except Exception:
            logger.exception("Error adding %s", self.config.label.lower())
            self.notify(f"Failed to add {self.config.label.lower()}", "danger")
            return None

        if self.on_created is not None:
            self.on_created(created)
        self.notify(f"{self.config.label} added successfully", "success")
        self.close_modal()
        if refresh:
            self.fetch_all(self.search or None)
        return created

    def update(self, row_id: int, values: Mapping[str, Any], *, refresh: bool = True) -> dict[str, Any] | None:
        try:
            rows = self.client.table(self.config.table).update(dict(values)).eq("id", row_id).execute().unwrap()
            if not rows:
                raise StoreError(f"{self.config.label} {row_id} not found", table=self.config.table, code="not_found")
            self.token.raise_if_cancelled()
        except FetchCancelled:
            return None
        except Exception:
            logger.exception("Error updating %s %s", self.config.label.lower(), row_id)
            self.notify(f"Failed to update {self.config.label.lower()}", "danger")
            return None

        if self.on_updated is not None:
            self.on_updated(rows[0])
        self.notify(f"{self.config.label} updated", "success")
        if refresh:
            self.fetch_all(self.search or None)
        return rows[0]
