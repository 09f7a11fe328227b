"""
Table-scoped data client.

Pages never touch the ORM session for CRM records; they go through
``StoreClient.table(name)`` which returns a small chainable query and always
answers with a ``StoreResult`` (``data`` or ``error``, never both). Database
exceptions are converted into ``StoreError`` values here so that callers only
have one failure shape to handle.

    client.table("deals").select("*", embed=[Embed("customers", "customers", "customer_id")]) \
        .ilike("name", "%acme%").order("created_at", desc=True).execute()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, MetaData, Table, func, select
from sqlalchemy.exc import SQLAlchemyError

from app.crm.constants import ACTIVITY_ENTITY_TABLES
from app.crm.errors import StoreError

logger = logging.getLogger(__name__)

# Polymorphic references the database cannot express as a foreign key:
# table -> (discriminator column, id column, discriminator value -> target table)
POLYMORPHIC_REFERENCES: dict[str, tuple[str, str, Mapping[str, str]]] = {
    "activities": ("entity_type", "entity_id", ACTIVITY_ENTITY_TABLES),
}

_ACTOR_CREATE_COLUMNS = ("created_by_user_id", "updated_by_user_id")


@dataclass
class StoreResult:
    data: Any = None
    error: StoreError | None = None
    count: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return data, raising the carried StoreError if the call failed."""
        if self.error is not None:
            raise self.error
        return self.data


@dataclass(frozen=True)
class Embed:
    """
    Attach related-row columns to each selected row under ``alias``.

    ``local_column`` on the selected table is matched against
    ``remote_column`` on ``table``; rows without a match get ``None``.
    """

    alias: str
    table: str
    local_column: str
    columns: tuple[str, ...] = ("name",)
    remote_column: str = "id"


@dataclass
class _Filter:
    op: str
    column: str
    value: Any


@dataclass
class TableQuery:
    client: "StoreClient"
    table_name: str
    mode: str = "select"
    columns: tuple[str, ...] | None = None
    embeds: tuple[Embed, ...] = ()
    want_count: bool = False
    filters: list[_Filter] = field(default_factory=list)
    ordering: list[tuple[str, bool]] = field(default_factory=list)
    row_limit: int | None = None
    expect_single: bool = False
    rows: list[dict[str, Any]] = field(default_factory=list)
    values: dict[str, Any] = field(default_factory=dict)

    # ---------- builders ----------
    def select(self, columns: str = "*", *, embed: Iterable[Embed] = (), count: bool = False) -> "TableQuery":
        self.mode = "select"
        self.columns = None if columns.strip() == "*" else tuple(c.strip() for c in columns.split(",") if c.strip())
        self.embeds = tuple(embed)
        self.want_count = count
        return self

    def insert(self, rows: dict[str, Any] | list[dict[str, Any]]) -> "TableQuery":
        self.mode = "insert"
        self.rows = [dict(rows)] if isinstance(rows, dict) else [dict(r) for r in rows]
        return self

    def update(self, values: dict[str, Any]) -> "TableQuery":
        self.mode = "update"
        self.values = dict(values)
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(_Filter("eq", column, value))
        return self

    def ilike(self, column: str, pattern: str) -> "TableQuery":
        self.filters.append(_Filter("ilike", column, pattern))
        return self

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        self.filters.append(_Filter("in", column, list(values)))
        return self

    def order(self, column: str, *, desc: bool = False) -> "TableQuery":
        self.ordering.append((column, desc))
        return self

    def limit(self, n: int) -> "TableQuery":
        self.row_limit = n
        return self

    def single(self) -> "TableQuery":
        self.expect_single = True
        return self

    # ---------- execution ----------
    def execute(self) -> StoreResult:
        try:
            table = self.client.table_for(self.table_name)
            if self.mode == "select":
                return self._run_select(table)
            if self.mode == "insert":
                return self._run_insert(table)
            if self.mode == "update":
                return self._run_update(table)
            raise StoreError(f"Unsupported operation {self.mode!r}", table=self.table_name)
        except StoreError as e:
            logger.warning("Store %s on %s failed: %s", self.mode, self.table_name, e.message)
            return StoreResult(error=e)
        except SQLAlchemyError as e:
            message = str(getattr(e, "orig", None) or e)
            logger.warning("Store %s on %s failed: %s", self.mode, self.table_name, message)
            return StoreResult(error=StoreError(message, table=self.table_name, code=type(e).__name__))

    def _column(self, table: Table, name: str):
        if name not in table.c:
            raise StoreError(f"Unknown column {name!r}", table=table.name, code="undefined_column")
        return table.c[name]

    def _where(self, table: Table):
        clauses = []
        for f in self.filters:
            col = self._column(table, f.column)
            if f.op == "eq":
                clauses.append(col.is_(None) if f.value is None else col == f.value)
            elif f.op == "ilike":
                clauses.append(col.ilike(f.value))
            elif f.op == "in":
                clauses.append(col.in_(f.value))
        return clauses

    def _run_select(self, table: Table) -> StoreResult:
        cols = [self._column(table, c) for c in self.columns] if self.columns else [table]
        stmt = select(*cols)
        where = self._where(table)
        if where:
            stmt = stmt.where(*where)
        for name, descending in self.ordering:
            col = self._column(table, name)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if self.row_limit is not None:
            stmt = stmt.limit(self.row_limit)

        with self.client.engine.connect() as conn:
            data = [dict(r._mapping) for r in conn.execute(stmt)]
            count = None
            if self.want_count:
                count_stmt = select(func.count()).select_from(table)
                if where:
                    count_stmt = count_stmt.where(*where)
                count = int(conn.execute(count_stmt).scalar_one())
            for emb in self.embeds:
                self._attach(conn, data, emb)

        if self.expect_single:
            if not data:
                raise StoreError("No rows returned", table=table.name, code="not_found")
            if len(data) > 1:
                raise StoreError("Multiple rows returned for a single-row query", table=table.name, code="multiple_rows")
            return StoreResult(data=data[0], count=count)
        return StoreResult(data=data, count=count)

    def _attach(self, conn, data: list[dict[str, Any]], emb: Embed) -> None:
        remote = self.client.table_for(emb.table)
        key_col = self._column(remote, emb.remote_column)
        wanted = [self._column(remote, c) for c in emb.columns]
        keys = {row.get(emb.local_column) for row in data} - {None}
        found: dict[Any, dict[str, Any]] = {}
        if keys:
            stmt = select(key_col.label("_embed_key"), *wanted).where(key_col.in_(keys))
            for r in conn.execute(stmt):
                m = dict(r._mapping)
                found[m.pop("_embed_key")] = m
        for row in data:
            row[emb.alias] = found.get(row.get(emb.local_column))

    def _run_insert(self, table: Table) -> StoreResult:
        if not self.rows:
            raise StoreError("Nothing to insert", table=table.name, code="empty_insert")
        pk = self._column(table, "id")
        inserted_ids: list[Any] = []
        with self.client.engine.begin() as conn:
            for raw in self.rows:
                if "id" in raw:
                    raise StoreError("id is assigned by the store", table=table.name, code="immutable_column")
                row = {k: v for k, v in raw.items()}
                for name in row:
                    self._column(table, name)
                for name in _ACTOR_CREATE_COLUMNS:
                    if name in table.c and row.get(name) is None:
                        row[name] = self.client.actor_id
                self._check_references(conn, table, row)
                result = conn.execute(table.insert().values(**row))
                inserted_ids.append(result.inserted_primary_key[0])
            data = [dict(r._mapping) for r in conn.execute(select(table).where(pk.in_(inserted_ids)).order_by(pk.asc()))]
        return StoreResult(data=data)

    def _run_update(self, table: Table) -> StoreResult:
        if "id" in self.values:
            raise StoreError("id is immutable", table=table.name, code="immutable_column")
        if not self.filters:
            raise StoreError("Update requires a filter", table=table.name, code="unfiltered_update")
        values = dict(self.values)
        for name in values:
            self._column(table, name)
        if "updated_at" in table.c:
            values.setdefault("updated_at", datetime.utcnow())
        if "updated_by_user_id" in table.c and self.client.actor_id is not None:
            values.setdefault("updated_by_user_id", self.client.actor_id)
        where = self._where(table)
        with self.client.engine.begin() as conn:
            conn.execute(table.update().where(*where).values(**values))
            data = [dict(r._mapping) for r in conn.execute(select(table).where(*where))]
        return StoreResult(data=data)

    def _check_references(self, conn, table: Table, row: dict[str, Any]) -> None:
        ref = POLYMORPHIC_REFERENCES.get(table.name)
        if not ref:
            return
        type_col, id_col, targets = ref
        target_name = targets.get(row.get(type_col))
        if target_name is None:
            # Unknown discriminators are left to the table's check constraint.
            return
        target = self.client.table_for(target_name)
        exists = conn.execute(select(target.c.id).where(target.c.id == row.get(id_col))).first()
        if exists is None:
            raise StoreError(
                f"{id_col}={row.get(id_col)!r} does not reference an existing {row.get(type_col)}",
                table=table.name,
                code="foreign_key_violation",
            )


class StoreClient:
    """
    Entry point to the relational store. One client per request; ``actor_id``
    fills the created_by/updated_by columns on writes.
    """

    def __init__(self, engine: Engine, metadata: MetaData, *, actor_id: int | None = None):
        self.engine = engine
        self.metadata = metadata
        self.actor_id = actor_id

    def table_for(self, name: str) -> Table:
        table = self.metadata.tables.get(name)
        if table is None:
            raise StoreError(f"Unknown table {name!r}", table=name, code="undefined_table")
        return table

    def table(self, name: str) -> TableQuery:
        return TableQuery(client=self, table_name=name)


def store_client() -> StoreClient:
    """Request-scoped client bound to the signed-in identity."""
    from flask import current_app, g

    from app.crm.models import Base

    client = getattr(g, "store_client", None)
    if client is None:
        store = getattr(g, "session_store", None)
        identity = store.identity if store is not None else None
        client = StoreClient(
            current_app.extensions["sqlalchemy_engine"],
            Base.metadata,
            actor_id=identity.id if identity else None,
        )
        g.store_client = client
    return client
