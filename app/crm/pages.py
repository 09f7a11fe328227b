"""
Glue between Flask request context and the generic DataList pattern.
"""

from __future__ import annotations

from typing import Any

from flask import current_app, flash, g

from app.crm.audit import record_event
from app.crm.cancellation import current_token
from app.crm.datalist import DataList, EntityConfig
from app.crm.db import db_session
from app.crm.store import store_client


def notify(message: str, category: str = "info") -> None:
    flash(message, category)


def detail_workers() -> int:
    return int(current_app.config.get("DETAIL_FETCH_WORKERS") or 4)


def _audit(action: str, table: str):
    def hook(row: dict[str, Any]) -> None:
        s = db_session()
        store = getattr(g, "session_store", None)
        try:
            record_event(
                s,
                actor=store.identity if store else None,
                action=f"{table}.{action}",
                entity_type=table,
                entity_id=str(row.get("id")),
                metadata={k: row.get(k) for k in ("name", "title", "stage", "completed_at") if row.get(k) is not None},
            )
            s.commit()
        except Exception:
            # Row is committed already; audit failures are logged only.
            s.rollback()
            current_app.logger.exception("Audit write failed (%s.%s id=%s)", table, action, row.get("id"))

    return hook


def make_list(config: EntityConfig) -> DataList:
    return DataList(
        config,
        store_client(),
        notify=notify,
        token=current_token(),
        on_created=_audit("create", config.table),
        on_updated=_audit("update", config.table),
    )
