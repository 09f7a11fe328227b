from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, redirect, render_template, request, url_for

from app.crm.cancellation import current_token
from app.crm.datalist import run_parallel
from app.crm.guard import login_required
from app.crm.modules.activities.relations import option_value, parse_related
from app.crm.modules.activities.service import ACTIVITIES
from app.crm.pages import detail_workers, make_list
from app.crm.store import store_client

bp = Blueprint("activities", __name__)


def _relation_choices() -> dict[str, list[dict]]:
    client = store_client()
    results = run_parallel(
        {
            "customer": client.table("customers").select("id, name").order("name"),
            "deal": client.table("deals").select("id, name").order("name"),
        },
        token=current_token(),
        max_workers=detail_workers(),
    )
    failed = [key for key, r in results.items() if r.error is not None]
    if failed:
        current_app.logger.error("Error fetching customers and deals: %s", "; ".join(str(results[k].error) for k in failed))
        return {"customer": [], "deal": []}
    return {key: r.data or [] for key, r in results.items()}


def _entity_options(relation_choices: dict[str, list[dict]], entity_type: str | None) -> list[dict]:
    """
    Options for the related-record dropdown, valued "customer:1" / "deal:1" so
    ids from the two tables cannot be confused. Both kinds until a type is picked.
    """
    kinds = [entity_type] if entity_type in relation_choices else list(relation_choices)
    return [
        {"id": option_value(parse_related(kind, opt["id"])), "name": f"{kind.title()}: {opt['name']}"}
        for kind in kinds
        for opt in relation_choices[kind]
    ]


def _render_list(lst, status: int = 200):
    options = _entity_options(_relation_choices(), lst.form_values.get("entity_type"))
    return render_template("activities/list.html", lst=lst, choices={"entity_id": options}), status


@bp.get("/activities")
@login_required
def activities_list():
    lst = make_list(ACTIVITIES)
    lst.fetch_all()
    if request.args.get("new"):
        lst.open_modal()
    return _render_list(lst)


@bp.post("/activities/new")
@login_required
def activities_new_post():
    lst = make_list(ACTIVITIES)
    lst.fetch_all()
    created = lst.create(request.form, refresh=False)
    if created is None:
        return _render_list(lst, 400 if lst.field_errors else 200)
    return redirect(url_for("activities.activities_list"))


@bp.post("/activities/<int:activity_id>/complete")
@login_required
def activity_complete(activity_id: int):
    lst = make_list(ACTIVITIES)
    lst.update(activity_id, {"completed_at": datetime.utcnow()}, refresh=False)
    return redirect(url_for("activities.activities_list"))
