from __future__ import annotations

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from app.crm.cancellation import current_token
from app.crm.datalist import fetch_choices, fetch_detail
from app.crm.errors import DetailNotFound
from app.crm.guard import login_required
from app.crm.modules.deals.service import DEAL_RELATED, DEALS
from app.crm.pages import detail_workers, make_list
from app.crm.store import store_client

bp = Blueprint("deals", __name__)


def _render_list(lst, status: int = 200):
    customers = fetch_choices(store_client(), "customers")
    return render_template("deals/list.html", lst=lst, choices={"customer_id": customers}), status


@bp.get("/deals")
@login_required
def deals_list():
    lst = make_list(DEALS)
    lst.fetch_all(request.args.get("q"))
    if request.args.get("new"):
        lst.open_modal()
    return _render_list(lst)


@bp.post("/deals/new")
@login_required
def deals_new_post():
    lst = make_list(DEALS)
    lst.fetch_all(request.args.get("q"))
    created = lst.create(request.form, refresh=False)
    if created is None:
        return _render_list(lst, 400 if lst.field_errors else 200)
    return redirect(url_for("deals.deals_list"))


@bp.get("/deals/<int:deal_id>")
@login_required
def deal_detail(deal_id: int):
    try:
        detail = fetch_detail(
            store_client(),
            DEALS,
            deal_id,
            DEAL_RELATED,
            token=current_token(),
            max_workers=detail_workers(),
        )
    except DetailNotFound as e:
        current_app.logger.warning("Error fetching deal data: %s", e)
        flash("Failed to fetch deal data", "danger")
        return redirect(url_for("deals.deals_list"))

    return render_template("deals/detail.html", deal=detail["record"], activities=detail["activities"])
