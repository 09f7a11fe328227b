from __future__ import annotations

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from app.crm.cancellation import current_token
from app.crm.datalist import fetch_detail
from app.crm.errors import DetailNotFound
from app.crm.guard import login_required
from app.crm.modules.customers.service import CUSTOMER_RELATED, CUSTOMERS, contacts_for
from app.crm.pages import detail_workers, make_list
from app.crm.store import store_client

bp = Blueprint("customers", __name__)


def _render_list(lst, status: int = 200):
    return render_template("customers/list.html", lst=lst), status


@bp.get("/customers")
@login_required
def customers_list():
    lst = make_list(CUSTOMERS)
    lst.fetch_all(request.args.get("q"))
    if request.args.get("new"):
        lst.open_modal()
    return _render_list(lst)


@bp.post("/customers/new")
@login_required
def customers_new_post():
    lst = make_list(CUSTOMERS)
    lst.fetch_all(request.args.get("q"))
    created = lst.create(request.form, refresh=False)
    if created is None:
        return _render_list(lst, 400 if lst.field_errors else 200)
    return redirect(url_for("customers.customers_list"))


def _load_customer(customer_id: int):
    return fetch_detail(
        store_client(),
        CUSTOMERS,
        customer_id,
        CUSTOMER_RELATED,
        token=current_token(),
        max_workers=detail_workers(),
    )


def _render_detail(detail: dict, contact_form, status: int = 200):
    return (
        render_template(
            "customers/detail.html",
            customer=detail["record"],
            deals=detail["deals"],
            contacts=detail["contacts"],
            contact_form=contact_form,
        ),
        status,
    )


@bp.get("/customers/<int:customer_id>")
@login_required
def customer_detail(customer_id: int):
    try:
        detail = _load_customer(customer_id)
    except DetailNotFound as e:
        current_app.logger.warning("Error fetching customer data: %s", e)
        flash("Failed to fetch customer data", "danger")
        return redirect(url_for("customers.customers_list"))

    contact_form = make_list(contacts_for(customer_id))
    if request.args.get("new_contact"):
        contact_form.open_modal()
    return _render_detail(detail, contact_form)


@bp.post("/customers/<int:customer_id>/contacts")
@login_required
def customer_contact_new(customer_id: int):
    try:
        detail = _load_customer(customer_id)
    except DetailNotFound as e:
        current_app.logger.warning("Error fetching customer data: %s", e)
        flash("Failed to fetch customer data", "danger")
        return redirect(url_for("customers.customers_list"))

    contact_form = make_list(contacts_for(customer_id))
    created = contact_form.create(request.form, refresh=False)
    if created is None:
        return _render_detail(detail, contact_form, 400 if contact_form.field_errors else 200)
    return redirect(url_for("customers.customer_detail", customer_id=customer_id))
