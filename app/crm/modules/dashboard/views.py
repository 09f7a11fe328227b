from __future__ import annotations

from flask import Blueprint, current_app, render_template

from app.crm.cancellation import current_token
from app.crm.datalist import run_parallel
from app.crm.errors import FetchCancelled
from app.crm.guard import login_required
from app.crm.modules.dashboard.service import DashboardStats, compute_stats
from app.crm.pages import detail_workers, notify
from app.crm.store import store_client

bp = Blueprint("dashboard", __name__)


@bp.get("/")
@login_required
def index():
    client = store_client()
    stats = DashboardStats()
    try:
        results = run_parallel(
            {
                "customers": client.table("customers").select("id", count=True),
                "deals": client.table("deals").select("amount, stage"),
            },
            token=current_token(),
            max_workers=detail_workers(),
        )
        customers = results["customers"]
        deals = results["deals"].unwrap()
        customers.unwrap()
        stats = compute_stats(customers.count, deals or [])
    except FetchCancelled:
        current_app.logger.info("Dashboard fetch dropped for a torn-down view")
    except Exception:
        current_app.logger.exception("Error fetching dashboard stats")
        notify("Failed to fetch dashboard stats", "danger")
    return render_template("dashboard/index.html", stats=stats)
