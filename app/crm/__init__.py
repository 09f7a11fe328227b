import logging
from datetime import timedelta

from flask import Flask, g, render_template, request, session, url_for
from dotenv import load_dotenv

from app.crm import formatting
from app.crm.auth import bp as auth_bp, load_session_store
from app.crm.cancellation import cancel_request_token
from app.crm.config import load_config
from app.crm.db import init_db, teardown_db_session
from app.crm.modules.activities.relations import parse_related, related_endpoint, related_name
from app.crm.modules.activities.service import status_label
from app.crm.modules.activities.views import bp as activities_bp
from app.crm.modules.customers.service import contact_name
from app.crm.modules.customers.views import bp as customers_bp
from app.crm.modules.dashboard.views import bp as dashboard_bp
from app.crm.modules.deals.views import bp as deals_bp
from app.crm.routes import bp as routes_bp
from app.crm.security import ensure_csrf_token, validate_csrf

_UNGATED_PREFIXES = ("/static/", "/health", "/healthz")


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name, logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    root.setLevel(level)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=app.config["SESSION_HOURS"])
    _configure_logging(app.config["LOG_LEVEL"])

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_session() -> dict:
        return {"current_session": getattr(g, "session_store", None)}

    for name in ("money", "money_total", "stage_label", "percent", "short_date", "short_datetime"):
        app.add_template_filter(getattr(formatting, name), name)
    app.add_template_global(related_name)
    app.add_template_global(status_label)
    app.add_template_global(contact_name)

    @app.template_global()
    def related_url(activity: dict) -> str | None:
        try:
            endpoint, values = related_endpoint(parse_related(activity.get("entity_type"), activity.get("entity_id")))
        except ValueError:
            return None
        return url_for(endpoint, **values)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGATED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Auth endpoints are exempt.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(deals_bp)
    app.register_blueprint(activities_bp)

    def _load_session_wrapper():
        if request.path.startswith(_UNGATED_PREFIXES):
            g.session_store = None
            return None
        return load_session_store()

    app.before_request(_load_session_wrapper)
    app.teardown_appcontext(cancel_request_token)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
