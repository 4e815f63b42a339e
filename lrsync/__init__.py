"""
lrsync/__init__.py

Flask application factory for the LR Sync back-office (BIR sales, purchases,
commission reports and TIN library).

Requirements:
- Clear architecture, stable imports, server-side access control.
- PostgreSQL-ready (SQLAlchemy + migrations) but SQLite is used for dev.
- JSON everywhere: errors are answered as {"error": "..."} with the HTTP status.

Navigation:
- Sections are filtered per role for visibility only (GET /api/navigation).
  All permissions are enforced in the routes.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify, redirect, url_for
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from .extensions import csrf, db, login_manager, migrate
from .models import ROLE_ADMIN, ROLE_SECRETARY, ROLE_SUPER_ADMIN, User
from .security import home_endpoint_for, inactive_profile_guard
from .session import get_auth_session

# Blueprint imports kept inside create_app() where possible to reduce import side effects.


# -------------------------------------------------------------------
# NAVIGATION STRUCTURE (UI visibility only; security enforced in routes)
# -------------------------------------------------------------------

ALL_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_SECRETARY)

NAV_SECTIONS = [
    {
        "key": "records",
        "label": "Records",
        "items": [
            {"label": "Sales", "endpoint": "sales.list_sales", "roles": ALL_ROLES},
            {"label": "Purchases", "endpoint": "purchases.list_purchases", "roles": (ROLE_SUPER_ADMIN, ROLE_SECRETARY)},
            {"label": "TIN Library", "endpoint": "taxpayers.list_taxpayers", "roles": ALL_ROLES},
        ],
    },
    {
        "key": "commission",
        "label": "Commission",
        "items": [
            {
                "label": "Commission Reports",
                "endpoint": "commission.list_reports",
                "roles": (ROLE_SUPER_ADMIN, ROLE_SECRETARY),
            },
            {
                "label": "Agent Breakdown",
                "endpoint": "commission.list_agent_breakdown",
                "roles": (ROLE_SUPER_ADMIN,),
            },
        ],
    },
    {
        "key": "management",
        "label": "Management",
        "items": [
            {"label": "Users", "endpoint": "users.list_users", "roles": (ROLE_SUPER_ADMIN, ROLE_ADMIN)},
            {
                "label": "Purchase Categories",
                "endpoint": "categories.list_categories",
                "roles": (ROLE_SUPER_ADMIN,),
            },
            {
                "label": "Activity Tracker",
                "endpoint": "notifications.list_notifications",
                "roles": (ROLE_SUPER_ADMIN,),
            },
        ],
    },
]


def visible_nav_sections(role: str | None) -> list[dict]:
    """
    Navigation filtered by role.

    SECURITY NOTE:
    - This only filters visibility. Routes enforce permissions.
    """
    visible_sections = []
    for section in NAV_SECTIONS:
        visible_items = [
            {"label": item["label"], "url": url_for(item["endpoint"])}
            for item in section["items"]
            if role in item["roles"]
        ]
        if visible_items:
            visible_sections.append({"key": section["key"], "label": section["label"], "items": visible_items})
    return visible_sections


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app.logger.setLevel(level)
    logging.getLogger("lrsync").setLevel(level)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        """Every HTTP error (400/401/403/404/405/409/...) as JSON."""
        return jsonify({"error": exc.description or exc.name}), exc.code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(exc: IntegrityError):
        db.session.rollback()
        app.logger.warning("Integrity error: %s", exc.orig)
        return jsonify({"error": "Record already exists."}), 409

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500


def create_app(config_object: str | object = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required", "redirect": url_for("auth.login")}), 401

    # ----------------------------------------------------------------------
    # GLOBAL SECURITY NET: inactive profiles are read-only (server-side).
    # ----------------------------------------------------------------------
    @app.before_request
    def _inactive_profile_hook():
        """
        Inactive / suspended profile enforcement (POST/PUT/PATCH/DELETE blocked).

        This is a safety net. Each route must still enforce its own permissions.
        """
        return inactive_profile_guard()

    _register_error_handlers(app)

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.categories import categories_bp
    from .blueprints.commission import commission_bp
    from .blueprints.dashboard import dashboard_bp
    from .blueprints.files import files_bp
    from .blueprints.notifications import notifications_bp
    from .blueprints.purchases import purchases_bp
    from .blueprints.sales import sales_bp
    from .blueprints.taxpayers import taxpayers_bp
    from .blueprints.users import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(taxpayers_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(commission_bp)
    app.register_blueprint(files_bp)
    app.register_blueprint(notifications_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("seed-categories")
    def seed_categories_command():
        """Seed default purchase categories."""
        from .seed import seed_purchase_categories

        created = seed_purchase_categories()
        click.echo(f"Default purchase categories seeded ({created} new).")

    @app.cli.command("create-super-admin")
    @click.option("--email", prompt=True)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--first-name", default="Super")
    @click.option("--last-name", default="Admin")
    def create_super_admin_command(email, password, first_name, last_name):
        """Create (or promote) the first super admin account."""
        from .seed import create_super_admin

        profile = create_super_admin(email, password, first_name, last_name)
        click.echo(f"Super admin ready: {profile.email}")

    # ----------------------------------------------------------------------
    # Home
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        """Home: redirect to the role dashboard or login."""
        auth = get_auth_session()
        if auth.profile is not None:
            return redirect(url_for(home_endpoint_for(auth.profile.role)))
        return redirect(url_for("auth.login"))

    return app
