"""
quotedesk/__init__.py

Flask application factory for QuoteDesk (producer-side quote management).

Requirements:
- JSON API only; every error (domain, HTTP, CSRF, unauthenticated) renders as JSON.
- PostgreSQL-ready (SQLAlchemy + migrations) but SQLite is used for dev.
- Clients are never trusted; server-side access control is enforced.
"""

from __future__ import annotations

import asyncio
import logging

import click
from flask import Flask, jsonify
from flask_login import current_user
from werkzeug.exceptions import HTTPException

from .errors import QuoteDeskError
from .extensions import csrf, db, login_manager, migrate
from .models import User
from .security import viewer_readonly_guard
from .services.email import get_email_sender

logger = logging.getLogger("quotedesk")


def _error_response(code: str, message: str, status: int):
    return jsonify({"success": False, "error": {"code": code, "message": message}}), status


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
    )
    logging.getLogger("quotedesk").setLevel(level)


def create_app(config_object: str | object = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    # Outbound email backend (tests may replace it)
    app.extensions["quotedesk_email_sender"] = get_email_sender(app.config)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            user = db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return _error_response("UNAUTHORIZED", "Authentication required.", 401)

    # ----------------------------------------------------------------------
    # Error handlers (JSON everywhere)
    # ----------------------------------------------------------------------
    @app.errorhandler(QuoteDeskError)
    def handle_domain_error(exc: QuoteDeskError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        else:
            logger.info("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        code = (exc.name or "HTTP_ERROR").upper().replace(" ", "_")
        return _error_response(code, exc.description or exc.name, exc.code or 500)

    @app.errorhandler(500)
    def handle_internal_error(exc):
        logger.exception("Unhandled error: %s", getattr(exc, "original_exception", exc))
        return _error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.", 500)

    # ----------------------------------------------------------------------
    # GLOBAL SECURITY NET: Viewer read-only guard (server-side).
    # ----------------------------------------------------------------------
    @app.before_request
    def _viewer_guard_hook():
        """
        Viewer read-only enforcement (POST/PUT/PATCH/DELETE blocked).

        This is a safety net. Each route must still enforce its own permissions.
        """
        return viewer_readonly_guard()

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.portal import portal_bp
    from .blueprints.projects import projects_bp
    from .blueprints.quotes import quotes_bp
    from .blueprints.suppliers import suppliers_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(quotes_bp)
    app.register_blueprint(portal_bp)

    # Supplier portal is token-authenticated, not session-authenticated
    csrf.exempt(portal_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables (development; use `flask db upgrade` with migrations)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Seed demo users, suppliers, a project and quotes."""
        from .seed import seed_demo_data

        summary = seed_demo_data()
        click.echo(f"Demo data seeded: {summary}")

    @app.cli.command("watch-quotes")
    @click.argument("asset_id", type=int)
    @click.option("--interval", type=float, default=None, help="Seconds between refreshes.")
    @click.option("--ticks", type=int, default=None, help="Stop after N refreshes.")
    def watch_quotes_command(asset_id: int, interval: float | None, ticks: int | None):
        """Print quote status changes for an asset as suppliers respond."""
        from .repository import SqlQuoteRepository
        from .services.polling import QuotePoller
        from .utils import quote_badge

        repository = SqlQuoteRepository()
        if repository.get_asset(asset_id) is None:
            raise click.ClickException(f"Asset {asset_id} not found.")

        async def fetch():
            # end the previous transaction so fresh rows are read
            db.session.rollback()
            return repository.list_quotes_for_asset(asset_id)

        def on_change(quotes):
            for quote in quotes:
                badge = quote_badge(quote)
                cost = f" {badge['cost_display']}" if badge["cost_display"] else ""
                click.echo(f"quote {quote.id} supplier={quote.supplier_id}: {badge['text']}{cost}")

        poller = QuotePoller(
            fetch,
            interval=interval or app.config["QUOTE_POLL_INTERVAL_SECONDS"],
            on_change=on_change,
        )
        try:
            asyncio.run(poller.run(max_ticks=ticks))
        except KeyboardInterrupt:
            click.echo("Stopped.")

    # ----------------------------------------------------------------------
    # Home
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        """Service banner."""
        return jsonify(
            {
                "app": app.config.get("APP_NAME", "QuoteDesk"),
                "authenticated": bool(current_user.is_authenticated),
            }
        )

    return app
