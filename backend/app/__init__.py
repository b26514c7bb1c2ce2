"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - `flask init-db` to work without starting the full server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  3. Attach the notifier and the user directory to app.extensions
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register a custom JSON provider to serialise Decimal as string
     (monetary amounts are transmitted as strings, never JS numbers)

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before db.create_all() inspects it. They are not
  used directly here — the import side-effect is sufficient.
"""

from __future__ import annotations

import traceback
from decimal import Decimal

import click
from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError

from backend.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default JSON encoder does not handle Decimal.
# All monetary amounts are serialised as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development", notifier=None) -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
        notifier:    Object with emit(event, recipient_ids, payload).
                     Defaults to LoggingNotifier.

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Import all models so that SQLAlchemy's MetaData is populated.
    # The imports are intentionally unused by name — side effect is the point.
    with app.app_context():
        from backend.app.models import (  # noqa: F401
            bill_split,
            group,
            membership,
            settlement,
            user,
        )

    _register_side_services(app, notifier)

    # ── Blueprints ─────────────────────────────────────────────────────────
    # All routes are prefixed with /api/v1.
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)
    _register_cli(app)

    return app


def _register_side_services(app: Flask, notifier) -> None:
    """
    Notification delivery and the user directory cache live outside the
    ledger engine. Routes look them up in app.extensions.
    """
    from backend.app.routes.users import load_users_by_id
    from backend.app.services.notification_service import LoggingNotifier
    from backend.app.services.user_directory import UserDirectory

    app.extensions["notifier"] = notifier if notifier is not None else LoggingNotifier()
    app.extensions["user_directory"] = UserDirectory(
        loader=load_users_by_id,
        ttl_seconds=app.config["USER_CACHE_TTL_SECONDS"],
        max_entries=app.config["USER_CACHE_MAX_ENTRIES"],
    )


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    Blueprint names match the route files in app/routes/.
    The url_prefix is set here so individual route files only specify
    the path relative to their resource (e.g. "/" and "/<int:id>").
    """
    from backend.app.routes.balances import balances_bp
    from backend.app.routes.groups import groups_bp
    from backend.app.routes.settlements import settlements_bp
    from backend.app.routes.splits import splits_bp
    from backend.app.routes.users import users_bp

    app.register_blueprint(groups_bp,      url_prefix="/api/v1/groups")
    app.register_blueprint(splits_bp,      url_prefix="/api/v1/splits")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1/settlements")
    app.register_blueprint(balances_bp,    url_prefix="/api/v1/balance")
    app.register_blueprint(users_bp,       url_prefix="/api/v1/users")


def _first_validation_error(messages, field: str | None = None) -> tuple[str | None, str]:
    """
    Walks marshmallow's (possibly nested) messages and returns the first
    (field, message) pair. Nested fields are joined with dots, list indexes
    included: "participants.0.paid_amount".
    """
    if isinstance(messages, dict):
        for key, value in messages.items():
            if key == "_schema":
                return _first_validation_error(value, field)
            child = str(key) if field is None else f"{field}.{key}"
            return _first_validation_error(value, child)
        return field, "Invalid input."
    if isinstance(messages, list):
        if not messages:
            return field, "Invalid value."
        return _first_validation_error(messages[0], field)
    return field, str(messages)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError    → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors formatted as MISSING_FIELD /
                        INVALID_FIELD responses (400)
      Exception   → generic INTERNAL_ERROR (500); full traceback logged

    Stack traces never leave the server. In production, only
    {"error": {"code": "INTERNAL_ERROR", "message": "..."}} is returned.
    The traceback is written to the app logger.
    """
    from werkzeug.exceptions import HTTPException

    from backend.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.

        Routes never catch AppError — they let it propagate here.
        """
        if error.http_status == 409:
            app.logger.warning("Concurrency conflict on %s: %s", request.path, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST error is returned ("one error, not many"). When the
        message is itself a registered ErrorCode constant it becomes the
        code; otherwise INVALID_FIELD (or MISSING_FIELD) is used.
        """
        field, raw_message = _first_validation_error(error.messages)
        known_codes = {v for k, v in vars(ErrorCode).items() if not k.startswith("_")}

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """
        Werkzeug errors (unknown URL, wrong method, unparseable JSON body) in
        the same envelope. Without this the Exception handler below would
        turn them into 500s.
        """
        if error.code == 400:
            code = ErrorCode.INVALID_FIELD
        else:
            code = error.name.upper().replace(" ", "_")  # e.g. NOT_FOUND
        return jsonify({
            "error": {
                "code": code,
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.

        The full traceback is logged to the application logger. Stack traces
        NEVER leave the server in the response body.
        """
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            # Reflect origin when present so bearer-auth requests from local
            # dev servers are accepted by browsers.
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _register_cli(app: Flask) -> None:
    """`flask --app backend.app:create_app init-db` creates every table."""
    from backend.app.extensions import db

    @app.cli.command("init-db")
    @click.option("--drop", is_flag=True, help="Drop all tables first.")
    def init_db(drop: bool) -> None:
        if drop:
            db.drop_all()
        db.create_all()
        click.echo("Database tables created.")


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself
    (e.g. INVALID_AMOUNT_PRECISION raised as ValidationError in schemas).
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_CATEGORY": "The category value is not valid.",
        "INVALID_SPLIT_METHOD": "split_method must be 'equal', 'exact' or 'percentage'.",
        "INVALID_GROUP_TYPE": "type must be 'Trip', 'Home', 'Event' or 'Custom'.",
        "EMPTY_PARTICIPANTS": "A split needs at least one participant.",
        "DUPLICATE_PARTICIPANT": "The same user_id appears more than once in participants.",
        "MIXED_SPLIT_METHODS": "All participants of a split must use the same split_method.",
    }
    return _messages.get(code, "Invalid input.")
