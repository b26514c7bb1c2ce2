"""
extensions.py — Flask extension singletons.

SQLAlchemy and marshmallow are module-level objects so they can be imported
anywhere without circular imports:

    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

Never pass the app to SQLAlchemy() or Marshmallow() at import time; tests
build a separate app instance per session.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_marshmallow import Marshmallow

db = SQLAlchemy()

# Marshmallow instance — used by the app factory only.
#
# Schema inheritance rule:
#   Validation Schema classes (in app/schemas/) inherit from marshmallow.Schema
#   directly, NOT from ma.Schema. ma.Schema needs an active application context
#   and the unit tests in tests/unit/ run without one.
ma = Marshmallow()
