"""
routes/balances.py — Balance route handler.

Layer rules:
  - Call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - The balance is recomputed on every request; nothing is cached.

Endpoints (base url_prefix=/api/v1/balance):
  GET /balance/:user_id  → 200  {total_owed, total_owing, net_balance}
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:user_id>", methods=["GET"])
@require_auth
def get_balance(user_id: int):
    """
    GET /balance/:user_id

    Callers may read their own balance or that of a user they share a live
    group with (checked in balance_service.get_user_balance()).
    Amounts are strings; net_balance = total_owing - total_owed.
    """
    balance = balance_service.get_user_balance(
        user_id=user_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": {"user_id": user_id, **balance.to_dict()}, "warnings": []}), 200
