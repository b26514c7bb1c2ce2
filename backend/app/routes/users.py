# backend/app/routes/users.py
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_, select

from backend.app.errors import AppError, ErrorCode
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.user import User

users_bp = Blueprint("users", __name__)

SEARCH_LIMIT = 20


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
    }


def load_users_by_id(user_ids: list[int]) -> dict[int, dict]:
    """UserDirectory loader: one query for every cache miss."""
    users = db.session.execute(
        select(User).where(User.id.in_(user_ids))
    ).scalars().all()
    return {u.id: serialize_user(u) for u in users}


@users_bp.route("/<int:user_id>", methods=["GET"])
@require_auth
def get_user(user_id: int):
    user = current_app.extensions["user_directory"].get(user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404
        )
    return jsonify({"data": user, "warnings": []}), 200


@users_bp.route("/search", methods=["GET"])
@require_auth
def search_users():
    # Case-insensitive prefix match on username or email
    query = (request.args.get("q") or "").strip()
    if not query:
        raise AppError(
            ErrorCode.MISSING_FIELD,
            "Query parameter 'q' is required.",
            400,
            field="q"
        )

    # Wildcards in the query match literally
    escaped = (
        query.lower()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    pattern = f"{escaped}%"
    users = db.session.execute(
        select(User)
        .where(or_(
            db.func.lower(User.username).like(pattern, escape="\\"),
            db.func.lower(User.email).like(pattern, escape="\\"),
        ))
        .order_by(User.username.asc())
        .limit(SEARCH_LIMIT)
    ).scalars().all()

    return jsonify({
        "data": [serialize_user(u) for u in users],
        "warnings": []
    }), 200
