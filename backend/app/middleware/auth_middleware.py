"""
middleware/auth_middleware.py — Bearer-token check for ledger routes.

Users sign in with an external identity provider. The ledger never issues
or refreshes tokens; it verifies the one it is handed and takes the `sub`
claim as the caller's user id. Whether that user may touch a given group,
split or balance is decided later by the services (403), never here (401).

Verification follows the provider's settings in config.py:
  JWT_SECRET_KEY / JWT_ALGORITHM  signature
  JWT_AUDIENCE / JWT_ISSUER       checked only when configured
  JWT_LEEWAY_SECONDS              clock skew tolerated on exp/iat

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — not "Bearer <token>", bad signature, wrong
                         audience/issuer, no exp, or a non-numeric sub
  TOKEN_EXPIRED  (401) — exp is in the past (beyond the leeway)
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.app.errors import AppError, ErrorCode


def _token_error(code: str, message: str) -> AppError:
    return AppError(code, message, 401)


def _bearer_token() -> str:
    """The raw token from `Authorization: Bearer <token>`."""
    header = request.headers.get("Authorization", "")
    if not header:
        raise _token_error(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
        )

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise _token_error(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
        )
    return token


def decode_access_token(token: str) -> int:
    """
    Verifies `token` against the identity provider settings of the current
    app and returns the caller's user id.

    Raises AppError(TOKEN_EXPIRED | TOKEN_INVALID, 401).
    """
    config = current_app.config
    audience = config.get("JWT_AUDIENCE")
    issuer = config.get("JWT_ISSUER")

    options = {"require": ["exp", "sub"]}
    if audience is None:
        options["verify_aud"] = False

    try:
        claims = jwt.decode(
            token,
            config["JWT_SECRET_KEY"],
            algorithms=[config.get("JWT_ALGORITHM", "HS256")],
            audience=audience,
            issuer=issuer,
            leeway=config.get("JWT_LEEWAY_SECONDS", 0),
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise _token_error(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Sign in again to obtain a new one.",
        )
    except jwt.MissingRequiredClaimError as exc:
        raise _token_error(
            ErrorCode.TOKEN_INVALID,
            f"The access token is missing the required '{exc.claim}' claim.",
        )
    except jwt.InvalidTokenError:
        raise _token_error(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or was not issued for this ledger.",
        )

    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError):
        raise _token_error(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim in the access token is not a valid user ID.",
        )
    if user_id < 1:
        raise _token_error(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim in the access token is not a valid user ID.",
        )
    return user_id


def require_auth(f: Callable) -> Callable:
    """
    Route decorator: verifies the bearer token and sets flask.g.user_id.

    Failures are raised as AppError and rendered by the global handler.

        @splits_bp.route("/", methods=["POST"])
        @require_auth
        def create_split():
            caller_id = g.user_id
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = decode_access_token(_bearer_token())
        return f(*args, **kwargs)

    return decorated
