"""
Request authentication for the pipeline endpoints.

Two modes:
- cron_secret_required: scheduled/automated callers send
  "Authorization: Bearer <CRON_SECRET>"
- user_session_required: end users send their Supabase session JWT
  (HS256, signed with SUPABASE_JWT_SECRET)

Both raise AuthError, which main.py turns into 401 {"error": "Unauthorized"}.
A missing server-side secret is a ConfigurationError (503), not a 401.
"""
import logging
import secrets
from typing import Any, Dict, Optional

import jwt
from fastapi import Request

from app.config import get_cron_secret, get_jwt_secret
from app.errors import AuthError, ConfigurationError

logger = logging.getLogger(__name__)

JWT_ALGORITHMS = ["HS256"]


def get_bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def cron_secret_required(request: Request) -> str:
    """FastAPI dependency for automated callers."""
    expected = get_cron_secret()
    if not expected:
        raise ConfigurationError("CRON_SECRET not configured")

    token = get_bearer_token(request)
    if not token or not secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(f"[auth] Rejected automated call to {request.url.path}")
        raise AuthError("Invalid or missing cron secret")
    return "cron"


def decode_session_token(token: str, secret: str) -> Dict[str, Any]:
    """Decode and verify a session JWT; raises AuthError when invalid."""
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=JWT_ALGORITHMS,
            options={"verify_aud": False},
        )
    except jwt.PyJWTError as e:
        raise AuthError(f"Invalid session token: {e}") from e

    if not payload.get("sub"):
        raise AuthError("Session token has no subject")
    return payload


def user_session_required(request: Request) -> Dict[str, Any]:
    """FastAPI dependency for logged-in users. Returns the token claims."""
    secret = get_jwt_secret()
    if not secret:
        raise ConfigurationError("SUPABASE_JWT_SECRET not configured")

    token = get_bearer_token(request)
    if not token:
        raise AuthError("Missing session token")
    try:
        return decode_session_token(token, secret)
    except AuthError as e:
        logger.info(f"[auth] Rejected session on {request.url.path}: {e}")
        raise
