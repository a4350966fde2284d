"""Bearer token verification for Supabase-issued JWTs.

HS256 tokens are checked against ``SUPABASE_JWT_SECRET``; RS256/ES256 tokens
against the project's JWKS endpoint. The verified ``sub`` is the user id.
"""
import logging
import os
from functools import lru_cache
from typing import Optional

import jwt

logger = logging.getLogger("minute70")

ASYMMETRIC_ALGORITHMS = ("RS256", "ES256")


class AuthError(Exception):
    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@lru_cache(maxsize=4)
def _jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(jwks_url, cache_keys=True)


def _signing_key(token: str, algorithm: str):
    secret = os.getenv("SUPABASE_JWT_SECRET", "")
    supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
    if not secret and not supabase_url:
        raise AuthError("Server configuration error.", status_code=500)

    # a key source exists, just not the one this token asks for
    if algorithm == "HS256":
        if not secret:
            raise AuthError("Invalid or expired token.")
        return secret
    if not supabase_url:
        raise AuthError("Invalid or expired token.")
    try:
        client = _jwks_client(f"{supabase_url}/auth/v1/.well-known/jwks.json")
        return client.get_signing_key_from_jwt(token).key
    except jwt.PyJWKClientError as exc:
        logger.error("JWKS lookup failed: %s", exc)
        raise AuthError("Invalid or expired token.")


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        return ""
    return authorization[len("Bearer "):].strip()


def verify_bearer(authorization: Optional[str]) -> str:
    """Return the user id carried by a valid bearer token or raise AuthError."""
    token = bearer_token(authorization)
    if not token:
        raise AuthError("Missing authorization token.")

    try:
        algorithm = jwt.get_unverified_header(token).get("alg")
    except jwt.DecodeError:
        raise AuthError("Invalid or expired token.")
    if algorithm != "HS256" and algorithm not in ASYMMETRIC_ALGORITHMS:
        raise AuthError("Invalid or expired token.")

    key = _signing_key(token, algorithm)
    audience = os.getenv("JWT_AUDIENCE", "authenticated")
    try:
        payload = jwt.decode(token, key, algorithms=[algorithm], audience=audience)
    except jwt.InvalidTokenError:
        raise AuthError("Invalid or expired token.")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid token: no subject.")
    return str(user_id)
