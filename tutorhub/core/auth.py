"""
Auth utilities for the TutorHub API.

Validates Clerk JWTs and extracts the Clerk user id from the request.
Falls back to the X-User-Id header when no bearer token is sent (local
development and tests). The header is ignored when ENV is production.
"""
from fastapi import Header, HTTPException, Request
from typing import Optional
import logging

import jwt
from jwt import PyJWKClient

from tutorhub.core.config import settings

logger = logging.getLogger("tutorhub")

_jwks_client: Optional[PyJWKClient] = None


def _get_jwks_client() -> Optional[PyJWKClient]:
    """JWKS client for RS256 session tokens (keys cached by PyJWT)."""
    global _jwks_client
    jwks_url = settings.CLERK_JWKS_URL
    if not jwks_url and settings.CLERK_ISSUER:
        jwks_url = f"{settings.CLERK_ISSUER.rstrip('/')}/.well-known/jwks.json"
    if not jwks_url:
        return None
    if _jwks_client is None or _jwks_client.uri != jwks_url:
        _jwks_client = PyJWKClient(jwks_url)
    return _jwks_client


def verify_clerk_jwt(token: str) -> Optional[str]:
    """
    Verify a Clerk JWT and extract the Clerk user id.

    RS256 tokens are checked against the JWKS; HS256 tokens against
    CLERK_SECRET_KEY.

    Args:
        token: JWT from Authorization header (Bearer {token})

    Returns:
        Clerk user id from the 'sub' claim, or None when no verification
        key is configured

    Raises:
        HTTPException 401: Invalid or expired token
    """
    try:
        header = jwt.get_unverified_header(token)
        options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(settings.CLERK_AUDIENCE)}
        if header.get("alg") == "RS256":
            client = _get_jwks_client()
            if client is None:
                logger.debug("No JWKS configured, skipping RS256 validation")
                return None
            key = client.get_signing_key_from_jwt(token).key
            algorithms = ["RS256"]
        else:
            if not settings.CLERK_SECRET_KEY:
                logger.debug("No CLERK_SECRET_KEY configured, skipping JWT validation")
                return None
            key = settings.CLERK_SECRET_KEY
            algorithms = ["HS256"]

        payload = jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.CLERK_AUDIENCE,
            issuer=settings.CLERK_ISSUER,
            options=options,
        )

        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="Token missing subject")
        return user_id
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.PyJWKClientError as e:
        logger.warning("auth.jwks_unavailable", extra={"error_message": str(e)})
        raise HTTPException(status_code=401, detail="Token verification failed")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")


def dev_user_header_allowed() -> bool:
    return settings.ENV.strip().lower() not in ("production", "prod")


async def get_current_clerk_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test Clerk user id"),
) -> str:
    """
    Extract the Clerk user id for the request.

    Priority:
    1. Clerk JWT from Authorization header
    2. X-User-Id header (outside production)
    3. Raise 401 Unauthorized

    Raises:
        HTTPException 401: Missing or invalid authentication
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        clerk_id = verify_clerk_jwt(auth_header[7:])
        if clerk_id:
            return clerk_id

    if x_user_id:
        if dev_user_header_allowed():
            return x_user_id
        logger.warning("auth.dev_header_rejected", extra={"env": settings.ENV})

    raise HTTPException(
        status_code=401,
        detail="Missing Authorization (Bearer JWT) or X-User-Id header",
    )
