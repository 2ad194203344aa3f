"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Bearer tokens only: the Authorization: Bearer <token> header is the single
credential channel. The token goes through AuthService.validate_token(), i.e.
signature + expiry AND the session row, so a logged-out or revoked token is
refused even though its signature is still good.

bearer_token() extracts the raw header value (or raises 401).
get_current_claims() validates it and returns the Claims.

Layer rule: may import from fastapi (Depends/HTTPException/Request) because
this module is part of the FastAPI dependency injection system. No imports
from api/.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import Claims
from auth.service import AuthService

_BEARER_PREFIX = "Bearer "


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def try_bearer_token(request: Request) -> str | None:
    """Return the bearer token from the Authorization header, or None."""
    header = request.headers.get("Authorization", "")
    if header.startswith(_BEARER_PREFIX):
        token = header[len(_BEARER_PREFIX) :].strip()
        return token or None
    return None


def bearer_token(request: Request) -> str:
    """Require an Authorization: Bearer header. Raises HTTP 401 if absent or malformed."""
    token = try_bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authorization header required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def get_current_claims(
    token: str = Depends(bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> Claims:
    """Require a valid, unrevoked access token.

    AuthError (INVALID_TOKEN / TOKEN_EXPIRED / TOKEN_REVOKED) propagates to the
    app-level exception handler, which renders it as 401.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: Claims = Depends(get_current_claims)): ...
    """
    return service.validate_token(token)
