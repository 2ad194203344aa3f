"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register    -- create identity + first session; 201
  POST /api/v1/auth/login       -- email/password login; 200
  POST /api/v1/auth/refresh     -- rotate a refresh token into a new pair; 200
  POST /api/v1/auth/logout      -- revoke the session of the presented pair; 200
  POST /api/v1/auth/revoke-all  -- revoke every session of the caller (requires auth)
  GET  /api/v1/me               -- caller's profile (requires auth)

Security:
  [H2] register, login and refresh are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] AuthService.login() provides timing equalization -- never inline the
       lookup + verify here.
  [M5] Cache-Control: no-store on every response that carries tokens.

Every AuthService call runs in a worker thread under AUTH_TIMEOUT_SECONDS.
A call that overruns is abandoned (the thread finishes on its own, its result
is discarded) and answered with 504. AuthError raised by
the service is rendered by the app-level handler in api/main.py.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    RevokeAllResponse,
    UserInfo,
)
from auth.dependencies import get_auth_service, get_current_claims, try_bearer_token
from auth.models import AuthResult, Claims
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("catalogauth.api.auth")

_settings = get_settings()
_AUTH_LIMIT = _settings.login_rate_limit

_T = TypeVar("_T")

# Auth policy:
# - POST /api/v1/auth/register:    public
# - POST /api/v1/auth/login:       public
# - POST /api/v1/auth/refresh:     public -- the refresh token is the credential
# - POST /api/v1/auth/logout:      public -- the token pair is the credential
# - POST /api/v1/auth/revoke-all:  requires auth (get_current_claims)
# - GET  /api/v1/me:               requires auth (get_current_claims)
router = APIRouter()


async def _call(fn: Callable[..., _T], *args) -> _T:
    """Run a blocking service call off the event loop, bounded by AUTH_TIMEOUT_SECONDS."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=_settings.auth_timeout_seconds)
    except asyncio.TimeoutError as exc:
        logger.error("%s exceeded %.1fs deadline", getattr(fn, "__name__", "auth call"), _settings.auth_timeout_seconds)
        raise HTTPException(
            status_code=504,
            detail={"code": "timeout", "message": "Authentication backend timed out."},
        ) from exc


def _token_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=AuthResponse.from_result(result).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_AUTH_LIMIT)  # [H2]
async def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an account and return its first token pair.

    409 when the email or the username is already registered (email is
    checked first).
    """
    result = await _call(service.register, body.to_domain())
    return _token_response(result, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_AUTH_LIMIT)  # [H2]
async def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password both return 401 invalid_credentials.
    A disabled account returns 403 only after the password checked out.
    """
    result = await _call(service.login, body.email, body.password)
    return _token_response(result)


@router.post("/auth/refresh", response_model=AuthResponse)
@limiter.limit(_AUTH_LIMIT)  # [H2]
async def refresh(
    request: Request,
    body: RefreshTokenRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    result = await _call(service.refresh, body.refresh_token)
    return _token_response(result)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    body: LogoutRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the session owning this pair.

    The access token is read from the Authorization header and must belong to
    the same session as the refresh token in the body.
    """
    access_token = try_bearer_token(request) or ""
    await _call(service.logout, access_token, body.refresh_token)
    return MessageResponse(message="Successfully logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/revoke-all", response_model=RevokeAllResponse)
async def revoke_all(
    claims: Claims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> RevokeAllResponse:
    """Log the caller out everywhere, including the session making this call."""
    revoked = await _call(service.revoke_all_sessions, claims.identity_id)
    return RevokeAllResponse(message="All sessions revoked.", revoked=revoked)


@router.get("/me", response_model=UserInfo)
async def me(
    claims: Claims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> UserInfo:
    """Return the profile of the authenticated identity."""
    profile = await _call(service.get_current_user, claims.identity_id)
    return UserInfo.from_profile(profile)
