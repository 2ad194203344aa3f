"""
auth/tokens.py -- Signed bearer token issuing and verification.

Security design decisions:
  JWT: python-jose with HS256, signed with SECRET_KEY. Access and refresh
       tokens carry the same identity claims (user_id, organization_id,
       role_id, email, iss, sub, iat, nbf, exp) plus a random jti; only exp
       differs between the two.

  Algorithm pinning: the unverified header is inspected BEFORE the signature
       is checked. Anything other than HS256 -- "none", HS512, RS256 -- is
       rejected outright, which closes the algorithm-substitution forgery
       where a token declares a weaker or asymmetric alg. jwt.decode() is
       additionally called with algorithms=[HS256].

  Failure classes: expiry raises TOKEN_EXPIRED, everything else raises
       INVALID_TOKEN, so the route layer can tell "refresh silently" apart
       from "log in again". An expired token with a bad signature is
       INVALID_TOKEN -- jose checks the signature before the claims.

  jti: two pairs minted for the same identity within one second would
       otherwise be byte-identical, and sessions are looked up by token string.

Layer rule: no imports from api/. Settings come in through from_settings().
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import AuthError, ErrorKind
from auth.models import Claims, TokenPair

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("catalogauth.auth.tokens")

ALGORITHM = "HS256"
TOKEN_TYPE = "Bearer"

_IDENTITY_CLAIMS = ("user_id", "organization_id", "role_id", "email")

_DECODE_OPTIONS = {
    "require_exp": True,
    "require_iat": True,
    "require_nbf": True,
    "require_iss": True,
    "require_sub": True,
}


def _ts(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class TokenIssuer:
    """Mints and verifies HS256 access/refresh tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        pair = issuer.generate_token_pair(user_id, org_id, role_id, email)
        claims = issuer.validate_token(pair.access_token)
    """

    def __init__(
        self,
        secret_key: str,
        issuer: str,
        access_expire_seconds: int = 15 * 60,
        refresh_expire_seconds: int = 7 * 24 * 60 * 60,
    ) -> None:
        self._secret_key = secret_key
        self.issuer = issuer
        self.access_expire_seconds = access_expire_seconds
        self.refresh_expire_seconds = refresh_expire_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            secret_key=settings.secret_key,
            issuer=settings.jwt_issuer,
            access_expire_seconds=settings.access_token_expire_seconds,
            refresh_expire_seconds=settings.refresh_token_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Issuing
    # ------------------------------------------------------------------

    def _encode(
        self,
        identity_id: str,
        tenant_id: str,
        role_id: str,
        email: str,
        issued_at: datetime,
        lifetime_seconds: int,
    ) -> tuple[str, datetime]:
        iat = int(issued_at.timestamp())
        exp = iat + lifetime_seconds
        payload = {
            "user_id": identity_id,
            "organization_id": tenant_id,
            "role_id": role_id,
            "email": email,
            "iss": self.issuer,
            "sub": identity_id,
            "iat": iat,
            "nbf": iat,
            "exp": exp,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM), _ts(exp)

    def generate_token_pair(
        self,
        identity_id: str,
        tenant_id: str,
        role_id: str,
        email: str,
        *,
        now: datetime | None = None,
    ) -> TokenPair:
        """Mint an access token and a refresh token from one issue instant.

        `now` exists for tests that need tokens issued in the past.
        """
        if not identity_id:
            raise ValueError("identity_id is required")
        issued_at = now or datetime.now(timezone.utc)
        access, _ = self._encode(identity_id, tenant_id, role_id, email, issued_at, self.access_expire_seconds)
        refresh, refresh_exp = self._encode(
            identity_id, tenant_id, role_id, email, issued_at, self.refresh_expire_seconds
        )
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_in=self.access_expire_seconds,
            token_type=TOKEN_TYPE,
            refresh_expires_at=refresh_exp,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def validate_token(self, token: str) -> Claims:
        """Verify algorithm, signature, issuer and timing; return the claims.

        Raises AuthError(TOKEN_EXPIRED) for an otherwise valid token past exp,
        AuthError(INVALID_TOKEN) for every other failure.
        """
        if not token:
            raise AuthError(ErrorKind.INVALID_TOKEN)

        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise AuthError(ErrorKind.INVALID_TOKEN) from exc
        if header.get("alg") != ALGORITHM:
            logger.warning("Rejected token declaring alg=%r", header.get("alg"))
            raise AuthError(ErrorKind.INVALID_TOKEN)

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options=_DECODE_OPTIONS,
            )
        except ExpiredSignatureError as exc:
            raise AuthError(ErrorKind.TOKEN_EXPIRED) from exc
        except JWTError as exc:
            raise AuthError(ErrorKind.INVALID_TOKEN) from exc

        if any(not isinstance(payload.get(name), str) for name in _IDENTITY_CLAIMS):
            raise AuthError(ErrorKind.INVALID_TOKEN)
        if not payload["user_id"] or payload["sub"] != payload["user_id"]:
            raise AuthError(ErrorKind.INVALID_TOKEN)

        return Claims(
            identity_id=payload["user_id"],
            tenant_id=payload["organization_id"],
            role_id=payload["role_id"],
            email=payload["email"],
            issuer=payload["iss"],
            subject=payload["sub"],
            issued_at=_ts(payload["iat"]),
            not_before=_ts(payload["nbf"]),
            expires_at=_ts(payload["exp"]),
            token_id=payload.get("jti"),
        )

    def refresh_access_token(self, refresh_token: str) -> str:
        """Mint a fresh access token from a cryptographically valid refresh token.

        Does not touch the session store, so on its own it cannot enforce
        single-use refresh. AuthService.refresh() is the safe entry point.
        """
        claims = self.validate_token(refresh_token)
        token, _ = self._encode(
            claims.identity_id,
            claims.tenant_id,
            claims.role_id,
            claims.email,
            datetime.now(timezone.utc),
            self.access_expire_seconds,
        )
        return token

    def identity_id_from_token(self, token: str) -> str:
        return self.validate_token(token).identity_id
