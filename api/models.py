"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import AuthResult, Registration, UserProfile

# bcrypt reads at most 72 bytes; anything longer is rejected here rather than
# silently truncated. max_length counts characters, so the UTF-8 byte length is
# checked separately by _password_fits_bcrypt().
_PASSWORD_MAX = 72


def _password_fits_bcrypt(value: str) -> str:
    if len(value.encode("utf-8")) > _PASSWORD_MAX:
        raise ValueError(f"password must be at most {_PASSWORD_MAX} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    No str_strip_whitespace here: it would also strip the password.
    """

    organization_id: str = Field(min_length=1, max_length=36)
    role_id: str = Field(min_length=1, max_length=36)
    name: str = Field(min_length=2, max_length=255)
    username: str = Field(min_length=3, max_length=255, pattern=r"^[A-Za-z0-9]+$")
    email: EmailStr
    # Length is NOT checked here: PasswordHasher owns the 8-char minimum and
    # reports it as password_too_short.
    password: str = Field(max_length=_PASSWORD_MAX)
    employee_id: str = Field(default="", max_length=64)
    position: str = Field(default="", max_length=255)
    address: str = Field(default="", max_length=1000)
    phone: str = Field(default="", max_length=32)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _password_fits_bcrypt(v)

    def to_domain(self) -> Registration:
        return Registration(**self.model_dump())


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _password_fits_bcrypt(v)


class RefreshTokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    """Request body for POST /api/v1/auth/logout. The access token comes from the Authorization header."""

    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    """Public profile of an identity -- GET /api/v1/me and the `user` field of AuthResponse."""

    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str
    role_id: str
    name: str
    username: str
    email: str
    thumbnail: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserInfo":
        return cls(
            id=profile.id,
            organization_id=profile.organization_id,
            role_id=profile.role_id,
            name=profile.name,
            username=profile.username,
            email=profile.email,
            thumbnail=profile.thumbnail,
        )


class AuthResponse(BaseModel):
    """Token envelope returned by register, login and refresh."""

    model_config = ConfigDict(frozen=True)

    user: UserInfo
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        """Factory Method -- the domain -> transport mapping lives beside the model."""
        return cls(
            user=UserInfo.from_profile(result.user),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=result.expires_in,
            token_type=result.token_type,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class RevokeAllResponse(BaseModel):
    """Response for POST /api/v1/auth/revoke-all."""

    model_config = ConfigDict(frozen=True)

    message: str
    revoked: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
