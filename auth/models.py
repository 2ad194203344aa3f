"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Stores and the service do the work; the only logic kept
here is the pure Session validity predicates and the Identity -> profile
projection, both of which depend on nothing but the instance itself.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class IdentityStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"
    deleted = "deleted"  # soft delete -- invisible to every repository lookup


@dataclass
class UserProfile:
    """Public shape of an identity. Never carries the password hash."""

    id: str
    organization_id: str
    role_id: str
    name: str
    username: str
    email: str
    thumbnail: str | None = None


@dataclass
class Identity:
    """A user account. Owned by the identity repository.

    organization_id is the tenant boundary; role_id is opaque to this package
    and only passed through into token claims.
    """

    id: str
    organization_id: str
    role_id: str
    name: str
    username: str
    email: str
    password_hash: str
    status: IdentityStatus = IdentityStatus.active
    employee_id: str | None = None
    position: str | None = None
    address: str | None = None
    phone: str | None = None
    thumbnail: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == IdentityStatus.active

    def to_profile(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            organization_id=self.organization_id,
            role_id=self.role_id,
            name=self.name,
            username=self.username,
            email=self.email,
            thumbnail=self.thumbnail,
        )


@dataclass
class Registration:
    """Input to AuthService.register(). Empty optional fields are not stored."""

    organization_id: str
    role_id: str
    name: str
    username: str
    email: str
    password: str
    employee_id: str = ""
    position: str = ""
    address: str = ""
    phone: str = ""


@dataclass
class Session:
    """The persisted record of one issued access/refresh token pair.

    expires_at is timezone-aware UTC and matches the refresh token's exp claim.
    Revocation applies to both tokens of the pair at once.
    """

    id: str
    identity_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    revoked: bool = False
    created_at: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.revoked and not self.is_expired(now)


@dataclass
class Claims:
    """Identity and timing data carried inside a signed token."""

    identity_id: str
    tenant_id: str
    role_id: str
    email: str
    issuer: str
    subject: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime
    token_id: str | None = None  # jti


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
    token_type: str
    refresh_expires_at: datetime


@dataclass
class AuthResult:
    """What register/login/refresh hand back to the HTTP layer."""

    user: UserProfile
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str
