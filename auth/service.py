"""
auth/service.py -- Auth orchestrator: register, login, refresh, logout,
revoke-all, validate, current user.

Session state machine:
  Active --logout / revoke-all / refresh (old side)--> Revoked   (terminal)
  Active --clock passes expires_at----------------->  Expired   (terminal)
  refresh: old session Active -> Revoked, new session created Active, in one
  store transaction (SessionRepository.rotate_session).

Security:
  [C1] login() returns the same INVALID_CREDENTIALS for an unknown email and
       a wrong password, and burns a bcrypt comparison on the unknown-email
       path so response time does not reveal which one happened.
  USER_DISABLED is only reported after the password verified, so it leaks
       nothing the caller did not already prove.
  validate_token() is the dual check: signature + expiry from the token
       itself, then the session row. A signed token cannot otherwise be
       invalidated before its exp.

The service holds no mutable state; all collaborators are injected.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hmac
import logging
import uuid

from auth.errors import AuthError, ErrorKind
from auth.models import AuthResult, Claims, Identity, IdentityStatus, Registration, Session, TokenPair, UserProfile
from auth.passwords import PasswordHasher
from auth.protocols import IdentityRepository, SessionRepository
from auth.tokens import TokenIssuer

logger = logging.getLogger("catalogauth.auth")


class AuthService:
    """Coordinates identity lookup, password checks, token minting and sessions.

    Usage:
        service = AuthService(identity_store, session_store, TokenIssuer(...), PasswordHasher())
        result = service.login("a@x.com", "longenough1")
        claims = service.validate_token(result.access_token)
    """

    def __init__(
        self,
        identities: IdentityRepository,
        sessions: SessionRepository,
        tokens: TokenIssuer,
        hasher: PasswordHasher,
    ) -> None:
        self.identities = identities
        self.sessions = sessions
        self.tokens = tokens
        self.hasher = hasher

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _mint(self, identity: Identity) -> tuple[TokenPair, Session]:
        pair = self.tokens.generate_token_pair(
            identity.id,
            identity.organization_id,
            identity.role_id,
            identity.email,
        )
        # Session lifetime follows the refresh token's own exp claim.
        session = Session(
            id=str(uuid.uuid4()),
            identity_id=identity.id,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_at=pair.refresh_expires_at,
        )
        return pair, session

    def _issue(self, identity: Identity) -> AuthResult:
        pair, session = self._mint(identity)
        self.sessions.create_session(session)
        logger.info("Session %s opened for user %s", session.id, identity.id)
        return _result(identity, pair)

    # ------------------------------------------------------------------
    # Identity operations
    # ------------------------------------------------------------------

    def register(self, registration: Registration) -> AuthResult:
        """Create an active identity and open its first session.

        Email is checked before username and both checks always run before
        anything is written. If the first session cannot be stored the new
        identity is deleted again, so a failed registration can be retried.
        """
        if self.identities.is_email_exists(registration.email):
            raise AuthError(ErrorKind.EMAIL_TAKEN)
        if self.identities.is_username_exists(registration.username):
            raise AuthError(ErrorKind.USERNAME_TAKEN)

        identity = Identity(
            id=str(uuid.uuid4()),
            organization_id=registration.organization_id,
            role_id=registration.role_id,
            name=registration.name,
            username=registration.username,
            email=registration.email,
            password_hash=self.hasher.hash(registration.password),
            status=IdentityStatus.active,
            employee_id=registration.employee_id or None,
            position=registration.position or None,
            address=registration.address or None,
            phone=registration.phone or None,
        )
        self.identities.create(identity)
        try:
            result = self._issue(identity)
        except AuthError:
            # An account without a session would turn the client's retry into EMAIL_TAKEN.
            logger.warning("First session for user %s failed; removing the account", identity.id)
            self.identities.delete(identity.id)
            raise
        logger.info("Registered user %s in organization %s", identity.id, identity.organization_id)
        return result

    def login(self, email: str, password: str) -> AuthResult:
        try:
            identity = self.identities.get_by_email(email)
        except AuthError as exc:
            if exc.kind is not ErrorKind.NOT_FOUND:
                raise
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.hasher.verify_dummy(password)
            raise AuthError(ErrorKind.INVALID_CREDENTIALS) from None

        if not self.hasher.verify(password, identity.password_hash):
            raise AuthError(ErrorKind.INVALID_CREDENTIALS)
        if not identity.is_active:
            logger.info("Login refused for user %s with status %s", identity.id, identity.status.value)
            raise AuthError(ErrorKind.USER_DISABLED)
        return self._issue(identity)

    def get_current_user(self, identity_id: str) -> UserProfile:
        return self.identities.get_by_id(identity_id).to_profile()

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> AuthResult:
        """Exchange a refresh token for a new pair; the old pair dies with it.

        A second call with the same refresh token -- sequential or concurrent
        -- fails: either it sees the revoked row, or rotate_session() finds
        nothing left to revoke.
        """
        stored = _lookup(self.sessions.get_by_refresh_token, refresh_token)
        if not stored.is_valid():
            raise AuthError(ErrorKind.TOKEN_EXPIRED)

        try:
            identity = self.identities.get_by_id(stored.identity_id)
        except AuthError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                raise AuthError(ErrorKind.INVALID_TOKEN) from exc
            raise
        if not identity.is_active:
            raise AuthError(ErrorKind.USER_DISABLED)

        pair, session = self._mint(identity)
        if not self.sessions.rotate_session(stored.id, session):
            logger.warning("Refresh token for session %s was already consumed", stored.id)
            raise AuthError(ErrorKind.TOKEN_EXPIRED)
        logger.info("Session %s rotated to %s for user %s", stored.id, session.id, identity.id)
        return _result(identity, pair)

    def logout(self, access_token: str, refresh_token: str) -> None:
        """Revoke the session that owns this exact token pair."""
        stored = _lookup(self.sessions.get_by_refresh_token, refresh_token)
        # Reject a refresh token presented with some other pair's access token.
        if not hmac.compare_digest(stored.access_token.encode(), (access_token or "").encode()):
            raise AuthError(ErrorKind.INVALID_TOKEN)
        self.sessions.revoke_session(stored.id)
        logger.info("Session %s closed for user %s", stored.id, stored.identity_id)

    def revoke_all_sessions(self, identity_id: str) -> int:
        count = self.sessions.revoke_all_sessions_for_identity(identity_id)
        logger.info("Revoked %d session(s) for user %s", count, identity_id)
        return count

    def validate_token(self, token: str) -> Claims:
        """Cryptographic check first, then the session row.

        A token whose row is revoked or expired raises TOKEN_REVOKED. A
        refresh token is never a bearer credential: if the token is found in
        the refresh column it is refused (TOKEN_REVOKED once its session is
        dead, INVALID_TOKEN while it is live). A token found in neither
        column is accepted on signature alone.
        """
        claims = self.tokens.validate_token(token)
        try:
            stored = self.sessions.get_by_access_token(token)
        except AuthError as exc:
            if exc.kind is not ErrorKind.NOT_FOUND:
                raise
            self._refuse_refresh_token(token)
            return claims
        if not stored.is_valid():
            raise AuthError(ErrorKind.TOKEN_REVOKED)
        return claims

    def _refuse_refresh_token(self, token: str) -> None:
        try:
            stored = self.sessions.get_by_refresh_token(token)
        except AuthError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return
            raise
        if not stored.is_valid():
            raise AuthError(ErrorKind.TOKEN_REVOKED)
        logger.warning("Refresh token of session %s presented as a bearer token", stored.id)
        raise AuthError(ErrorKind.INVALID_TOKEN)


# ---------------------------------------------------------------------------
# Module helpers
# ---------------------------------------------------------------------------


def _lookup(getter, token: str) -> Session:
    """Fetch a session by token, turning a miss into INVALID_TOKEN."""
    if not token:
        raise AuthError(ErrorKind.INVALID_TOKEN)
    try:
        return getter(token)
    except AuthError as exc:
        if exc.kind is ErrorKind.NOT_FOUND:
            raise AuthError(ErrorKind.INVALID_TOKEN) from exc
        raise


def _result(identity: Identity, pair: TokenPair) -> AuthResult:
    return AuthResult(
        user=identity.to_profile(),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
        token_type=pair.token_type,
    )
