"""
auth/protocols.py -- Collaborator contracts consumed by AuthService.

AuthService depends on these Protocols, not on auth.store, so any backend
that honours the contract can be injected (tests use the SQLAlchemy stores
against in-memory SQLite, or mocks for failure injection).

Contract shared by both: a lookup miss raises AuthError(NOT_FOUND); any
storage failure raises AuthError(INTERNAL) chained to its cause.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from auth.models import Identity, Session


@runtime_checkable
class IdentityRepository(Protocol):
    """Identity storage owned outside the auth subsystem."""

    def get_by_id(self, identity_id: str) -> Identity: ...

    def get_by_email(self, email: str) -> Identity: ...

    def get_by_username(self, username: str) -> Identity: ...

    def create(self, identity: Identity) -> None:
        """Insert; raises AuthError(EMAIL_TAKEN | USERNAME_TAKEN) on a unique conflict."""
        ...

    def delete(self, identity_id: str) -> None: ...

    def is_email_exists(self, email: str) -> bool: ...

    def is_username_exists(self, username: str) -> bool: ...


@runtime_checkable
class SessionRepository(Protocol):
    """Authoritative record of every issued token pair."""

    def create_session(self, session: Session) -> None: ...

    def get_by_refresh_token(self, refresh_token: str) -> Session: ...

    def get_by_access_token(self, access_token: str) -> Session: ...

    def revoke_session(self, session_id: str) -> None:
        """Idempotent. Raises AuthError(NOT_FOUND) only when no row has this id."""
        ...

    def rotate_session(self, old_session_id: str, new_session: Session) -> bool:
        """Revoke old_session_id if still active and insert new_session, atomically.

        Returns False, inserting nothing, when the old session was already
        revoked or expired.
        """
        ...

    def revoke_all_sessions_for_identity(self, identity_id: str) -> int: ...

    def delete_expired_or_revoked(self) -> int: ...
