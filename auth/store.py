"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. IdentityStore and SessionStore are the
repositories; _row_to_identity / _row_to_session are the mappers. Service and
route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Single-use refresh tokens hinge on rotate_session(): the old row is revoked
  with a conditional UPDATE (... WHERE revoked = 0 AND expires_at > now) and
  the new row is inserted in the same transaction. Two concurrent refreshes
  of one token serialize on the write lock; the loser's UPDATE matches zero
  rows and nothing is inserted for it.

Errors:
  A lookup miss raises AuthError(NOT_FOUND). Any SQLAlchemyError is logged and
  re-raised as AuthError(INTERNAL) chained to the driver exception, so callers never
  see driver exceptions.

Time:
  sessions.expires_at is stored as epoch seconds (REAL) so the purge and the
  conditional revoke compare numbers, not ISO strings. created_at columns are
  ISO 8601 UTC strings for display.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, exists, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AuthError, ErrorKind
from auth.models import Identity, IdentityStatus, Session

logger = logging.getLogger("catalogauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("organization_id", String(36), nullable=False),
    Column("role_id", String(36), nullable=False),
    Column("name", String(255), nullable=False),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("employee_id", String(64)),
    Column("position", String(255)),
    Column("address", Text),
    Column("phone", String(32)),
    Column("thumbnail", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("identity_id", String(36), nullable=False, index=True),
    Column("access_token", Text, nullable=False, unique=True),
    Column("refresh_token", Text, nullable=False, unique=True),
    Column("expires_at", Float, nullable=False, index=True),  # epoch seconds
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed while a writer holds the lock, so token
    validation is not blocked by a refresh in flight. Set per-connection
    because SQLite PRAGMAs are not inherited by new pooled connections.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _build_engine(db_url: str, timeout: float) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # timeout is SQLite's busy wait: how long a writer waits for the lock
        # before failing, which bounds every store call.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Re-raise driver failures as AuthError(INTERNAL); let AuthError through."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure while trying to %s: %s", action, exc.__class__.__name__)
        raise AuthError(ErrorKind.INTERNAL, f"Failed to {action}.") from exc


# ---------------------------------------------------------------------------
# Identity repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records.

    Soft-deleted identities (status='deleted') are invisible to every lookup
    and existence check.

    Usage:
        store = IdentityStore("sqlite:///catalog_auth.db")
        store.create(identity)
        identity = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = _build_engine(db_url, timeout)
        _metadata.create_all(self.engine, tables=[_identities])

    def _get_one(self, column, value: str, action: str) -> Identity:
        with _storage_errors(action):
            with self.engine.connect() as conn:
                row = conn.execute(
                    _identities.select().where(
                        (column == value) & (_identities.c.status != IdentityStatus.deleted.value)
                    )
                ).fetchone()
        if row is None:
            raise AuthError(ErrorKind.NOT_FOUND, "User not found.")
        return _row_to_identity(row)

    def get_by_id(self, identity_id: str) -> Identity:
        return self._get_one(_identities.c.id, identity_id, "load user by id")

    def get_by_email(self, email: str) -> Identity:
        return self._get_one(_identities.c.email, email, "load user by email")

    def get_by_username(self, username: str) -> Identity:
        return self._get_one(_identities.c.username, username, "load user by username")

    def _exists(self, column, value: str, include_deleted: bool = False) -> bool:
        condition = column == value
        if not include_deleted:
            condition = condition & (_identities.c.status != IdentityStatus.deleted.value)
        with _storage_errors("check user existence"):
            with self.engine.connect() as conn:
                return bool(conn.execute(select(exists().where(condition))).scalar())

    def is_email_exists(self, email: str) -> bool:
        return self._exists(_identities.c.email, email)

    def is_username_exists(self, username: str) -> bool:
        return self._exists(_identities.c.username, username)

    def create(self, identity: Identity) -> None:
        """Insert a new identity.

        The UNIQUE constraints on email and username are the last line of
        defence against two concurrent registrations that both passed the
        existence checks. The IntegrityError is translated back into the
        conflict that caused it.
        """
        now = _now_iso()
        identity.created_at = identity.created_at or now
        identity.updated_at = identity.updated_at or now
        with _storage_errors("create user"):
            try:
                with self.engine.connect() as conn:
                    conn.execute(
                        _identities.insert().values(
                            id=identity.id,
                            organization_id=identity.organization_id,
                            role_id=identity.role_id,
                            name=identity.name,
                            username=identity.username,
                            email=identity.email,
                            password_hash=identity.password_hash,
                            status=identity.status.value,
                            employee_id=identity.employee_id,
                            position=identity.position,
                            address=identity.address,
                            phone=identity.phone,
                            thumbnail=identity.thumbnail,
                            created_at=identity.created_at,
                            updated_at=identity.updated_at,
                        )
                    )
                    conn.commit()
            except IntegrityError as exc:
                if self._exists(_identities.c.email, identity.email, include_deleted=True):
                    raise AuthError(ErrorKind.EMAIL_TAKEN) from exc
                raise AuthError(ErrorKind.USERNAME_TAKEN) from exc

    def delete(self, identity_id: str) -> None:
        """Hard-delete an identity. Only used to undo a registration that never got a session."""
        with _storage_errors("delete user"):
            with self.engine.connect() as conn:
                result = conn.execute(_identities.delete().where(_identities.c.id == identity_id))
                conn.commit()
        if result.rowcount == 0:
            raise AuthError(ErrorKind.NOT_FOUND, "User not found.")

    def update_status(self, identity_id: str, status: IdentityStatus) -> None:
        """Change an identity's status. Raises NOT_FOUND if the id is unknown."""
        with _storage_errors("update user status"):
            with self.engine.connect() as conn:
                result = conn.execute(
                    _identities.update()
                    .where(_identities.c.id == identity_id)
                    .values(status=status.value, updated_at=_now_iso())
                )
                conn.commit()
        if result.rowcount == 0:
            raise AuthError(ErrorKind.NOT_FOUND, "User not found.")

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Session repository
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for Session records -- the single source of truth for revocation.

    Usage:
        store = SessionStore("sqlite:///catalog_auth.db")
        store.create_session(session)
        store.revoke_session(session.id)
        store.delete_expired_or_revoked()
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = _build_engine(db_url, timeout)
        _metadata.create_all(self.engine, tables=[_sessions])

    @staticmethod
    def _insert(conn, session: Session) -> None:
        session.created_at = session.created_at or _now_iso()
        conn.execute(
            _sessions.insert().values(
                id=session.id,
                identity_id=session.identity_id,
                access_token=session.access_token,
                refresh_token=session.refresh_token,
                expires_at=session.expires_at.timestamp(),
                revoked=1 if session.revoked else 0,
                created_at=session.created_at,
            )
        )

    def create_session(self, session: Session) -> None:
        with _storage_errors("store session"):
            with self.engine.connect() as conn:
                self._insert(conn, session)
                conn.commit()

    def _get_one(self, column, value: str) -> Session:
        with _storage_errors("load session"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    _sessions.select().where(column == value).order_by(_sessions.c.created_at.desc()).limit(1)
                ).fetchone()
        if row is None:
            raise AuthError(ErrorKind.NOT_FOUND, "Session not found.")
        return _row_to_session(row)

    def get_by_refresh_token(self, refresh_token: str) -> Session:
        return self._get_one(_sessions.c.refresh_token, refresh_token)

    def get_by_access_token(self, access_token: str) -> Session:
        return self._get_one(_sessions.c.access_token, access_token)

    def revoke_session(self, session_id: str) -> None:
        """Mark a session revoked. Revoking an already-revoked session is a no-op.

        The WHERE clause matches on id alone, so a repeat call still matches
        the row and succeeds; only an unknown id raises NOT_FOUND.
        """
        with _storage_errors("revoke session"):
            with self.engine.connect() as conn:
                result = conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(revoked=1))
                conn.commit()
        if result.rowcount == 0:
            raise AuthError(ErrorKind.NOT_FOUND, "Session not found.")

    def rotate_session(self, old_session_id: str, new_session: Session) -> bool:
        """Atomically retire old_session_id and persist new_session.

        Returns False without inserting anything when the old session is no
        longer active (already revoked by a concurrent refresh or logout, or
        past its expiry).
        """
        with _storage_errors("rotate session"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _sessions.update()
                    .where(
                        (_sessions.c.id == old_session_id)
                        & (_sessions.c.revoked == 0)
                        & (_sessions.c.expires_at > time.time())
                    )
                    .values(revoked=1)
                )
                if result.rowcount == 0:
                    return False
                self._insert(conn, new_session)
        return True

    def revoke_all_sessions_for_identity(self, identity_id: str) -> int:
        """Revoke every still-active session of an identity. Returns how many flipped."""
        with _storage_errors("revoke user sessions"):
            with self.engine.connect() as conn:
                result = conn.execute(
                    _sessions.update()
                    .where((_sessions.c.identity_id == identity_id) & (_sessions.c.revoked == 0))
                    .values(revoked=1)
                )
                conn.commit()
        return result.rowcount

    def delete_session(self, session_id: str) -> None:
        with _storage_errors("delete session"):
            with self.engine.connect() as conn:
                result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
                conn.commit()
        if result.rowcount == 0:
            raise AuthError(ErrorKind.NOT_FOUND, "Session not found.")

    def delete_expired_or_revoked(self) -> int:
        """Purge revoked rows and rows past expiry. Returns number of rows removed.

        Storage hygiene only: a revoked or expired row already fails every
        validity check, so deleting it changes no outcome.
        """
        with _storage_errors("purge sessions"):
            with self.engine.connect() as conn:
                result = conn.execute(
                    _sessions.delete().where((_sessions.c.revoked == 1) | (_sessions.c.expires_at <= time.time()))
                )
                conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        organization_id=row.organization_id,
        role_id=row.role_id,
        name=row.name,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        status=IdentityStatus(row.status),
        employee_id=row.employee_id,
        position=row.position,
        address=row.address,
        phone=row.phone,
        thumbnail=row.thumbnail,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        identity_id=row.identity_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=datetime.fromtimestamp(row.expires_at, tz=timezone.utc),
        revoked=bool(row.revoked),
        created_at=row.created_at,
    )
