"""
auth/passwords.py -- One-way password hashing (bcrypt, direct usage).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage has no compatibility shim.

bcrypt only reads the first 72 bytes of its input, and newer releases raise on
anything longer. _encode() cuts at 72 bytes in one place so hash() and
verify() always see the same prefix.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

from auth.errors import AuthError, ErrorKind

MIN_PASSWORD_LENGTH = 8
_BCRYPT_MAX_BYTES = 72
DEFAULT_ROUNDS = 12


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """bcrypt hasher with a fixed work factor.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("longenough1")
        hasher.verify("longenough1", stored)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization dummy [C1]. Computed once per hasher with the
        # same cost as real hashes so a lookup miss costs as much as a
        # wrong password.
        self._dummy_hash = bcrypt.hashpw(b"catalogauth_timing_dummy", bcrypt.gensalt(rounds=rounds))

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the plaintext. Raises PASSWORD_TOO_SHORT under 8 chars."""
        if len(plain) < MIN_PASSWORD_LENGTH:
            raise AuthError(ErrorKind.PASSWORD_TOO_SHORT)
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True only if the plaintext matches the hash.

        A malformed hash, a non-string argument and a wrong password all come
        back as False -- callers cannot tell them apart.
        """
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except Exception:
            return False

    def verify_dummy(self, plain: str) -> None:
        """Burn one bcrypt comparison. Call when the account lookup missed [C1]."""
        bcrypt.checkpw(_encode(plain), self._dummy_hash)
