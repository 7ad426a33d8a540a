"""Password hashing. Argon2id via argon2-cffi; treated as an opaque primitive."""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

ph = PasswordHasher()


def hash_password(pw: str) -> str:
    return ph.hash(pw)


def verify_password(stored_hash: str | None, candidate: str) -> bool:
    """False for any mismatch, including external users that have no local credential."""
    if not stored_hash:
        return False
    try:
        return ph.verify(stored_hash, candidate)
    except (VerificationError, InvalidHashError):
        return False
