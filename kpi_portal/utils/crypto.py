"""
Crypto utilities — bcrypt password hashing for portal user credentials.

Hashes are stored on the user record inside the aggregate (``passwordHash``)
and never leave the service layer: public serialisations drop the field.
"""

import bcrypt


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str | None) -> bool:
    """Verify a plain-text password against its bcrypt hash.

    Accounts without a stored hash never verify.
    """
    if not password_hash:
        return False
    if not password_hash.startswith(("$2b$", "$2a$", "$2y$")):
        return False
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        password_hash.encode("utf-8"),
    )
