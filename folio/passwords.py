"""
Password hashing and the register/verify flows built on it.
"""

from __future__ import annotations

import logging

import bcrypt

from folio.db import DbClient, UserRecord
from folio.errors import AuthError, ConflictError, NotFoundError, PasswordMismatchError

logger = logging.getLogger(__name__)

DEFAULT_ROUNDS = 10
BCRYPT_MAX_BYTES = 72


def _secret(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes; newer releases refuse longer input.
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_secret(password), salt).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    """Constant-time comparison via bcrypt; a malformed hash never matches."""
    try:
        return bcrypt.checkpw(_secret(password), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def register(
    db: DbClient,
    user_name: str,
    password: str,
    password2: str,
    *,
    rounds: int = DEFAULT_ROUNDS,
) -> UserRecord:
    if password != password2:
        raise PasswordMismatchError()
    if db.get_user_by_username(user_name):
        raise ConflictError("Username already exists")
    user = db.create_user(user_name, hash_password(password, rounds))
    logger.info("Registered user %s (%s)", user.user_name, user.id)
    return user


def verify(db: DbClient, user_name: str, password: str) -> UserRecord:
    user = db.get_user_by_username(user_name)
    if not user:
        raise NotFoundError("User not found")
    if not check_password(password, user.password_hash):
        raise AuthError(f"Incorrect password for user {user_name}")
    return user
