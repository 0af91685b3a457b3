"""Password hashing and the credential check used by signin."""

import logging

import bcrypt

from .errors import AuthError
from .models.user import User
from .store import Store

logger = logging.getLogger(__name__)

# bcrypt ignores everything past this many bytes
BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = 10) -> str:
    """Hash a password with a freshly generated bcrypt salt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_encode(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plaintext password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("stored password hash is malformed")
        return False


def authenticate(store: Store, email: str, password: str) -> User:
    """Return the user matching the credentials.

    Unknown emails and wrong passwords raise the same :class:`AuthError`
    so callers cannot tell which check failed.
    """
    user = store.find_user_by_email(email)
    if user is None or not verify_password(password, user.password):
        raise AuthError()
    return user
