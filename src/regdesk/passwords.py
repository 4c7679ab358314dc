"""Password strength rules and bcrypt hashing.

bcrypt is used directly rather than through passlib. Inputs longer than
bcrypt's 72-byte limit are truncated before hashing and verification so both
sides agree on what was hashed.
"""

import logging
import string

import bcrypt

from .config import settings

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
BCRYPT_MAX_BYTES = 72
MIN_LENGTH = 8
SYMBOLS = frozenset(string.punctuation)


def is_strong(password: str) -> bool:
    """Return True when ``password`` satisfies the strength policy.

    At least eight characters with one uppercase letter, one lowercase letter,
    one digit and one punctuation symbol.
    """
    if not isinstance(password, str) or len(password) < MIN_LENGTH:
        return False
    return (
        any(c.isupper() for c in password)
        and any(c.islower() for c in password)
        and any(c.isdigit() for c in password)
        and any(c in SYMBOLS for c in password)
    )


def _to_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash ``password`` with a fresh salt.

    The cost factor comes from ``settings.bcrypt_rounds`` and defaults to
    :data:`BCRYPT_ROUNDS`.
    """
    rounds = settings.bcrypt_rounds or BCRYPT_ROUNDS
    hashed = bcrypt.hashpw(_to_bytes(password), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, digest: str) -> bool:
    """Check ``password`` against a stored bcrypt ``digest``.

    A malformed or empty digest yields False instead of raising.
    """
    if not password or not digest:
        return False
    try:
        return bcrypt.checkpw(_to_bytes(password), digest.encode("utf-8"))
    except (ValueError, TypeError):
        logger.warning("stored password digest is malformed")
        return False
