"""
Utility functions for the Messagely API.
"""

import logging
from datetime import datetime, timezone

import bcrypt

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_PASSWORD_BYTES = 72


def utc_now_iso() -> str:
    """
    Current server time as an ISO-8601 UTC string.

    Microsecond precision with a fixed width keeps lexical order equal to
    chronological order, so the strings can be sorted and compared directly.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def hash_password(password: str, work_factor: int) -> str:
    """
    Hash a plaintext password with bcrypt.

    Args:
        password: Plaintext password
        work_factor: bcrypt cost (log2 rounds)

    Returns:
        The salted hash as a string
    """
    logger.debug(f"Hashing password with work factor {work_factor}")
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=work_factor))
    return hashed.decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """
    Check a plaintext password against a stored bcrypt hash.

    bcrypt.checkpw compares in constant time. A stored value that is not a
    bcrypt hash never matches.
    """
    try:
        is_valid = bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError as e:
        logger.error(f"Stored password hash is unusable: {e}")
        return False

    logger.debug(f"Password verification: {'valid' if is_valid else 'invalid'}")
    return is_valid
