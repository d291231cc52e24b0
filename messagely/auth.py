"""
Authenticator: registration, credential checks and bearer tokens.

Tokens are HS256 JWTs carrying ``{"username": ...}``. They have no expiry
and there is no revocation list.
"""

import logging

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from messagely.config import settings
from messagely.errors import (
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
)
from messagely.storage import find_user, insert_user, update_last_login
from messagely.utils import hash_password, utc_now_iso, verify_password

logger = logging.getLogger(__name__)


def register(
    db: Session,
    username: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str,
):
    """
    Register a new user.

    Returns:
        The created User. Only the bcrypt hash of the password is stored.

    Raises:
        ConflictError: username already taken
    """
    from messagely.models import User

    logger.info(f"Registering user: {username}")

    if find_user(db, username) is not None:
        logger.info(f"Registration rejected, username taken: {username}")
        raise ConflictError(f"Username already taken: {username}")

    user = User(
        username=username,
        password=hash_password(password, settings.BCRYPT_WORK_FACTOR),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        join_at=utc_now_iso(),
        last_login_at=None,
    )
    # a concurrent registration can still win between the check and here;
    # insert_user turns the constraint violation into ConflictError
    return insert_user(db, user)


def authenticate(db: Session, username: str, password: str) -> bool:
    """
    Is username/password valid?

    Raises:
        InvalidCredentialsError: no such user
    """
    user = find_user(db, username)
    if user is None:
        logger.info(f"Authentication failed, unknown user: {username}")
        raise InvalidCredentialsError()

    is_valid = verify_password(password, user.password)
    logger.info(f"Authentication for {username}: {'valid' if is_valid else 'invalid'}")
    return is_valid


def issue_token(username: str) -> str:
    """Sign a token binding the username."""
    return jwt.encode({"username": username}, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> str:
    """
    Validate a token and return the username it binds.

    Raises:
        InvalidTokenError: bad signature, malformed token or missing username
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.info(f"Token rejected: {e}")
        raise InvalidTokenError()

    username = payload.get("username")
    if not isinstance(username, str) or not username:
        logger.info("Token rejected: no username claim")
        raise InvalidTokenError()

    return username


def record_login(db: Session, username: str) -> bool:
    """
    Update last_login_at for username.

    A user that disappeared after the credential check is logged and
    ignored so the login itself still succeeds.

    Returns:
        True if the timestamp was updated, False if the user was gone
    """
    try:
        update_last_login(db, username)
    except NotFoundError:
        logger.warning(f"Could not record login, user vanished: {username}")
        return False
    return True
