import logging
from typing import Generator, List, Optional

from sqlalchemy import create_engine, inspect, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, joinedload, sessionmaker

from messagely.config import settings
from messagely.errors import ConflictError, NotFoundError, ValidationError
from messagely.utils import utc_now_iso

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

REQUIRED_TABLES = ("users", "messages")

# message ids are signed 64-bit INTEGER primary keys
MAX_MESSAGE_ID = 2**63 - 1


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from messagely import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            existing = set(inspect(db.connection()).get_table_names())
            missing = [name for name in REQUIRED_TABLES if name not in existing]
            if missing:
                logger.error(f"Database schema not applied: missing tables {missing}")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Credential Store
# =============================================================================

def find_user(db: Session, username: str):
    """
    Look up a user by username.

    Returns:
        User object if found, None otherwise
    """
    from messagely.models import User

    return db.query(User).filter(User.username == username).first()


def get_user(db: Session, username: str):
    """Like find_user, but raises NotFoundError when the user is absent."""
    user = find_user(db, username)
    if user is None:
        raise NotFoundError(f"No such user: {username}")
    return user


def insert_user(db: Session, user):
    """
    Persist a new user.

    The username primary key is the arbiter for concurrent registrations:
    whichever insert commits second hits the constraint and gets ConflictError.
    """
    logger.info(f"Inserting user: {user.username}")
    try:
        db.add(user)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Duplicate username rejected: {user.username}")
        raise ConflictError(f"Username already taken: {user.username}")
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    return user


def update_last_login(db: Session, username: str) -> str:
    """
    Set last_login_at to now.

    Returns:
        The new timestamp

    Raises:
        NotFoundError: no row matched the username
    """
    from messagely.models import User

    now = utc_now_iso()
    result = db.execute(
        update(User).where(User.username == username).values(last_login_at=now)
    )
    db.commit()

    if result.rowcount == 0:
        raise NotFoundError(f"No such user: {username}")

    logger.debug(f"last_login_at for {username} updated to {now}")
    return now


def list_users(db: Session) -> list:
    """All users ordered by username."""
    from messagely.models import User

    users = db.query(User).order_by(User.username.asc()).all()
    logger.info(f"Retrieved {len(users)} users")
    return users


# =============================================================================
# Message Store
# =============================================================================

def create_message(db: Session, from_username: str, to_username: Optional[str], body: Optional[str]):
    """
    Create a new message in the Sent state.

    Args:
        db: Database session
        from_username: Sender, taken from the authenticated actor
        to_username: Recipient, must be a registered user
        body: Message text, must be non-empty

    Returns:
        The stored Message

    Raises:
        ValidationError: recipient or body missing/empty
        NotFoundError: recipient does not exist
    """
    from messagely.models import Message

    if not to_username or not body or not body.strip():
        raise ValidationError("Must specify recipient and must include body")

    if find_user(db, to_username) is None:
        raise NotFoundError(f"No such user: {to_username}")

    logger.info(f"Creating message: from={from_username}, to={to_username}")

    message = Message(
        from_username=from_username,
        to_username=to_username,
        body=body,
        sent_at=utc_now_iso(),
        read_at=None,
    )

    try:
        db.add(message)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(message)
    logger.info(f"Message created successfully: {message.id}")
    return message


def get_message(db: Session, message_id: int):
    """
    Retrieve a message with both participants' profiles loaded.

    Raises:
        NotFoundError: no message with that id
    """
    from messagely.models import Message

    if not 1 <= message_id <= MAX_MESSAGE_ID:
        raise NotFoundError(f"No such message: {message_id}")

    logger.info(f"Looking up message by ID: {message_id}")
    message = (
        db.query(Message)
        .options(joinedload(Message.from_user), joinedload(Message.to_user))
        .filter(Message.id == message_id)
        .first()
    )
    if message is None:
        raise NotFoundError(f"No such message: {message_id}")
    return message


def mark_message_read(db: Session, message_id: int):
    """
    Transition a message from Sent to Read.

    Only an unread message is updated, so calling this again on a read
    message is a no-op and read_at keeps its first value.

    Raises:
        NotFoundError: no message with that id
    """
    from messagely.models import Message

    if not 1 <= message_id <= MAX_MESSAGE_ID:
        raise NotFoundError(f"No such message: {message_id}")

    result = db.execute(
        update(Message)
        .where(Message.id == message_id, Message.read_at.is_(None))
        .values(read_at=utc_now_iso())
    )
    db.commit()

    message = db.query(Message).filter(Message.id == message_id).first()
    if message is None:
        raise NotFoundError(f"No such message: {message_id}")

    db.refresh(message)
    if result.rowcount == 0:
        logger.info(f"Message {message_id} already read at {message.read_at}")
    else:
        logger.info(f"Message {message_id} marked read at {message.read_at}")
    return message


def get_messages_from(db: Session, username: str) -> List:
    """All messages sent by username, with recipient profiles, oldest first."""
    from messagely.models import Message

    messages = (
        db.query(Message)
        .options(joinedload(Message.to_user))
        .filter(Message.from_username == username)
        .order_by(Message.sent_at.asc(), Message.id.asc())
        .all()
    )
    logger.info(f"Retrieved {len(messages)} messages from {username}")
    return messages


def get_messages_to(db: Session, username: str) -> List:
    """All messages received by username, with sender profiles, oldest first."""
    from messagely.models import Message

    messages = (
        db.query(Message)
        .options(joinedload(Message.from_user))
        .filter(Message.to_username == username)
        .order_by(Message.sent_at.asc(), Message.id.asc())
        .all()
    )
    logger.info(f"Retrieved {len(messages)} messages to {username}")
    return messages
