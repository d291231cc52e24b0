"""
Authorization policy.

Pure decision functions evaluated once the actor (the authenticated
username) is known. They raise ForbiddenError on denial and return
nothing otherwise.
"""

import logging
from typing import Optional

from messagely.errors import ForbiddenError

logger = logging.getLogger(__name__)


def is_participant(actor: str, message) -> bool:
    return actor in (message.from_username, message.to_username)


def ensure_can_view_message(actor: str, message) -> None:
    """Only the sender or the recipient may view a message."""
    if not is_participant(actor, message):
        logger.info(f"{actor} denied view of message {message.id}")
        raise ForbiddenError("Cannot access messages that are not your own")


def ensure_can_mark_read(actor: str, message) -> None:
    """Only the recipient may mark a message read."""
    if actor != message.to_username:
        logger.info(f"{actor} denied mark-read of message {message.id}")
        raise ForbiddenError("Cannot mark other users' messages as read")


def ensure_self(actor: str, username: str) -> None:
    """Profile and message lists are visible to their owner only."""
    if actor != username:
        logger.info(f"{actor} denied access to data of {username}")
        raise ForbiddenError("Cannot access other users' data")


def sender_for(actor: str, claimed: Optional[str] = None) -> str:
    """
    Any actor may send a message; the sender is always the actor.
    """
    if claimed is not None and claimed != actor:
        logger.warning(f"Ignoring client-supplied sender {claimed!r} for {actor}")
    return actor
