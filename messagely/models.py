"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from messagely.storage import Base


class User(Base):
    """
    Registered user of the site.

    Table: users
    Primary Key: username (uniqueness resolves concurrent registrations)
    """
    __tablename__ = "users"

    username = Column(String, primary_key=True, index=True)
    password = Column(String, nullable=False)  # bcrypt hash
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    join_at = Column(String, nullable=False)  # ISO-8601 UTC string
    last_login_at = Column(String, nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class Message(Base):
    """
    Direct message from one user to another.

    Table: messages
    read_at stays null until the recipient marks the message read,
    then never changes.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    from_username = Column(String, ForeignKey("users.username"), nullable=False, index=True)
    to_username = Column(String, ForeignKey("users.username"), nullable=False, index=True)
    body = Column(Text, nullable=False)
    sent_at = Column(String, nullable=False, index=True)  # ISO-8601 UTC string
    read_at = Column(String, nullable=True)

    from_user = relationship("User", foreign_keys=[from_username])
    to_user = relationship("User", foreign_keys=[to_username])

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def __repr__(self) -> str:
        return f"<Message {self.id} {self.from_username}->{self.to_username}>"
