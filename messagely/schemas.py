"""
Pydantic schemas for request/response validation.

This module contains:
- Request models, validated before any business logic runs
- Response models shaping the JSON the API returns
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from messagely.utils import BCRYPT_MAX_PASSWORD_BYTES


# =============================================================================
# Pydantic Request Models
# =============================================================================

class RegisterRequest(BaseModel):
    """
    Body of POST /register.

    All fields are required and non-empty. The password must fit in
    bcrypt's 72-byte input.
    """
    username: str = Field(..., min_length=1, description="Unique username")
    password: str = Field(..., min_length=1, description="Plaintext password")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)

    @field_validator("password")
    @classmethod
    def validate_password_length(cls, v: str) -> str:
        if len(v.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "username": "alice",
                    "password": "s3cret",
                    "first_name": "Alice",
                    "last_name": "Liddell",
                    "phone": "+14155550100",
                }
            ]
        }
    }


class LoginRequest(BaseModel):
    """Body of POST /login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class MessageCreateRequest(BaseModel):
    """
    Body of POST /messages.

    from_username is accepted for compatibility but never trusted; the
    sender is always the authenticated actor.
    """
    to_username: str = Field(..., min_length=1, description="Recipient username")
    body: str = Field(..., min_length=1, description="Message text")
    from_username: Optional[str] = Field(None, description="Ignored")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class TokenResponse(BaseModel):
    token: str


class ErrorBody(BaseModel):
    message: str
    status: int


class ErrorResponse(BaseModel):
    """Envelope used by every error response."""
    error: ErrorBody


class UserSummary(BaseModel):
    """Public listing entry; phone and timestamps are withheld."""
    username: str
    first_name: str
    last_name: str

    model_config = ConfigDict(from_attributes=True)


class UsersListResponse(BaseModel):
    users: list[UserSummary] = Field(default_factory=list)


class UserDetail(BaseModel):
    username: str
    first_name: str
    last_name: str
    phone: str
    join_at: str
    last_login_at: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserDetailResponse(BaseModel):
    user: UserDetail


class UserSnippet(BaseModel):
    """Profile snippet joined onto messages."""
    username: str
    first_name: str
    last_name: str
    phone: str

    model_config = ConfigDict(from_attributes=True)


class SentMessage(BaseModel):
    """Entry of GET /users/{username}/from."""
    id: int
    to_user: UserSnippet
    body: str
    sent_at: str
    read_at: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ReceivedMessage(BaseModel):
    """Entry of GET /users/{username}/to."""
    id: int
    from_user: UserSnippet
    body: str
    sent_at: str
    read_at: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SentMessagesResponse(BaseModel):
    messages: list[SentMessage] = Field(default_factory=list)


class ReceivedMessagesResponse(BaseModel):
    messages: list[ReceivedMessage] = Field(default_factory=list)


class MessageDetail(BaseModel):
    id: int
    body: str
    sent_at: str
    read_at: Optional[str] = None
    from_user: UserSnippet
    to_user: UserSnippet

    model_config = ConfigDict(from_attributes=True)


class MessageDetailResponse(BaseModel):
    message: MessageDetail


class CreatedMessage(BaseModel):
    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: str

    model_config = ConfigDict(from_attributes=True)


class CreatedMessageResponse(BaseModel):
    message: CreatedMessage


class ReadReceipt(BaseModel):
    id: int
    read_at: str

    model_config = ConfigDict(from_attributes=True)


class ReadReceiptResponse(BaseModel):
    message: ReadReceipt


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
