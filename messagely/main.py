import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional, Type

from fastapi import Depends, FastAPI, Header, Request, Response, status
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session

from messagely.auth import authenticate, issue_token, record_login, register, verify_token
from messagely.config import settings
from messagely.errors import (
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    UnauthorizedError,
    ValidationError,
    register_error_handlers,
)
from messagely.logging_utils import RequestLoggingMiddleware, log_request_data, setup_logging
from messagely.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_auth_event,
    record_message_event,
)
from messagely.policy import ensure_can_mark_read, ensure_can_view_message, ensure_self, sender_for
from messagely.schemas import (
    CreatedMessage,
    CreatedMessageResponse,
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    MessageCreateRequest,
    MessageDetail,
    MessageDetailResponse,
    ReadReceipt,
    ReadReceiptResponse,
    ReceivedMessage,
    ReceivedMessagesResponse,
    RegisterRequest,
    SentMessage,
    SentMessagesResponse,
    TokenResponse,
    UserDetail,
    UserDetailResponse,
    UsersListResponse,
    UserSummary,
)
from messagely.storage import (
    check_db_health,
    create_message,
    get_db,
    get_message,
    get_messages_from,
    get_messages_to,
    get_user,
    init_db,
    list_users,
    mark_message_read,
)


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Messagely",
    description="Authenticated direct-messaging API",
    version="1.0.0",
    lifespan=lifespan,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)

app.add_middleware(RequestLoggingMiddleware)
register_error_handlers(app)


# =============================================================================
# Request Dependencies
# =============================================================================

async def json_body(request: Request) -> dict:
    """
    Raw JSON body of the request as a dict; {} when there is no body.

    Read once here so both the token lookup and the route can use it.
    """
    raw_body = await request.body()
    if not raw_body:
        return {}

    try:
        body = json.loads(raw_body)
    except json.JSONDecodeError as e:
        logger.info(f"Invalid JSON body: {e}")
        raise ValidationError(f"Invalid JSON: {e}")

    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


async def body_token(request: Request) -> Optional[str]:
    """_token field of a JSON object body, if there is one."""
    raw_body = await request.body()
    if not raw_body:
        return None

    try:
        body = json.loads(raw_body)
    except json.JSONDecodeError:
        return None

    return body.get("_token") if isinstance(body, dict) else None


async def get_current_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """
    Establish the actor for a protected route.

    The token is taken from the Authorization bearer header, then a _token
    body field, then a _token query parameter. The body is only read when
    there is no header.
    """
    if authorization is not None:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise InvalidTokenError("Malformed Authorization header")
        token = token.strip()
    else:
        token = await body_token(request) or request.query_params.get("_token")

    if not token or not isinstance(token, str):
        raise UnauthorizedError("Unauthorized")

    actor = verify_token(token)
    log_request_data(request, actor=actor)
    return actor


def parse_payload(body: dict, model: Type[BaseModel], message: Optional[str] = None):
    """
    Validate a request body against its schema.

    Raises:
        ValidationError: with message, or a summary of the schema errors
    """
    try:
        return model.model_validate(body)
    except SchemaError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        logger.info(f"{model.__name__} rejected: {details}")
        raise ValidationError(message or details)


Actor = Annotated[str, Depends(get_current_user)]
JsonBody = Annotated[dict, Depends(json_body)]
DB = Annotated[Session, Depends(get_db)]


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. SECRET_KEY is set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.SECRET_KEY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="SECRET_KEY not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Auth Routes
# =============================================================================

@app.post("/register", response_model=TokenResponse)
@app.post("/auth/register", response_model=TokenResponse)
def register_route(body: JsonBody, db: DB) -> TokenResponse:
    """
    Register, log in, and return a token.

    {username, password, first_name, last_name, phone} => {token}
    """
    payload = parse_payload(body, RegisterRequest)

    try:
        user = register(
            db,
            username=payload.username,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
        )
    except ConflictError:
        record_auth_event("register", "conflict")
        raise

    record_login(db, user.username)
    record_auth_event("register", "success")
    logger.info(f"User registered: {user.username}")
    return TokenResponse(token=issue_token(user.username))


@app.post("/login", response_model=TokenResponse)
@app.post("/auth/login", response_model=TokenResponse)
def login_route(body: JsonBody, db: DB) -> TokenResponse:
    """
    {username, password} => {token}

    Unknown user and wrong password produce the same 401.
    """
    payload = parse_payload(body, LoginRequest)

    try:
        is_valid = authenticate(db, payload.username, payload.password)
    except InvalidCredentialsError:
        is_valid = False

    if not is_valid:
        record_auth_event("login", "invalid_credentials")
        raise UnauthorizedError("Invalid username/password")

    record_login(db, payload.username)
    record_auth_event("login", "success")
    return TokenResponse(token=issue_token(payload.username))


# =============================================================================
# User Routes
# =============================================================================

@app.get("/users", response_model=UsersListResponse)
def list_users_route(actor: Actor, db: DB) -> UsersListResponse:
    """Basic info on all users, ordered by username."""
    users = list_users(db)
    return UsersListResponse(users=[UserSummary.model_validate(u) for u in users])


@app.get("/users/{username}", response_model=UserDetailResponse)
def get_user_route(username: str, actor: Actor, db: DB) -> UserDetailResponse:
    """Detail of the actor's own profile."""
    ensure_self(actor, username)
    user = get_user(db, username)
    return UserDetailResponse(user=UserDetail.model_validate(user))


@app.get("/users/{username}/from", response_model=SentMessagesResponse)
def messages_from_route(username: str, actor: Actor, db: DB) -> SentMessagesResponse:
    """
    Messages sent by the actor:
    {messages: [{id, to_user: {username, first_name, last_name, phone}, body, sent_at, read_at}]}
    """
    ensure_self(actor, username)
    messages = get_messages_from(db, username)
    return SentMessagesResponse(messages=[SentMessage.model_validate(m) for m in messages])


@app.get("/users/{username}/to", response_model=ReceivedMessagesResponse)
def messages_to_route(username: str, actor: Actor, db: DB) -> ReceivedMessagesResponse:
    """
    Messages received by the actor:
    {messages: [{id, from_user: {username, first_name, last_name, phone}, body, sent_at, read_at}]}
    """
    ensure_self(actor, username)
    messages = get_messages_to(db, username)
    return ReceivedMessagesResponse(messages=[ReceivedMessage.model_validate(m) for m in messages])


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/messages/{message_id}", response_model=MessageDetailResponse)
def get_message_route(message_id: int, request: Request, actor: Actor, db: DB) -> MessageDetailResponse:
    """
    Detail of a message, visible to its sender and recipient only.
    """
    log_request_data(request, message_id=message_id)
    message = get_message(db, message_id)
    ensure_can_view_message(actor, message)
    return MessageDetailResponse(message=MessageDetail.model_validate(message))


@app.post("/messages", response_model=CreatedMessageResponse)
def create_message_route(body: JsonBody, request: Request, actor: Actor, db: DB) -> CreatedMessageResponse:
    """
    {to_username, body} => {message: {id, from_username, to_username, body, sent_at}}

    The sender is always the actor.
    """
    payload = parse_payload(body, MessageCreateRequest, "Must specify recipient and must include body")

    message = create_message(
        db,
        from_username=sender_for(actor, payload.from_username),
        to_username=payload.to_username,
        body=payload.body,
    )

    record_message_event("created")
    log_request_data(request, message_id=message.id)
    return CreatedMessageResponse(message=CreatedMessage.model_validate(message))


@app.post("/messages/{message_id}/read", response_model=ReadReceiptResponse)
def mark_read_route(message_id: int, request: Request, actor: Actor, db: DB) -> ReadReceiptResponse:
    """
    Mark a message as read => {message: {id, read_at}}

    Only the recipient may do this. Marking an already-read message keeps
    its original read_at.
    """
    log_request_data(request, message_id=message_id)
    message = get_message(db, message_id)
    ensure_can_mark_read(actor, message)

    was_read = message.is_read
    message = mark_message_read(db, message_id)
    if not was_read:
        record_message_event("read")

    return ReadReceiptResponse(message=ReadReceipt.model_validate(message))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
