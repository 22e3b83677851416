"""
Custom exception classes and FastAPI exception handlers.

Services raise domain-specific errors (like InsufficientFundsError) without
importing HTTP concepts. The handler layer translates them into HTTP
responses with a consistent body:

    {"detail": "<human message>", "error_type": "<stable machine code>"}

Exception hierarchy:
    BankCardsError (base)
    ├── NotFoundError               404  not_found
    │   ├── CardNotFoundError
    │   └── UserNotFoundError
    ├── PermissionDeniedError       403  permission_denied
    │   ├── CardAccessDeniedError
    │   └── AdminRequiredError
    ├── InvalidArgumentError        400  invalid_argument
    │   └── InsufficientFundsError       insufficient_funds
    ├── AuthenticationFailedError   401  authentication_failed
    │   ├── InvalidCredentialsError
    │   └── NotAuthenticatedError
    └── ConflictError               409  conflict
        ├── DuplicateUsernameError
        ├── DuplicateCardError
        ├── UserHasCardsError
        └── TransferConflictError

Request validation failures (FastAPI's RequestValidationError) are the
same InvalidArgument kind: 400 invalid_argument, with the field messages
joined into "detail".

Anything else (including CardEncryptionError) is an internal error: it is
logged and answered with a generic 500 body that leaks no details.
"""

import uuid
from decimal import Decimal

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class BankCardsError(Exception):
    """Base exception for all Bank Cards API domain errors."""

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Taxonomy kinds
# ---------------------------------------------------------------------------

class NotFoundError(BankCardsError):
    """A referenced user or card does not exist (or is not visible to the actor)."""


class PermissionDeniedError(BankCardsError):
    """Authenticated, but not entitled to the resource or operation."""


class InvalidArgumentError(BankCardsError):
    """Malformed or semantically invalid input."""


class AuthenticationFailedError(BankCardsError):
    """Bad credentials, or a protected operation reached without a valid token."""


class ConflictError(BankCardsError):
    """The operation collides with existing state."""


class CardEncryptionError(Exception):
    """Encrypting a card number failed. Deliberately not a BankCardsError."""


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class CardNotFoundError(NotFoundError):
    def __init__(self, card_id: uuid.UUID):
        self.card_id = card_id
        super().__init__(f"Card {card_id} not found")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: uuid.UUID):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class CardAccessDeniedError(PermissionDeniedError):
    """Raised when a user attempts to move money with a card they don't own."""

    def __init__(self, card_id: uuid.UUID):
        self.card_id = card_id
        super().__init__(f"You do not own card {card_id}")


class AdminRequiredError(PermissionDeniedError):
    def __init__(self):
        super().__init__("Admin access required")


class InsufficientFundsError(InvalidArgumentError):
    """
    Raised when a transfer would drive the source card below zero.

    Attributes:
        card_id: The card that lacks sufficient funds.
        requested: The amount the user tried to move.
        available: The current balance of the card.
    """

    def __init__(self, card_id: uuid.UUID, requested: Decimal, available: Decimal):
        self.card_id = card_id
        self.requested = requested
        self.available = available
        super().__init__("Insufficient funds")


class InvalidCredentialsError(AuthenticationFailedError):
    """Raised when login credentials are incorrect."""

    def __init__(self):
        super().__init__("Invalid username or password")


class NotAuthenticatedError(AuthenticationFailedError):
    """Raised when a protected operation is reached without a valid identity."""

    def __init__(self):
        super().__init__("Could not validate credentials")


class DuplicateUsernameError(ConflictError):
    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username {username} is already taken")


class DuplicateCardError(ConflictError):
    """Raised when the stored card ciphertext collides with an existing card."""

    def __init__(self):
        super().__init__("A card with this encrypted number already exists")


class UserHasCardsError(ConflictError):
    """Raised when deleting a user who still owns cards (restrict policy)."""

    def __init__(self, user_id: uuid.UUID, card_count: int):
        self.user_id = user_id
        self.card_count = card_count
        super().__init__(
            f"User {user_id} still owns {card_count} card(s); delete them first"
        )


class TransferConflictError(ConflictError):
    """Raised when a concurrent write changed one of the cards mid-transfer."""

    def __init__(self):
        super().__init__("A card was modified concurrently; retry the transfer")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def _error_body(exc: BankCardsError, error_type: str) -> dict:
    return {"detail": exc.detail, "error_type": error_type}


def _validation_detail(exc: RequestValidationError) -> str:
    """Flatten pydantic errors into "field: message; field: message"."""
    messages = []
    for error in exc.errors():
        field = ".".join(
            str(part) for part in error["loc"] if part not in ("body", "query", "path")
        )
        messages.append(f"{field}: {error['msg']}" if field else error["msg"])
    return "; ".join(messages)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Handlers are looked up along the exception's MRO, so registering the
    taxonomy kinds covers every domain subclass; InsufficientFundsError gets
    its own handler to carry the amounts.

    This is called once during app setup in main.py.
    """

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content=_error_body(exc, "not_found"))

    @app.exception_handler(PermissionDeniedError)
    async def permission_denied_handler(
        request: Request, exc: PermissionDeniedError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=403, content=_error_body(exc, "permission_denied")
        )

    @app.exception_handler(InvalidArgumentError)
    async def invalid_argument_handler(
        request: Request, exc: InvalidArgumentError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400, content=_error_body(exc, "invalid_argument")
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "detail": _validation_detail(exc),
                "error_type": "invalid_argument",
            },
        )

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds_handler(
        request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                **_error_body(exc, "insufficient_funds"),
                "requested": str(exc.requested),
                "available": str(exc.available),
            },
        )

    @app.exception_handler(AuthenticationFailedError)
    async def authentication_failed_handler(
        request: Request, exc: AuthenticationFailedError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content=_error_body(exc, "authentication_failed"),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content=_error_body(exc, "conflict"))

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_error",
            path=request.url.path,
            method=request.method,
            error_class=type(exc).__name__,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "internal_error"},
        )
