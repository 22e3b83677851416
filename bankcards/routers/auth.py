"""
Authentication router — the only public business endpoint.

Endpoints:
  POST /auth/login — Authenticate with username + password and get a token

There is no signup: users are created by admins (POST /admin/users).

Security audit notes:
  - Plaintext passwords exist only in memory during request processing;
    they are verified against the Argon2 hash and never logged.
  - Tokens appear only in response bodies, never in log events.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.database import get_db
from bankcards.schemas.auth import LoginRequest, TokenResponse
from bankcards.services import auth_service

router = APIRouter()


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Authenticate and get a token",
)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with username and password.

    Returns a bearer token that must be included in the Authorization
    header for all subsequent requests:

        Authorization: Bearer <token>

    The token expires after ACCESS_TOKEN_EXPIRE_MINUTES (default: 30).
    """
    user, token = await auth_service.login(
        db=db,
        username=request.username,
        password=request.password,
    )
    return TokenResponse(token=token, username=user.username, role=user.role)
