"""
Authentication service — credential login.

Login flow:
  1. Look up the user by username
  2. Verify the password against the stored Argon2 hash
  3. Refuse disabled users
  4. Return a signed token carrying the username and current role

Security notes:
  - Unknown username, wrong password, and disabled account all produce the
    same InvalidCredentialsError to prevent user enumeration
  - Tokens are stateless — no server-side session storage
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.exceptions import InvalidCredentialsError
from bankcards.models.user import User
from bankcards.security import token_service, verify_password
from bankcards.services.user_service import get_user_by_username

logger = structlog.get_logger(__name__)


async def login(
    db: AsyncSession,
    username: str,
    password: str,
) -> tuple[User, str]:
    """
    Authenticate a user and issue a token.

    Returns:
        Tuple of (User instance, token string).

    Raises:
        InvalidCredentialsError: If the username doesn't exist, the password
            is wrong, or the account is disabled.
    """
    user = await get_user_by_username(db, username)

    # Same error for every case — prevents user enumeration
    if user is None or not verify_password(password, user.hashed_password):
        logger.info("login_failed", reason="bad_credentials")
        raise InvalidCredentialsError()

    if not user.enabled:
        logger.info("login_failed", reason="disabled", user_id=str(user.id))
        raise InvalidCredentialsError()

    token = token_service.issue(subject=user.username, role=user.role.value)
    logger.info("login_succeeded", user_id=str(user.id), role=user.role.value)
    return user, token
