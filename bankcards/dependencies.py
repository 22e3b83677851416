"""
FastAPI dependencies for authentication and authorization.

Dependencies are reusable functions that FastAPI injects into route handlers.
They form a chain that separates *who is calling* from *what they may do*:

  authenticate (Bearer token -> User | None)          [authentication gate]
      └── get_current_user (User | None -> User)      [Authenticated tier, 401]
              └── require_admin (User -> User)        [Admin tier, 403]

The authentication gate never rejects a request by itself. A missing,
malformed, expired or forged token, an unknown subject, or a disabled user
all leave the request anonymous (None). It is the tier dependencies that
turn an anonymous caller into 401 on protected routes.

Role source of truth:
  The token carries a role claim, but authorization ALWAYS uses the role of
  the user row looked up on this request. A user demoted after their token
  was issued loses admin access on their next request.

Ownership is enforced in the service layer: every card operation receives
the authenticated User explicitly as `actor`.
"""

import structlog
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.database import get_db
from bankcards.exceptions import AdminRequiredError, NotAuthenticatedError
from bankcards.models.user import Role, User
from bankcards.security import token_service
from bankcards.services.user_service import get_user_by_username

logger = structlog.get_logger(__name__)


# Reads "Authorization: Bearer <token>". auto_error=False turns a missing
# header into None instead of an immediate 401. tokenUrl feeds Swagger UI.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def authenticate(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """
    Resolve the caller's identity from the bearer token, or None.

    Returns:
        The live, enabled User for a valid token; None otherwise.
    """
    if token is None:
        return None

    if not token_service.verify(token):
        logger.debug("token_rejected", reason="invalid_or_expired")
        return None

    user = await get_user_by_username(db, token_service.subject_of(token))
    if user is None:
        logger.debug("token_rejected", reason="unknown_subject")
        return None
    if not user.enabled:
        logger.debug("token_rejected", reason="disabled", user_id=str(user.id))
        return None

    return user


async def get_current_user(
    user: User | None = Depends(authenticate),
) -> User:
    """
    Require an authenticated, enabled user.

    Raises:
        NotAuthenticatedError (401): If the request is anonymous.
    """
    if user is None:
        raise NotAuthenticatedError()
    return user


async def require_admin(
    user: User = Depends(get_current_user),
) -> User:
    """
    Require the authenticated user to currently hold the ADMIN role.

    Raises:
        AdminRequiredError (403): If the user is not an admin.
    """
    if user.role != Role.ADMIN:
        raise AdminRequiredError()
    return user
