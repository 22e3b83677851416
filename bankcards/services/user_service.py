"""
User service — identity lookup and admin-driven user management.

Lookup functions (used by the authentication gate and login):
  - get_user_by_username / get_user / username_exists

Management functions (admin-only; the router enforces the role):
  - create_user, list_users, set_user_enabled, delete_user
  - ensure_bootstrap_admin, called once at startup

Deletion policy:
  Deleting a user who still owns cards is refused (UserHasCardsError).
  Cards reference their owner, and silently orphaning balance-bearing cards
  is not acceptable; an admin deletes the cards first.
"""

import uuid

import structlog
from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.exceptions import DuplicateUsernameError, UserHasCardsError, UserNotFoundError
from bankcards.models.card import Card
from bankcards.models.user import Role, User
from bankcards.security import hash_password

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Identity lookup
# ---------------------------------------------------------------------------

async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def username_exists(db: AsyncSession, username: str) -> bool:
    result = await db.execute(select(exists().where(User.username == username)))
    return bool(result.scalar())


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    """
    Get a user by id.

    Raises:
        UserNotFoundError: If no user has this id.
    """
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------

async def create_user(
    db: AsyncSession,
    username: str,
    password: str,
    role: Role,
) -> User:
    """
    Create an enabled user with an Argon2-hashed password.

    Raises:
        DuplicateUsernameError: If the username is already taken.
    """
    if await username_exists(db, username):
        raise DuplicateUsernameError(username)

    user = User(
        username=username,
        hashed_password=hash_password(password),
        role=role,
        enabled=True,
    )
    db.add(user)
    await db.flush()

    logger.info("user_created", user_id=str(user.id), role=role.value)
    return user


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.created_at, User.username))
    return list(result.scalars().all())


async def set_user_enabled(db: AsyncSession, user_id: uuid.UUID, enabled: bool) -> User:
    """Enable or disable a user. Idempotent."""
    user = await get_user(db, user_id)
    user.enabled = enabled
    await db.flush()

    logger.info("user_status_changed", user_id=str(user_id), enabled=enabled)
    return user


async def delete_user(db: AsyncSession, user_id: uuid.UUID) -> None:
    """
    Hard-delete a user.

    Raises:
        UserNotFoundError: If the user doesn't exist.
        UserHasCardsError: If the user still owns at least one card.
    """
    user = await get_user(db, user_id)

    card_count = (
        await db.execute(select(func.count()).select_from(Card).where(Card.owner_id == user_id))
    ).scalar_one()
    if card_count:
        raise UserHasCardsError(user_id, card_count)

    await db.delete(user)
    await db.flush()

    logger.info("user_deleted", user_id=str(user_id))


async def ensure_bootstrap_admin(
    db: AsyncSession,
    username: str | None,
    password: str | None,
) -> User | None:
    """
    Create the configured bootstrap admin if it doesn't exist yet.

    Users never self-register, so without this there would be no way to
    obtain the first admin token. Returns the created user, or None when
    nothing was configured or the username already exists.
    """
    if not username or not password:
        return None
    if await username_exists(db, username):
        return None

    user = await create_user(db, username=username, password=password, role=Role.ADMIN)
    logger.info("bootstrap_admin_created", user_id=str(user.id))
    return user
