"""
Admin router — user and card management.

All endpoints require the ADMIN role (checked against the live user row,
not the token's role claim). Admins act on any card or user by id;
ownership rules do not apply here.

Card endpoints:
  POST   /admin/cards                      — Create a card (starts BLOCKED, 0.00)
  GET    /admin/cards                      — List all cards (paged, masked)
  PATCH  /admin/cards/{card_id}/activate   — Set status ACTIVE
  PATCH  /admin/cards/{card_id}/block      — Set status BLOCKED
  DELETE /admin/cards/{card_id}            — Hard delete

User endpoints:
  POST   /admin/users                      — Create a user
  GET    /admin/users                      — List all users
  GET    /admin/users/{user_id}            — Get one user
  PATCH  /admin/users/{user_id}/enable     — Enable a user
  PATCH  /admin/users/{user_id}/disable    — Disable a user
  DELETE /admin/users/{user_id}            — Delete a user who owns no cards

By consolidating all admin routes in one router, we avoid route-ordering
conflicts that arise when multiple routers share a prefix and have
overlapping parameterized paths.
"""

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.database import get_db
from bankcards.dependencies import require_admin
from bankcards.models.user import User
from bankcards.schemas.card import CardCreateRequest, CardPage, CardResponse
from bankcards.schemas.user import UserCreateRequest, UserResponse
from bankcards.services import card_service, user_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Card admin endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/cards",
    response_model=CardResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Create a card for a user",
)
async def admin_create_card(
    request: CardCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a card for an existing user.

    - The card number is encrypted before storage and only ever returned masked
    - The card starts BLOCKED with a zero balance; activate it to allow transfers
    """
    return await card_service.create_card(
        db=db,
        owner_id=request.owner_id,
        card_number=request.card_number,
        expiration_date=request.expiration_date,
    )


@router.get(
    "/cards",
    response_model=CardPage,
    summary="[Admin] List all cards",
)
async def admin_list_cards(
    page: int = Query(0, ge=0, description="Zero-based page number"),
    size: int = Query(20, ge=1, le=100),
    sort: str | None = Query(None, description='Sort as "field,dir", e.g. "balance,desc"'),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await card_service.list_all_cards(db, page=page, size=size, sort=sort)


@router.patch(
    "/cards/{card_id}/activate",
    response_model=CardResponse,
    summary="[Admin] Activate a card",
)
async def admin_activate_card(
    card_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Set the card ACTIVE. Activating an active card is a no-op success."""
    return await card_service.activate_card(db, card_id)


@router.patch(
    "/cards/{card_id}/block",
    response_model=CardResponse,
    summary="[Admin] Block a card",
)
async def admin_block_card(
    card_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Set the card BLOCKED. Blocking a blocked card is a no-op success."""
    return await card_service.block_card(db, card_id)


@router.delete(
    "/cards/{card_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="[Admin] Delete a card",
)
async def admin_delete_card(
    card_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Permanently delete a card, whatever its status or balance."""
    await card_service.delete_card(db, card_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# User admin endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Create a user",
)
async def admin_create_user(
    request: UserCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a new enabled user.

    - **username**: unique, 1-100 characters
    - **password**: minimum 8 characters, stored as an Argon2 hash
    - **role**: USER (default) or ADMIN
    """
    return await user_service.create_user(
        db=db,
        username=request.username,
        password=request.password,
        role=request.role,
    )


@router.get(
    "/users",
    response_model=list[UserResponse],
    summary="[Admin] List all users",
)
async def admin_list_users(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.list_users(db)


@router.get(
    "/users/{user_id}",
    response_model=UserResponse,
    summary="[Admin] Get a user",
)
async def admin_get_user(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_user(db, user_id)


@router.patch(
    "/users/{user_id}/enable",
    response_model=UserResponse,
    summary="[Admin] Enable a user",
)
async def admin_enable_user(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.set_user_enabled(db, user_id, enabled=True)


@router.patch(
    "/users/{user_id}/disable",
    response_model=UserResponse,
    summary="[Admin] Disable a user",
)
async def admin_disable_user(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Disable a user.

    Tokens already issued are not revoked, but a disabled user is treated as
    anonymous on every request from now on and cannot log in.
    """
    return await user_service.set_user_enabled(db, user_id, enabled=False)


@router.delete(
    "/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="[Admin] Delete a user",
)
async def admin_delete_user(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Permanently delete a user. Refused (409) while the user still owns cards."""
    await user_service.delete_user(db, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
