"""
Cards router — a user's own cards and transfers between them.

Endpoints:
  GET  /cards                    — List own cards (paged, masked)
  GET  /cards/{card_id}          — Get one own card (masked)
  GET  /cards/{card_id}/balance  — Get one own card's balance
  POST /cards/transfer           — Move money between two own cards

Every endpoint requires authentication. Cards owned by someone else are
reported as not found on reads and as forbidden on transfers.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.database import get_db
from bankcards.dependencies import get_current_user
from bankcards.models.user import User
from bankcards.schemas.card import (
    BalanceResponse,
    CardPage,
    CardResponse,
    TransferRequest,
    TransferResponse,
)
from bankcards.services import card_service, transfer_service

router = APIRouter()


@router.get(
    "",
    response_model=CardPage,
    summary="List my cards",
)
async def list_my_cards(
    page: int = Query(0, ge=0, description="Zero-based page number"),
    size: int = Query(20, ge=1, le=100),
    sort: str | None = Query(None, description='Sort as "field,dir", e.g. "balance,desc"'),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the authenticated user's cards with masked numbers (oldest first by default)."""
    return await card_service.list_own_cards(db, user, page=page, size=size, sort=sort)


@router.post(
    "/transfer",
    response_model=TransferResponse,
    summary="Transfer money between my cards",
)
async def transfer(
    request: TransferRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Move money from one of your cards to another.

    This is an atomic operation — either both the debit and the credit are
    applied, or neither is.

    - Both cards must belong to you and be ACTIVE
    - **amount**: at least 1, at most two decimal places
    - The source card must hold at least the amount
    - Not idempotent: resubmitting moves the money again
    """
    await transfer_service.transfer(
        db=db,
        actor=user,
        from_card_id=request.from_card_id,
        to_card_id=request.to_card_id,
        amount=request.amount,
    )
    return TransferResponse(
        from_card_id=request.from_card_id,
        to_card_id=request.to_card_id,
        amount=request.amount,
    )


@router.get(
    "/{card_id}",
    response_model=CardResponse,
    summary="Get one of my cards (masked)",
)
async def get_my_card(
    card_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await card_service.get_own_card(db, user, card_id)


@router.get(
    "/{card_id}/balance",
    response_model=BalanceResponse,
    summary="Get one of my cards' balance",
)
async def get_my_balance(
    card_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    balance = await card_service.get_own_balance(db, user, card_id)
    return BalanceResponse(card_id=card_id, balance=balance)
