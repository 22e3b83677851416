"""
Transfer service — moves balance between two cards owned by the same user.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT.

Validation order (first failure wins, nothing is written before all pass):
  1. Source and destination must be different cards     -> InvalidArgumentError
  2. Amount must be strictly positive                   -> InvalidArgumentError
  3. Each card must exist                               -> CardNotFoundError
     and be owned by the actor                          -> CardAccessDeniedError
  4. Both cards must be ACTIVE (one combined check that
     doesn't reveal which side failed)                  -> InvalidArgumentError
  5. Source balance must cover the amount               -> InsufficientFundsError

Atomicity:
  The debit and the credit are flushed together inside the request's single
  database transaction (see get_db). If either UPDATE fails the whole
  transaction rolls back, so no observer ever sees only one leg.

Deadlock prevention:
  Both rows are locked with SELECT ... FOR UPDATE in ascending id order, so
  two transfers over the same pair in opposite directions always lock in the
  same order.

SQLite note:
  SQLite has no row locks; with_for_update() is a no-op there. Instead every
  SQLite transaction starts with BEGIN IMMEDIATE (see bankcards.database),
  so concurrent transfers queue on the database write lock and each one
  validates against the balance the previous one committed. The card's
  version column stays as a backstop: an UPDATE only matches the version
  that was read, so a write that somehow raced fails with
  TransferConflictError instead of overwriting a balance.

Not idempotent: submitting the same transfer twice moves the money twice.
"""

import uuid
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from bankcards.exceptions import (
    CardAccessDeniedError,
    CardNotFoundError,
    InsufficientFundsError,
    InvalidArgumentError,
    TransferConflictError,
)
from bankcards.models.card import Card, CardStatus
from bankcards.models.user import User

logger = structlog.get_logger(__name__)


async def transfer(
    db: AsyncSession,
    actor: User,
    from_card_id: uuid.UUID,
    to_card_id: uuid.UUID,
    amount: Decimal,
) -> None:
    """
    Move `amount` from one of the actor's cards to another.

    Args:
        db: Database session (the caller's transaction scopes both legs).
        actor: The authenticated user; must own both cards.
        from_card_id: Card to debit.
        to_card_id: Card to credit.
        amount: Strictly positive amount.

    Raises:
        InvalidArgumentError: Same card on both sides, non-positive amount,
            or a card that isn't ACTIVE.
        CardNotFoundError: If either card doesn't exist.
        CardAccessDeniedError: If either card belongs to another user.
        InsufficientFundsError: If the source balance is below the amount.
        TransferConflictError: If a concurrent write changed either card.
    """
    if from_card_id == to_card_id:
        raise InvalidArgumentError("Source and destination cards must differ")
    if amount <= 0:
        raise InvalidArgumentError("Amount must be positive")

    # Lock in consistent order (sorted by id) to prevent deadlocks
    locked: dict[uuid.UUID, Card | None] = {}
    for card_id in sorted([from_card_id, to_card_id]):
        result = await db.execute(
            select(Card).where(Card.id == card_id).with_for_update()
        )
        locked[card_id] = result.scalar_one_or_none()

    source = _owned_by(locked[from_card_id], from_card_id, actor)
    dest = _owned_by(locked[to_card_id], to_card_id, actor)

    if source.status != CardStatus.ACTIVE or dest.status != CardStatus.ACTIVE:
        raise InvalidArgumentError("Both cards must be ACTIVE")

    if source.balance < amount:
        raise InsufficientFundsError(
            card_id=from_card_id,
            requested=amount,
            available=source.balance,
        )

    source.balance -= amount
    dest.balance += amount

    try:
        await db.flush()
    except StaleDataError as exc:
        logger.warning(
            "transfer_conflict",
            from_card_id=str(from_card_id),
            to_card_id=str(to_card_id),
        )
        raise TransferConflictError() from exc

    logger.info(
        "transfer_completed",
        actor_id=str(actor.id),
        from_card_id=str(from_card_id),
        to_card_id=str(to_card_id),
        amount=str(amount),
    )


def _owned_by(card: Card | None, card_id: uuid.UUID, actor: User) -> Card:
    if card is None:
        raise CardNotFoundError(card_id)
    if card.owner_id != actor.id:
        raise CardAccessDeniedError(card_id)
    return card
