"""
Card service — card lifecycle and owner-scoped reads, with encryption at rest.

Lifecycle (admin-only; the router enforces the role):
  - create_card: encrypt the number, store as BLOCKED with a 0.00 balance
  - activate_card / block_card: unconditional status overwrite (idempotent)
  - delete_card: unconditional hard delete (a missing id is a no-op)
  - list_all_cards: every card, paged and optionally sorted

Owner reads (any authenticated user, scoped to their own cards):
  - get_own_card, list_own_cards, get_own_balance

Ownership on reads:
  Owner-scoped lookups filter on (id, owner_id) together, so a card owned by
  someone else is indistinguishable from a card that doesn't exist — both
  raise CardNotFoundError.

Masking:
  Every card leaves this module through to_card_response(), which decrypts
  the stored number and immediately masks it. The plaintext never escapes
  that function.
"""

import uuid
from datetime import date
from decimal import Decimal

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.crypto import card_cipher, mask_card_number
from bankcards.exceptions import CardNotFoundError, DuplicateCardError, InvalidArgumentError
from bankcards.models.card import Card, CardStatus
from bankcards.models.user import User
from bankcards.schemas.card import CardPage, CardResponse
from bankcards.services.user_service import get_user

logger = structlog.get_logger(__name__)


def to_card_response(card: Card) -> CardResponse:
    """Project a Card for output: decrypt, then mask right away."""
    return CardResponse(
        id=card.id,
        owner_id=card.owner_id,
        masked_number=mask_card_number(card_cipher.decrypt(card.encrypted_number)),
        expiration_date=card.expiration_date,
        status=card.status,
        balance=card.balance,
        created_at=card.created_at,
    )


async def _get_card(db: AsyncSession, card_id: uuid.UUID) -> Card:
    result = await db.execute(select(Card).where(Card.id == card_id))
    card = result.scalar_one_or_none()
    if card is None:
        raise CardNotFoundError(card_id)
    return card


async def _get_owned_card(db: AsyncSession, card_id: uuid.UUID, owner_id: uuid.UUID) -> Card:
    result = await db.execute(
        select(Card).where(Card.id == card_id).where(Card.owner_id == owner_id)
    )
    card = result.scalar_one_or_none()
    if card is None:
        raise CardNotFoundError(card_id)
    return card


SORTABLE_COLUMNS = {
    "created_at": Card.created_at,
    "expiration_date": Card.expiration_date,
    "balance": Card.balance,
    "status": Card.status,
}


def _order_by(sort: str | None) -> list:
    """
    Parse a "field,dir" sort string into ORDER BY clauses.

    `dir` is "asc" (the default) or "desc". Card.id always comes last so
    pages stay stable when the sort column has ties.

    Raises:
        InvalidArgumentError: Unknown field or direction.
    """
    if not sort:
        return [Card.created_at, Card.id]

    field, _, direction = sort.partition(",")
    field, direction = field.strip(), (direction.strip().lower() or "asc")
    column = SORTABLE_COLUMNS.get(field)
    if column is None:
        allowed = ", ".join(SORTABLE_COLUMNS)
        raise InvalidArgumentError(f"Cannot sort by '{field}' (allowed: {allowed})")
    if direction not in ("asc", "desc"):
        raise InvalidArgumentError(f"Sort direction must be asc or desc, got '{direction}'")
    return [column.desc() if direction == "desc" else column.asc(), Card.id]


async def _page(
    db: AsyncSession,
    owner_id: uuid.UUID | None,
    page: int,
    size: int,
    sort: str | None = None,
) -> CardPage:
    order_by = _order_by(sort)
    query = select(Card)
    count_query = select(func.count()).select_from(Card)
    if owner_id is not None:
        query = query.where(Card.owner_id == owner_id)
        count_query = count_query.where(Card.owner_id == owner_id)

    total = (await db.execute(count_query)).scalar_one()
    result = await db.execute(
        query.order_by(*order_by).limit(size).offset(page * size)
    )
    return CardPage(
        items=[to_card_response(card) for card in result.scalars().all()],
        page=page,
        size=size,
        total=total,
    )


# ---------------------------------------------------------------------------
# Admin lifecycle
# ---------------------------------------------------------------------------

async def create_card(
    db: AsyncSession,
    owner_id: uuid.UUID,
    card_number: str,
    expiration_date: date,
) -> CardResponse:
    """
    Create a card for an existing user.

    Raises:
        UserNotFoundError: If the owner doesn't exist.
        DuplicateCardError: If the stored ciphertext collides with another card.
    """
    await get_user(db, owner_id)

    card = Card(
        encrypted_number=card_cipher.encrypt(card_number),
        owner_id=owner_id,
        expiration_date=expiration_date,
        status=CardStatus.BLOCKED,
        balance=Decimal("0.00"),
    )
    db.add(card)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateCardError() from exc

    logger.info("card_created", card_id=str(card.id), owner_id=str(owner_id))
    return to_card_response(card)


async def _set_status(db: AsyncSession, card_id: uuid.UUID, status: CardStatus) -> CardResponse:
    card = await _get_card(db, card_id)
    card.status = status
    await db.flush()

    logger.info("card_status_changed", card_id=str(card_id), status=status.value)
    return to_card_response(card)


async def activate_card(db: AsyncSession, card_id: uuid.UUID) -> CardResponse:
    return await _set_status(db, card_id, CardStatus.ACTIVE)


async def block_card(db: AsyncSession, card_id: uuid.UUID) -> CardResponse:
    return await _set_status(db, card_id, CardStatus.BLOCKED)


async def delete_card(db: AsyncSession, card_id: uuid.UUID) -> None:
    """Hard-delete a card by id. No ownership or status precondition."""
    result = await db.execute(delete(Card).where(Card.id == card_id))
    logger.info("card_deleted", card_id=str(card_id), found=bool(result.rowcount))


async def list_all_cards(
    db: AsyncSession,
    page: int = 0,
    size: int = 20,
    sort: str | None = None,
) -> CardPage:
    return await _page(db, None, page, size, sort)


# ---------------------------------------------------------------------------
# Owner reads
# ---------------------------------------------------------------------------

async def get_own_card(db: AsyncSession, actor: User, card_id: uuid.UUID) -> CardResponse:
    """
    Get one of the actor's cards.

    Raises:
        CardNotFoundError: If the card doesn't exist or belongs to someone else.
    """
    return to_card_response(await _get_owned_card(db, card_id, actor.id))


async def list_own_cards(
    db: AsyncSession,
    actor: User,
    page: int = 0,
    size: int = 20,
    sort: str | None = None,
) -> CardPage:
    return await _page(db, actor.id, page, size, sort)


async def get_own_balance(db: AsyncSession, actor: User, card_id: uuid.UUID) -> Decimal:
    """Balance of one of the actor's cards; foreign cards read as not found."""
    card = await _get_owned_card(db, card_id, actor.id)
    return card.balance
