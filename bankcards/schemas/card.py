"""
Pydantic schemas for Card and Transfer endpoints.

Card numbers are NEVER returned in API responses. Responses carry only the
masked form ("**** **** **** 1234"), produced by decrypting and masking in
one step inside the card service.

Monetary amounts are Decimals with two decimal places; they serialize to
JSON as strings ("70.00") so no precision is lost on the way out.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from bankcards.models.card import CardStatus


class CardCreateRequest(BaseModel):
    """Request body for POST /admin/cards."""
    owner_id: uuid.UUID
    card_number: str = Field(
        pattern=r"^[0-9]{12,19}$",
        description="Plaintext card number (12-19 digits); encrypted before storage",
    )
    expiration_date: date


class CardResponse(BaseModel):
    """Public representation of a card (masked number, never the plaintext)."""
    id: uuid.UUID
    owner_id: uuid.UUID
    masked_number: str
    expiration_date: date
    status: CardStatus
    balance: Decimal
    created_at: datetime


class CardPage(BaseModel):
    """One page of cards. `page` is zero-based."""
    items: list[CardResponse]
    page: int
    size: int
    total: int


class BalanceResponse(BaseModel):
    card_id: uuid.UUID
    balance: Decimal


class TransferRequest(BaseModel):
    """Request body for POST /cards/transfer."""
    from_card_id: uuid.UUID
    to_card_id: uuid.UUID
    amount: Decimal = Field(
        ge=1,
        max_digits=19,
        decimal_places=2,
        description="Amount to move (at least 1, at most two decimal places)",
    )


class TransferResponse(BaseModel):
    """Echo of a completed transfer."""
    from_card_id: uuid.UUID
    to_card_id: uuid.UUID
    amount: Decimal
