"""
Card model — a balance-bearing bank card owned by exactly one User.

Card numbers are encrypted at rest with AES-256-CBC (see bankcards.crypto).
The stored value is base64(iv || ciphertext) with a fresh random IV per
encryption, so the same number encrypts differently every time. The unique
constraint on encrypted_number therefore guards the ciphertext space, not
the plaintext space.

Status lifecycle:
  - Every card starts BLOCKED with a zero balance
  - Admins flip it between ACTIVE and BLOCKED
  - EXPIRED exists for data loaded from elsewhere; no operation sets it

Balance:
  Stored as NUMERIC(19, 2) and surfaced as Decimal. A CHECK constraint keeps
  it non-negative at the database level; the transfer service also checks
  before debiting.

Concurrency:
  `version` is the mapper's version_id_col. Every UPDATE is issued as
  "... WHERE id = :id AND version = :seen", so a writer that read a stale
  row fails with StaleDataError instead of silently overwriting a concurrent
  transfer. Row locks (SELECT ... FOR UPDATE) cover PostgreSQL; the version
  check covers backends without row locks, such as SQLite.
"""

import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from bankcards.database import Base


class CardStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    EXPIRED = "EXPIRED"


class Card(Base):
    __tablename__ = "cards"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_cards_non_negative_balance"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # base64(iv || AES-256-CBC ciphertext)
    encrypted_number: Mapped[str] = mapped_column(
        String(512),
        unique=True,
        nullable=False,
    )

    # Fixed at creation
    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    expiration_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    status: Mapped[CardStatus] = mapped_column(
        Enum(CardStatus),
        default=CardStatus.BLOCKED,
        nullable=False,
    )

    balance: Mapped[Decimal] = mapped_column(
        Numeric(19, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}
