"""
User model — the authentication identity.

Each User represents a login credential (username + hashed password) with a
defined role. Users never self-register: they are created by an admin (or by
the bootstrap admin provisioning at startup).

Roles:
  - ADMIN: Manages users and cards; bypasses card ownership checks
  - USER: Card holder; may only see and move money between their own cards

The password is stored as an Argon2id hash — never in plaintext.

Disabling a user (enabled=False) does not revoke tokens already issued, but
the authentication gate rejects a disabled user on every request because it
always re-reads the live row.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column

from bankcards.database import Base


class Role(str, enum.Enum):
    """
    Defines the role a user holds within the system.

    Inherits from str so the enum value serializes naturally to JSON
    and into the token's role claim.
    """
    ADMIN = "ADMIN"
    USER = "USER"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Login identifier — unique, immutable once created
    username: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )

    # Argon2id hash of the password (never store plaintext!)
    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    role: Mapped[Role] = mapped_column(
        Enum(Role),
        default=Role.USER,
        nullable=False,
    )

    enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Audit timestamps
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
