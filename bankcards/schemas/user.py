"""
Pydantic schemas for admin user management.

Notice that hashed_password is NEVER included in any response schema —
this is a critical security boundary.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from bankcards.models.user import Role


class UserCreateRequest(BaseModel):
    """Request body for POST /admin/users."""
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8)
    role: Role = Role.USER


class UserResponse(BaseModel):
    """Public representation of a User (never includes password hash)."""
    id: uuid.UUID
    username: str
    role: Role
    enabled: bool
    created_at: datetime

    model_config = {"from_attributes": True}
