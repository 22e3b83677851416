"""
Pydantic schemas for the login endpoint.

Pydantic validates incoming data automatically. If a required field is
missing or the wrong type, the request is rejected with a 400
`invalid_argument` before our code even runs.
"""

from pydantic import BaseModel, Field

from bankcards.models.user import Role


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    """Response body for a successful login — the token plus who it is for."""
    token: str
    token_type: str = "bearer"
    username: str
    role: Role
