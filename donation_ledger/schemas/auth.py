"""Authentication request/response schemas."""

from pydantic import BaseModel, EmailStr

from donation_ledger.models import UserRead, UserRole


class LoginRequest(BaseModel):
    """Login request schema."""

    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Token response schema."""

    access_token: str
    token_type: str = "bearer"
    user: UserRead


class IdentityResponse(BaseModel):
    """The authenticated caller."""

    id: int
    email: str
    name: str
    role: UserRole


class MessageResponse(BaseModel):
    message: str
