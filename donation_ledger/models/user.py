"""User model for authentication and authorization."""

from datetime import datetime
from enum import Enum

from pydantic import EmailStr
from sqlmodel import DateTime, Field, SQLModel

from donation_ledger.core.clock import utcnow
from donation_ledger.models.common import Pagination


class UserRole(str, Enum):
    """User roles for RBAC."""

    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"


class UserBase(SQLModel):
    """Base user fields."""

    email: str = Field(unique=True, index=True, max_length=255)
    name: str = Field(max_length=120)
    phone: str | None = Field(default=None, max_length=20)
    role: UserRole = Field(default=UserRole.OPERATOR)
    is_active: bool = Field(default=True)


class User(UserBase, table=True):
    """User database model. Deactivated, never deleted."""

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    hashed_password: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    last_login: datetime | None = Field(default=None, sa_type=DateTime)


class UserCreate(SQLModel):
    """Schema for creating an operator account."""

    email: EmailStr
    name: str = Field(min_length=2, max_length=120)
    phone: str = Field(min_length=7, max_length=20)
    password: str = Field(min_length=6, max_length=128)


class UserUpdate(SQLModel):
    """Schema for updating a user account."""

    name: str | None = Field(default=None, min_length=2, max_length=120)
    phone: str | None = Field(default=None, min_length=7, max_length=20)
    is_active: bool | None = None


class UserRead(SQLModel):
    """Schema for reading a user."""

    id: int
    email: str
    name: str
    phone: str | None
    role: UserRole
    is_active: bool
    created_at: datetime
    last_login: datetime | None


class OperatorRead(UserRead):
    """User row with the number of donations they recorded."""

    donation_count: int


class OperatorPage(SQLModel):
    operators: list[OperatorRead]
    pagination: Pagination


class OperatorActivity(SQLModel):
    id: int
    name: str
    last_login: datetime | None
    donation_count: int


class OperatorStats(SQLModel):
    """Operator headcount and the most active operators."""

    total_operators: int
    active_operators: int
    operators_by_activity: list[OperatorActivity]


class ProfileUpdate(SQLModel):
    """Self-service changes to the caller's own account."""

    name: str | None = Field(default=None, min_length=2, max_length=120)
    phone: str | None = Field(default=None, min_length=5, max_length=20)


class PasswordChange(SQLModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class EmailChange(SQLModel):
    new_email: EmailStr
    current_password: str = Field(min_length=1, max_length=128)
