"""Donation category model."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import StringConstraints
from sqlmodel import DateTime, Field, SQLModel

from donation_ledger.core.clock import utcnow
from donation_ledger.models.common import Pagination

HexColor = Annotated[str, StringConstraints(pattern=r"^#[0-9a-fA-F]{6}$")]


class DonationCategoryBase(SQLModel):
    """Base category fields."""

    name: str = Field(unique=True, index=True, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    icon: str = Field(default="Tag", max_length=50)
    color: str = Field(default="#3b82f6", max_length=20)
    is_active: bool = Field(default=True)


class DonationCategory(DonationCategoryBase, table=True):
    """Donation category database model."""

    __tablename__ = "donation_categories"

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class CategoryCreate(SQLModel):
    """Schema for creating a category."""

    name: str = Field(min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    icon: str | None = Field(default=None, max_length=50)
    color: HexColor | None = None
    is_active: bool = True


class CategoryUpdate(SQLModel):
    """Schema for updating a category."""

    name: str | None = Field(default=None, min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    icon: str | None = Field(default=None, max_length=50)
    color: HexColor | None = None
    is_active: bool | None = None


class CategoryRead(DonationCategoryBase):
    """Schema for reading a category."""

    id: int
    created_at: datetime


class CategoryWithStats(CategoryRead):
    """Category with aggregates over its active donations."""

    donation_count: int
    total_amount: Decimal
    average_amount: Decimal


class CategoryStats(SQLModel):
    """Aggregate statistics for one category."""

    category_id: int
    total_count: int
    total_amount: Decimal
    average_amount: Decimal
    max_amount: Decimal
    min_amount: Decimal


class CategoryPage(SQLModel):
    categories: list[CategoryWithStats]
    pagination: Pagination
