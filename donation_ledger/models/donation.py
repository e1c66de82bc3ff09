"""Donation model and its read/write schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import EmailStr
from sqlmodel import DateTime, Field, SQLModel

from donation_ledger.core.clock import utcnow
from donation_ledger.models.common import Pagination


class PaymentMethod(str, Enum):
    """Accepted payment methods."""

    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    ONLINE = "ONLINE"


class Donation(SQLModel, table=True):
    """Donation database model.

    The four deletion columns are only written together, through
    ``services.soft_delete.apply_state``.
    """

    __tablename__ = "donations"

    id: int | None = Field(default=None, primary_key=True)
    donor_name: str = Field(index=True, max_length=120)
    donor_phone: str = Field(index=True, max_length=20)
    donor_email: str | None = Field(default=None, max_length=255)
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    purpose: str = Field(max_length=200)
    payment_method: PaymentMethod
    notes: str | None = Field(default=None)
    receipt_number: str | None = Field(default=None, max_length=50)
    category_id: int | None = Field(default=None, foreign_key="donation_categories.id", index=True)
    operator_id: int = Field(foreign_key="users.id", index=True)
    date: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)

    # Delivery bookkeeping, owned by the notification side
    email_sent: bool = Field(default=False)
    email_sent_at: datetime | None = Field(default=None, sa_type=DateTime)
    email_error: str | None = Field(default=None)

    # Soft delete
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = Field(default=None, sa_type=DateTime)
    deleted_by: int | None = Field(default=None, foreign_key="users.id")
    deletion_reason: str | None = Field(default=None)


class DonationCreate(SQLModel):
    """Schema for recording a donation."""

    donor_name: str = Field(min_length=2, max_length=120)
    donor_phone: str = Field(min_length=7, max_length=20)
    donor_email: EmailStr | None = None
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    purpose: str = Field(min_length=2, max_length=200)
    payment_method: PaymentMethod
    notes: str | None = Field(default=None, max_length=1000)
    send_notification: bool = True


class DonationUpdate(SQLModel):
    """Schema for updating a donation. Omitted fields are left unchanged."""

    donor_name: str | None = Field(default=None, min_length=2, max_length=120)
    donor_phone: str | None = Field(default=None, min_length=7, max_length=20)
    donor_email: EmailStr | None = None
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    purpose: str | None = Field(default=None, min_length=2, max_length=200)
    payment_method: PaymentMethod | None = None
    notes: str | None = Field(default=None, max_length=1000)
    receipt_number: str | None = Field(default=None, max_length=50)


class DonationDelete(SQLModel):
    """Schema for soft-deleting a donation."""

    reason: str | None = Field(default=None, max_length=500)


class ReceiptResend(SQLModel):
    custom_message: str | None = Field(default=None, max_length=1000)


class OperatorSummary(SQLModel):
    id: int
    name: str
    email: str


class CategorySummary(SQLModel):
    id: int
    name: str


class DeletionRead(SQLModel):
    """Deletion details of a soft-deleted donation."""

    deleted_at: datetime
    deleted_by: int
    reason: str


class DonationRead(SQLModel):
    """Schema for reading a donation.

    ``operator``, ``category`` and ``deletion`` are always present and set to
    None when there is nothing to show.
    """

    id: int
    donor_name: str
    donor_phone: str
    donor_email: str | None
    amount: Decimal
    purpose: str
    payment_method: PaymentMethod
    notes: str | None
    receipt_number: str | None
    category_id: int | None
    operator_id: int
    date: datetime
    email_sent: bool
    email_sent_at: datetime | None
    email_error: str | None
    operator: OperatorSummary | None
    category: CategorySummary | None
    deletion: DeletionRead | None


class DonationPage(SQLModel):
    donations: list[DonationRead]
    pagination: Pagination


class DonorSummary(SQLModel):
    """Donations grouped by donor name and phone."""

    donor_name: str
    donor_phone: str
    total_donations: int
    total_amount: Decimal
    last_donation_date: datetime | None


class RecentDonation(SQLModel):
    id: int
    amount: Decimal
    purpose: str
    payment_method: PaymentMethod
    date: datetime


class DonorProfile(SQLModel):
    """Latest details and totals for one donor phone number."""

    donor_name: str
    donor_phone: str
    donor_email: str | None
    last_purpose: str
    last_payment_method: PaymentMethod
    total_donations: int
    total_amount: Decimal
    recent_donations: list[RecentDonation]
