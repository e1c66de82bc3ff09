"""SQLModel database models."""

from donation_ledger.models.common import Pagination
from donation_ledger.models.user import (
    EmailChange,
    OperatorActivity,
    OperatorPage,
    OperatorRead,
    OperatorStats,
    PasswordChange,
    ProfileUpdate,
    User,
    UserCreate,
    UserRead,
    UserRole,
    UserUpdate,
)
from donation_ledger.models.category import (
    CategoryCreate,
    CategoryPage,
    CategoryRead,
    CategoryStats,
    CategoryUpdate,
    CategoryWithStats,
    DonationCategory,
)
from donation_ledger.models.donation import (
    CategorySummary,
    DeletionRead,
    Donation,
    DonationCreate,
    DonationDelete,
    DonationPage,
    DonationRead,
    DonationUpdate,
    DonorProfile,
    DonorSummary,
    OperatorSummary,
    PaymentMethod,
    ReceiptResend,
    RecentDonation,
)
from donation_ledger.models.audit import (
    ActionCount,
    AuditAction,
    AuditLog,
    AuditLogRead,
    AuditPage,
    EntityType,
)
from donation_ledger.models.analytics import (
    DashboardMetrics,
    DayBucket,
    HourBucket,
    Insights,
    InsightsDistribution,
    InsightsOverview,
    OperatorBucket,
    OperatorPerformance,
    PaymentMethodBucket,
    PeriodTotals,
    PurposeBucket,
    Timeframe,
    TopDonor,
)

__all__ = [
    "Pagination",
    # User
    "User",
    "UserRole",
    "UserCreate",
    "UserUpdate",
    "UserRead",
    "OperatorRead",
    "OperatorPage",
    "OperatorActivity",
    "OperatorStats",
    "ProfileUpdate",
    "PasswordChange",
    "EmailChange",
    # Category
    "DonationCategory",
    "CategoryCreate",
    "CategoryPage",
    "CategoryUpdate",
    "CategoryRead",
    "CategoryWithStats",
    "CategoryStats",
    # Donation
    "Donation",
    "PaymentMethod",
    "DonationCreate",
    "DonationUpdate",
    "DonationDelete",
    "ReceiptResend",
    "DonationRead",
    "DonationPage",
    "OperatorSummary",
    "CategorySummary",
    "DeletionRead",
    "DonorSummary",
    "DonorProfile",
    "RecentDonation",
    # Audit
    "AuditAction",
    "AuditLog",
    "AuditLogRead",
    "AuditPage",
    "ActionCount",
    "EntityType",
    # Analytics
    "Timeframe",
    "PeriodTotals",
    "DashboardMetrics",
    "Insights",
    "InsightsOverview",
    "InsightsDistribution",
    "PurposeBucket",
    "PaymentMethodBucket",
    "HourBucket",
    "DayBucket",
    "OperatorBucket",
    "OperatorPerformance",
    "TopDonor",
]
