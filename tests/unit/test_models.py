"""Unit tests for model schemas and column types."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from donation_ledger.core.clock import utcnow
from donation_ledger.models import (
    AuditLog,
    CategoryCreate,
    CategoryUpdate,
    Donation,
    DonationCategory,
    User,
)
from tests.conftest import create_donation


class TestCategorySchemas:
    def test_color_must_be_hex(self):
        with pytest.raises(ValidationError):
            CategoryCreate(name="Zakat", color="green")

    def test_valid_color(self):
        assert CategoryCreate(name="Zakat", color="#10b981").color == "#10b981"
        assert CategoryUpdate(color=None).color is None


class TestTimestampColumns:
    """Timestamps are stored as naive UTC."""

    @pytest.mark.parametrize(
        "column",
        [
            User.__table__.c.created_at,
            User.__table__.c.last_login,
            Donation.__table__.c.date,
            Donation.__table__.c.deleted_at,
            Donation.__table__.c.email_sent_at,
            DonationCategory.__table__.c.created_at,
            AuditLog.__table__.c.timestamp,
        ],
    )
    def test_columns_are_naive(self, column):
        assert column.type.timezone is False

    @pytest.mark.asyncio
    async def test_naive_timestamp_round_trips(self, database, operator_user):
        when = datetime(2026, 4, 1, 23, 59, 0)

        donation = await create_donation(database, operator_user.id, date=when)

        async with database.session() as session:
            stored = await session.get(Donation, donation.id)
        assert stored.date == when
        assert stored.date.tzinfo is None
        assert utcnow().tzinfo is None
