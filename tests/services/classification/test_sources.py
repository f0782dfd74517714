"""
Upstream Source Tests
=====================

Tests for the PostgreSQL time-tracking, engagement and contractor sources.

Version: 0.1.0
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from services.classification.errors import Stage, UpstreamDataError
from services.classification.sources import (
    ContractorRecord,
    SqlContractorRegistry,
    SqlEngagementRegistry,
    SqlTimeTrackingSource,
)


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Mock database session."""
    return AsyncMock()


def _rows(session: AsyncMock, rows: list) -> None:
    result = MagicMock()
    result.fetchall.return_value = rows
    session.execute.return_value = result


def _contractor_row(status: str = "active") -> MagicMock:
    row = MagicMock(id=uuid4(), organization_id=uuid4(), status=status)
    row.name = "Ada Lovelace"
    return row


def _db_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


class TestTimeTrackingSource:
    """Tests for SqlTimeTrackingSource."""

    @pytest.mark.asyncio
    async def test_entries(self, mock_db_session: AsyncMock) -> None:
        engagement_id = uuid4()
        _rows(
            mock_db_session,
            [
                MagicMock(
                    contractor_id="c-1",
                    engagement_id=engagement_id,
                    entry_date=date(2024, 6, 3),
                    hours=Decimal("7.50"),
                )
            ],
        )

        entries = await SqlTimeTrackingSource().entries(
            mock_db_session, "c-1", date(2024, 3, 16), date(2024, 6, 14)
        )

        assert entries[0].engagement_id == str(engagement_id)
        assert entries[0].hours == 7.5
        params = mock_db_session.execute.await_args.args[1]
        assert params == {"contractor_id": "c-1", "start": date(2024, 3, 16), "end": date(2024, 6, 14)}

    @pytest.mark.asyncio
    async def test_entries_failure(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.execute.side_effect = _db_error()

        with pytest.raises(UpstreamDataError) as exc_info:
            await SqlTimeTrackingSource().entries(
                mock_db_session, "c-1", date(2024, 3, 16), date(2024, 6, 14)
            )

        error = exc_info.value
        assert error.source == "time_tracking"
        assert error.stage == Stage.DERIVATION
        assert error.contractor_id == "c-1"
        assert error.retryable is True

    @pytest.mark.asyncio
    async def test_weekly_hours(self, mock_db_session: AsyncMock) -> None:
        _rows(
            mock_db_session,
            [
                MagicMock(contractor_id="c-1", week_start=date(2024, 6, 3), hours=Decimal("16")),
                MagicMock(contractor_id="c-1", week_start=date(2024, 6, 10), hours=Decimal("20")),
                MagicMock(contractor_id="c-2", week_start=date(2024, 6, 10), hours=Decimal("8")),
            ],
        )

        weekly = await SqlTimeTrackingSource().weekly_hours(
            mock_db_session, ["c-1", "c-2"], date(2024, 3, 16), date(2024, 6, 14)
        )

        assert weekly == {
            "c-1": {date(2024, 6, 3): 16.0, date(2024, 6, 10): 20.0},
            "c-2": {date(2024, 6, 10): 8.0},
        }

    @pytest.mark.asyncio
    async def test_weekly_hours_without_ids(self, mock_db_session: AsyncMock) -> None:
        weekly = await SqlTimeTrackingSource().weekly_hours(
            mock_db_session, [], date(2024, 3, 16), date(2024, 6, 14)
        )

        assert weekly == {}
        mock_db_session.execute.assert_not_awaited()


class TestEngagementRegistry:
    """Tests for SqlEngagementRegistry."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scalar,expected", [(3, 3), (None, 0)])
    async def test_active_count(self, mock_db_session: AsyncMock, scalar, expected: int) -> None:
        result = MagicMock()
        result.scalar.return_value = scalar
        mock_db_session.execute.return_value = result

        assert await SqlEngagementRegistry().active_count(mock_db_session, "c-1") == expected

    @pytest.mark.asyncio
    async def test_active_counts(self, mock_db_session: AsyncMock) -> None:
        _rows(mock_db_session, [MagicMock(contractor_id="c-1", engagement_count=2)])

        counts = await SqlEngagementRegistry().active_counts(mock_db_session, ["c-1", "c-2"])

        assert counts == {"c-1": 2}

    @pytest.mark.asyncio
    async def test_active_counts_failure(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.execute.side_effect = _db_error()

        with pytest.raises(UpstreamDataError) as exc_info:
            await SqlEngagementRegistry().active_counts(mock_db_session, ["c-1"])

        assert exc_info.value.source == "engagements"
        assert exc_info.value.stage == Stage.AGGREGATE


class TestContractorRegistry:
    """Tests for SqlContractorRegistry."""

    @pytest.mark.asyncio
    async def test_get(self, mock_db_session: AsyncMock) -> None:
        row = _contractor_row()
        result = MagicMock()
        result.fetchone.return_value = row
        mock_db_session.execute.return_value = result

        record = await SqlContractorRegistry().get(mock_db_session, str(row.id))

        assert record == ContractorRecord(
            id=str(row.id),
            organization_id=str(row.organization_id),
            name="Ada Lovelace",
            status="active",
        )
        assert record.is_active

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_db_session: AsyncMock) -> None:
        result = MagicMock()
        result.fetchone.return_value = None
        mock_db_session.execute.return_value = result

        assert await SqlContractorRegistry().get(mock_db_session, "missing") is None

    @pytest.mark.asyncio
    async def test_list_active(self, mock_db_session: AsyncMock) -> None:
        _rows(mock_db_session, [_contractor_row(), _contractor_row()])

        records = await SqlContractorRegistry().list_active(mock_db_session, organization_id="org-1")

        assert len(records) == 2
        params = mock_db_session.execute.await_args.args[1]
        assert params == {"status": "active", "organization_id": "org-1"}

    def test_inactive_record(self) -> None:
        record = ContractorRecord(id="c-1", organization_id="org-1", name="Ada", status="paused")

        assert not record.is_active

    @pytest.mark.asyncio
    async def test_failure(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.execute.side_effect = _db_error()

        with pytest.raises(UpstreamDataError) as exc_info:
            await SqlContractorRegistry().get(mock_db_session, "c-1")

        assert exc_info.value.stage == Stage.ELIGIBILITY
