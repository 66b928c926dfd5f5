"""Tests for the stale schedule cleanup sweep."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from factories import client_error, make_cleanup_settings
from leasecosts.workers.cleanup import StaleScheduleCleaner

NOW = datetime(2026, 2, 10, 12, 0, tzinfo=UTC)

EXPRESSIONS = {
    "stale-deleted": "at(2026-02-06T11:00:00)",  # 73h ago
    "stale-gone": "at(2026-02-01T00:00:00)",
    "stale-failing": "at(2026-01-20T00:00:00)",
    "recent": "at(2026-02-09T12:00:00)",  # 24h ago
    "boundary": "at(2026-02-07T12:00:00)",  # exactly 72h ago
    "future": "at(2026-02-11T12:00:00)",
    "recurring": "rate(1 day)",
    "vanished": None,
}


def _schedules() -> AsyncMock:
    schedules = AsyncMock()
    schedules.group_name = "isb-lease-costs"
    schedules.list_all.return_value = [{"Name": name} for name in EXPRESSIONS] + [
        {"Name": "broken"},
        {"Arn": "no-name"},
    ]

    async def get_expression(name: str) -> str | None:
        if name == "broken":
            raise client_error("InternalServerException")
        return EXPRESSIONS[name]

    async def delete_schedule(name: str) -> bool:
        if name == "stale-failing":
            raise client_error("ThrottlingException")
        return name != "stale-gone"

    schedules.get_expression.side_effect = get_expression
    schedules.delete_schedule.side_effect = delete_schedule
    return schedules


class TestStaleScheduleCleaner:
    @pytest.mark.asyncio
    async def test_counts(self) -> None:
        cleaner = StaleScheduleCleaner(_schedules(), max_age_hours=72, clock=lambda: NOW)

        result = await cleaner.run()

        assert result.total == 10
        assert result.stale == 3
        assert result.deleted == 1
        assert result.already_deleted == 1
        assert result.failed == 1
        assert result.deleted_names == ["stale-deleted"]
        assert result.failed_names == ["stale-failing"]

    @pytest.mark.asyncio
    async def test_only_stale_schedules_deleted(self) -> None:
        schedules = _schedules()
        cleaner = StaleScheduleCleaner(schedules, max_age_hours=72, clock=lambda: NOW)

        await cleaner.run()

        deleted = [c.args[0] for c in schedules.delete_schedule.call_args_list]
        assert deleted == ["stale-deleted", "stale-gone", "stale-failing"]

    @pytest.mark.asyncio
    async def test_shorter_max_age(self) -> None:
        schedules = _schedules()
        cleaner = StaleScheduleCleaner(schedules, max_age_hours=1, clock=lambda: NOW)

        result = await cleaner.run()

        assert result.stale == 5

    @pytest.mark.asyncio
    async def test_empty_group(self) -> None:
        schedules = AsyncMock()
        schedules.group_name = "g"
        schedules.list_all.return_value = []

        result = await StaleScheduleCleaner(schedules, clock=lambda: NOW).run()

        assert result.total == 0
        assert result.deleted == 0
        schedules.delete_schedule.assert_not_awaited()

    def test_from_settings(self) -> None:
        cleaner = StaleScheduleCleaner.from_settings(
            make_cleanup_settings(max_schedule_age_hours=48), MagicMock()
        )
        assert cleaner.max_age.total_seconds() == 48 * 3600
