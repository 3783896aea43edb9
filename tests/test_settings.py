"""Tests for settings management and cron parsing."""

import pytest
from unittest.mock import AsyncMock, patch

from apscheduler.triggers.cron import CronTrigger

from billing_recon.database import ConfigRepository, StoreError
from billing_recon.reconciliation import (
    InvalidScheduleError,
    SettingsManager,
    build_cron_trigger,
)


class TestBuildCronTrigger:
    """Tests for cron expression parsing."""

    def test_five_fields(self):
        assert isinstance(build_cron_trigger("0 2 * * *"), CronTrigger)

    def test_six_fields_with_seconds(self):
        trigger = build_cron_trigger("30 0 2 * * *", timezone="UTC")
        assert isinstance(trigger, CronTrigger)
        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["second"] == "30"
        assert fields["hour"] == "2"

    @pytest.mark.parametrize("expression", ["", "   ", "* * *", "61 * * * *", "not a cron", "1 2 3 4 5 6 7"])
    def test_invalid(self, expression):
        with pytest.raises(InvalidScheduleError):
            build_cron_trigger(expression)

    def test_invalid_schedule_is_value_error(self):
        assert issubclass(InvalidScheduleError, ValueError)


class TestSettingsManager:
    """Tests for SettingsManager."""

    async def test_load_creates_defaults(self, session_factory):
        manager = SettingsManager(session_factory)

        settings = await manager.load()

        assert settings.enabled is True
        assert settings.schedule == "0 2 * * *"
        assert settings.auto_fix_enabled is True
        assert settings.auto_fix_severity == "medium"
        assert settings.notification_enabled is True
        assert settings.retention_days == 30

        async with session_factory() as session:
            row = await ConfigRepository(session).get()
        assert row is not None
        assert row.schedule == "0 2 * * *"
        assert row.auto_fix_severity == "medium"

    async def test_load_existing(self, session_factory):
        async with session_factory() as session:
            await ConfigRepository(session).create({
                "schedule": "*/15 * * * *",
                "auto_fix_severity": "high",
                "notification_email": "ops@example.com",
            })

        settings = await SettingsManager(session_factory).load()

        assert settings.schedule == "*/15 * * * *"
        assert settings.auto_fix_severity == "high"
        assert settings.notification_email == "ops@example.com"

    async def test_snapshot_is_a_copy(self, settings_manager):
        snapshot = settings_manager.snapshot()
        snapshot.auto_fix_enabled = False

        assert settings_manager.snapshot().auto_fix_enabled is True

    async def test_update_persists(self, settings_manager, session_factory):
        updated = await settings_manager.update(auto_fix_severity="high", retention_days=7)

        assert updated.auto_fix_severity == "high"
        assert updated.retention_days == 7
        assert updated.updated_at is not None
        assert settings_manager.snapshot().auto_fix_severity == "high"

        async with session_factory() as session:
            row = await ConfigRepository(session).get()
        assert row.auto_fix_severity == "high"
        assert row.retention_days == 7

    async def test_update_rejects_invalid_severity(self, settings_manager):
        with pytest.raises(ValueError):
            await settings_manager.update(auto_fix_severity="urgent")

        assert settings_manager.snapshot().auto_fix_severity == "medium"

    async def test_update_rejects_invalid_retention(self, settings_manager):
        with pytest.raises(ValueError):
            await settings_manager.update(retention_days=0)

    async def test_update_rejects_invalid_schedule(self, settings_manager, session_factory):
        with pytest.raises(InvalidScheduleError):
            await settings_manager.update(schedule="every day")

        assert settings_manager.snapshot().schedule == "0 2 * * *"
        async with session_factory() as session:
            row = await ConfigRepository(session).get()
        assert row.schedule == "0 2 * * *"

    async def test_store_failure_keeps_memory_unchanged(self, settings_manager):
        with patch(
            "billing_recon.database.repository.ConfigRepository.update",
            new=AsyncMock(side_effect=StoreError("write failed")),
        ):
            with pytest.raises(StoreError):
                await settings_manager.update(enabled=False)

        assert settings_manager.snapshot().enabled is True
