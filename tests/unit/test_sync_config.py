"""
Unit tests for sync configuration and quiet hours
"""

import pytest
from datetime import datetime
from types import SimpleNamespace
from core.exceptions import RequestValidationError
from ingestion.sync_config import SyncConfigService, is_quiet_hour
from models.base import Provider, SyncMode


def window(start, end):
    return SimpleNamespace(quiet_hours_start=start, quiet_hours_end=end)


class TestQuietHours:
    
    @pytest.mark.parametrize("hour,expected", [(1, False), (2, True), (5, True), (6, False), (23, False)])
    def test_same_day_window(self, hour, expected):
        assert is_quiet_hour(window(2, 6), datetime(2024, 3, 1, hour, 30)) is expected
    
    @pytest.mark.parametrize("hour,expected", [(21, False), (22, True), (23, True), (0, True), (5, True), (6, False)])
    def test_window_wrapping_midnight(self, hour, expected):
        assert is_quiet_hour(window(22, 6), datetime(2024, 3, 1, hour, 0)) is expected
    
    @pytest.mark.parametrize("start,end", [(None, None), (None, 6), (3, 3)])
    def test_no_window(self, start, end):
        assert is_quiet_hour(window(start, end), datetime(2024, 3, 1, 3, 0)) is False


class TestSyncConfigService:
    
    @pytest.mark.asyncio
    async def test_defaults_created_on_first_read(self, db_session):
        config = await SyncConfigService(db_session).get(Provider.EITJE)
        
        assert config.mode == SyncMode.MANUAL
        assert config.incremental_interval_minutes == 60
        assert config.worker_interval_minutes == 5
        assert "time_registration_shifts" in config.enabled_endpoints
    
    @pytest.mark.asyncio
    async def test_get_is_stable(self, db_session):
        service = SyncConfigService(db_session)
        first = await service.get(Provider.BORK)
        second = await service.get(Provider.BORK)
        
        assert first.id == second.id
        assert second.enabled_endpoints == ["tickets"]
    
    @pytest.mark.asyncio
    async def test_update_reports_mode_change(self, db_session):
        service = SyncConfigService(db_session)
        
        config, changed = await service.update(Provider.EITJE, {"mode": "incremental", "quiet_hours_start": 23})
        assert changed is True
        assert config.mode == SyncMode.INCREMENTAL
        assert config.quiet_hours_start == 23
        
        _, changed = await service.update(Provider.EITJE, {"incremental_interval_minutes": 30})
        assert changed is False
    
    @pytest.mark.asyncio
    async def test_quiet_hours_can_be_cleared(self, db_session):
        service = SyncConfigService(db_session)
        await service.update(Provider.EITJE, {"quiet_hours_start": 22, "quiet_hours_end": 6})
        
        config, _ = await service.update(Provider.EITJE, {"quiet_hours_start": None, "quiet_hours_end": None})
        
        assert config.quiet_hours_start is None
        assert config.quiet_hours_end is None
    
    @pytest.mark.asyncio
    async def test_invalid_update_changes_nothing(self, db_session):
        service = SyncConfigService(db_session)
        
        with pytest.raises(RequestValidationError):
            await service.update(Provider.EITJE, {"mode": "incremental", "worker_interval_minutes": 0})
        with pytest.raises(RequestValidationError):
            await service.update(Provider.EITJE, {"mode": "incremental", "enabled_endpoints": ["payroll"]})
        
        config = await service.get(Provider.EITJE)
        assert config.mode == SyncMode.MANUAL
    
    @pytest.mark.asyncio
    async def test_transition_happens_once(self, db_session):
        service = SyncConfigService(db_session)
        await service.set_mode(Provider.EITJE, SyncMode.BACKFILL)
        
        assert await service.transition_to_incremental(Provider.EITJE) is True
        assert await service.transition_to_incremental(Provider.EITJE) is False
        assert (await service.get(Provider.EITJE)).mode == SyncMode.INCREMENTAL
    
    @pytest.mark.asyncio
    async def test_no_transition_from_manual(self, db_session):
        service = SyncConfigService(db_session)
        
        assert await service.transition_to_incremental(Provider.EITJE) is False
        assert (await service.get(Provider.EITJE)).mode == SyncMode.MANUAL
