"""
Integration tests for the raw ingestion store
"""

import pytest
from datetime import date
from unittest.mock import patch
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError
from core.exceptions import RequestValidationError
from ingestion.loaders.raw_loader import RawIngestionStore
from models.base import Provider
from models.raw_records import EitjeRevenueDayRaw, EitjeTimeRegistrationShiftRaw, BorkProductGroup, BorkTicketRaw


async def count_rows(session, model):
    return (await session.execute(select(func.count()).select_from(model))).scalar()


class TestRawIngestionStore:
    
    @pytest.mark.asyncio
    async def test_store_is_idempotent(self, db_session, revenue_records, no_wait_limiter):
        store = RawIngestionStore(db_session, rate_limiter=no_wait_limiter)
        
        first = await store.store(Provider.EITJE, "revenue_days", revenue_records)
        second = await store.store(Provider.EITJE, "revenue_days", revenue_records)
        
        assert (first.records_added, first.records_updated) == (2, 0)
        assert (second.records_added, second.records_updated) == (0, 2)
        assert await count_rows(db_session, EitjeRevenueDayRaw) == 2
    
    @pytest.mark.asyncio
    async def test_conflicting_payload_is_replaced(self, db_session, revenue_records, no_wait_limiter):
        store = RawIngestionStore(db_session, rate_limiter=no_wait_limiter)
        await store.store(Provider.EITJE, "revenue_days", revenue_records)
        
        changed = [{**revenue_records[0], "amt_in_cents": 9999}]
        await store.store(Provider.EITJE, "revenue_days", changed)
        
        row = (await db_session.execute(
            select(EitjeRevenueDayRaw)
            .where(EitjeRevenueDayRaw.provider_id == "501")
            .execution_options(populate_existing=True)
        )).scalars().one()
        assert row.payload["amt_in_cents"] == 9999
        assert row.effective_date == date(2024, 3, 1)
        assert row.location_id == "7"
    
    @pytest.mark.asyncio
    async def test_records_without_id_are_counted_not_fatal(self, db_session, shift_records, no_wait_limiter):
        store = RawIngestionStore(db_session, rate_limiter=no_wait_limiter)
        records = shift_records + [{"date": "2024-03-01", "hours": 2}, "not-a-record"]
        
        result = await store.store(Provider.EITJE, "time_registration_shifts", records)
        
        assert result.records_processed == 4
        assert result.records_added == 2
        assert result.errors == 2
        assert result.failed_batches == 0
        assert await count_rows(db_session, EitjeTimeRegistrationShiftRaw) == 2
    
    @pytest.mark.asyncio
    async def test_duplicates_within_a_call_are_collapsed(self, db_session, no_wait_limiter):
        store = RawIngestionStore(db_session, rate_limiter=no_wait_limiter)
        records = [{"id": 1, "date": "2024-03-01", "revenue": 10}, {"id": 1, "date": "2024-03-01", "revenue": 12}]
        
        result = await store.store(Provider.EITJE, "revenue_days", records)
        
        assert result.records_added == 1
        row = (await db_session.execute(select(EitjeRevenueDayRaw))).scalars().one()
        assert row.payload["revenue"] == 12
    
    @pytest.mark.asyncio
    async def test_failed_batch_does_not_undo_committed_batches(self, db_session, no_wait_limiter):
        store = RawIngestionStore(db_session, batch_size=2, rate_limiter=no_wait_limiter)
        records = [{"id": i, "date": "2024-03-01", "revenue": i} for i in range(1, 6)]
        original = store._upsert_batch
        calls = []
        
        async def flaky_upsert(model, batch):
            calls.append(batch)
            if len(calls) == 2:
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            await original(model, batch)
        
        with patch.object(store, "_upsert_batch", side_effect=flaky_upsert):
            result = await store.store(Provider.EITJE, "revenue_days", records)
        
        assert result.failed_batches == 1
        assert result.errors == 2
        assert result.records_added == 3
        assert await count_rows(db_session, EitjeRevenueDayRaw) == 3
    
    @pytest.mark.asyncio
    async def test_bork_tickets_are_keyed_per_location(self, db_session, bork_tickets, no_wait_limiter):
        store = RawIngestionStore(db_session, rate_limiter=no_wait_limiter)
        tickets = [{**t, "_business_date": "2024-03-01"} for t in bork_tickets]
        
        await store.store(Provider.BORK, "tickets", tickets, location_id="loc-1")
        await store.store(Provider.BORK, "tickets", tickets, location_id="loc-2")
        
        ids = (await db_session.execute(select(BorkTicketRaw.provider_id))).scalars().all()
        assert sorted(ids) == ["loc-1:T1", "loc-1:T2", "loc-2:T1", "loc-2:T2"]
    
    @pytest.mark.asyncio
    async def test_bork_master_data_is_undated_and_per_location(self, db_session, no_wait_limiter):
        store = RawIngestionStore(db_session, rate_limiter=no_wait_limiter)
        groups = [{"ID": 4, "Name": "Bar", "_location_id": "loc-1"}]
        
        result = await store.store(Provider.BORK, "product_groups", groups, location_id="loc-1")
        
        assert result.table_name == "bork_product_groups"
        row = (await db_session.execute(select(BorkProductGroup))).scalars().one()
        assert row.provider_id == "loc-1:4"
        assert row.location_id == "loc-1"
        assert row.effective_date is None
    
    @pytest.mark.asyncio
    async def test_unknown_endpoint(self, db_session):
        with pytest.raises(RequestValidationError):
            await RawIngestionStore(db_session).store(Provider.EITJE, "payroll", [])
