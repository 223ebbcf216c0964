"""
Integration tests for the aggregation engine
"""

import pytest
from dataclasses import replace
from datetime import date
from unittest.mock import patch
from sqlalchemy import select
from core.exceptions import RequestValidationError
from ingestion.aggregation import AggregationEngine
from ingestion.loaders.raw_loader import RawIngestionStore
from models.aggregated import RevenueDaysAggregated, LaborHoursAggregated, BorkSalesAggregated
from models.base import Provider


async def aggregated_rows(session, model):
    result = await session.execute(select(model).execution_options(populate_existing=True))
    return result.scalars().all()


class TestAggregationEngine:
    
    @pytest.mark.asyncio
    async def test_revenue_worked_example(self, db_session, revenue_records, no_wait_limiter):
        await RawIngestionStore(db_session, rate_limiter=no_wait_limiter).store(
            Provider.EITJE, "revenue_days", revenue_records
        )
        
        result = await AggregationEngine(db_session).aggregate(
            Provider.EITJE, "revenue_days", "2024-03-01", "2024-03-01"
        )
        
        assert result.records_read == 2
        assert result.records_aggregated == 1
        row = (await aggregated_rows(db_session, RevenueDaysAggregated))[0]
        assert (row.date, row.environment_id) == (date(2024, 3, 1), "7")
        assert row.total_revenue == 36
        assert row.transaction_count == 2
        assert row.avg_revenue_per_transaction == 18
    
    @pytest.mark.asyncio
    async def test_aggregation_is_idempotent(self, db_session, shift_records, no_wait_limiter):
        await RawIngestionStore(db_session, rate_limiter=no_wait_limiter).store(
            Provider.EITJE, "time_registration_shifts", shift_records
        )
        engine = AggregationEngine(db_session)
        
        await engine.aggregate(Provider.EITJE, "time_registration_shifts", "2024-03-01", "2024-03-01")
        first = [
            (r.date, r.environment_id, r.team_id, r.total_hours_worked, r.total_wage_cost, r.shift_count)
            for r in await aggregated_rows(db_session, LaborHoursAggregated)
        ]
        await engine.aggregate(Provider.EITJE, "time_registration_shifts", "2024-03-01", "2024-03-01")
        second = [
            (r.date, r.environment_id, r.team_id, r.total_hours_worked, r.total_wage_cost, r.shift_count)
            for r in await aggregated_rows(db_session, LaborHoursAggregated)
        ]
        
        assert first == second
        assert first == [(date(2024, 3, 1), "7", "3", 12.0, 180.0, 2)]
    
    @pytest.mark.asyncio
    async def test_reaggregation_overwrites_accumulators(self, db_session, revenue_records, no_wait_limiter):
        store = RawIngestionStore(db_session, rate_limiter=no_wait_limiter)
        engine = AggregationEngine(db_session)
        await store.store(Provider.EITJE, "revenue_days", revenue_records)
        await engine.aggregate(Provider.EITJE, "revenue_days", "2024-03-01", "2024-03-01")
        
        await store.store(Provider.EITJE, "revenue_days", [{**revenue_records[1], "amt_in_cents": 950}])
        await engine.aggregate(Provider.EITJE, "revenue_days", "2024-03-01", "2024-03-01")
        
        rows = await aggregated_rows(db_session, RevenueDaysAggregated)
        assert len(rows) == 1
        assert rows[0].total_revenue == 20
    
    @pytest.mark.asyncio
    async def test_failed_group_does_not_block_others(self, db_session, no_wait_limiter):
        records = [
            {"id": 1, "date": "2024-03-01", "environment_id": 7, "revenue": 10},
            {"id": 2, "date": "2024-03-01", "environment_id": 8, "revenue": 20},
        ]
        await RawIngestionStore(db_session, rate_limiter=no_wait_limiter).store(Provider.EITJE, "revenue_days", records)
        
        from ingestion.transformers import aggregators
        original = aggregators.compute_revenue_metrics
        
        def flaky_compute(payloads):
            if payloads[0]["environment_id"] == 8:
                raise ZeroDivisionError("bad group")
            return original(payloads)
        
        definition = aggregators.AGGREGATIONS[(Provider.EITJE, "revenue_days")]
        patched = replace(definition, compute=flaky_compute)
        with patch.dict(aggregators.AGGREGATIONS, {(Provider.EITJE, "revenue_days"): patched}):
            result = await AggregationEngine(db_session).aggregate(
                Provider.EITJE, "revenue_days", "2024-03-01", "2024-03-01"
            )
        
        assert result.success is False
        assert result.records_aggregated == 1
        assert result.failed_groups[0].group_key == "2024-03-01|8"
        assert [r.environment_id for r in await aggregated_rows(db_session, RevenueDaysAggregated)] == ["7"]
    
    @pytest.mark.asyncio
    async def test_bork_sales_per_location(self, db_session, bork_tickets, no_wait_limiter):
        tickets = [{**t, "_business_date": "2024-03-01"} for t in bork_tickets]
        await RawIngestionStore(db_session, rate_limiter=no_wait_limiter).store(
            Provider.BORK, "tickets", tickets, location_id="loc-1"
        )
        
        result = await AggregationEngine(db_session).aggregate(
            Provider.BORK, "tickets", "2024-03-01", "2024-03-01", location_id="loc-1"
        )
        
        assert result.records_aggregated == 1
        row = (await aggregated_rows(db_session, BorkSalesAggregated))[0]
        assert row.location_id == "loc-1"
        assert row.total_revenue == 33.9
        assert row.top_category == "Drinks"
        assert row.category_breakdown[0]["category"] == "Drinks"
    
    @pytest.mark.asyncio
    async def test_empty_range_writes_nothing(self, db_session):
        result = await AggregationEngine(db_session).aggregate(
            Provider.EITJE, "planning_shifts", "2024-03-01", "2024-03-07"
        )
        
        assert result.records_read == 0
        assert result.records_aggregated == 0
        assert result.success is True
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("endpoint,start,end", [
        ("environments", "2024-03-01", "2024-03-01"),
        ("revenue_days", "2024-03-02", "2024-03-01"),
        ("revenue_days", "March 1", "2024-03-01"),
    ])
    async def test_invalid_requests(self, db_session, endpoint, start, end):
        with pytest.raises(RequestValidationError):
            await AggregationEngine(db_session).aggregate(Provider.EITJE, endpoint, start, end)
