import pytest
from datetime import date, datetime
from core.exceptions import RequestValidationError
from ingestion.backfill import BackfillPlanner, BackfillQueue
from ingestion.loaders.raw_loader import RawIngestionStore
from ingestion.progress import ProgressTracker, collapse_ranges, find_missing_dates
from models.base import Provider


def revenue_day(record_id, day):
    return {"id": record_id, "date": day, "environment_id": 7, "amt_in_cents": 100}


def test_collapse_ranges_merges_consecutive_days():
    days = [date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4), date(2024, 1, 7), date(2024, 1, 9), date(2024, 1, 10)]
    
    assert collapse_ranges(days) == [
        {"start": "2024-01-02", "end": "2024-01-04", "days": 3},
        {"start": "2024-01-07", "end": "2024-01-07", "days": 1},
        {"start": "2024-01-09", "end": "2024-01-10", "days": 2},
    ]
    assert collapse_ranges([]) == []


def test_find_missing_dates():
    present = {date(2024, 1, 1), date(2024, 1, 3)}
    
    assert find_missing_dates(date(2024, 1, 1), date(2024, 1, 4), present) == [date(2024, 1, 2), date(2024, 1, 4)]


@pytest.fixture
def store(db_session, no_wait_limiter):
    return RawIngestionStore(db_session, rate_limiter=no_wait_limiter)


@pytest.mark.asyncio
async def test_detect_gaps_reports_missing_ranges(db_session, store):
    await store.store(Provider.EITJE, "revenue_days", [
        revenue_day(1, "2024-01-01"),
        revenue_day(2, "2024-01-02"),
        revenue_day(3, "2024-01-05"),
    ])
    
    gaps = await ProgressTracker(db_session).detect_gaps(Provider.EITJE, "revenue_days", "2024-01-01", "2024-01-07")
    
    assert gaps["total_days"] == 7
    assert gaps["missing_days"] == 4
    assert gaps["missing_dates"] == ["2024-01-03", "2024-01-04", "2024-01-06", "2024-01-07"]
    assert gaps["missing_ranges"] == [
        {"start": "2024-01-03", "end": "2024-01-04", "days": 2},
        {"start": "2024-01-06", "end": "2024-01-07", "days": 2},
    ]


@pytest.mark.asyncio
async def test_detect_gaps_rejects_bad_requests(db_session):
    tracker = ProgressTracker(db_session)
    
    with pytest.raises(RequestValidationError):
        await tracker.detect_gaps(Provider.EITJE, "revenue_days", "2024-01-07", "2024-01-01")
    with pytest.raises(RequestValidationError):
        await tracker.detect_gaps(Provider.EITJE, "no_such_endpoint", "2024-01-01", "2024-01-07")
    with pytest.raises(RequestValidationError):
        await tracker.detect_gaps(Provider.EITJE, "revenue_days", "01-01-2024", "2024-01-07")


@pytest.mark.asyncio
async def test_monthly_progress_clips_to_requested_range(db_session, store):
    await store.store(Provider.EITJE, "revenue_days", [
        revenue_day(1, "2024-01-30"),
        revenue_day(2, "2024-01-31"),
        revenue_day(3, "2024-02-01"),
    ])
    
    report = await ProgressTracker(db_session).monthly_progress(
        Provider.EITJE, ["revenue_days"], "2024-01-30", "2024-02-04"
    )
    
    assert report["revenue_days"] == [
        {"month": "2024-01", "synced_days": 2, "total_days": 2, "percentage": 100.0, "is_complete": True},
        {"month": "2024-02", "synced_days": 1, "total_days": 4, "percentage": 25.0, "is_complete": False},
    ]


@pytest.mark.asyncio
async def test_backfill_status_counts_queue_items(db_session):
    now = datetime(2024, 4, 1, 12, 0)
    plan = await BackfillPlanner(db_session).create_plan(
        Provider.EITJE, "2024-01-01", "2024-01-21", endpoints=["revenue_days"], chunk_days=7, now=now
    )
    queue = BackfillQueue(db_session)
    chunk = await queue.claim_next(Provider.EITJE, now)
    await queue.complete(chunk, 7, now)
    
    [status] = await ProgressTracker(db_session).backfill_status(Provider.EITJE)
    
    assert status["id"] == plan["progress_id"]
    assert status["endpoints"] == ["revenue_days"]
    assert status["status"] == "in_progress"
    assert status["completed_chunks"] == 1
    assert status["total_chunks"] == 3
    assert status["queue"] == {"pending": 2, "processing": 0, "completed": 1, "failed": 0}


@pytest.mark.asyncio
async def test_backfill_status_without_plans(db_session):
    assert await ProgressTracker(db_session).backfill_status(Provider.BORK) == []
