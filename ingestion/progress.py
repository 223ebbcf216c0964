"""
Read-only views over sync coverage: missing days, monthly completeness
and backfill plan status.
"""

from collections import OrderedDict
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import select, func, distinct
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import RequestValidationError
from ingestion.base import parse_iso_date
from ingestion.endpoints import get_endpoint
from models.base import Provider, QueueStatus
from models.backfill import BackfillProgress, BackfillQueueItem
from models.raw_records import RAW_MODELS
import logging

logger = logging.getLogger(__name__)


def date_range(start: date, end: date) -> List[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def find_missing_dates(start: date, end: date, present: Iterable[date]) -> List[date]:
    present = set(present)
    return [day for day in date_range(start, end) if day not in present]


def collapse_ranges(days: List[date]) -> List[Dict[str, Any]]:
    """Collapse sorted dates into contiguous {start, end, days} ranges."""
    ranges: List[Dict[str, Any]] = []
    for day in days:
        if ranges and ranges[-1]["_end"] + timedelta(days=1) == day:
            ranges[-1]["_end"] = day
            ranges[-1]["days"] += 1
        else:
            ranges.append({"_start": day, "_end": day, "days": 1})
    return [
        {"start": r["_start"].isoformat(), "end": r["_end"].isoformat(), "days": r["days"]}
        for r in ranges
    ]


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


class ProgressTracker:
    """Coverage of raw tables over a date range."""
    
    def __init__(self, db_session: AsyncSession):
        self.db = db_session
    
    @staticmethod
    def _range(start_date: Any, end_date: Any):
        start = parse_iso_date(start_date, "start_date")
        end = parse_iso_date(end_date, "end_date")
        if start > end:
            raise RequestValidationError(
                "start_date must be before or equal to end_date",
                context={"start_date": start.isoformat(), "end_date": end.isoformat(), "validation_rule": "start<=end"}
            )
        return start, end
    
    async def _present_dates(
        self,
        provider: Provider,
        endpoint: str,
        start: date,
        end: date,
        location_id: Optional[str] = None,
    ) -> Set[date]:
        get_endpoint(provider, endpoint)
        model = RAW_MODELS.get((provider, endpoint))
        if model is None:
            raise RequestValidationError(
                f"{endpoint} has no date-scoped raw table",
                context={"field_name": "endpoint", "field_value": endpoint}
            )
        query = select(distinct(model.effective_date)).where(
            model.effective_date >= start,
            model.effective_date <= end,
        )
        if location_id:
            query = query.where(model.location_id == location_id)
        result = await self.db.execute(query)
        return {value for value in result.scalars().all() if value is not None}
    
    async def detect_gaps(
        self,
        provider: Provider,
        endpoint: str,
        start_date: Any,
        end_date: Any,
        location_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Days in the range without any raw row for the endpoint."""
        provider = Provider(provider)
        start, end = self._range(start_date, end_date)
        present = await self._present_dates(provider, endpoint, start, end, location_id)
        missing = find_missing_dates(start, end, present)
        
        return {
            "provider": provider.value,
            "endpoint": endpoint,
            "location_id": location_id,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "total_days": (end - start).days + 1,
            "missing_days": len(missing),
            "missing_dates": [day.isoformat() for day in missing],
            "missing_ranges": collapse_ranges(missing),
        }
    
    async def monthly_progress(
        self,
        provider: Provider,
        endpoints: List[str],
        start_date: Any,
        end_date: Any,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Per endpoint, one entry per month with synced_days/total_days."""
        provider = Provider(provider)
        start, end = self._range(start_date, end_date)
        report: Dict[str, List[Dict[str, Any]]] = OrderedDict()
        
        for endpoint in endpoints:
            present = await self._present_dates(provider, endpoint, start, end)
            months = []
            month = _month_start(start)
            while month <= end:
                window_start = max(month, start)
                window_end = min(_next_month(month) - timedelta(days=1), end)
                total = (window_end - window_start).days + 1
                synced = sum(1 for day in present if window_start <= day <= window_end)
                months.append({
                    "month": month.strftime("%Y-%m"),
                    "synced_days": synced,
                    "total_days": total,
                    "percentage": round(synced / total * 100, 1) if total else 0.0,
                    "is_complete": synced == total,
                })
                month = _next_month(month)
            report[endpoint] = months
        
        return report
    
    async def backfill_status(self, provider: Provider) -> List[Dict[str, Any]]:
        """Progress rows of the provider, newest first, with queue counts by status."""
        provider = Provider(provider)
        progress_result = await self.db.execute(
            select(BackfillProgress)
            .where(BackfillProgress.provider == provider)
            .order_by(BackfillProgress.started_at.desc())
            .execution_options(populate_existing=True)
        )
        progress_rows = progress_result.scalars().all()
        if not progress_rows:
            return []
        
        counts_result = await self.db.execute(
            select(BackfillQueueItem.progress_id, BackfillQueueItem.status, func.count())
            .where(BackfillQueueItem.progress_id.in_([row.id for row in progress_rows]))
            .group_by(BackfillQueueItem.progress_id, BackfillQueueItem.status)
        )
        counts: Dict[str, Dict[str, int]] = {}
        for progress_id, status, count in counts_result.all():
            counts.setdefault(progress_id, {})[QueueStatus(status).value] = count
        
        return [
            {
                "id": row.id,
                "endpoints": row.endpoint.split(","),
                "location_id": row.location_id,
                "start_date": row.start_date.isoformat(),
                "end_date": row.end_date.isoformat(),
                "status": row.status.value,
                "completed_chunks": row.completed_chunks,
                "total_chunks": row.total_chunks,
                "records_fetched": row.records_fetched,
                "current_chunk": (
                    {"start": row.current_chunk_start.isoformat(), "end": row.current_chunk_end.isoformat()}
                    if row.current_chunk_start and row.current_chunk_end else None
                ),
                "last_error": row.last_error,
                "started_at": row.started_at.isoformat() if row.started_at else None,
                "completed_at": row.completed_at.isoformat() if row.completed_at else None,
                "queue": {status.value: counts.get(row.id, {}).get(status.value, 0) for status in QueueStatus},
            }
            for row in progress_rows
        ]
