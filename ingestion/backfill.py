"""
Backfill planning and the chunk queue.

A plan splits a historical range into fixed-size chunks, records a
BackfillProgress row and enqueues one BackfillQueueItem per chunk (and
per location for Bork), staggered by the worker interval. Workers claim
items with a conditional UPDATE so a chunk is processed by one worker
at a time; items left in `processing` by a dead worker are reclaimed
after a staleness threshold.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import RequestValidationError, QueueClaimError
from ingestion.base import parse_iso_date
from ingestion.endpoints import get_endpoint
from ingestion.sync_config import SyncConfigService
from models.base import Provider, SyncMode, BackfillStatus, QueueStatus
from models.backfill import BackfillProgress, BackfillQueueItem
import logging

logger = logging.getLogger(__name__)

SUPERSEDED_MESSAGE = "Superseded by new backfill"

# Candidates tried per claim before giving up for this tick
MAX_CLAIM_CANDIDATES = 5


def calculate_chunks(start: date, end: date, chunk_days: int) -> List[Tuple[date, date]]:
    """Split [start, end] into inclusive windows of ``chunk_days`` days; the last may be shorter."""
    if chunk_days < 1:
        raise RequestValidationError(
            "chunk_days must be at least 1",
            context={"field_name": "chunk_days", "field_value": chunk_days}
        )
    chunks = []
    current = start
    while current <= end:
        chunk_end = min(current + timedelta(days=chunk_days - 1), end)
        chunks.append((current, chunk_end))
        current = chunk_end + timedelta(days=1)
    return chunks


class BackfillPlanner:
    """Create and cancel backfill plans."""
    
    def __init__(self, db_session: AsyncSession, config_service: Optional[SyncConfigService] = None):
        self.db = db_session
        self.configs = config_service or SyncConfigService(db_session)
    
    def _validate_endpoints(self, provider: Provider, endpoints: List[str], chunk_days: int) -> None:
        if not endpoints:
            raise RequestValidationError(
                "At least one endpoint is required",
                context={"field_name": "endpoints", "validation_rule": "non_empty"}
            )
        for name in endpoints:
            endpoint = get_endpoint(provider, name)
            if not endpoint.requires_dates:
                raise RequestValidationError(
                    f"{name} is not date-scoped and cannot be backfilled",
                    context={"field_name": "endpoints", "field_value": name, "validation_rule": "date_scoped"}
                )
            if endpoint.max_days is not None and chunk_days - 1 > endpoint.max_days:
                raise RequestValidationError(
                    f"chunk_days={chunk_days} exceeds the {endpoint.max_days}-day window of {name}",
                    context={"field_name": "chunk_days", "field_value": chunk_days, "validation_rule": "max_window"}
                )
    
    async def cleanup(self, provider: Provider, now: Optional[datetime] = None) -> Dict[str, int]:
        """Fail every unfinished progress row and queue item of the provider."""
        provider = Provider(provider)
        now = now or datetime.utcnow()
        
        progress_result = await self.db.execute(
            update(BackfillProgress)
            .where(
                BackfillProgress.provider == provider,
                BackfillProgress.status.in_([BackfillStatus.PENDING, BackfillStatus.IN_PROGRESS]),
            )
            .values(status=BackfillStatus.FAILED, last_error=SUPERSEDED_MESSAGE, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        queue_result = await self.db.execute(
            update(BackfillQueueItem)
            .where(
                BackfillQueueItem.provider == provider,
                BackfillQueueItem.status.in_([QueueStatus.PENDING, QueueStatus.PROCESSING]),
            )
            .values(status=QueueStatus.FAILED, last_error=SUPERSEDED_MESSAGE, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        
        counts = {"progress_cancelled": progress_result.rowcount, "queue_items_cancelled": queue_result.rowcount}
        if any(counts.values()):
            logger.info(f"Cleaned up previous {provider.value} backfill: {counts}")
        return counts
    
    async def create_plan(
        self,
        provider: Provider,
        start_date: Any = None,
        end_date: Any = None,
        endpoints: Optional[List[str]] = None,
        chunk_days: Optional[int] = None,
        location_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Split the range into chunks, enqueue them and switch the provider to backfill mode.
        
        Defaults: start BACKFILL_DEFAULT_START_DATE, end today, the
        provider's enabled endpoints, BACKFILL_CHUNK_DAYS per chunk.
        """
        provider = Provider(provider)
        now = now or datetime.utcnow()
        config = await self.configs.get(provider)
        
        start = parse_iso_date(start_date or settings.BACKFILL_DEFAULT_START_DATE, "start_date")
        end = parse_iso_date(end_date, "end_date") if end_date else now.date()
        if start > end:
            raise RequestValidationError(
                "start_date must be before or equal to end_date",
                context={"start_date": start.isoformat(), "end_date": end.isoformat(), "validation_rule": "start<=end"}
            )
        
        endpoints = list(endpoints or config.enabled_endpoints)
        chunk_days = chunk_days or settings.BACKFILL_CHUNK_DAYS
        self._validate_endpoints(provider, endpoints, chunk_days)
        
        if provider == Provider.BORK:
            locations = [location_id] if location_id else list(config.enabled_locations or [])
            if not locations:
                raise RequestValidationError(
                    "Bork backfill needs a location_id or enabled_locations in sync-config",
                    context={"field_name": "location_id", "validation_rule": "required"}
                )
        else:
            locations = [None]
        
        await self.cleanup(provider, now)
        
        chunks = calculate_chunks(start, end, chunk_days)
        progress = BackfillProgress(
            provider=provider,
            endpoint=",".join(endpoints),
            location_id=location_id,
            start_date=start,
            end_date=end,
            total_chunks=len(chunks) * len(locations),
            completed_chunks=0,
            records_fetched=0,
            status=BackfillStatus.IN_PROGRESS,
            started_at=now,
        )
        self.db.add(progress)
        await self.db.flush()
        
        interval = timedelta(minutes=config.worker_interval_minutes)
        index = 0
        for chunk_start, chunk_end in chunks:
            for location in locations:
                self.db.add(BackfillQueueItem(
                    progress_id=progress.id,
                    provider=provider,
                    location_id=location,
                    chunk_start=chunk_start,
                    chunk_end=chunk_end,
                    endpoints=endpoints,
                    status=QueueStatus.PENDING,
                    attempt=0,
                    next_run_at=now + interval * index,
                    created_at=now,
                ))
                index += 1
        
        config.mode = SyncMode.BACKFILL
        config.updated_at = now
        await self.db.commit()
        
        logger.info(
            f"Created {provider.value} backfill {progress.id}: {start}..{end}, "
            f"{progress.total_chunks} chunks of {chunk_days} days for {', '.join(endpoints)}"
        )
        return {
            "progress_id": progress.id,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "endpoints": endpoints,
            "chunk_days": chunk_days,
            "total_chunks": progress.total_chunks,
            "chunks": [{"start": s.isoformat(), "end": e.isoformat()} for s, e in chunks],
        }


@dataclass(frozen=True)
class ClaimedChunk:
    """
    Plain copy of a claimed queue item.
    
    Workers hold this instead of the ORM instance: a rollback anywhere in
    the sync pipeline expires every instance in the session.
    """
    id: str
    progress_id: str
    provider: Provider
    location_id: Optional[str]
    chunk_start: date
    chunk_end: date
    endpoints: Tuple[str, ...]
    attempt: int
    
    @classmethod
    def from_item(cls, item: BackfillQueueItem) -> "ClaimedChunk":
        return cls(
            id=item.id,
            progress_id=item.progress_id,
            provider=Provider(item.provider),
            location_id=item.location_id,
            chunk_start=item.chunk_start,
            chunk_end=item.chunk_end,
            endpoints=tuple(item.endpoints or []),
            attempt=item.attempt,
        )


@dataclass(frozen=True)
class ChunkOutcome:
    """Result of resolving a chunk, with its plan's counters after the update."""
    applied: bool  # False when the claim was lost (reclaimed or superseded) before resolving
    progress_status: BackfillStatus
    completed_chunks: int
    total_chunks: int


class BackfillQueue:
    """Claim, resolve and reclaim backfill queue items."""
    
    def __init__(
        self,
        db_session: AsyncSession,
        stale_minutes: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db_session
        self.stale_minutes = stale_minutes or settings.BACKFILL_STALE_MINUTES
        self.max_attempts = max_attempts or settings.BACKFILL_MAX_ATTEMPTS
    
    async def _fail_progress(self, progress_id: str, error: str, now: datetime) -> None:
        """Terminal failure of a plan whose chunk ran out of attempts."""
        await self.db.execute(
            update(BackfillProgress)
            .where(BackfillProgress.id == progress_id, BackfillProgress.status == BackfillStatus.IN_PROGRESS)
            .values(
                status=BackfillStatus.FAILED,
                last_error=error,
                current_chunk_start=None,
                current_chunk_end=None,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        logger.error(f"Backfill {progress_id} failed: {error}")
    
    async def reclaim_stale(self, provider: Provider, now: datetime) -> int:
        """
        Release items stuck in `processing` past the staleness threshold.
        
        Items with attempts left go back to `pending` and run next;
        the rest are failed, and so is their plan.
        """
        cutoff = now - timedelta(minutes=self.stale_minutes)
        result = await self.db.execute(
            select(BackfillQueueItem.id, BackfillQueueItem.progress_id, BackfillQueueItem.attempt).where(
                BackfillQueueItem.provider == Provider(provider),
                BackfillQueueItem.status == QueueStatus.PROCESSING,
                BackfillQueueItem.started_at < cutoff,
            )
        )
        reclaimed = 0
        for item_id, progress_id, attempt in result.all():
            exhausted = attempt >= self.max_attempts
            if not exhausted:
                values = {
                    "status": QueueStatus.PENDING,
                    "next_run_at": now,
                    "last_error": "Reclaimed stale processing item",
                }
            else:
                values = {
                    "status": QueueStatus.FAILED,
                    "completed_at": now,
                    "last_error": f"Stale processing item exceeded {self.max_attempts} attempts",
                }
            outcome = await self.db.execute(
                update(BackfillQueueItem)
                .where(BackfillQueueItem.id == item_id, BackfillQueueItem.status == QueueStatus.PROCESSING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            reclaimed += outcome.rowcount
            logger.warning(f"Stale backfill item {item_id}: {values['last_error']}")
            if exhausted and outcome.rowcount:
                await self._fail_progress(progress_id, values["last_error"], now)
        
        await self.db.commit()
        return reclaimed
    
    async def claim_next(
        self,
        provider: Provider,
        now: datetime,
        progress_id: Optional[str] = None,
    ) -> Optional[ClaimedChunk]:
        """
        Claim the oldest due pending item of an in-progress plan.
        
        The claim is ``UPDATE ... WHERE id = :candidate AND status = 'pending'
        RETURNING id``: if another worker got there first no row comes back
        and the next candidate is tried.
        """
        active_progress = select(BackfillProgress.id).where(BackfillProgress.status == BackfillStatus.IN_PROGRESS)
        query = select(BackfillQueueItem.id).where(
            BackfillQueueItem.provider == Provider(provider),
            BackfillQueueItem.status == QueueStatus.PENDING,
            BackfillQueueItem.next_run_at <= now,
            BackfillQueueItem.progress_id.in_(active_progress),
        )
        if progress_id:
            query = query.where(BackfillQueueItem.progress_id == progress_id)
        query = query.order_by(
            BackfillQueueItem.next_run_at, BackfillQueueItem.chunk_start, BackfillQueueItem.id
        ).limit(MAX_CLAIM_CANDIDATES)
        
        try:
            candidates = (await self.db.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise QueueClaimError(
                "Failed to read claimable backfill items",
                context={"provider": Provider(provider).value, "progress_id": progress_id},
                original_exception=e
            )
        
        for candidate_id in candidates:
            try:
                result = await self.db.execute(
                    update(BackfillQueueItem)
                    .where(BackfillQueueItem.id == candidate_id, BackfillQueueItem.status == QueueStatus.PENDING)
                    .values(
                        status=QueueStatus.PROCESSING,
                        attempt=BackfillQueueItem.attempt + 1,
                        started_at=now,
                    )
                    .returning(BackfillQueueItem.id)
                    .execution_options(synchronize_session=False)
                )
                claimed_id = result.scalar_one_or_none()
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise QueueClaimError(
                    f"Failed to claim backfill item {candidate_id}",
                    context={"provider": Provider(provider).value, "item_id": candidate_id},
                    original_exception=e
                )
            
            if claimed_id is not None:
                chunk = ClaimedChunk.from_item(
                    await self.db.get(BackfillQueueItem, claimed_id, populate_existing=True)
                )
                logger.info(
                    f"Claimed backfill item {chunk.id} ({chunk.chunk_start}..{chunk.chunk_end}, "
                    f"attempt {chunk.attempt})"
                )
                return chunk
            logger.debug(f"Backfill item {candidate_id} was claimed by another worker")
        
        return None
    
    async def _outcome(self, progress_id: str, applied: bool) -> ChunkOutcome:
        progress = await self.db.get(BackfillProgress, progress_id, populate_existing=True)
        return ChunkOutcome(
            applied=applied,
            progress_status=progress.status,
            completed_chunks=progress.completed_chunks,
            total_chunks=progress.total_chunks,
        )
    
    def _held(self, chunk: ClaimedChunk):
        """Filter matching the item only while this claim still owns it."""
        return (
            BackfillQueueItem.id == chunk.id,
            BackfillQueueItem.status == QueueStatus.PROCESSING,
            BackfillQueueItem.attempt == chunk.attempt,
        )
    
    async def mark_current_chunk(self, chunk: ClaimedChunk) -> None:
        await self.db.execute(
            update(BackfillProgress)
            .where(BackfillProgress.id == chunk.progress_id)
            .values(current_chunk_start=chunk.chunk_start, current_chunk_end=chunk.chunk_end)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
    
    async def complete(self, chunk: ClaimedChunk, records_inserted: int, now: datetime) -> ChunkOutcome:
        """
        Mark the chunk completed and advance its progress row.
        
        A claim that was reclaimed in the meantime resolves nothing: the
        chunk counts once, for whichever claim currently holds it.
        """
        claim = await self.db.execute(
            update(BackfillQueueItem)
            .where(*self._held(chunk))
            .values(status=QueueStatus.COMPLETED, completed_at=now, last_error=None, records_inserted=records_inserted)
            .execution_options(synchronize_session=False)
        )
        applied = claim.rowcount == 1
        
        if applied:
            await self.db.execute(
                update(BackfillProgress)
                .where(
                    BackfillProgress.id == chunk.progress_id,
                    BackfillProgress.completed_chunks < BackfillProgress.total_chunks,
                )
                .values(
                    completed_chunks=BackfillProgress.completed_chunks + 1,
                    records_fetched=BackfillProgress.records_fetched + records_inserted,
                    current_chunk_start=None,
                    current_chunk_end=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                update(BackfillProgress)
                .where(
                    BackfillProgress.id == chunk.progress_id,
                    BackfillProgress.completed_chunks >= BackfillProgress.total_chunks,
                    BackfillProgress.status == BackfillStatus.IN_PROGRESS,
                )
                .values(status=BackfillStatus.COMPLETED, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        await self.db.commit()
        
        outcome = await self._outcome(chunk.progress_id, applied)
        if applied:
            logger.info(
                f"Backfill chunk {chunk.chunk_start}..{chunk.chunk_end} completed "
                f"({outcome.completed_chunks}/{outcome.total_chunks})"
            )
        else:
            logger.warning(
                f"Backfill item {chunk.id} attempt {chunk.attempt} no longer holds its claim, result discarded"
            )
        return outcome
    
    async def fail(self, chunk: ClaimedChunk, error: str, now: datetime) -> ChunkOutcome:
        """
        Mark the chunk failed; progress counters do not advance.
        
        The chunk waits for requeue_failed. On its last allowed attempt the
        plan itself fails.
        """
        claim = await self.db.execute(
            update(BackfillQueueItem)
            .where(*self._held(chunk))
            .values(status=QueueStatus.FAILED, completed_at=now, last_error=error)
            .execution_options(synchronize_session=False)
        )
        applied = claim.rowcount == 1
        
        if applied:
            await self.db.execute(
                update(BackfillProgress)
                .where(BackfillProgress.id == chunk.progress_id)
                .values(last_error=error, current_chunk_start=None, current_chunk_end=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if chunk.attempt >= self.max_attempts:
                await self._fail_progress(
                    chunk.progress_id,
                    f"Chunk {chunk.chunk_start}..{chunk.chunk_end} failed after {chunk.attempt} attempts: {error}",
                    now,
                )
        await self.db.commit()
        
        if applied:
            logger.error(f"Backfill chunk {chunk.chunk_start}..{chunk.chunk_end} failed: {error}")
        else:
            logger.warning(
                f"Backfill item {chunk.id} attempt {chunk.attempt} no longer holds its claim, failure discarded"
            )
        return await self._outcome(chunk.progress_id, applied)
    
    async def requeue_failed(
        self,
        provider: Provider,
        now: datetime,
        progress_id: Optional[str] = None,
    ) -> int:
        """
        Put failed chunks back in the queue.
        
        Chunks of in-progress plans keep their attempt count. Plans that
        failed by running out of attempts are reopened with their failed
        chunks starting over, but only while it is the provider's newest
        plan. Superseded plans stay failed.
        """
        provider = Provider(provider)
        active_progress = select(BackfillProgress.id).where(
            BackfillProgress.provider == provider,
            BackfillProgress.status == BackfillStatus.IN_PROGRESS,
        )
        newest_progress = (
            select(BackfillProgress.id, BackfillProgress.status, BackfillProgress.last_error)
            .where(BackfillProgress.provider == provider)
            .order_by(BackfillProgress.started_at.desc())
            .limit(1)
        )
        if progress_id:
            active_progress = active_progress.where(BackfillProgress.id == progress_id)
        
        result = await self.db.execute(
            update(BackfillQueueItem)
            .where(
                BackfillQueueItem.status == QueueStatus.FAILED,
                BackfillQueueItem.progress_id.in_(active_progress),
            )
            .values(status=QueueStatus.PENDING, next_run_at=now, completed_at=None)
            .execution_options(synchronize_session=False)
        )
        requeued = result.rowcount
        
        reopened_ids: List[str] = []
        newest = (await self.db.execute(newest_progress)).first()
        if (
            newest is not None
            and newest.status == BackfillStatus.FAILED
            and newest.last_error != SUPERSEDED_MESSAGE
            and progress_id in (None, newest.id)
        ):
            reopened_ids = [newest.id]
        if reopened_ids:
            result = await self.db.execute(
                update(BackfillQueueItem)
                .where(
                    BackfillQueueItem.status == QueueStatus.FAILED,
                    BackfillQueueItem.progress_id.in_(reopened_ids),
                )
                .values(status=QueueStatus.PENDING, attempt=0, next_run_at=now, completed_at=None)
                .execution_options(synchronize_session=False)
            )
            requeued += result.rowcount
            await self.db.execute(
                update(BackfillProgress)
                .where(BackfillProgress.id.in_(reopened_ids))
                .values(status=BackfillStatus.IN_PROGRESS, completed_at=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            logger.info(f"Reopened {len(reopened_ids)} failed {provider.value} backfill plan(s)")
        
        await self.db.commit()
        if requeued:
            logger.info(f"Requeued {requeued} failed {provider.value} backfill chunks")
        return requeued
    
    async def unfinished_progress_count(self, provider: Provider) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(BackfillProgress).where(
                BackfillProgress.provider == Provider(provider),
                BackfillProgress.status.in_([BackfillStatus.PENDING, BackfillStatus.IN_PROGRESS]),
            )
        )
        return result.scalar() or 0
