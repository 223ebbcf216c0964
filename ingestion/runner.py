# ============================================================================
# File: ingestion/runner.py
# Description: Sync orchestrator for incremental, backfill and manual runs
# ============================================================================
"""
Sync Runner - orchestrates fetch -> store -> aggregate per endpoint.

This module provides:
- Incremental sync of yesterday for every enabled endpoint (and location)
- The backfill worker: claim one queued chunk, sync it, advance progress
- One-off manual syncs with up-front validation
- Per-endpoint failure isolation and SyncState bookkeeping
"""

from datetime import datetime, timedelta, date
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import upsert_statement
from core.exceptions import (
    SyncException,
    ConfigurationError,
    AggregationError,
    RequestValidationError,
)
from core.resilience import RateLimiter
from ingestion.aggregation import AggregationEngine, has_aggregation
from ingestion.backfill import BackfillQueue
from ingestion.base import ProviderClient, validate_date_range
from ingestion.credentials import CredentialStore
from ingestion.endpoints import get_endpoint
from ingestion.loaders.raw_loader import RawIngestionStore
from ingestion.sync_config import SyncConfigService, is_quiet_hour
from models.base import BackfillStatus, Provider, SyncMode, SyncStatus
from models.sync_config import SyncConfig
from models.sync_state import SyncState
from schemas.results import EndpointResult
import logging

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Awaitable[ProviderClient]]
ModeChangeCallback = Callable[[Provider, SyncConfig], Awaitable[None]]

QUIET_HOURS_RESPONSE = {"success": True, "quiet_hours": True, "message": "Skipped - quiet hours"}


class SyncRunner:
    """
    Sync orchestrator.
    
    Responsibilities:
    - Run client -> raw store -> aggregation for one endpoint
    - Keep endpoint failures independent of each other
    - Drive the backfill queue and the backfill -> incremental transition
    - Record the outcome of every endpoint run in sync_states
    """
    
    def __init__(
        self,
        db_session: AsyncSession,
        client_factory: Optional[ClientFactory] = None,
        store: Optional[RawIngestionStore] = None,
        engine: Optional[AggregationEngine] = None,
        location_limiter: Optional[RateLimiter] = None,
        on_mode_change: Optional[ModeChangeCallback] = None,
    ):
        self.db = db_session
        self.credentials = CredentialStore(db_session)
        self.client_factory = client_factory or self.credentials.build_client
        self.store = store or RawIngestionStore(db_session)
        self.engine = engine or AggregationEngine(db_session)
        self.configs = SyncConfigService(db_session)
        self.queue = BackfillQueue(db_session)
        self.location_limiter = location_limiter or RateLimiter(
            min_interval=settings.LOCATION_DELAY_SECONDS,
            name="locations",
        )
        self.on_mode_change = on_mode_change
    
    # ------------------------------------------------------------------
    # Single endpoint
    # ------------------------------------------------------------------
    
    async def sync_endpoint(
        self,
        provider: Provider,
        endpoint: str,
        start_date: Any = None,
        end_date: Any = None,
        location_id: Optional[str] = None,
        aggregate: bool = True,
        batch_size: Optional[int] = None,
    ) -> EndpointResult:
        """
        Fetch, store and aggregate one endpoint.
        
        Raises:
            RequestValidationError: Bad endpoint or dates; nothing is fetched
        
        Returns:
            EndpointResult; fetch, credential and batch failures set success=False,
            aggregation failures are reported but do not fail the endpoint
        """
        provider = Provider(provider)
        start, end = validate_date_range(get_endpoint(provider, endpoint), start_date, end_date)
        result = EndpointResult(endpoint=endpoint, location_id=location_id, success=False)
        
        # --------------------------------------------------
        # PHASE 1: CLIENT
        # --------------------------------------------------
        try:
            client = await self.client_factory(provider, location_id)
        except ConfigurationError as e:
            result.error = e.message
            result.failed_stage = "credentials"
            logger.error(f"Cannot sync {provider.value}/{endpoint}: {e.message}")
            await self._record_state(provider, endpoint, location_id, end, result)
            return result
        
        # --------------------------------------------------
        # PHASE 2: FETCH
        # --------------------------------------------------
        fetched = await client.fetch(endpoint, start, end)
        result.status_code = fetched.status_code
        if not fetched.success:
            result.error = fetched.error
            result.failed_stage = "fetch"
            await self._record_state(provider, endpoint, location_id, end, result)
            return result
        result.records_fetched = fetched.record_count
        
        # --------------------------------------------------
        # PHASE 3: STORE
        # --------------------------------------------------
        stored = await self.store.store(
            provider, endpoint, fetched.records, location_id=location_id, batch_size=batch_size
        )
        result.records_inserted = stored.records_inserted
        result.records_added = stored.records_added
        result.records_updated = stored.records_updated
        result.errors = stored.errors
        if stored.failed_batches:
            result.error = f"{stored.failed_batches} batch(es) failed to store"
            result.failed_stage = "store"
            await self._record_state(provider, endpoint, location_id, end, result)
            return result
        
        result.success = True
        if stored.errors:
            logger.warning(f"{stored.errors} invalid {provider.value}/{endpoint} records were skipped")
        
        # --------------------------------------------------
        # PHASE 4: AGGREGATE
        # --------------------------------------------------
        if aggregate and start is not None and has_aggregation(provider, endpoint):
            try:
                aggregated = await self.engine.aggregate(provider, endpoint, start, end, location_id=location_id)
                result.aggregated = aggregated.records_aggregated
                if aggregated.failed_groups:
                    result.aggregation_error = f"{len(aggregated.failed_groups)} group(s) failed"
            except AggregationError as e:
                result.aggregation_error = e.message
                logger.warning(
                    f"Aggregation after sync failed for {provider.value}/{endpoint}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
        
        await self._record_state(provider, endpoint, location_id, end, result)
        return result
    
    async def _safe_sync(
        self, provider: Provider, endpoint: str, start, end, location_id=None, batch_size: Optional[int] = None
    ) -> EndpointResult:
        """sync_endpoint that turns any pipeline error into a failed result."""
        try:
            return await self.sync_endpoint(
                provider, endpoint, start, end, location_id=location_id, batch_size=batch_size
            )
        except SyncException as e:
            logger.error(
                f"Sync failed for {Provider(provider).value}/{endpoint}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return EndpointResult(endpoint=endpoint, location_id=location_id, success=False, error=e.message)
    
    async def _record_state(
        self,
        provider: Provider,
        endpoint: str,
        location_id: Optional[str],
        synced_until: Optional[date],
        result: EndpointResult,
    ) -> None:
        """Upsert the endpoint's sync_states row. Bookkeeping failures only warn."""
        now = datetime.utcnow()
        key = {"provider": provider, "endpoint": endpoint, "location_id": location_id or ""}
        status = SyncStatus.SUCCESS if result.success and not result.errors else (
            SyncStatus.PARTIAL if result.success else SyncStatus.FAILED
        )
        try:
            existing = (await self.db.execute(
                select(SyncState).where(*(getattr(SyncState, k) == v for k, v in key.items()))
                .execution_options(populate_existing=True)
            )).scalars().first()
            
            values = {
                "last_run_at": now,
                "last_status": status,
                "records_last_run": result.records_inserted,
                "updated_at": now,
            }
            if result.success:
                values["last_success_at"] = now
                values["last_error"] = None
                if synced_until is not None:
                    previous = existing.last_synced_date if existing else None
                    values["last_synced_date"] = max(synced_until, previous) if previous else synced_until
            else:
                values["last_failure_at"] = now
                values["last_error"] = result.error
            
            total_runs = (existing.total_runs or 0) + 1 if existing else 1
            total_records = (existing.total_records_processed or 0) if existing else 0
            values["total_runs"] = total_runs
            values["total_records_processed"] = total_records + result.records_inserted
            
            stmt = upsert_statement(self.db, SyncState).values(**key, created_at=now, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["provider", "endpoint", "location_id"],
                set_=values
            )
            await self.db.execute(stmt)
            await self.db.commit()
        
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Could not update sync state for {provider.value}/{endpoint}: {e}")
    
    async def _locations(self, provider: Provider, config: SyncConfig) -> List[Optional[str]]:
        if provider != Provider.BORK:
            return [None]
        return list(config.enabled_locations or []) or await self.credentials.active_locations(provider)
    
    # ------------------------------------------------------------------
    # Incremental
    # ------------------------------------------------------------------
    
    async def run_incremental(self, provider: Provider, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Sync yesterday for every enabled endpoint of a provider in incremental mode."""
        provider = Provider(provider)
        now = now or datetime.utcnow()
        config = await self.configs.get(provider)
        
        if is_quiet_hour(config, now):
            logger.info(f"Incremental sync for {provider.value} skipped: quiet hours")
            return dict(QUIET_HOURS_RESPONSE)
        if config.mode != SyncMode.INCREMENTAL:
            logger.info(f"Incremental sync for {provider.value} skipped: mode is {config.mode.value}")
            return {"success": True, "skipped": True, "message": f"Skipped - mode is {config.mode.value}"}
        
        day = (now - timedelta(days=1)).date()
        logger.info(f"Starting incremental {provider.value} sync for {day}")
        
        # A failed endpoint rolls the session back, which expires config
        endpoints = list(config.enabled_endpoints or [])
        locations = await self._locations(provider, config)
        
        results: List[EndpointResult] = []
        for location_id in locations:
            async with self.location_limiter:
                for endpoint in endpoints:
                    results.append(await self._safe_sync(
                        provider, endpoint, day, day, location_id,
                        batch_size=settings.INCREMENTAL_BATCH_SIZE,
                    ))
        
        total_records = sum(r.records_inserted for r in results)
        failed_endpoints = [r.endpoint for r in results if not r.success]
        logger.info(
            f"Incremental {provider.value} sync for {day} finished: "
            f"{total_records} records, {len(failed_endpoints)} failed endpoints"
        )
        # The sweep itself succeeded; per-endpoint failures are reported below
        return {
            "success": True,
            "failed_endpoints": failed_endpoints,
            "date_synced": day.isoformat(),
            "total_records": total_records,
            "endpoint_results": [r.model_dump() for r in results],
            "timestamp": now.isoformat(),
        }
    
    # ------------------------------------------------------------------
    # Backfill worker
    # ------------------------------------------------------------------
    
    async def run_backfill_worker(
        self,
        provider: Provider,
        now: Optional[datetime] = None,
        progress_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Process at most one queued backfill chunk.
        
        The chunk completes only when every endpoint succeeds. Completing
        the last chunk of the provider's last unfinished plan switches the
        provider to incremental mode. A result for a chunk that was
        reclaimed while it ran is discarded.
        """
        provider = Provider(provider)
        now = now or datetime.utcnow()
        config = await self.configs.get(provider)
        
        if is_quiet_hour(config, now):
            logger.info(f"Backfill worker for {provider.value} skipped: quiet hours")
            return dict(QUIET_HOURS_RESPONSE)
        if config.mode == SyncMode.MANUAL:
            logger.info(f"Backfill worker for {provider.value} skipped: sync is paused")
            return {"success": True, "skipped": True, "message": "Skipped - mode is manual"}
        
        reclaimed = await self.queue.reclaim_stale(provider, now)
        chunk = await self.queue.claim_next(provider, now, progress_id=progress_id)
        if chunk is None:
            return {"success": True, "message": "No jobs ready", "reclaimed": reclaimed}
        
        await self.queue.mark_current_chunk(chunk)
        
        results: List[EndpointResult] = []
        for endpoint in chunk.endpoints:
            results.append(
                await self._safe_sync(provider, endpoint, chunk.chunk_start, chunk.chunk_end, chunk.location_id)
            )
        
        records_inserted = sum(r.records_inserted for r in results)
        failures = [r for r in results if not r.success]
        
        if failures:
            error = "Failed endpoints: " + "; ".join(f"{r.endpoint}: {r.error}" for r in failures)
            outcome = await self.queue.fail(chunk, error, now)
            chunk_status = "failed"
        else:
            outcome = await self.queue.complete(chunk, records_inserted, now)
            chunk_status = "completed"
        if not outcome.applied:
            chunk_status = "discarded"
        
        mode_transitioned = False
        if (
            outcome.applied
            and outcome.progress_status == BackfillStatus.COMPLETED
            and await self.queue.unfinished_progress_count(provider) == 0
        ):
            mode_transitioned = await self.configs.transition_to_incremental(provider)
            if mode_transitioned:
                await self._notify_mode_change(provider)
        
        return {
            "success": not failures and outcome.applied,
            "job_id": chunk.id,
            "progress_id": chunk.progress_id,
            "chunk": {"start": chunk.chunk_start.isoformat(), "end": chunk.chunk_end.isoformat()},
            "location_id": chunk.location_id,
            "chunk_status": chunk_status,
            "records_inserted": records_inserted,
            "completed_chunks": outcome.completed_chunks,
            "total_chunks": outcome.total_chunks,
            "backfill_status": outcome.progress_status.value,
            "endpoint_results": [r.model_dump() for r in results],
            "mode_transitioned": mode_transitioned,
        }
    
    async def _notify_mode_change(self, provider: Provider) -> None:
        if self.on_mode_change is None:
            return
        try:
            config = await self.configs.get(provider)
            await self.on_mode_change(provider, config)
        except Exception as e:
            logger.warning(f"Mode change callback failed for {provider.value}: {e}")
    
    # ------------------------------------------------------------------
    # Manual
    # ------------------------------------------------------------------
    
    async def run_manual(
        self,
        provider: Provider,
        endpoint: str,
        start_date: Any = None,
        end_date: Any = None,
        location_id: Optional[str] = None,
    ) -> EndpointResult:
        """
        One-off sync of an endpoint regardless of mode and quiet hours.
        
        Raises:
            RequestValidationError: Bad endpoint or dates, or Bork without a location
        """
        provider = Provider(provider)
        validate_date_range(get_endpoint(provider, endpoint), start_date, end_date)
        if provider == Provider.BORK and not location_id:
            raise RequestValidationError(
                "location_id is required for Bork",
                context={"field_name": "location_id", "validation_rule": "required"}
            )
        logger.info(f"Manual {provider.value}/{endpoint} sync {start_date}..{end_date}")
        return await self.sync_endpoint(provider, endpoint, start_date, end_date, location_id=location_id)
