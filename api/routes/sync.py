"""
Sync endpoints: incremental runs, backfill planning and workers,
manual syncs, coverage reports and connection checks
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime
import logging

import httpx

from api.dependencies import get_db, get_http_transport, get_scheduler, verify_api_key
from ingestion.backfill import BackfillPlanner, BackfillQueue
from ingestion.credentials import CredentialStore
from ingestion.progress import ProgressTracker
from ingestion.runner import SyncRunner
from ingestion.scheduler import SyncScheduler
from ingestion.sync_config import SyncConfigService
from models.base import Provider
from schemas.api import BackfillRequest, ManualSyncRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


def _runner(db: AsyncSession, scheduler: Optional[SyncScheduler]) -> SyncRunner:
    return SyncRunner(db, on_mode_change=scheduler.on_mode_change if scheduler else None)


async def _toggle_scheduler(db: AsyncSession, scheduler: Optional[SyncScheduler], provider: Provider) -> Optional[str]:
    """Re-register the provider's job after a mode change; failures only warn."""
    if scheduler is None:
        return None
    try:
        config = await SyncConfigService(db).get(provider)
        scheduler.toggle(provider, config)
        return None
    except Exception as e:
        logger.warning(f"Scheduler toggle failed for {provider.value}: {e}")
        return f"Scheduler toggle failed: {e}"


@router.post("/incremental", dependencies=[Depends(verify_api_key)])
async def sync_incremental(
    provider: Provider = Query(Provider.EITJE),
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    """Sync yesterday for every enabled endpoint (skipped outside incremental mode)."""
    return await _runner(db, scheduler).run_incremental(provider)


@router.post("/backfill-worker", dependencies=[Depends(verify_api_key)])
async def sync_backfill_worker(
    provider: Provider = Query(Provider.EITJE),
    progress_id: Optional[str] = Query(None, description="Only claim chunks of this plan"),
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    """Process at most one queued backfill chunk."""
    return await _runner(db, scheduler).run_backfill_worker(provider, progress_id=progress_id)


@router.post("/backfill", dependencies=[Depends(verify_api_key)])
async def create_backfill(
    body: BackfillRequest,
    provider: Provider = Query(Provider.EITJE),
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    """
    Plan a backfill.
    
    Supersedes any unfinished plan of the provider, enqueues the chunks
    and switches the provider to backfill mode.
    """
    plan = await BackfillPlanner(db).create_plan(
        provider,
        start_date=body.start_date,
        end_date=body.end_date,
        endpoints=body.endpoints,
        chunk_days=body.chunk_days,
        location_id=body.location_id,
    )
    warning = await _toggle_scheduler(db, scheduler, provider)
    response = {"success": True, **plan}
    if warning:
        response["warning"] = warning
    return response


@router.post("/backfill/cleanup", dependencies=[Depends(verify_api_key)])
async def cleanup_backfill(
    provider: Provider = Query(Provider.EITJE),
    db: AsyncSession = Depends(get_db),
):
    counts = await BackfillPlanner(db).cleanup(provider)
    return {"success": True, **counts}


@router.post("/backfill/requeue", dependencies=[Depends(verify_api_key)])
async def requeue_failed_chunks(
    provider: Provider = Query(Provider.EITJE),
    progress_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Put failed chunks back in the queue, reopening a plan that ran out of attempts."""
    requeued = await BackfillQueue(db).requeue_failed(provider, datetime.utcnow(), progress_id=progress_id)
    return {"success": True, "requeued": requeued}


@router.get("/backfill/status")
async def backfill_status(
    provider: Provider = Query(Provider.EITJE),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await ProgressTracker(db).backfill_status(provider)}


@router.post("/manual", dependencies=[Depends(verify_api_key)])
async def sync_manual(
    body: ManualSyncRequest,
    provider: Provider = Query(Provider.EITJE),
    db: AsyncSession = Depends(get_db),
):
    """
    One-off sync of one endpoint.
    
    Returns 400 on invalid input, 502 when the provider call fails.
    """
    result = await SyncRunner(db).run_manual(
        provider, body.endpoint, body.start_date, body.end_date, location_id=body.location_id
    )
    content = {"success": result.success, "data": result.model_dump()}
    if result.failed_stage == "fetch":
        content["error"] = result.error
        return JSONResponse(status_code=502, content=content)
    if not result.success:
        content["error"] = result.error
        return JSONResponse(status_code=400 if result.failed_stage == "credentials" else 500, content=content)
    return content


@router.get("/gaps")
async def sync_gaps(
    endpoint: str,
    start_date: str,
    end_date: str,
    provider: Provider = Query(Provider.EITJE),
    location_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """Days in the range without raw data, collapsed into ranges."""
    report = await ProgressTracker(db).detect_gaps(provider, endpoint, start_date, end_date, location_id)
    return {"success": True, "data": report}


@router.get("/progress")
async def sync_progress(
    start_date: str,
    end_date: str,
    provider: Provider = Query(Provider.EITJE),
    endpoints: Optional[List[str]] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Monthly coverage per endpoint (defaults to the enabled endpoints)."""
    if not endpoints:
        endpoints = list((await SyncConfigService(db).get(provider)).enabled_endpoints)
    report = await ProgressTracker(db).monthly_progress(provider, endpoints, start_date, end_date)
    return {"success": True, "data": report}


@router.get("/test-connection")
async def check_connection(
    provider: Provider = Query(Provider.EITJE),
    location_id: Optional[str] = Query(None, description="Required for Bork"),
    db: AsyncSession = Depends(get_db),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
):
    """
    Check the provider connection with stored credentials.
    
    Returns 400 when no credentials are usable, 502 when the provider call fails.
    """
    client = await CredentialStore(db).build_client(provider, location_id, transport=transport)
    result = await client.test_connection()
    if not result["success"]:
        return JSONResponse(status_code=502, content={"success": False, "data": result, "error": result["error"]})
    return {"success": True, "data": result}
