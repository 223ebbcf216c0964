"""
Per-provider sync configuration endpoints
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from api.dependencies import get_db, get_scheduler, verify_api_key
from ingestion.scheduler import SyncScheduler
from ingestion.sync_config import SyncConfigService
from models.base import Provider
from schemas.api import SyncConfigData, SyncConfigResponse, SyncConfigUpdate

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Sync Config"])


@router.get("/sync-config", response_model=SyncConfigResponse)
async def get_sync_config(
    provider: Provider = Query(Provider.EITJE),
    db: AsyncSession = Depends(get_db),
):
    config = await SyncConfigService(db).get(provider)
    return SyncConfigResponse(data=SyncConfigData.model_validate(config))


@router.post("/sync-config", response_model=SyncConfigResponse, dependencies=[Depends(verify_api_key)])
async def update_sync_config(
    body: SyncConfigUpdate,
    provider: Provider = Query(Provider.EITJE),
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    """
    Update mode, intervals, endpoints, locations or quiet hours.
    
    The provider's scheduler job is re-registered after every update so
    interval changes apply; a scheduler failure is reported as a warning.
    """
    config, mode_changed = await SyncConfigService(db).update(provider, body.model_dump(exclude_unset=True))
    
    job = None
    warning = None
    if scheduler is not None:
        try:
            job = scheduler.toggle(provider, config)
        except Exception as e:
            warning = f"Scheduler toggle failed: {e}"
            logger.warning(f"Scheduler toggle failed for {provider.value}: {e}")
    
    if mode_changed:
        logger.info(f"Sync config for {provider.value} now in {config.mode.value} mode")
    return SyncConfigResponse(data=SyncConfigData.model_validate(config), scheduler_job=job, warning=warning)
