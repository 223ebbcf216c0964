"""
Health check endpoint with database and sync status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from typing import Optional
from api.dependencies import get_db, get_scheduler
from ingestion.scheduler import SyncScheduler
from ingestion.sync_config import SyncConfigService
from models.base import Provider, SyncStatus
from models.sync_state import SyncState
from schemas.api import HealthCheckResponse, ProviderHealth, SyncStateInfo
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    """
    Health check endpoint.
    
    Returns:
    - Database connectivity status
    - Mode and last sync outcome per provider endpoint
    - Registered scheduler jobs
    """
    
    # Check database connectivity
    db_connected = False
    
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")
    
    providers = []
    total_endpoints = 0
    failed_endpoints = 0
    
    if db_connected:
        try:
            configs = SyncConfigService(db)
            for provider in Provider:
                config = await configs.get(provider)
                result = await db.execute(
                    select(SyncState)
                    .where(SyncState.provider == provider)
                    .order_by(SyncState.endpoint, SyncState.location_id)
                )
                states = result.scalars().all()
                total_endpoints += len(states)
                failed_endpoints += sum(1 for s in states if s.last_status == SyncStatus.FAILED)
                providers.append(ProviderHealth(
                    provider=provider,
                    mode=config.mode,
                    endpoints=[SyncStateInfo.model_validate(s) for s in states],
                ))
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch sync states: {str(e)}")
    
    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        providers=providers,
        total_endpoints=total_endpoints,
        failed_endpoints=failed_endpoints,
        scheduler_jobs=scheduler.jobs() if scheduler else [],
    )
