"""
Aggregation endpoint
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.dependencies import get_db, verify_api_key
from ingestion.aggregation import AggregationEngine
from models.base import Provider
from schemas.api import AggregateRequest, AggregateResponse, GroupFailureInfo

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Aggregation"])


@router.post("/aggregate", response_model=AggregateResponse, dependencies=[Depends(verify_api_key)])
async def aggregate(
    body: AggregateRequest,
    provider: Provider = Query(Provider.EITJE),
    db: AsyncSession = Depends(get_db),
):
    """
    Recompute aggregated rows for an endpoint and date range.
    
    Idempotent: every aggregated row in the range is fully overwritten.
    """
    result = await AggregationEngine(db).aggregate(
        provider, body.endpoint, body.start_date, body.end_date, location_id=body.location_id
    )
    return AggregateResponse(
        success=result.success,
        recordsAggregated=result.records_aggregated,
        failedGroups=[GroupFailureInfo(group_key=f.group_key, error=f.error) for f in result.failed_groups],
    )
