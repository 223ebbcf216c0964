"""
Aggregation engine: recompute *_aggregated rows for a date range.

Raw rows are loaded for the range, partitioned by grouping key, turned
into metrics by the pure functions in ingestion.transformers.aggregators
and upserted by key with a full overwrite of every accumulator.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import upsert_statement
from core.exceptions import AggregationError, RequestValidationError
from ingestion.base import parse_iso_date
from ingestion.transformers.aggregators import AGGREGATIONS, AggregationDefinition, group_rows
from models.base import Provider
from models.raw_records import RAW_MODELS
from schemas.results import AggregationResult, GroupFailure
import logging

logger = logging.getLogger(__name__)

# Rows per INSERT statement; all statements share one transaction
UPSERT_CHUNK_SIZE = 500


def has_aggregation(provider: Provider, endpoint: str) -> bool:
    return (Provider(provider), endpoint) in AGGREGATIONS


class AggregationEngine:
    """
    Recompute aggregated metrics from raw records.
    
    Failure semantics:
    - Raw data cannot be loaded: AggregationError, nothing is written
    - One group fails to compute: recorded in failed_groups, others proceed
    """
    
    def __init__(self, db_session: AsyncSession):
        self.db = db_session
    
    @staticmethod
    def definition_for(provider: Provider, endpoint: str) -> AggregationDefinition:
        try:
            return AGGREGATIONS[(Provider(provider), endpoint)]
        except (KeyError, ValueError):
            raise RequestValidationError(
                f"No aggregation defined for {getattr(provider, 'value', provider)}/{endpoint}",
                context={"field_name": "endpoint", "field_value": endpoint, "validation_rule": "aggregating_endpoint"}
            )
    
    async def _load_raw(self, provider: Provider, endpoint: str, start, end, location_id: Optional[str]):
        model = RAW_MODELS[(provider, endpoint)]
        query = select(model).where(
            model.effective_date >= start,
            model.effective_date <= end,
        )
        if location_id:
            query = query.where(model.location_id == location_id)
        result = await self.db.execute(query.order_by(model.provider_id))
        return result.scalars().all()
    
    async def _upsert(self, definition: AggregationDefinition, rows: List[Dict[str, Any]]) -> None:
        update_columns = [
            column for column in rows[0].keys()
            if column not in definition.key_fields and column != "created_at"
        ]
        for offset in range(0, len(rows), UPSERT_CHUNK_SIZE):
            stmt = upsert_statement(self.db, definition.model).values(rows[offset:offset + UPSERT_CHUNK_SIZE])
            stmt = stmt.on_conflict_do_update(
                index_elements=list(definition.key_fields),
                set_={column: getattr(stmt.excluded, column) for column in update_columns}
            )
            await self.db.execute(stmt)
    
    async def aggregate(
        self,
        provider: Provider,
        endpoint: str,
        start_date: Any,
        end_date: Any,
        location_id: Optional[str] = None,
    ) -> AggregationResult:
        """
        Aggregate one endpoint over [start_date, end_date].
        
        Raises:
            RequestValidationError: Unknown endpoint or bad dates
            AggregationError: Raw data could not be read or rows could not be written
        """
        provider = Provider(provider)
        definition = self.definition_for(provider, endpoint)
        start = parse_iso_date(start_date, "startDate")
        end = parse_iso_date(end_date, "endDate")
        if start > end:
            raise RequestValidationError(
                "startDate must be before or equal to endDate",
                context={"start_date": start.isoformat(), "end_date": end.isoformat(), "validation_rule": "start<=end"}
            )
        
        result = AggregationResult(endpoint=endpoint, start_date=start.isoformat(), end_date=end.isoformat())
        context = {
            "provider": provider.value,
            "endpoint": endpoint,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
        }
        
        # --------------------------------------------------
        # PHASE 1: LOAD RAW RECORDS
        # --------------------------------------------------
        try:
            raw_rows = await self._load_raw(provider, endpoint, start, end, location_id)
        except SQLAlchemyError as e:
            raise AggregationError("Failed to load raw records", context=context, original_exception=e)
        
        result.records_read = len(raw_rows)
        if not raw_rows:
            logger.info(f"No raw {provider.value}/{endpoint} records between {start} and {end}")
            return result
        
        # --------------------------------------------------
        # PHASE 2: GROUP AND COMPUTE
        # --------------------------------------------------
        groups, skipped = group_rows(raw_rows, definition.key_fn)
        result.records_skipped = skipped
        if skipped:
            logger.warning(f"Skipped {skipped} {endpoint} records without a date or location")
        
        now = datetime.utcnow()
        rows: List[Dict[str, Any]] = []
        
        for key, payloads in groups.items():
            group_key = "|".join(str(part) for part in key)
            try:
                metrics = definition.compute(payloads)
            except Exception as e:
                result.failed_groups.append(GroupFailure(group_key=group_key, error=f"{type(e).__name__}: {e}"))
                logger.warning(f"Aggregation failed for {endpoint} group {group_key}: {e}")
                continue
            
            row = dict(zip(definition.key_fields, key))
            row.update(metrics)
            row["created_at"] = now
            row["updated_at"] = now
            rows.append(row)
        
        # --------------------------------------------------
        # PHASE 3: UPSERT BY GROUPING KEY
        # --------------------------------------------------
        if rows:
            try:
                await self._upsert(definition, rows)
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise AggregationError(
                    "Failed to write aggregated rows",
                    context={**context, "table_name": definition.model.__tablename__, "rows": len(rows)},
                    original_exception=e
                )
        
        result.records_aggregated = len(rows)
        logger.info(
            f"Aggregated {provider.value}/{endpoint} {start}..{end}: "
            f"{result.records_read} raw -> {len(rows)} rows, {len(result.failed_groups)} failed groups"
        )
        return result
