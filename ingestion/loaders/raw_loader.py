"""
Persist raw provider records with idempotent upsert logic.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import upsert_statement
from core.exceptions import RequestValidationError, UpsertError
from core.resilience import RateLimiter
from ingestion.transformers.field_extractors import (
    record_provider_id,
    resolve_date,
    resolve_id,
    EFFECTIVE_DATE_EXTRACTORS,
    LOCATION_ID_EXTRACTORS,
)
from models.base import Provider
from models.raw_records import RAW_MODELS
from schemas.results import IngestResult
import logging

logger = logging.getLogger(__name__)


class RawIngestionStore:
    """
    Store fetched records in the raw table of their endpoint.
    
    Ensures:
    - No duplicate rows on repeated runs: upsert keyed by provider_id
    - Conflicting rows get their payload fully replaced (last writer wins)
    - Records without an id are skipped and counted, not fatal
    - A failed batch is rolled back alone; committed batches stay
    """
    
    def __init__(
        self,
        db_session: AsyncSession,
        batch_size: Optional[int] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.db = db_session
        self.batch_size = batch_size or settings.RAW_BATCH_SIZE
        self.rate_limiter = rate_limiter or RateLimiter(
            min_interval=settings.BATCH_DELAY_SECONDS,
            name="raw-store",
        )
    
    @staticmethod
    def model_for(provider: Provider, endpoint: str):
        try:
            return RAW_MODELS[(Provider(provider), endpoint)]
        except (KeyError, ValueError):
            raise RequestValidationError(
                f"No raw table for {getattr(provider, 'value', provider)}/{endpoint}",
                context={"field_name": "endpoint", "field_value": endpoint, "validation_rule": "known_endpoint"}
            )
    
    def _prepare(
        self,
        provider: Provider,
        endpoint: str,
        records: List[Dict[str, Any]],
        location_id: Optional[str],
        result: IngestResult,
    ) -> List[Dict[str, Any]]:
        """Validate records and build row values, deduplicated by provider id."""
        now = datetime.utcnow()
        rows: Dict[str, Dict[str, Any]] = {}
        
        for index, record in enumerate(records):
            result.records_processed += 1
            
            if not isinstance(record, dict):
                result.errors += 1
                result.error_details.append(f"Record {index} is not an object")
                continue
            
            provider_id = record_provider_id(provider, record, location_id)
            if not provider_id:
                result.errors += 1
                result.error_details.append(f"Record {index} has no id")
                logger.warning(f"Skipping {provider.value}/{endpoint} record {index}: missing id")
                continue
            
            rows[provider_id] = {
                "provider_id": provider_id,
                "endpoint_name": endpoint,
                "effective_date": resolve_date(record, EFFECTIVE_DATE_EXTRACTORS),
                "location_id": location_id or resolve_id(record, LOCATION_ID_EXTRACTORS),
                "payload": record,
                "ingested_at": now,
                "updated_at": now,
            }
        
        return list(rows.values())
    
    async def _existing_ids(self, model, provider_ids: List[str]) -> Set[str]:
        result = await self.db.execute(
            select(model.provider_id).where(model.provider_id.in_(provider_ids))
        )
        return set(result.scalars().all())
    
    async def _upsert_batch(self, model, batch: List[Dict[str, Any]]) -> None:
        stmt = upsert_statement(self.db, model).values(batch)
        stmt = stmt.on_conflict_do_update(
            index_elements=["provider_id"],
            set_={
                "endpoint_name": stmt.excluded.endpoint_name,
                "effective_date": stmt.excluded.effective_date,
                "location_id": stmt.excluded.location_id,
                "payload": stmt.excluded.payload,
                "updated_at": stmt.excluded.updated_at,
            }
        )
        await self.db.execute(stmt)
    
    async def store(
        self,
        provider: Provider,
        endpoint: str,
        records: List[Dict[str, Any]],
        location_id: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> IngestResult:
        """
        Upsert records in batches.
        
        Args:
            provider: Provider the records came from
            endpoint: Endpoint name, selects the destination table
            records: Raw provider records
            location_id: Location the records belong to (Bork)
            batch_size: Records per round trip (defaults to RAW_BATCH_SIZE)
        
        Returns:
            IngestResult with processed/added/updated/error counts
        """
        provider = Provider(provider)
        model = self.model_for(provider, endpoint)
        batch_size = batch_size or self.batch_size
        result = IngestResult(endpoint=endpoint, table_name=model.__tablename__)
        
        rows = self._prepare(provider, endpoint, records, location_id, result)
        if not rows:
            return result
        
        for batch_index, offset in enumerate(range(0, len(rows), batch_size)):
            batch = rows[offset:offset + batch_size]
            
            async with self.rate_limiter:
                try:
                    existing = await self._existing_ids(model, [row["provider_id"] for row in batch])
                    await self._upsert_batch(model, batch)
                    await self.db.commit()
                
                except SQLAlchemyError as e:
                    await self.db.rollback()
                    error = UpsertError(
                        f"Batch {batch_index + 1} failed",
                        context={
                            "table_name": model.__tablename__,
                            "batch_index": batch_index,
                            "batch_size": len(batch),
                        },
                        original_exception=e
                    )
                    result.errors += len(batch)
                    result.failed_batches += 1
                    result.error_details.append(f"{error.message}: {type(e).__name__}: {e}")
                    logger.error(
                        f"Upsert into {model.__tablename__} failed for batch {batch_index + 1}",
                        extra={"error_context": error.to_dict()}
                    )
                    continue
            
            result.records_updated += len(existing)
            result.records_added += len(batch) - len(existing)
            logger.info(f"Batch {batch_index + 1}: upserted {len(batch)} rows into {model.__tablename__}")
        
        logger.info(
            f"Stored {provider.value}/{endpoint}: processed={result.records_processed}, "
            f"added={result.records_added}, updated={result.records_updated}, errors={result.errors}"
        )
        return result
