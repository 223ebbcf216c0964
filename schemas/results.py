"""
Result objects passed between pipeline components.

Low-level components report success and failure through these objects
instead of raising across component boundaries; the orchestrator
decides what a failure means for the chunk or sync as a whole.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class FetchResult(BaseModel):
    """Outcome of one provider endpoint fetch."""
    success: bool
    provider: str
    endpoint: str
    records: List[Dict[str, Any]] = Field(default_factory=list)
    record_count: int = 0
    response_time_ms: int = 0
    retry_count: int = 0
    pages: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None
    is_transport_error: bool = False


class IngestResult(BaseModel):
    """Outcome of storing a list of raw records."""
    endpoint: str
    table_name: str
    records_processed: int = 0
    records_added: int = 0
    records_updated: int = 0
    errors: int = 0
    failed_batches: int = 0
    error_details: List[str] = Field(default_factory=list)
    
    @property
    def success(self) -> bool:
        return self.errors == 0
    
    @property
    def records_inserted(self) -> int:
        return self.records_added + self.records_updated


class GroupFailure(BaseModel):
    group_key: str
    error: str


class AggregationResult(BaseModel):
    """Outcome of one aggregation run over a date range."""
    endpoint: str
    start_date: str
    end_date: str
    records_read: int = 0
    records_skipped: int = 0
    records_aggregated: int = 0
    failed_groups: List[GroupFailure] = Field(default_factory=list)
    
    @property
    def success(self) -> bool:
        return not self.failed_groups


class EndpointResult(BaseModel):
    """Per-endpoint outcome reported by incremental and backfill runs."""
    endpoint: str
    location_id: Optional[str] = None
    success: bool
    records_fetched: int = 0
    records_inserted: int = 0
    records_added: int = 0
    records_updated: int = 0
    errors: int = 0
    error: Optional[str] = None
    failed_stage: Optional[str] = None  # credentials, fetch or store
    status_code: Optional[int] = None
    aggregated: int = 0
    aggregation_error: Optional[str] = None
