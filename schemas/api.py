"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from models.base import Provider, SyncMode, SyncStatus
import re

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _check_date(value: Optional[str]) -> Optional[str]:
    if value is not None and not DATE_RE.match(value):
        raise ValueError("Use YYYY-MM-DD")
    return value


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


# ============================================================================
# Sync Request Schemas
# ============================================================================

class BackfillRequest(BaseModel):
    """Body of POST /sync/backfill"""
    start_date: Optional[str] = Field(None, description="First day (YYYY-MM-DD), defaults to BACKFILL_DEFAULT_START_DATE")
    end_date: Optional[str] = Field(None, description="Last day (YYYY-MM-DD), defaults to today")
    endpoints: Optional[List[str]] = Field(None, description="Endpoints to backfill, defaults to enabled endpoints")
    chunk_days: Optional[int] = Field(None, ge=1, le=90, description="Days per queued chunk")
    location_id: Optional[str] = Field(None, description="Single Bork location; all enabled locations when omitted")
    
    @validator("start_date", "end_date")
    def check_date_format(cls, v):
        return _check_date(v)
    
    class Config:
        json_schema_extra = {
            "example": {
                "start_date": "2024-01-01",
                "end_date": "2024-03-31",
                "endpoints": ["time_registration_shifts", "revenue_days"],
                "chunk_days": 6
            }
        }


class ManualSyncRequest(BaseModel):
    """Body of POST /sync/manual"""
    endpoint: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    location_id: Optional[str] = None


class AggregateRequest(BaseModel):
    """Body of POST /aggregate"""
    endpoint: str
    start_date: str
    end_date: str
    location_id: Optional[str] = None
    
    @validator("start_date", "end_date")
    def check_date_format(cls, v):
        return _check_date(v)


class SyncConfigUpdate(BaseModel):
    """Body of POST /sync-config; omitted fields are left unchanged"""
    mode: Optional[SyncMode] = None
    incremental_interval_minutes: Optional[int] = Field(None, ge=1)
    worker_interval_minutes: Optional[int] = Field(None, ge=1)
    enabled_endpoints: Optional[List[str]] = None
    enabled_locations: Optional[List[str]] = None
    quiet_hours_start: Optional[int] = Field(None, ge=0, le=23)
    quiet_hours_end: Optional[int] = Field(None, ge=0, le=23)
    
    class Config:
        json_schema_extra = {
            "example": {
                "mode": "incremental",
                "incremental_interval_minutes": 60,
                "quiet_hours_start": 22,
                "quiet_hours_end": 6
            }
        }


# ============================================================================
# Response Schemas
# ============================================================================

class SyncConfigData(BaseModel):
    provider: Provider
    mode: SyncMode
    incremental_interval_minutes: int
    worker_interval_minutes: int
    enabled_endpoints: List[str] = Field(default_factory=list)
    enabled_locations: List[str] = Field(default_factory=list)
    quiet_hours_start: Optional[int] = None
    quiet_hours_end: Optional[int] = None
    updated_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True
        use_enum_values = True


class SyncConfigResponse(BaseModel):
    success: bool = True
    data: SyncConfigData
    scheduler_job: Optional[str] = None
    warning: Optional[str] = None


class GroupFailureInfo(BaseModel):
    group_key: str
    error: str


class AggregateResponse(BaseModel):
    success: bool
    recordsAggregated: int
    failedGroups: List[GroupFailureInfo] = Field(default_factory=list)


class SyncStateInfo(BaseModel):
    """Last outcome of one provider endpoint, for the health check"""
    provider: Provider
    endpoint: str
    location_id: str = ""
    last_status: Optional[SyncStatus] = None
    last_synced_date: Optional[date] = None
    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    total_runs: int = 0
    total_records_processed: int = 0
    last_error: Optional[str] = None
    
    class Config:
        from_attributes = True
        use_enum_values = True


class ProviderHealth(BaseModel):
    provider: Provider
    mode: SyncMode
    endpoints: List[SyncStateInfo] = Field(default_factory=list)
    
    class Config:
        use_enum_values = True


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    providers: List[ProviderHealth] = Field(default_factory=list)
    total_endpoints: int = 0
    failed_endpoints: int = 0
    scheduler_jobs: List[Dict[str, Any]] = Field(default_factory=list)
    # Declared last so the validator sees the counts
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    
    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"
        
        failed = values.get("failed_endpoints", 0)
        total = values.get("total_endpoints", 0)
        
        if total == 0 or failed == 0:
            return "healthy"
        elif failed < total:
            return "degraded"
        else:
            return "unhealthy"
