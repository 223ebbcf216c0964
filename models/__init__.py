"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and shared enums (Provider, SyncMode, ...)
    raw_records: One raw table per provider endpoint, plus the RAW_MODELS registry
    aggregated: Denormalized *_aggregated tables keyed by (date, location, sub-entity)
    backfill: Backfill progress and queue
    sync_config: Per-provider sync configuration
    sync_state: Last sync outcome per endpoint
    credentials: Provider credentials, optionally per location

Importing this package registers every table on Base.metadata.

Usage:
    from models import SyncConfig, BackfillQueueItem
    from models.base import Provider, SyncMode
"""

from models.base import Base, Provider, SyncMode, BackfillStatus, QueueStatus, SyncStatus
from models.raw_records import RAW_MODELS, RawRecordMixin
from models.aggregated import (
    LaborHoursAggregated,
    PlanningHoursAggregated,
    RevenueDaysAggregated,
    BorkSalesAggregated,
)
from models.backfill import BackfillProgress, BackfillQueueItem
from models.sync_config import SyncConfig
from models.sync_state import SyncState
from models.credentials import ProviderCredential

__all__ = [
    "Base",
    "Provider",
    "SyncMode",
    "BackfillStatus",
    "QueueStatus",
    "SyncStatus",
    "RAW_MODELS",
    "RawRecordMixin",
    "LaborHoursAggregated",
    "PlanningHoursAggregated",
    "RevenueDaysAggregated",
    "BorkSalesAggregated",
    "BackfillProgress",
    "BackfillQueueItem",
    "SyncConfig",
    "SyncState",
    "ProviderCredential",
]
