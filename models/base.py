from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class Provider(str, enum.Enum):
    """External data providers"""
    EITJE = "eitje"
    BORK = "bork"


class SyncMode(str, enum.Enum):
    """Per-provider sync mode"""
    MANUAL = "manual"
    BACKFILL = "backfill"
    INCREMENTAL = "incremental"


class BackfillStatus(str, enum.Enum):
    """Backfill progress status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueStatus(str, enum.Enum):
    """Backfill queue item status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncStatus(str, enum.Enum):
    """Outcome of the last endpoint sync"""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
