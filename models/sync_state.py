from sqlalchemy import Column, Integer, String, Enum, Date, DateTime, Text, Index, BigInteger
from datetime import datetime
from models.base import Base, Provider, SyncStatus
from models.raw_records import PrimaryKeyType


class SyncState(Base):
    """
    Tracks the last sync outcome per (provider, endpoint, location).
    
    Purpose:
    - Know how far each endpoint has been synced (last_synced_date)
    - Surface the last failure per endpoint on the health endpoint
    
    Design:
    - One row per provider/endpoint/location; location_id is "" for
      providers without per-location credentials
    """
    __tablename__ = "sync_states"
    
    id = Column(PrimaryKeyType, primary_key=True, autoincrement=True)
    
    provider = Column(Enum(Provider), nullable=False)
    endpoint = Column(String(100), nullable=False)
    location_id = Column(String(100), nullable=False, default="")
    
    last_synced_date = Column(Date, nullable=True)
    last_run_at = Column(DateTime, nullable=True, index=True)
    last_success_at = Column(DateTime, nullable=True)
    last_failure_at = Column(DateTime, nullable=True)
    
    total_runs = Column(Integer, default=0)
    total_records_processed = Column(BigInteger, default=0)
    records_last_run = Column(Integer, default=0)
    
    last_status = Column(Enum(SyncStatus), nullable=True)
    last_error = Column(Text, nullable=True)
    
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (
        Index("idx_sync_state_key", "provider", "endpoint", "location_id", unique=True),
    )
