from sqlalchemy import Column, Integer, String, Enum, Date, DateTime, Text, Index, ForeignKey, BigInteger
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, JSONType, Provider, BackfillStatus, QueueStatus


def _new_id() -> str:
    return str(uuid.uuid4())


class BackfillProgress(Base):
    """
    State of one backfill plan across its whole date range.
    
    Invariants:
    - completed_chunks <= total_chunks
    - status == COMPLETED exactly when completed_chunks == total_chunks
    """
    __tablename__ = "backfill_progress"
    
    id = Column(String(36), primary_key=True, default=_new_id)
    
    provider = Column(Enum(Provider), nullable=False, index=True)
    endpoint = Column(String(500), nullable=False)  # comma-joined endpoint names
    location_id = Column(String(100), nullable=True)
    
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    
    total_chunks = Column(Integer, nullable=False, default=0)
    completed_chunks = Column(Integer, nullable=False, default=0)
    records_fetched = Column(BigInteger, nullable=False, default=0)
    
    current_chunk_start = Column(Date, nullable=True)
    current_chunk_end = Column(Date, nullable=True)
    
    status = Column(Enum(BackfillStatus), nullable=False, default=BackfillStatus.PENDING, index=True)
    last_error = Column(Text, nullable=True)
    
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    queue_items = relationship("BackfillQueueItem", back_populates="progress")


class BackfillQueueItem(Base):
    """
    One chunk of backfill work: a date range and the endpoints to sync for it.
    
    A worker may only claim an item whose next_run_at is in the past, and
    claiming is a conditional update on status so one worker wins.
    """
    __tablename__ = "backfill_queue"
    
    id = Column(String(36), primary_key=True, default=_new_id)
    progress_id = Column(String(36), ForeignKey("backfill_progress.id"), nullable=False, index=True)
    
    provider = Column(Enum(Provider), nullable=False)
    location_id = Column(String(100), nullable=True)
    
    chunk_start = Column(Date, nullable=False)
    chunk_end = Column(Date, nullable=False)
    endpoints = Column(JSONType, nullable=False, default=list)
    
    status = Column(Enum(QueueStatus), nullable=False, default=QueueStatus.PENDING)
    attempt = Column(Integer, nullable=False, default=0)
    next_run_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_error = Column(Text, nullable=True)
    records_inserted = Column(Integer, nullable=False, default=0)
    
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    
    progress = relationship("BackfillProgress", back_populates="queue_items")
    
    __table_args__ = (
        Index("idx_backfill_queue_claim", "status", "next_run_at"),
    )
