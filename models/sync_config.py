from sqlalchemy import Column, Integer, Enum, DateTime
from datetime import datetime
from models.base import Base, JSONType, Provider, SyncMode
from models.raw_records import PrimaryKeyType


class SyncConfig(Base):
    """
    One row per provider describing how scheduled runs behave.
    
    quiet_hours_start/end are UTC hours; a window whose start is after
    its end wraps past midnight. Both null disables the window.
    """
    __tablename__ = "sync_configs"
    
    id = Column(PrimaryKeyType, primary_key=True, autoincrement=True)
    provider = Column(Enum(Provider), nullable=False, unique=True)
    
    mode = Column(Enum(SyncMode), nullable=False, default=SyncMode.MANUAL)
    incremental_interval_minutes = Column(Integer, nullable=False, default=60)
    worker_interval_minutes = Column(Integer, nullable=False, default=5)
    
    enabled_endpoints = Column(JSONType, nullable=False, default=list)
    enabled_locations = Column(JSONType, nullable=False, default=list)
    
    quiet_hours_start = Column(Integer, nullable=True)
    quiet_hours_end = Column(Integer, nullable=True)
    
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
