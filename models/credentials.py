from sqlalchemy import Column, String, Enum, Boolean, DateTime, Index
from datetime import datetime
from models.base import Base, JSONType, Provider
from models.raw_records import PrimaryKeyType


class ProviderCredential(Base):
    """
    Credentials for a provider, optionally scoped to one location.
    
    credentials holds the provider-specific fields:
    - eitje: partner_username, partner_password, api_username, api_password
    - bork: api_key
    """
    __tablename__ = "provider_credentials"
    
    id = Column(PrimaryKeyType, primary_key=True, autoincrement=True)
    provider = Column(Enum(Provider), nullable=False)
    location_id = Column(String(100), nullable=False, default="")
    
    base_url = Column(String(500), nullable=True)
    credentials = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (
        Index("idx_provider_credentials_key", "provider", "location_id", unique=True),
    )
