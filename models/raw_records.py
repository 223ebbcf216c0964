from sqlalchemy import Column, BigInteger, Integer, String, Date, DateTime, UniqueConstraint
from sqlalchemy.orm import declared_attr
from datetime import datetime
from typing import Dict, Tuple, Type
from models.base import Base, JSONType, Provider

# SQLite only autoincrements INTEGER primary keys
PrimaryKeyType = BigInteger().with_variant(Integer(), "sqlite")


class RawRecordMixin:
    """
    Columns shared by every raw endpoint table.
    
    Design:
    - provider_id is the provider-assigned identifier, unique per table,
      so re-ingesting the same entity overwrites the payload
    - effective_date is the business date, distinct from ingestion time
    - location_id is the Eitje environment id or the Bork location id
    - payload is stored as-is; interpretation happens in aggregation
    """
    
    id = Column(PrimaryKeyType, primary_key=True, autoincrement=True)
    provider_id = Column(String(255), nullable=False)
    endpoint_name = Column(String(100), nullable=False)
    effective_date = Column(Date, nullable=True, index=True)
    location_id = Column(String(100), nullable=True, index=True)
    payload = Column(JSONType, nullable=False)
    
    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    @declared_attr
    def __table_args__(cls):
        return (
            UniqueConstraint("provider_id", name=f"uq_{cls.__tablename__}_provider_id"),
        )


# ============================================================================
# Eitje master data (not date-partitioned)
# ============================================================================

class EitjeEnvironment(RawRecordMixin, Base):
    __tablename__ = "eitje_environments"


class EitjeTeam(RawRecordMixin, Base):
    __tablename__ = "eitje_teams"


class EitjeUser(RawRecordMixin, Base):
    __tablename__ = "eitje_users"


class EitjeShiftType(RawRecordMixin, Base):
    __tablename__ = "eitje_shift_types"


# ============================================================================
# Eitje date-scoped data
# ============================================================================

class EitjeTimeRegistrationShiftRaw(RawRecordMixin, Base):
    __tablename__ = "eitje_time_registration_shifts_raw"


class EitjePlanningShiftRaw(RawRecordMixin, Base):
    __tablename__ = "eitje_planning_shifts_raw"


class EitjeRevenueDayRaw(RawRecordMixin, Base):
    __tablename__ = "eitje_revenue_days_raw"


class EitjeEventRaw(RawRecordMixin, Base):
    __tablename__ = "eitje_events_raw"


# ============================================================================
# Bork master data (per location, not date-partitioned)
# ============================================================================

class BorkProductGroup(RawRecordMixin, Base):
    __tablename__ = "bork_product_groups"


class BorkPaymentMethod(RawRecordMixin, Base):
    __tablename__ = "bork_payment_methods"


class BorkCostCenter(RawRecordMixin, Base):
    __tablename__ = "bork_cost_centers"


class BorkUser(RawRecordMixin, Base):
    __tablename__ = "bork_users"


# ============================================================================
# Bork tickets
# ============================================================================

class BorkTicketRaw(RawRecordMixin, Base):
    """One POS ticket; provider_id is prefixed with the location id."""
    __tablename__ = "bork_tickets_raw"


RAW_MODELS: Dict[Tuple[Provider, str], Type[RawRecordMixin]] = {
    (Provider.EITJE, "environments"): EitjeEnvironment,
    (Provider.EITJE, "teams"): EitjeTeam,
    (Provider.EITJE, "users"): EitjeUser,
    (Provider.EITJE, "shift_types"): EitjeShiftType,
    (Provider.EITJE, "time_registration_shifts"): EitjeTimeRegistrationShiftRaw,
    (Provider.EITJE, "planning_shifts"): EitjePlanningShiftRaw,
    (Provider.EITJE, "revenue_days"): EitjeRevenueDayRaw,
    (Provider.EITJE, "events"): EitjeEventRaw,
    (Provider.BORK, "product_groups"): BorkProductGroup,
    (Provider.BORK, "payment_methods"): BorkPaymentMethod,
    (Provider.BORK, "cost_centers"): BorkCostCenter,
    (Provider.BORK, "users"): BorkUser,
    (Provider.BORK, "tickets"): BorkTicketRaw,
}
