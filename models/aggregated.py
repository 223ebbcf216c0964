from sqlalchemy import Column, String, Integer, Float, Date, DateTime, UniqueConstraint, Index
from datetime import datetime
from models.base import Base, JSONType
from models.raw_records import PrimaryKeyType


class LaborHoursAggregated(Base):
    """
    Worked hours and wage cost per (date, environment, team).
    
    Rows are fully overwritten on every aggregation run for their date,
    so recomputing a range is idempotent. team_id is "" when the shift
    carries no team.
    """
    __tablename__ = "eitje_labor_hours_aggregated"
    
    id = Column(PrimaryKeyType, primary_key=True, autoincrement=True)
    
    # Grouping key
    date = Column(Date, nullable=False)
    environment_id = Column(String(100), nullable=False)
    team_id = Column(String(100), nullable=False, default="")
    
    # Accumulators
    total_hours_worked = Column(Float, nullable=False, default=0)
    total_breaks_minutes = Column(Float, nullable=False, default=0)
    total_wage_cost = Column(Float, nullable=False, default=0)
    shift_count = Column(Integer, nullable=False, default=0)
    employee_count = Column(Integer, nullable=False, default=0)
    
    # Derived
    avg_hours_per_employee = Column(Float, nullable=False, default=0)
    avg_wage_per_hour = Column(Float, nullable=False, default=0)
    
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (
        UniqueConstraint("date", "environment_id", "team_id", name="uq_labor_hours_key"),
        Index("idx_labor_hours_env_date", "environment_id", "date"),
    )


class PlanningHoursAggregated(Base):
    """Planned hours and cost per (date, environment, team)."""
    __tablename__ = "eitje_planning_hours_aggregated"
    
    id = Column(PrimaryKeyType, primary_key=True, autoincrement=True)
    
    date = Column(Date, nullable=False)
    environment_id = Column(String(100), nullable=False)
    team_id = Column(String(100), nullable=False, default="")
    
    total_planned_hours = Column(Float, nullable=False, default=0)
    total_breaks_minutes = Column(Float, nullable=False, default=0)
    total_planned_cost = Column(Float, nullable=False, default=0)
    shift_count = Column(Integer, nullable=False, default=0)
    employee_count = Column(Integer, nullable=False, default=0)
    confirmed_count = Column(Integer, nullable=False, default=0)
    cancelled_count = Column(Integer, nullable=False, default=0)
    planned_count = Column(Integer, nullable=False, default=0)
    
    avg_hours_per_employee = Column(Float, nullable=False, default=0)
    avg_cost_per_hour = Column(Float, nullable=False, default=0)
    
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (
        UniqueConstraint("date", "environment_id", "team_id", name="uq_planning_hours_key"),
    )


class RevenueDaysAggregated(Base):
    """Revenue, payment channel and VAT totals per (date, environment)."""
    __tablename__ = "eitje_revenue_days_aggregated"
    
    id = Column(PrimaryKeyType, primary_key=True, autoincrement=True)
    
    date = Column(Date, nullable=False)
    environment_id = Column(String(100), nullable=False)
    
    total_revenue = Column(Float, nullable=False, default=0)
    transaction_count = Column(Integer, nullable=False, default=0)
    avg_revenue_per_transaction = Column(Float, nullable=False, default=0)
    
    cash_revenue = Column(Float, nullable=False, default=0)
    card_revenue = Column(Float, nullable=False, default=0)
    digital_revenue = Column(Float, nullable=False, default=0)
    other_revenue = Column(Float, nullable=False, default=0)
    
    total_vat_amount = Column(Float, nullable=False, default=0)
    revenue_excl_vat = Column(Float, nullable=False, default=0)
    vat_percentage = Column(Float, nullable=False, default=0)
    
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (
        UniqueConstraint("date", "environment_id", name="uq_revenue_days_key"),
    )


class BorkSalesAggregated(Base):
    """POS sales per (date, location) built from ticket lines."""
    __tablename__ = "bork_sales_aggregated"
    
    id = Column(PrimaryKeyType, primary_key=True, autoincrement=True)
    
    date = Column(Date, nullable=False)
    location_id = Column(String(100), nullable=False)
    
    total_revenue = Column(Float, nullable=False, default=0)
    revenue_excl_vat = Column(Float, nullable=False, default=0)
    total_vat_amount = Column(Float, nullable=False, default=0)
    vat_9_base = Column(Float, nullable=False, default=0)
    vat_9_amount = Column(Float, nullable=False, default=0)
    vat_21_base = Column(Float, nullable=False, default=0)
    vat_21_amount = Column(Float, nullable=False, default=0)
    vat_percentage = Column(Float, nullable=False, default=0)
    
    total_quantity = Column(Float, nullable=False, default=0)
    total_transactions = Column(Integer, nullable=False, default=0)
    product_count = Column(Integer, nullable=False, default=0)
    unique_products = Column(Integer, nullable=False, default=0)
    avg_revenue_per_transaction = Column(Float, nullable=False, default=0)
    top_category = Column(String(255), nullable=True)
    category_breakdown = Column(JSONType, nullable=True)
    
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (
        UniqueConstraint("date", "location_id", name="uq_bork_sales_key"),
    )
