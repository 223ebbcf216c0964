"""
Unit tests for field extraction chains and aggregation metrics
"""

import pytest
from datetime import date
from types import SimpleNamespace
from ingestion.transformers.field_extractors import (
    field,
    cents,
    resolve_number,
    resolve_id,
    resolve_wage_cost,
    resolve_vat_rate,
    record_provider_id,
    hours_from_times,
    HOURS_EXTRACTORS,
    REVENUE_EXTRACTORS,
    WAGE_EXTRACTORS,
)
from ingestion.transformers.aggregators import (
    round2,
    safe_divide,
    group_rows,
    shift_key,
    location_day_key,
    compute_labor_metrics,
    compute_planning_metrics,
    compute_revenue_metrics,
    compute_bork_sales_metrics,
)
from models.base import Provider


def raw_row(payload, effective_date=None, location_id=None):
    return SimpleNamespace(payload=payload, effective_date=effective_date, location_id=location_id)


class TestFieldExtractors:
    """Ordered extractor chains"""
    
    def test_nested_field(self):
        assert field("costs.wage")({"costs": {"wage": 12.5}}) == 12.5
        assert field("costs.wage")({"costs": 3}) is None
    
    def test_first_non_zero_value_wins(self):
        record = {"hours_worked": 0, "hours": "6,5", "total_hours": 9}
        assert resolve_number(record, HOURS_EXTRACTORS) == 6.5
    
    def test_default_when_nothing_resolves(self):
        assert resolve_number({}, HOURS_EXTRACTORS, default=1.5) == 1.5
    
    def test_cents_are_converted_to_units(self):
        assert cents("amt_in_cents")({"amt_in_cents": 1050}) == 10.5
        assert resolve_number({"amt_in_cents": 0, "revenue": 20}, REVENUE_EXTRACTORS) == 20.0
    
    def test_hours_from_timestamps(self):
        record = {"start": "2024-03-01T22:00:00Z", "end": "2024-03-02T02:30:00Z"}
        assert hours_from_times(record) == 4.5
    
    def test_hours_from_inverted_timestamps_is_undefined(self):
        assert hours_from_times({"start": "2024-03-01T10:00:00", "end": "2024-03-01T09:00:00"}) is None
    
    def test_resolve_id_skips_objects(self):
        assert resolve_id({"team": {"id": 3}}, [field("team_id"), field("team.id")]) == "3"
    
    def test_stated_wage_cost_is_used(self):
        assert resolve_wage_cost({"costs": {"wage": 88}}, hours=8, break_minutes=30) == 88
    
    def test_wage_cost_falls_back_to_hourly_rate(self):
        cost = resolve_wage_cost({}, hours=8, break_minutes=30, extractors=WAGE_EXTRACTORS, hourly_wage=20)
        assert cost == 150.0
    
    def test_wage_cost_never_negative(self):
        assert resolve_wage_cost({}, hours=0.5, break_minutes=60, hourly_wage=20) == 0.0
    
    @pytest.mark.parametrize("line,expected", [
        ({"VatPerc": 21}, 0.21),
        ({"VatPerc": 0.09}, 0.09),
        ({}, 0.21),
    ])
    def test_vat_rate(self, line, expected):
        assert resolve_vat_rate(line) == pytest.approx(expected)
    
    def test_bork_provider_id_is_location_scoped(self):
        assert record_provider_id(Provider.BORK, {"Key": "T1"}, "loc-1") == "loc-1:T1"
        assert record_provider_id(Provider.BORK, {"Key": "T1"}) == "T1"
    
    def test_eitje_provider_id(self):
        assert record_provider_id(Provider.EITJE, {"id": 42}) == "42"
        assert record_provider_id(Provider.EITJE, {"name": "no id"}) is None


class TestGrouping:
    
    def test_shift_key_uses_row_columns_then_payload(self):
        row = raw_row({"team": {"id": 3}}, effective_date=date(2024, 3, 1), location_id="7")
        assert shift_key(row) == (date(2024, 3, 1), "7", "3")
        
        payload_only = raw_row({"date": "2024-03-02", "environment_id": 9})
        assert shift_key(payload_only) == (date(2024, 3, 2), "9", "")
    
    def test_rows_without_key_are_skipped(self):
        rows = [
            raw_row({"id": 1}, effective_date=date(2024, 3, 1), location_id="loc-1"),
            raw_row({"id": 2}, effective_date=None, location_id="loc-1"),
            raw_row({"id": 3}, effective_date=date(2024, 3, 1), location_id="loc-1"),
        ]
        groups, skipped = group_rows(rows, location_day_key)
        
        assert skipped == 1
        assert list(groups.keys()) == [(date(2024, 3, 1), "loc-1")]
        assert [p["id"] for p in groups[(date(2024, 3, 1), "loc-1")]] == [1, 3]


class TestMetrics:
    
    def test_round2_folds_negative_zero(self):
        assert str(round2(-0.001)) == "0.0"
    
    def test_safe_divide_by_zero(self):
        assert safe_divide(10, 0) == 0.0
    
    def test_revenue_worked_example(self, revenue_records):
        metrics = compute_revenue_metrics(revenue_records)
        
        assert metrics["total_revenue"] == 36
        assert metrics["transaction_count"] == 2
        assert metrics["avg_revenue_per_transaction"] == 18
    
    def test_stated_transaction_counts_are_summed(self):
        metrics = compute_revenue_metrics([
            {"revenue": 300, "transaction_count": 25},
            {"revenue": 100, "transactions_count": 15},
            {"revenue": 40},
        ])
        
        assert metrics["transaction_count"] == 41
        assert metrics["avg_revenue_per_transaction"] == round(440 / 41, 2)
    
    def test_revenue_without_vat_has_zero_percentage(self):
        metrics = compute_revenue_metrics([{"revenue": 0}])
        
        assert metrics["revenue_excl_vat"] == 0
        assert metrics["vat_percentage"] == 0
    
    def test_labor_metrics(self, shift_records):
        metrics = compute_labor_metrics(shift_records, hourly_wage=15.0)
        
        assert metrics["total_hours_worked"] == 12.0
        assert metrics["total_breaks_minutes"] == 30.0
        assert metrics["total_wage_cost"] == 180.0  # 120 stated + 4h x 15
        assert metrics["shift_count"] == 2
        assert metrics["employee_count"] == 2
        assert metrics["avg_hours_per_employee"] == 6.0
        assert metrics["avg_wage_per_hour"] == 15.0
    
    def test_labor_metrics_without_hours_or_employees(self):
        metrics = compute_labor_metrics([{"id": 1}])
        
        assert metrics["total_hours_worked"] == 0
        assert metrics["employee_count"] == 0
        assert metrics["avg_hours_per_employee"] == 0
        assert metrics["avg_wage_per_hour"] == 0
    
    def test_planning_status_counts(self):
        shifts = [
            {"user_id": 1, "planned_hours": 4, "status": "Confirmed"},
            {"user_id": 2, "planned_hours": 4, "status": "cancelled"},
            {"user_id": 2, "planned_hours": 2},
        ]
        metrics = compute_planning_metrics(shifts, hourly_wage=10.0)
        
        assert (metrics["confirmed_count"], metrics["cancelled_count"], metrics["planned_count"]) == (1, 1, 1)
        assert metrics["total_planned_hours"] == 10.0
        assert metrics["total_planned_cost"] == 100.0
        assert metrics["employee_count"] == 2
    
    def test_bork_sales_metrics(self, bork_tickets):
        metrics = compute_bork_sales_metrics(bork_tickets)
        
        assert metrics["total_revenue"] == 33.9
        assert metrics["total_transactions"] == 2
        assert metrics["product_count"] == 3
        assert metrics["unique_products"] == 2
        assert metrics["total_quantity"] == 5
        assert metrics["vat_9_base"] == 10.0
        assert metrics["vat_9_amount"] == 0.9
        assert metrics["vat_21_base"] == 19.01
        assert metrics["avg_revenue_per_transaction"] == 16.95
        assert metrics["top_category"] == "Drinks"
        assert [c["category"] for c in metrics["category_breakdown"]] == ["Drinks", "Food"]
    
    def test_bork_sales_without_lines(self):
        metrics = compute_bork_sales_metrics([{"Key": "T1", "Orders": []}])
        
        assert metrics["total_revenue"] == 0
        assert metrics["vat_percentage"] == 0
        assert metrics["top_category"] is None
        assert metrics["category_breakdown"] == []
