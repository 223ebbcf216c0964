"""
Pure grouping and metric computation for each aggregating endpoint.

Nothing here touches the database: the aggregation engine feeds raw
rows in and upserts the returned row dictionaries. Every division is
guarded and every stored amount is rounded to two decimals, so the
same input always produces identical output.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from models.aggregated import (
    LaborHoursAggregated,
    PlanningHoursAggregated,
    RevenueDaysAggregated,
    BorkSalesAggregated,
)
from models.base import Provider
from ingestion.transformers.field_extractors import (
    resolve_number,
    resolve_id,
    resolve_text,
    resolve_date,
    resolve_wage_cost,
    resolve_vat_rate,
    HOURS_EXTRACTORS,
    PLANNED_HOURS_EXTRACTORS,
    BREAK_EXTRACTORS,
    PLANNED_COST_EXTRACTORS,
    ENVIRONMENT_ID_EXTRACTORS,
    TEAM_ID_EXTRACTORS,
    USER_ID_EXTRACTORS,
    DATE_EXTRACTORS,
    STATUS_EXTRACTORS,
    REVENUE_EXTRACTORS,
    CASH_REVENUE_EXTRACTORS,
    CARD_REVENUE_EXTRACTORS,
    DIGITAL_REVENUE_EXTRACTORS,
    OTHER_REVENUE_EXTRACTORS,
    VAT_AMOUNT_EXTRACTORS,
    TRANSACTION_COUNT_EXTRACTORS,
    DEFAULT_TRANSACTION_COUNT,
    TICKET_KEY_EXTRACTORS,
    LINE_REVENUE_EXTRACTORS,
    LINE_QUANTITY_EXTRACTORS,
    LINE_PRODUCT_EXTRACTORS,
    LINE_CATEGORY_EXTRACTORS,
)

GroupKey = Tuple[Any, ...]


def round2(value: float) -> float:
    # + 0.0 folds -0.0 into 0.0
    return round(value, 2) + 0.0


def safe_divide(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator


# ============================================================================
# Grouping
# ============================================================================

def _row_date(row) -> Optional[date]:
    return row.effective_date or resolve_date(row.payload, DATE_EXTRACTORS)


def _row_environment(row) -> Optional[str]:
    return row.location_id or resolve_id(row.payload, ENVIRONMENT_ID_EXTRACTORS)


def shift_key(row) -> Optional[GroupKey]:
    """(date, environment_id, team_id) for labor and planning shifts."""
    day = _row_date(row)
    environment_id = _row_environment(row)
    if day is None or not environment_id:
        return None
    team_id = resolve_id(row.payload, TEAM_ID_EXTRACTORS) or ""
    return (day, environment_id, team_id)


def environment_day_key(row) -> Optional[GroupKey]:
    day = _row_date(row)
    environment_id = _row_environment(row)
    if day is None or not environment_id:
        return None
    return (day, environment_id)


def location_day_key(row) -> Optional[GroupKey]:
    if row.effective_date is None or not row.location_id:
        return None
    return (row.effective_date, row.location_id)


def group_rows(rows, key_fn: Callable[[Any], Optional[GroupKey]]) -> Tuple["OrderedDict[GroupKey, List[Dict[str, Any]]]", int]:
    """
    Partition raw rows by key, preserving first-seen order.

    Returns the groups and the number of rows skipped for lacking a key.
    """
    groups: "OrderedDict[GroupKey, List[Dict[str, Any]]]" = OrderedDict()
    skipped = 0
    for row in rows:
        key = key_fn(row)
        if key is None:
            skipped += 1
            continue
        groups.setdefault(key, []).append(row.payload)
    return groups, skipped


# ============================================================================
# Metrics
# ============================================================================

def compute_labor_metrics(payloads: List[Dict[str, Any]], hourly_wage: Optional[float] = None) -> Dict[str, Any]:
    total_hours = 0.0
    total_breaks = 0.0
    total_wage = 0.0
    employees = set()
    
    for payload in payloads:
        hours = resolve_number(payload, HOURS_EXTRACTORS)
        breaks = resolve_number(payload, BREAK_EXTRACTORS)
        total_hours += hours
        total_breaks += breaks
        total_wage += resolve_wage_cost(payload, hours, breaks, hourly_wage=hourly_wage)
        
        user_id = resolve_id(payload, USER_ID_EXTRACTORS)
        if user_id:
            employees.add(user_id)
    
    employee_count = len(employees)
    return {
        "total_hours_worked": round2(total_hours),
        "total_breaks_minutes": round2(total_breaks),
        "total_wage_cost": round2(total_wage),
        "shift_count": len(payloads),
        "employee_count": employee_count,
        "avg_hours_per_employee": round2(safe_divide(total_hours, employee_count)),
        "avg_wage_per_hour": round2(safe_divide(total_wage, total_hours)),
    }


def compute_planning_metrics(payloads: List[Dict[str, Any]], hourly_wage: Optional[float] = None) -> Dict[str, Any]:
    total_hours = 0.0
    total_breaks = 0.0
    total_cost = 0.0
    employees = set()
    status_counts = {"confirmed": 0, "cancelled": 0, "planned": 0}
    
    for payload in payloads:
        hours = resolve_number(payload, PLANNED_HOURS_EXTRACTORS)
        breaks = resolve_number(payload, BREAK_EXTRACTORS)
        total_hours += hours
        total_breaks += breaks
        total_cost += resolve_wage_cost(
            payload, hours, breaks,
            extractors=PLANNED_COST_EXTRACTORS,
            hourly_wage=hourly_wage,
        )
        
        user_id = resolve_id(payload, USER_ID_EXTRACTORS)
        if user_id:
            employees.add(user_id)
        
        status = (resolve_text(payload, STATUS_EXTRACTORS) or "").lower()
        if status not in ("confirmed", "cancelled"):
            status = "planned"
        status_counts[status] += 1
    
    employee_count = len(employees)
    return {
        "total_planned_hours": round2(total_hours),
        "total_breaks_minutes": round2(total_breaks),
        "total_planned_cost": round2(total_cost),
        "shift_count": len(payloads),
        "employee_count": employee_count,
        "confirmed_count": status_counts["confirmed"],
        "cancelled_count": status_counts["cancelled"],
        "planned_count": status_counts["planned"],
        "avg_hours_per_employee": round2(safe_divide(total_hours, employee_count)),
        "avg_cost_per_hour": round2(safe_divide(total_cost, total_hours)),
    }


def compute_revenue_metrics(payloads: List[Dict[str, Any]]) -> Dict[str, Any]:
    total_revenue = 0.0
    cash = card = digital = other = 0.0
    vat_amount = 0.0
    transactions = 0.0
    
    for payload in payloads:
        total_revenue += resolve_number(payload, REVENUE_EXTRACTORS)
        transactions += resolve_number(payload, TRANSACTION_COUNT_EXTRACTORS, default=DEFAULT_TRANSACTION_COUNT)
        cash += resolve_number(payload, CASH_REVENUE_EXTRACTORS)
        card += resolve_number(payload, CARD_REVENUE_EXTRACTORS)
        digital += resolve_number(payload, DIGITAL_REVENUE_EXTRACTORS)
        other += resolve_number(payload, OTHER_REVENUE_EXTRACTORS)
        vat_amount += resolve_number(payload, VAT_AMOUNT_EXTRACTORS)
    
    transaction_count = int(transactions)
    revenue_excl_vat = total_revenue - vat_amount
    return {
        "total_revenue": round2(total_revenue),
        "transaction_count": transaction_count,
        "avg_revenue_per_transaction": round2(safe_divide(total_revenue, transaction_count)),
        "cash_revenue": round2(cash),
        "card_revenue": round2(card),
        "digital_revenue": round2(digital),
        "other_revenue": round2(other),
        "total_vat_amount": round2(vat_amount),
        "revenue_excl_vat": round2(revenue_excl_vat),
        "vat_percentage": round2(safe_divide(vat_amount, revenue_excl_vat) * 100),
    }


def _is_rate(rate: float, target: float) -> bool:
    return abs(rate - target) < 0.005


def compute_bork_sales_metrics(tickets: List[Dict[str, Any]]) -> Dict[str, Any]:
    total_revenue = 0.0
    revenue_excl_vat = 0.0
    vat_9_base = vat_9_amount = 0.0
    vat_21_base = vat_21_amount = 0.0
    total_quantity = 0.0
    product_count = 0
    products = set()
    transactions = set()
    category_revenue: Dict[str, float] = {}
    
    for ticket in tickets:
        ticket_key = resolve_id(ticket, TICKET_KEY_EXTRACTORS)
        if ticket_key:
            transactions.add(ticket_key)
        
        for order in ticket.get("Orders") or []:
            if not isinstance(order, dict):
                continue
            for line in order.get("Lines") or []:
                if not isinstance(line, dict):
                    continue
                revenue = resolve_number(line, LINE_REVENUE_EXTRACTORS)
                rate = resolve_vat_rate(line)
                base = revenue / (1 + rate)
                
                total_revenue += revenue
                revenue_excl_vat += base
                if _is_rate(rate, 0.09):
                    vat_9_base += base
                    vat_9_amount += revenue - base
                elif _is_rate(rate, 0.21):
                    vat_21_base += base
                    vat_21_amount += revenue - base
                
                total_quantity += resolve_number(line, LINE_QUANTITY_EXTRACTORS)
                product_count += 1
                products.add(resolve_text(line, LINE_PRODUCT_EXTRACTORS, "Unknown Product"))
                category = resolve_text(line, LINE_CATEGORY_EXTRACTORS, "Unknown Category")
                category_revenue[category] = category_revenue.get(category, 0.0) + revenue
    
    total_vat = total_revenue - revenue_excl_vat
    total_transactions = len(transactions)
    
    top_category = None
    if category_revenue:
        top_category = sorted(category_revenue.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]
    
    category_breakdown = [
        {
            "category": category,
            "revenue": round2(revenue),
            "percentage": round2(safe_divide(revenue, total_revenue) * 100),
        }
        for category, revenue in sorted(category_revenue.items())
    ]
    
    return {
        "total_revenue": round2(total_revenue),
        "revenue_excl_vat": round2(revenue_excl_vat),
        "total_vat_amount": round2(total_vat),
        "vat_9_base": round2(vat_9_base),
        "vat_9_amount": round2(vat_9_amount),
        "vat_21_base": round2(vat_21_base),
        "vat_21_amount": round2(vat_21_amount),
        "vat_percentage": round2(safe_divide(total_vat, revenue_excl_vat) * 100),
        "total_quantity": round2(total_quantity),
        "total_transactions": total_transactions,
        "product_count": product_count,
        "unique_products": len(products),
        "avg_revenue_per_transaction": round2(safe_divide(total_revenue, total_transactions)),
        "top_category": top_category,
        "category_breakdown": category_breakdown,
    }


# ============================================================================
# Registry
# ============================================================================

@dataclass(frozen=True)
class AggregationDefinition:
    """How one endpoint's raw rows become rows of its *_aggregated table."""
    provider: Provider
    endpoint: str
    model: Type
    key_fields: Tuple[str, ...]
    key_fn: Callable[[Any], Optional[GroupKey]]
    compute: Callable[[List[Dict[str, Any]]], Dict[str, Any]]


AGGREGATIONS: Dict[Tuple[Provider, str], AggregationDefinition] = {
    (Provider.EITJE, "time_registration_shifts"): AggregationDefinition(
        Provider.EITJE, "time_registration_shifts", LaborHoursAggregated,
        ("date", "environment_id", "team_id"), shift_key, compute_labor_metrics,
    ),
    (Provider.EITJE, "planning_shifts"): AggregationDefinition(
        Provider.EITJE, "planning_shifts", PlanningHoursAggregated,
        ("date", "environment_id", "team_id"), shift_key, compute_planning_metrics,
    ),
    (Provider.EITJE, "revenue_days"): AggregationDefinition(
        Provider.EITJE, "revenue_days", RevenueDaysAggregated,
        ("date", "environment_id"), environment_day_key, compute_revenue_metrics,
    ),
    (Provider.BORK, "tickets"): AggregationDefinition(
        Provider.BORK, "tickets", BorkSalesAggregated,
        ("date", "location_id"), location_day_key, compute_bork_sales_metrics,
    ),
}
