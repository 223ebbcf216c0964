"""
Ordered field-extraction chains for provider payloads.

Provider payloads expose the same logical value under several keys
(normalized column, nested JSON path, legacy alias). Every logical
field is described by an ordered list of pure extractor functions;
the resolver takes the first defined, non-zero value. Fallback
defaults are named module constants so callers can override them.
"""

from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from core.config import settings
from models.base import Provider

Extractor = Callable[[Dict[str, Any]], Any]

# Estimated hourly wage used when a shift carries no cost at all
FALLBACK_HOURLY_WAGE: float = settings.FALLBACK_HOURLY_WAGE

# VAT rate applied to POS lines that do not state one
DEFAULT_VAT_RATE: float = settings.DEFAULT_VAT_RATE


# ============================================================================
# Primitive extractors
# ============================================================================

def field(dotted_path: str) -> Extractor:
    """Read a (possibly nested) key, e.g. ``costs.wage``."""
    keys = dotted_path.split(".")
    
    def extract(record: Dict[str, Any]) -> Any:
        value: Any = record
        for key in keys:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value
    
    extract.__name__ = f"field[{dotted_path}]"
    return extract


def scalar(key: str) -> Extractor:
    """Read a top-level key only when it is not a nested object."""
    
    def extract(record: Dict[str, Any]) -> Any:
        value = record.get(key)
        if isinstance(value, (dict, list)):
            return None
        return value
    
    extract.__name__ = f"scalar[{key}]"
    return extract


def cents(key: str) -> Extractor:
    """Read an integer cents amount and convert it to units."""
    
    def extract(record: Dict[str, Any]) -> Optional[float]:
        value = to_number(record.get(key))
        if value is None:
            return None
        return value / 100
    
    extract.__name__ = f"cents[{key}]"
    return extract


def to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", "."))
        except ValueError:
            return None
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


# ============================================================================
# Resolvers
# ============================================================================

def resolve_number(record: Dict[str, Any], extractors: List[Extractor], default: float = 0.0) -> float:
    """First defined, non-zero numeric value, else ``default``."""
    for extractor in extractors:
        value = to_number(extractor(record))
        if value:
            return value
    return default


def resolve_id(record: Dict[str, Any], extractors: List[Extractor]) -> Optional[str]:
    """First non-empty identifier, as a string."""
    for extractor in extractors:
        value = extractor(record)
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def resolve_text(record: Dict[str, Any], extractors: List[Extractor], default: Optional[str] = None) -> Optional[str]:
    return resolve_id(record, extractors) or default


def resolve_date(record: Dict[str, Any], extractors: List[Extractor]) -> Optional[date]:
    for extractor in extractors:
        value = parse_date(extractor(record))
        if value is not None:
            return value
    return None


# ============================================================================
# Shift fields
# ============================================================================

START_TIME_EXTRACTORS: List[Extractor] = [field("start_time"), field("start"), field("startDateTime")]
END_TIME_EXTRACTORS: List[Extractor] = [field("end_time"), field("end"), field("endDateTime")]


def _first_datetime(record: Dict[str, Any], extractors: List[Extractor]) -> Optional[datetime]:
    for extractor in extractors:
        value = parse_datetime(extractor(record))
        if value is not None:
            return value
    return None


def hours_from_times(record: Dict[str, Any]) -> Optional[float]:
    """Shift length computed from its start and end timestamps."""
    start = _first_datetime(record, START_TIME_EXTRACTORS)
    end = _first_datetime(record, END_TIME_EXTRACTORS)
    if start is None or end is None:
        return None
    if (start.tzinfo is None) != (end.tzinfo is None):
        start = start.replace(tzinfo=None)
        end = end.replace(tzinfo=None)
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return None
    return seconds / 3600


HOURS_EXTRACTORS: List[Extractor] = [
    field("hours_worked"),
    field("hours"),
    field("totalHours"),
    field("total_hours"),
    hours_from_times,
]

PLANNED_HOURS_EXTRACTORS: List[Extractor] = [
    field("planned_hours"),
    field("plannedHours"),
] + HOURS_EXTRACTORS

BREAK_EXTRACTORS: List[Extractor] = [
    field("break_minutes"),
    field("breaks"),
    field("breakMinutes"),
    field("break_minutes_actual"),
]

WAGE_EXTRACTORS: List[Extractor] = [
    field("wage_cost"),
    field("costs.wage"),
    field("wageCost"),
    field("costs.wage_cost"),
]

PLANNED_COST_EXTRACTORS: List[Extractor] = [
    field("planned_cost"),
    field("costs.planned"),
    field("plannedCost"),
    field("wage_cost"),
]

ENVIRONMENT_ID_EXTRACTORS: List[Extractor] = [
    field("environment_id"),
    field("environment.id"),
    scalar("environment"),
]

TEAM_ID_EXTRACTORS: List[Extractor] = [field("team_id"), field("team.id"), scalar("team")]

USER_ID_EXTRACTORS: List[Extractor] = [field("user_id"), field("user.id"), scalar("user")]

DATE_EXTRACTORS: List[Extractor] = [field("date"), field("start_date"), field("resource_date")]

STATUS_EXTRACTORS: List[Extractor] = [field("status"), field("state")]


def resolve_wage_cost(
    record: Dict[str, Any],
    hours: float,
    break_minutes: float,
    extractors: List[Extractor] = WAGE_EXTRACTORS,
    hourly_wage: Optional[float] = None,
) -> float:
    """Stated wage cost, or paid hours times the fallback hourly wage."""
    stated = resolve_number(record, extractors)
    if stated:
        return stated
    rate = FALLBACK_HOURLY_WAGE if hourly_wage is None else hourly_wage
    paid_hours = max(hours - break_minutes / 60, 0.0)
    return paid_hours * rate


# ============================================================================
# Revenue fields
# ============================================================================

REVENUE_EXTRACTORS: List[Extractor] = [
    cents("amt_in_cents"),
    field("total_revenue"),
    field("revenue"),
]

CASH_REVENUE_EXTRACTORS: List[Extractor] = [field("cash_revenue"), field("cashRevenue")]
CARD_REVENUE_EXTRACTORS: List[Extractor] = [field("card_revenue"), field("cardRevenue")]
DIGITAL_REVENUE_EXTRACTORS: List[Extractor] = [field("digital_revenue"), field("digitalRevenue")]
OTHER_REVENUE_EXTRACTORS: List[Extractor] = [field("other_revenue"), field("otherRevenue")]
VAT_AMOUNT_EXTRACTORS: List[Extractor] = [field("vat_amount"), field("vatAmount")]

# A revenue day without a stated count is one transaction
TRANSACTION_COUNT_EXTRACTORS: List[Extractor] = [
    field("transaction_count"),
    field("transactions_count"),
    field("count"),
]
DEFAULT_TRANSACTION_COUNT: float = 1.0


# ============================================================================
# Bork ticket fields
# ============================================================================

TICKET_KEY_EXTRACTORS: List[Extractor] = [field("Key"), field("TicketKey"), field("Id"), field("id"), field("ID")]
LINE_REVENUE_EXTRACTORS: List[Extractor] = [field("TotalInc"), field("totalPrice")]
LINE_QUANTITY_EXTRACTORS: List[Extractor] = [field("Qty"), field("quantity")]
LINE_PRODUCT_EXTRACTORS: List[Extractor] = [field("ProductName"), field("name")]
LINE_CATEGORY_EXTRACTORS: List[Extractor] = [field("Category"), field("product.productGroupName")]
LINE_VAT_RATE_EXTRACTORS: List[Extractor] = [field("VatPerc"), field("vat_percentage"), field("VatRate")]


def resolve_vat_rate(line: Dict[str, Any]) -> float:
    """VAT rate as a fraction; percentages such as 21 become 0.21."""
    rate = resolve_number(line, LINE_VAT_RATE_EXTRACTORS, default=DEFAULT_VAT_RATE)
    if rate > 1:
        rate = rate / 100
    return rate


# ============================================================================
# Raw record identity
# ============================================================================

RECORD_ID_EXTRACTORS: List[Extractor] = [field("id")]

EFFECTIVE_DATE_EXTRACTORS: List[Extractor] = DATE_EXTRACTORS + [
    field("_business_date"),
    field("start"),
    field("start_time"),
]

LOCATION_ID_EXTRACTORS: List[Extractor] = [field("_location_id")] + ENVIRONMENT_ID_EXTRACTORS


def record_provider_id(
    provider: Provider,
    record: Dict[str, Any],
    location_id: Optional[str] = None,
) -> Optional[str]:
    """
    Provider-assigned identifier for a raw record.

    POS tickets are only unique within a location, so their key is
    prefixed with the location id.
    """
    if Provider(provider) == Provider.BORK:
        key = resolve_id(record, TICKET_KEY_EXTRACTORS)
        if key and location_id:
            return f"{location_id}:{key}"
        return key
    return resolve_id(record, RECORD_ID_EXTRACTORS)
