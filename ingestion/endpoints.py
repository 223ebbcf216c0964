"""
Endpoint catalogue for every provider.

Each entry says where the endpoint lives, whether it is date-scoped
and the widest range the provider accepts in one call. Which endpoints
aggregate is decided by the aggregation registry.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from models.base import Provider
from core.exceptions import RequestValidationError


@dataclass(frozen=True)
class EndpointConfig:
    provider: Provider
    name: str
    path: str
    method: str = "GET"
    requires_dates: bool = True
    max_days: Optional[int] = None


ENDPOINTS: Dict[Tuple[Provider, str], EndpointConfig] = {
    # Eitje master data
    (Provider.EITJE, "environments"): EndpointConfig(
        Provider.EITJE, "environments", "environments", requires_dates=False
    ),
    (Provider.EITJE, "teams"): EndpointConfig(
        Provider.EITJE, "teams", "teams", requires_dates=False
    ),
    (Provider.EITJE, "users"): EndpointConfig(
        Provider.EITJE, "users", "users", requires_dates=False
    ),
    (Provider.EITJE, "shift_types"): EndpointConfig(
        Provider.EITJE, "shift_types", "shift_types", requires_dates=False
    ),
    # Eitje date-scoped data
    (Provider.EITJE, "time_registration_shifts"): EndpointConfig(
        Provider.EITJE, "time_registration_shifts", "time_registration_shifts", max_days=7
    ),
    (Provider.EITJE, "planning_shifts"): EndpointConfig(
        Provider.EITJE, "planning_shifts", "planning_shifts", max_days=7
    ),
    (Provider.EITJE, "revenue_days"): EndpointConfig(
        Provider.EITJE, "revenue_days", "revenue_days", max_days=90
    ),
    (Provider.EITJE, "events"): EndpointConfig(
        Provider.EITJE, "events", "events", method="POST", max_days=90
    ),
    # Bork master data, one list per location
    (Provider.BORK, "product_groups"): EndpointConfig(
        Provider.BORK, "product_groups", "catalog/productgrouplist.json", requires_dates=False
    ),
    (Provider.BORK, "payment_methods"): EndpointConfig(
        Provider.BORK, "payment_methods", "catalog/paymodegrouplist.json", requires_dates=False
    ),
    (Provider.BORK, "cost_centers"): EndpointConfig(
        Provider.BORK, "cost_centers", "centers.json", requires_dates=False
    ),
    (Provider.BORK, "users"): EndpointConfig(
        Provider.BORK, "users", "users.json", requires_dates=False
    ),
    # Bork tickets
    (Provider.BORK, "tickets"): EndpointConfig(
        Provider.BORK, "tickets", "ticket/day.json", max_days=31
    ),
}

DEFAULT_ENABLED_ENDPOINTS: Dict[Provider, List[str]] = {
    Provider.EITJE: ["time_registration_shifts", "planning_shifts", "revenue_days"],
    Provider.BORK: ["tickets"],
}


def get_endpoint(provider: Provider, name: str) -> EndpointConfig:
    """Look up an endpoint, rejecting unknown names as a validation error."""
    try:
        return ENDPOINTS[(Provider(provider), name)]
    except (KeyError, ValueError):
        raise RequestValidationError(
            f"Unknown endpoint '{name}' for provider '{getattr(provider, 'value', provider)}'",
            context={
                "field_name": "endpoint",
                "field_value": name,
                "validation_rule": "known_endpoint",
            }
        )
