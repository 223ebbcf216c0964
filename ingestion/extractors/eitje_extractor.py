"""
Eitje open API client (labor: shifts, planning, revenue days, master data).
"""

from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import httpx

from core.config import settings
from core.exceptions import ConfigurationError
from ingestion.base import ProviderClient
from ingestion.endpoints import EndpointConfig
from models.base import Provider
import logging

logger = logging.getLogger(__name__)

REQUIRED_CREDENTIALS = ("partner_username", "partner_password", "api_username", "api_password")

# Upper bound on followed pages for a single endpoint call
MAX_PAGES = 100


class EitjeClient(ProviderClient):
    """
    Eitje client.
    
    Features:
    - Partner + API username/password header authentication
    - Date filters on resource date for date-scoped endpoints
    - POST with a JSON filter body for endpoints that require it (events)
    - Follows page metadata when the response is paginated
    """
    
    provider = Provider.EITJE
    
    def __init__(self, credentials: Dict[str, Any], base_url: Optional[str] = None, **kwargs):
        missing = [key for key in REQUIRED_CREDENTIALS if not credentials.get(key)]
        if missing:
            raise ConfigurationError(
                "Missing Eitje credentials",
                context={"missing": missing}
            )
        super().__init__(base_url=base_url or settings.EITJE_BASE_URL, credentials=credentials, **kwargs)
    
    def _headers(self) -> Dict[str, str]:
        return {
            "Partner-Username": self.credentials["partner_username"],
            "Partner-Password": self.credentials["partner_password"],
            "Api-Username": self.credentials["api_username"],
            "Api-Password": self.credentials["api_password"],
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
    
    def _probe(self) -> Tuple[str, Optional[str], Optional[str]]:
        return "environments", None, None
    
    @staticmethod
    def _date_filters(start: date, end: date) -> Dict[str, str]:
        return {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "date_filter_type": "resource_date",
        }
    
    @staticmethod
    def _extract_items(data: Any) -> List[Dict[str, Any]]:
        """Responses are either a bare array or an object with ``items``."""
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        if isinstance(data, dict):
            items = data.get("items", data.get("data", []))
            if isinstance(items, list):
                return [item for item in items if isinstance(item, dict)]
        return []
    
    @staticmethod
    def _has_next_page(data: Any, page: int) -> bool:
        if not isinstance(data, dict):
            return False
        meta = data.get("meta") or data.get("pagination") or {}
        if not isinstance(meta, dict):
            return False
        total_pages = meta.get("total_pages") or meta.get("totalPages")
        if total_pages is None:
            return bool(meta.get("next_page"))
        try:
            return page < int(total_pages)
        except (TypeError, ValueError):
            return False
    
    async def _fetch_records(
        self,
        client: httpx.AsyncClient,
        endpoint: EndpointConfig,
        start: Optional[date],
        end: Optional[date],
    ) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/{endpoint.path}"
        all_records: List[Dict[str, Any]] = []
        page = 1
        
        while True:
            params: Dict[str, Any] = {}
            json_body: Optional[Dict[str, Any]] = None
            
            if endpoint.requires_dates:
                filters = self._date_filters(start, end)
                if endpoint.method == "POST":
                    json_body = {"filters": filters}
                else:
                    params = {f"filters[{key}]": value for key, value in filters.items()}
            if page > 1:
                params["page"] = page
            
            response = await self._request_with_retry(
                client, endpoint.method, url, endpoint.name,
                params=params or None, json_body=json_body
            )
            data = self._parse_json(response, endpoint.name)
            self.pages += 1
            
            records = self._extract_items(data)
            all_records.extend(records)
            logger.debug(f"Fetched {len(records)} records from page {page} of {endpoint.name}")
            
            if not records or not self._has_next_page(data, page) or page >= MAX_PAGES:
                break
            page += 1
        
        return all_records
