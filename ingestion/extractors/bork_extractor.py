"""
Bork POS client. Tickets are fetched one business day per request,
master-data lists in one request. Credentials are scoped to a single
location.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx

from core.config import settings
from core.exceptions import ConfigurationError
from ingestion.base import ProviderClient
from ingestion.endpoints import EndpointConfig
from models.base import Provider
import logging

logger = logging.getLogger(__name__)


class BorkClient(ProviderClient):
    """Fetch POS tickets for one location, day by day."""
    
    provider = Provider.BORK
    
    def __init__(
        self,
        credentials: Dict[str, Any],
        location_id: str,
        base_url: Optional[str] = None,
        **kwargs
    ):
        base_url = base_url or settings.BORK_BASE_URL
        if not credentials.get("api_key") or not base_url:
            raise ConfigurationError(
                "Missing Bork credentials",
                context={"location_id": location_id, "has_base_url": bool(base_url)}
            )
        super().__init__(base_url=base_url, credentials=credentials, location_id=location_id, **kwargs)
    
    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}
    
    def _probe(self) -> Tuple[str, Optional[str], Optional[str]]:
        today = datetime.utcnow().date().isoformat()
        return "tickets", today, today
    
    def _url(self, endpoint: EndpointConfig, day: Optional[date] = None) -> str:
        """Master-data lists live at the path itself; tickets add the day."""
        if day is None:
            return f"{self.base_url}/{endpoint.path}"
        return f"{self.base_url}/{endpoint.path}/{day.strftime('%Y%m%d')}"
    
    def _tag(self, records: Any, day: Optional[date] = None) -> List[Dict[str, Any]]:
        tagged = []
        for record in records if isinstance(records, list) else []:
            if not isinstance(record, dict):
                continue
            extra = {"_location_id": self.location_id}
            if day is not None:
                extra["_business_date"] = day.isoformat()
            tagged.append({**record, **extra})
        return tagged
    
    async def _fetch_records(
        self,
        client: httpx.AsyncClient,
        endpoint: EndpointConfig,
        start: Optional[date],
        end: Optional[date],
    ) -> List[Dict[str, Any]]:
        if not endpoint.requires_dates:
            response = await self._request_with_retry(
                client, endpoint.method, self._url(endpoint), endpoint.name,
                params={"appid": self.credentials["api_key"]},
            )
            self.pages += 1
            records = self._tag(self._parse_json(response, endpoint.name))
            logger.debug(f"Fetched {len(records)} {endpoint.name} for location {self.location_id}")
            return records
        
        params = {
            "appid": self.credentials["api_key"],
            "IncInternal": "True",
            "IncOpen": "True",
        }
        all_tickets: List[Dict[str, Any]] = []
        day = start
        
        while day <= end:
            response = await self._request_with_retry(
                client, endpoint.method, self._url(endpoint, day), endpoint.name, params=params
            )
            data = self._parse_json(response, endpoint.name)
            self.pages += 1
            
            tickets = self._tag(data, day)
            all_tickets.extend(tickets)
            logger.debug(f"Fetched {len(tickets)} tickets for location {self.location_id} on {day}")
            day += timedelta(days=1)
        
        return all_tickets
