"""
Base class for provider API clients.

A client fetches one endpoint for a bounded date range and returns a
FetchResult. Request validation happens before any network call;
transport failures are retried under a RetryPolicy; 4xx rejections
are surfaced immediately. Clients never persist anything.
"""

import asyncio
import re
import time
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx

from core.config import settings
from core.exceptions import (
    ProviderAPIError,
    TransportError,
    ProviderTimeoutError,
    ApplicationRejectionError,
    AuthenticationError,
    PaymentRequiredError,
    RateLimitError,
    ResourceNotFoundError,
    RequestValidationError,
)
from core.resilience import RetryPolicy, RateLimiter
from ingestion.endpoints import EndpointConfig, get_endpoint
from models.base import Provider
from schemas.results import FetchResult
import logging

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_iso_date(value: Any, field_name: str) -> date:
    """Parse a YYYY-MM-DD string, raising RequestValidationError otherwise."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise RequestValidationError(
            f"Invalid {field_name} format. Use YYYY-MM-DD",
            context={
                "field_name": field_name,
                "field_value": value,
                "validation_rule": "YYYY-MM-DD",
            }
        )
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise RequestValidationError(
            f"Invalid {field_name}: {value}",
            context={"field_name": field_name, "field_value": value, "validation_rule": "calendar_date"},
            original_exception=e
        )


def validate_date_range(
    endpoint: EndpointConfig,
    start_date: Any = None,
    end_date: Any = None,
) -> Tuple[Optional[date], Optional[date]]:
    """
    Validate a requested range against an endpoint's limits.
    
    Master-data endpoints ignore dates. Date-scoped endpoints need both
    dates, start <= end, and a span within the endpoint's max window.
    """
    if not endpoint.requires_dates:
        return None, None
    
    if start_date is None or end_date is None:
        raise RequestValidationError(
            f"startDate and endDate are required for {endpoint.name}",
            context={"endpoint": endpoint.name, "validation_rule": "required"}
        )
    
    start = parse_iso_date(start_date, "startDate")
    end = parse_iso_date(end_date, "endDate")
    
    if start > end:
        raise RequestValidationError(
            "startDate must be before or equal to endDate",
            context={
                "endpoint": endpoint.name,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "validation_rule": "start<=end",
            }
        )
    
    if endpoint.max_days is not None and (end - start).days > endpoint.max_days:
        raise RequestValidationError(
            f"Date range too large for {endpoint.name}: max {endpoint.max_days} days",
            context={
                "endpoint": endpoint.name,
                "requested_days": (end - start).days,
                "max_days": endpoint.max_days,
                "validation_rule": "max_window",
            }
        )
    
    return start, end


class ProviderClient(ABC):
    """
    Fetch provider data with validation, pacing, retries and a circuit breaker.
    
    Attributes:
        retry_policy: Bounded retries for transport failures (default: 3 attempts)
        rate_limiter: Serializes outbound calls with a minimum interval
        timeout: Per-request timeout in seconds (default: 30.0)
        circuit_breaker_threshold: Consecutive failures before circuit opens (default: 5)
        circuit_breaker_timeout: Seconds before circuit reset (default: 60)
    """
    
    provider: Provider
    
    def __init__(
        self,
        base_url: str,
        credentials: Optional[Dict[str, Any]] = None,
        location_id: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials or {}
        self.location_id = location_id
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            min_interval=settings.REQUEST_MIN_INTERVAL_SECONDS,
            name=self.provider.value,
        )
        self.transport = transport
        self.retry_count = 0
        self.pages = 0
        
        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = 60  # seconds
    
    # ------------------------------------------------------------------
    # Provider-specific hooks
    # ------------------------------------------------------------------
    
    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        """Authentication and content headers for every request."""
    
    @abstractmethod
    async def _fetch_records(
        self,
        client: httpx.AsyncClient,
        endpoint: EndpointConfig,
        start: Optional[date],
        end: Optional[date],
    ) -> List[Dict[str, Any]]:
        """Fetch every record of ``endpoint`` in the validated range."""
    
    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------
    
    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False
        
        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info(f"Circuit breaker reset for {self.provider.value}")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False
        
        return True
    
    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1
        
        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for {self.provider.value}. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )
    
    def _record_success(self):
        """Record a successful request."""
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None
    
    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    
    def _raise_for_status(self, response: httpx.Response, context: Dict[str, Any]) -> None:
        """Map a non-2xx response onto the error taxonomy."""
        status = response.status_code
        if status < 400:
            return
        
        context = {**context, "response_body": response.text[:500]}
        
        if status in (401, 403):
            raise AuthenticationError("Authentication failed", context=context, status_code=status)
        if status == 402:
            raise PaymentRequiredError("Provider rejected request (payment required)", context=context, status_code=status)
        if status == 404:
            raise ResourceNotFoundError("Resource not found", context=context, status_code=status)
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Rate limit exceeded",
                context=context,
                status_code=status,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if status >= 500:
            raise TransportError(f"Server error {status}", context=context, status_code=status)
        raise ApplicationRejectionError(f"Request rejected with HTTP {status}", context=context, status_code=status)
    
    async def _request_with_retry(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Make one logical request, retrying transport failures.
        
        Raises:
            TransportError: Timeouts, network errors and 5xx after retries
            ApplicationRejectionError: Any 4xx, without retrying
        """
        context = {"provider": self.provider.value, "endpoint": endpoint, "url": url}
        
        if self._is_circuit_open():
            raise TransportError(
                f"Circuit breaker is open for {self.provider.value}",
                context={**context, "open_until": self._circuit_breaker_open_until.isoformat()}
            )
        
        attempt = 0
        while True:
            attempt += 1
            try:
                logger.debug(f"Request attempt {attempt}/{self.retry_policy.max_attempts} to {url}")
                async with self.rate_limiter:
                    response = await client.request(
                        method,
                        url,
                        headers=self._headers(),
                        params=params,
                        json=json_body,
                        timeout=self.timeout,
                    )
                self._raise_for_status(response, {**context, "retry_count": attempt - 1})
                self._record_success()
                return response
            
            except ApplicationRejectionError:
                self._record_failure()
                raise
            
            except httpx.TimeoutException as e:
                error: ProviderAPIError = ProviderTimeoutError(
                    f"Request timeout after {self.timeout}s",
                    context={**context, "timeout": self.timeout, "retry_count": attempt - 1},
                    original_exception=e
                )
            
            except httpx.TransportError as e:
                error = TransportError(
                    "Network error",
                    context={**context, "retry_count": attempt - 1},
                    original_exception=e
                )
            
            except TransportError as e:
                error = e
            
            if not self.retry_policy.should_retry(error, attempt):
                self._record_failure()
                raise error
            
            delay = self.retry_policy.delay_for(attempt)
            self.retry_count += 1
            logger.warning(
                f"{error.message} on {self.provider.value}/{endpoint}. "
                f"Retrying in {delay} seconds (attempt {attempt}/{self.retry_policy.max_attempts})"
            )
            await asyncio.sleep(delay)
    
    def _parse_json(self, response: httpx.Response, endpoint: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ApplicationRejectionError(
                "Failed to parse JSON response",
                context={
                    "provider": self.provider.value,
                    "endpoint": endpoint,
                    "response_body": response.text[:500],
                },
                original_exception=e,
                status_code=response.status_code
            )
    
    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    
    async def fetch(
        self,
        endpoint: str,
        start_date: Any = None,
        end_date: Any = None,
    ) -> FetchResult:
        """
        Fetch one endpoint for a date range.
        
        Raises:
            RequestValidationError: Bad dates or unknown endpoint, before any I/O
        
        Returns:
            FetchResult; provider failures are reported with success=False
        """
        config = get_endpoint(self.provider, endpoint)
        start, end = validate_date_range(config, start_date, end_date)
        
        self.retry_count = 0
        self.pages = 0
        started = time.perf_counter()
        
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                records = await self._fetch_records(client, config, start, end)
        
        except ProviderAPIError as e:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.error(
                f"Fetch failed for {self.provider.value}/{endpoint}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return FetchResult(
                success=False,
                provider=self.provider.value,
                endpoint=endpoint,
                response_time_ms=elapsed_ms,
                retry_count=self.retry_count,
                pages=self.pages,
                status_code=e.status_code,
                error=e.message if e.status_code is None else f"{e.message} (HTTP {e.status_code})",
                is_transport_error=e.is_transport,
            )
        
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            f"Fetched {len(records)} records from {self.provider.value}/{endpoint} "
            f"({self.pages} pages, {elapsed_ms}ms, {self.retry_count} retries)"
        )
        return FetchResult(
            success=True,
            provider=self.provider.value,
            endpoint=endpoint,
            records=records,
            record_count=len(records),
            response_time_ms=elapsed_ms,
            retry_count=self.retry_count,
            pages=self.pages,
        )
    
    def _probe(self) -> Tuple[str, Optional[str], Optional[str]]:
        """Endpoint and range used by test_connection."""
        raise NotImplementedError
    
    async def test_connection(self) -> Dict[str, Any]:
        """Check the connection with the cheapest call the provider offers."""
        endpoint, start_date, end_date = self._probe()
        result = await self.fetch(endpoint, start_date, end_date)
        return {
            "success": result.success,
            "provider": self.provider.value,
            "location_id": self.location_id,
            "endpoint": endpoint,
            "response_time_ms": result.response_time_ms,
            "record_count": result.record_count,
            "status_code": result.status_code,
            "error": result.error,
        }
