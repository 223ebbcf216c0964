"""
Shared route dependencies
"""

from typing import Optional
import httpx
from fastapi import Header, HTTPException, Request, status
from core.config import settings
from core.database import get_session as get_db
from ingestion.scheduler import SyncScheduler


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Require X-API-Key on mutating routes when API_KEY is configured."""
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key")


def get_scheduler(request: Request) -> Optional[SyncScheduler]:
    return getattr(request.app.state, "scheduler", None)


def get_http_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for provider clients; None means the real network."""
    return None
