"""
Resolve provider credentials and build API clients from them.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import ConfigurationError
from ingestion.base import ProviderClient
from ingestion.extractors.eitje_extractor import EitjeClient
from ingestion.extractors.bork_extractor import BorkClient
from models.base import Provider
from models.credentials import ProviderCredential
import logging

logger = logging.getLogger(__name__)


def _env_eitje_credentials() -> Dict[str, Any]:
    return {
        "partner_username": settings.EITJE_PARTNER_USERNAME,
        "partner_password": settings.EITJE_PARTNER_PASSWORD,
        "api_username": settings.EITJE_API_USERNAME,
        "api_password": settings.EITJE_API_PASSWORD,
    }


class CredentialStore:
    """Read credentials from provider_credentials, with env fallback for Eitje."""
    
    def __init__(self, db_session: AsyncSession):
        self.db = db_session
    
    async def get(self, provider: Provider, location_id: Optional[str] = None) -> Optional[ProviderCredential]:
        result = await self.db.execute(
            select(ProviderCredential).where(
                ProviderCredential.provider == provider,
                ProviderCredential.location_id == (location_id or ""),
                ProviderCredential.is_active.is_(True),
            )
        )
        return result.scalars().first()
    
    async def active_locations(self, provider: Provider) -> List[str]:
        result = await self.db.execute(
            select(ProviderCredential.location_id).where(
                ProviderCredential.provider == provider,
                ProviderCredential.is_active.is_(True),
                ProviderCredential.location_id != "",
            ).order_by(ProviderCredential.location_id)
        )
        return list(result.scalars().all())
    
    async def build_client(
        self,
        provider: Provider,
        location_id: Optional[str] = None,
        **client_kwargs
    ) -> ProviderClient:
        """
        Build the client for a provider (and location, for Bork).
        
        Raises:
            ConfigurationError: No usable credentials
        """
        provider = Provider(provider)
        row = await self.get(provider, location_id)
        
        if provider == Provider.EITJE:
            if row is not None:
                return EitjeClient(credentials=row.credentials, base_url=row.base_url, **client_kwargs)
            logger.debug("No Eitje credential row, using environment credentials")
            return EitjeClient(credentials=_env_eitje_credentials(), **client_kwargs)
        
        if not location_id:
            raise ConfigurationError(
                "Bork requires a location_id",
                context={"provider": provider.value}
            )
        if row is None:
            raise ConfigurationError(
                f"No active Bork credentials for location {location_id}",
                context={"provider": provider.value, "location_id": location_id}
            )
        return BorkClient(
            credentials=row.credentials,
            location_id=location_id,
            base_url=row.base_url,
            **client_kwargs
        )
