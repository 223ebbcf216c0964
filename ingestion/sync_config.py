"""
Per-provider sync configuration: defaults, updates, mode transitions
and the quiet-hours rule.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import upsert_statement
from core.exceptions import RequestValidationError
from ingestion.endpoints import DEFAULT_ENABLED_ENDPOINTS, get_endpoint
from models.base import Provider, SyncMode
from models.sync_config import SyncConfig
import logging

logger = logging.getLogger(__name__)

DEFAULT_INCREMENTAL_INTERVAL_MINUTES = 60
DEFAULT_WORKER_INTERVAL_MINUTES = 5

UPDATABLE_FIELDS = (
    "mode",
    "incremental_interval_minutes",
    "worker_interval_minutes",
    "enabled_endpoints",
    "enabled_locations",
    "quiet_hours_start",
    "quiet_hours_end",
)


def is_quiet_hour(config: SyncConfig, now: datetime) -> bool:
    """
    True when ``now`` (UTC) falls in the configured quiet window.
    
    The window is [start, end) in whole hours; start > end wraps
    past midnight (e.g. 22 -> 6). No window when either bound is unset
    or both are equal.
    """
    start = config.quiet_hours_start
    end = config.quiet_hours_end
    if start is None or end is None or start == end:
        return False
    hour = now.hour
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


class SyncConfigService:
    """Load and mutate the single config row of a provider."""
    
    def __init__(self, db_session: AsyncSession):
        self.db = db_session
    
    async def get(self, provider: Provider) -> SyncConfig:
        """Return the provider's config, creating it with defaults on first use."""
        provider = Provider(provider)
        config = await self._select(provider)
        if config is not None:
            return config
        
        now = datetime.utcnow()
        stmt = upsert_statement(self.db, SyncConfig).values(
            provider=provider,
            mode=SyncMode.MANUAL,
            incremental_interval_minutes=DEFAULT_INCREMENTAL_INTERVAL_MINUTES,
            worker_interval_minutes=DEFAULT_WORKER_INTERVAL_MINUTES,
            enabled_endpoints=list(DEFAULT_ENABLED_ENDPOINTS[provider]),
            enabled_locations=[],
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["provider"])
        await self.db.execute(stmt)
        await self.db.commit()
        logger.info(f"Created default sync config for {provider.value}")
        return await self._select(provider)
    
    async def _select(self, provider: Provider) -> Optional[SyncConfig]:
        result = await self.db.execute(
            select(SyncConfig)
            .where(SyncConfig.provider == provider)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()
    
    async def update(self, provider: Provider, changes: Dict[str, Any]) -> Tuple[SyncConfig, bool]:
        """
        Apply operator changes.
        
        Returns:
            The updated config and whether its mode changed
        """
        provider = Provider(provider)
        config = await self.get(provider)
        previous_mode = config.mode
        
        applied = {
            key: value for key, value in changes.items()
            if key in UPDATABLE_FIELDS and (value is not None or key.startswith("quiet_hours"))
        }
        
        for key in ("incremental_interval_minutes", "worker_interval_minutes"):
            if key in applied and applied[key] < 1:
                raise RequestValidationError(
                    "Intervals must be at least 1 minute",
                    context={"field_name": key, "field_value": applied[key], "validation_rule": "interval>=1"}
                )
        for endpoint in applied.get("enabled_endpoints", []):
            get_endpoint(provider, endpoint)
        if "mode" in applied:
            applied["mode"] = SyncMode(applied["mode"])
        
        for key, value in applied.items():
            setattr(config, key, value)
        
        config.updated_at = datetime.utcnow()
        await self.db.commit()
        
        mode_changed = config.mode != previous_mode
        if mode_changed:
            logger.info(f"Sync mode for {provider.value}: {previous_mode.value} -> {config.mode.value}")
        return config, mode_changed
    
    async def set_mode(self, provider: Provider, mode: SyncMode) -> SyncConfig:
        config, _ = await self.update(provider, {"mode": mode})
        return config
    
    async def transition_to_incremental(self, provider: Provider) -> bool:
        """
        Switch backfill -> incremental.
        
        Conditional on the current mode, so concurrent completions switch
        exactly once. Returns True for the call that performed the switch.
        """
        provider = Provider(provider)
        result = await self.db.execute(
            update(SyncConfig)
            .where(SyncConfig.provider == provider, SyncConfig.mode == SyncMode.BACKFILL)
            .values(mode=SyncMode.INCREMENTAL, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        switched = result.rowcount == 1
        if switched:
            logger.info(f"Backfill complete for {provider.value}, switched to incremental mode")
        return switched
