import logging
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.database import async_session_maker
from ingestion.runner import SyncRunner
from ingestion.sync_config import SyncConfigService
from models.base import Provider, SyncMode
from models.sync_config import SyncConfig

logger = logging.getLogger(__name__)

INCREMENTAL_JOB = "incremental"
BACKFILL_WORKER_JOB = "backfill-worker"


def job_id(provider: Provider, kind: str) -> str:
    return f"{Provider(provider).value}-{kind}"


class SyncScheduler:
    """
    Keeps one APScheduler job per provider in line with its sync mode.

    incremental -> the incremental job every incremental_interval_minutes
    backfill    -> the backfill worker every worker_interval_minutes
    manual      -> no job
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.SessionLocal = session_factory or async_session_maker

    def _remove_jobs(self, provider: Provider) -> None:
        for kind in (INCREMENTAL_JOB, BACKFILL_WORKER_JOB):
            if self.scheduler.get_job(job_id(provider, kind)) is not None:
                self.scheduler.remove_job(job_id(provider, kind))

    def toggle(self, provider: Provider, config: SyncConfig) -> Optional[str]:
        """Replace the provider's job with the one its mode calls for; returns the job id."""
        provider = Provider(provider)
        self._remove_jobs(provider)

        if config.mode == SyncMode.INCREMENTAL:
            kind, func, minutes = INCREMENTAL_JOB, self.run_incremental_job, config.incremental_interval_minutes
        elif config.mode == SyncMode.BACKFILL:
            kind, func, minutes = BACKFILL_WORKER_JOB, self.run_backfill_worker_job, config.worker_interval_minutes
        else:
            logger.info(f"Scheduler: {provider.value} is in manual mode, no job registered")
            return None

        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            args=[provider],
            id=job_id(provider, kind),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Scheduler: {provider.value} {kind} job every {minutes} minutes")
        return job_id(provider, kind)

    async def on_mode_change(self, provider: Provider, config: SyncConfig) -> None:
        self.toggle(provider, config)

    async def load_all(self) -> None:
        """Register jobs for every provider from its stored config."""
        async with self.SessionLocal() as session:
            configs = SyncConfigService(session)
            for provider in Provider:
                self.toggle(provider, await configs.get(provider))

    async def run_incremental_job(self, provider: Provider):
        """Job to run the incremental sync"""
        logger.info(f"Scheduler: Starting {Provider(provider).value} incremental job")
        async with self.SessionLocal() as session:
            try:
                runner = SyncRunner(session, on_mode_change=self.on_mode_change)
                result = await runner.run_incremental(provider)
                logger.info(
                    f"Scheduler: {Provider(provider).value} incremental job done: "
                    f"success={result['success']}, failed_endpoints={result.get('failed_endpoints', [])}"
                )
            except Exception as e:
                logger.error(f"Scheduler: {Provider(provider).value} incremental job failed - {e}")

    async def run_backfill_worker_job(self, provider: Provider):
        """Job to process one backfill chunk"""
        logger.info(f"Scheduler: Starting {Provider(provider).value} backfill worker")
        async with self.SessionLocal() as session:
            try:
                runner = SyncRunner(session, on_mode_change=self.on_mode_change)
                result = await runner.run_backfill_worker(provider)
                logger.info(
                    f"Scheduler: {Provider(provider).value} backfill worker done: "
                    f"{result.get('message') or result.get('chunk_status')}"
                )
            except Exception as e:
                logger.error(f"Scheduler: {Provider(provider).value} backfill worker failed - {e}")

    def jobs(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": job.id,
                "next_run_time": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    def start(self):
        """Start the scheduler"""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Sync Scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync Scheduler stopped")
