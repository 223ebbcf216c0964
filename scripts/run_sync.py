"""
Command-line entry for the sync pipeline.

    python scripts/run_sync.py incremental --provider eitje
    python scripts/run_sync.py backfill-worker --provider bork
    python scripts/run_sync.py aggregate --endpoint revenue_days --start 2024-01-01 --end 2024-01-31
    python scripts/run_sync.py plan --start 2024-01-01 --end 2024-06-30 --endpoints time_registration_shifts
"""

import argparse
import asyncio
import json
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, engine
from core.exceptions import SyncException
from core.logging import setup_logging
from ingestion.aggregation import AggregationEngine
from ingestion.backfill import BackfillPlanner
from ingestion.runner import SyncRunner
from models.base import Provider

setup_logging()
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the labor & POS sync pipeline")
    parser.add_argument("--provider", choices=[p.value for p in Provider], default=Provider.EITJE.value)
    commands = parser.add_subparsers(dest="command", required=True)
    
    commands.add_parser("incremental", help="Sync yesterday for every enabled endpoint")
    
    worker = commands.add_parser("backfill-worker", help="Process one queued backfill chunk")
    worker.add_argument("--progress-id")
    
    aggregate = commands.add_parser("aggregate", help="Recompute aggregated rows")
    aggregate.add_argument("--endpoint", required=True)
    aggregate.add_argument("--start", required=True)
    aggregate.add_argument("--end", required=True)
    aggregate.add_argument("--location-id")
    
    plan = commands.add_parser("plan", help="Create a backfill plan")
    plan.add_argument("--start")
    plan.add_argument("--end")
    plan.add_argument("--endpoints", nargs="+")
    plan.add_argument("--chunk-days", type=int)
    plan.add_argument("--location-id")
    
    return parser


async def run(args: argparse.Namespace) -> dict:
    provider = Provider(args.provider)
    async with async_session_maker() as session:
        if args.command == "incremental":
            return await SyncRunner(session).run_incremental(provider)
        if args.command == "backfill-worker":
            return await SyncRunner(session).run_backfill_worker(provider, progress_id=args.progress_id)
        if args.command == "aggregate":
            result = await AggregationEngine(session).aggregate(
                provider, args.endpoint, args.start, args.end, location_id=args.location_id
            )
            return {"success": result.success, **result.model_dump()}
        plan = await BackfillPlanner(session).create_plan(
            provider,
            start_date=args.start,
            end_date=args.end,
            endpoints=args.endpoints,
            chunk_days=args.chunk_days,
            location_id=args.location_id,
        )
        return {"success": True, **plan}


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        result = await run(args)
    except SyncException as e:
        logger.error(f"{args.command} failed: {e.message}", extra={"error_context": e.to_dict()})
        return 1
    finally:
        await engine.dispose()
    
    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("success") and not result.get("failed_endpoints") else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
