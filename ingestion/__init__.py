"""
Sync pipeline components for the labor (Eitje) and POS (Bork) providers.

Modules:
    base: ProviderClient with validation, pacing, retries and circuit breaker
    endpoints: Endpoint catalogue per provider
    credentials: Credential lookup and client construction
    aggregation: Recompute *_aggregated tables from raw rows
    backfill: Backfill planning and the chunk queue
    progress: Gap detection, monthly coverage and backfill status
    sync_config: Per-provider mode, intervals and quiet hours
    runner: SyncRunner for incremental, backfill and manual runs
    scheduler: APScheduler jobs that follow each provider's mode

Subpackages:
    extractors: EitjeClient and BorkClient
    transformers: Field-extraction chains and pure aggregation functions
    loaders: RawIngestionStore with idempotent upserts

Pipeline:
    1. Fetch - provider client, validated range, bounded retries
    2. Store - upsert into the endpoint's raw table keyed by provider id
    3. Aggregate - regroup the synced range and overwrite aggregated rows

Usage:
    from ingestion.runner import SyncRunner

    runner = SyncRunner(session)
    result = await runner.run_incremental("eitje")
"""
