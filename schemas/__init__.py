"""
Pydantic schemas for the sync service.

Schemas:
    results: Result objects passed between pipeline components
        (FetchResult, IngestResult, AggregationResult, EndpointResult)
    api: Request bodies and response envelopes of the HTTP routes

Usage:
    from schemas.results import EndpointResult
    from schemas.api import BackfillRequest, SyncConfigUpdate
"""
