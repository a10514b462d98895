"""
Ingestion Package

Staging, curation, persistence and orchestration:
- raw_store / object_storage: idempotent raw staging
- curator: raw payload -> curated fields + warnings + errors
- persistence: conflict-aware entity upserts
- pipeline: scrape -> stage -> curate -> persist for one item
- batch: paced sequential batches with cancellation
- bulk_loader: chunked CSV import with retry and per-row fallback
"""
from ingestion.errors import (
    BatchItemFailure,
    ChallengeUnresolved,
    ConfigurationError,
    FailureReason,
    FieldParseWarning,
    IdentityMissing,
    IngestionError,
    NavigationError,
    NavigationTimeout,
    RateLimitExceeded,
    TransientStoreFailure,
)

__all__ = [
    "BatchItemFailure",
    "ChallengeUnresolved",
    "ConfigurationError",
    "FailureReason",
    "FieldParseWarning",
    "IdentityMissing",
    "IngestionError",
    "NavigationError",
    "NavigationTimeout",
    "RateLimitExceeded",
    "TransientStoreFailure",
]
