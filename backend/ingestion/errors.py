"""
Ingestion error taxonomy.

Hierarchy:
- IngestionError
  - IdentityMissing        mandatory native id / source URL absent
  - NavigationTimeout      a browser step exceeded its bounded wait
    - ChallengeUnresolved  anti-bot interstitial never cleared
  - NavigationError        deterministic navigation failure (no result, bad input)
  - RateLimitExceeded      request window for a domain never reopened
  - TransientStoreFailure  retryable storage / database write failure
  - BatchItemFailure       terminal failure of one batch item
  - ConfigurationError     aborts the whole run

FieldParseWarning and PersistenceConflict are values, not exceptions: field
parse problems are collected on the curated record and conflicts are
returned by the persistence gateway.

Every error carries the natural key of the item it concerns when one is known.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FailureReason(str, Enum):
    """Classification attached to navigation and batch failures."""
    SITE_STRUCTURE = "site_structure"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    VALIDATION = "validation"
    STORE = "store"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (FailureReason.NETWORK, FailureReason.RATE_LIMITED, FailureReason.STORE)


class IngestionError(Exception):
    """Base exception for the ingestion pipeline."""

    reason = FailureReason.UNKNOWN

    def __init__(self, message: str, natural_key: Optional[str] = None):
        self.natural_key = natural_key
        if natural_key:
            message = f"[{natural_key}] {message}"
        super().__init__(message)


class IdentityMissing(IngestionError):
    """The mandatory identity field could not be determined."""
    reason = FailureReason.VALIDATION


class NavigationTimeout(IngestionError):
    """A navigator step timed out."""

    def __init__(
        self,
        step: str,
        reason: FailureReason = FailureReason.SITE_STRUCTURE,
        natural_key: Optional[str] = None,
        detail: str = "",
    ):
        self.step = step
        self.reason = reason
        message = f"Step {step} timed out ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, natural_key)


class ChallengeUnresolved(NavigationTimeout):
    """The anti-bot interstitial did not clear within its wait."""

    def __init__(self, step: str, natural_key: Optional[str] = None, detail: str = ""):
        super().__init__(step, FailureReason.RATE_LIMITED, natural_key, detail)


class NavigationError(IngestionError):
    """Deterministic navigation failure (bad identifier, no qualifying result)."""

    def __init__(
        self,
        message: str,
        natural_key: Optional[str] = None,
        step: Optional[str] = None,
        reason: FailureReason = FailureReason.SITE_STRUCTURE,
    ):
        self.step = step
        self.reason = reason
        super().__init__(message, natural_key)


class RateLimitExceeded(IngestionError):
    """The per-domain request window stayed closed for every wait attempt."""
    reason = FailureReason.RATE_LIMITED


class TransientStoreFailure(IngestionError):
    """Retryable write failure against staging or the target store."""
    reason = FailureReason.STORE


class BatchItemFailure(IngestionError):
    """Terminal failure of a single batch item."""

    def __init__(
        self,
        message: str,
        natural_key: Optional[str] = None,
        reason: FailureReason = FailureReason.UNKNOWN,
    ):
        self.reason = reason
        super().__init__(message, natural_key)


class ConfigurationError(IngestionError):
    """Invalid or missing configuration; aborts the entire run."""


@dataclass(frozen=True)
class FieldParseWarning:
    """A field whose raw value could not be parsed; the field is left null."""
    field: str
    raw_value: str

    @property
    def message(self) -> str:
        return f"Could not parse {self.field} from: {self.raw_value}"

    def __str__(self) -> str:
        return self.message


def classify_exception(error: Exception) -> FailureReason:
    """Map an arbitrary exception onto a failure reason."""
    import requests
    from sqlalchemy.exc import DBAPIError, OperationalError

    if isinstance(error, IngestionError):
        return error.reason
    if isinstance(error, requests.HTTPError) and error.response is not None:
        if error.response.status_code in (403, 429, 503):
            return FailureReason.RATE_LIMITED
        return FailureReason.NETWORK
    if isinstance(error, requests.RequestException):
        return FailureReason.NETWORK
    if isinstance(error, (OperationalError, DBAPIError, OSError)):
        return FailureReason.STORE
    return FailureReason.UNKNOWN
