"""
Ingestion Pipeline - Scrape -> stage -> curate -> persist for one item.

Entry points shared by the HTTP routes, the CLI, the batch orchestrator and
the scripts:

- scrape(target, source_type=None): fetch a listing URL with the matching
  extractor, or drive a browser workflow for evaluation_roll (matricule) /
  company_registry (NEQ or company name), then stage the raw payload
- transform(source_type, source_native_id, force=False): curate the staged
  payload and upsert the entity
- import_payload(source_type, data): stage a pasted JSON payload
- capture(html, source_url): stage a registry page captured in the browser

Status is written back to the item's ingestion record at every stage.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ingestion.curator import CuratedResult, curate
from ingestion.errors import (
    BatchItemFailure,
    FailureReason,
    IdentityMissing,
    IngestionError,
    TransientStoreFailure,
)
from ingestion.persistence import PersistenceGateway
from ingestion.raw_store import RawStore
from ingestion.schemas import parse_paste
from scrapers.extractors import get_extractor_class, get_extractor_for_url
from scrapers.identity import SourceType, normalize_matricule, normalize_neq
from scrapers.label_walk import parse_document
from scrapers.navigator import BrowserNavigator
from scrapers.workflows import WORKFLOWS, extract_company_profile, get_workflow
from scrapers.workflows.company_registry import looks_like_neq

logger = logging.getLogger(__name__)

NAVIGATOR_SOURCES = tuple(WORKFLOWS.keys())
PASTE_ONLY_SOURCES = (SourceType.FACEBOOK_RENTAL,)


class TransformStatus:
    SUCCESS = "success"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass
class StageResult:
    """A raw payload staged for one source item."""
    source_type: str
    source_native_id: str
    storage_reference: str
    source_url: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_type": self.source_type,
            "source_native_id": self.source_native_id,
            "storage_reference": self.storage_reference,
            "source_url": self.source_url,
            "duration_ms": self.duration_ms,
        }


@dataclass
class TransformResult:
    """Outcome of curating and persisting one staged item."""
    source_type: str
    source_native_id: str
    status: str
    entity_id: Optional[int] = None
    existing_entity_id: Optional[int] = None
    created: bool = False
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def conflict(self) -> bool:
        return self.status == TransformStatus.CONFLICT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_type": self.source_type,
            "source_native_id": self.source_native_id,
            "status": self.status,
            "entity_id": self.entity_id,
            "existing_entity_id": self.existing_entity_id,
            "created": self.created,
            "warnings": self.warnings,
            "errors": self.errors,
        }


class IngestionPipeline:
    """
    Wires extractors / navigator, raw store, curator and gateway together.

    Collaborators are injectable; by default the navigator is created on
    first use with the configured proxy endpoint.
    """

    def __init__(
        self,
        session,
        raw_store: RawStore,
        gateway: Optional[PersistenceGateway] = None,
        navigator: Optional[BrowserNavigator] = None,
        rate_limiter=None,
        http_session=None,
        browser_endpoint: Optional[str] = None,
    ):
        self.session = session
        self.raw_store = raw_store
        self.gateway = gateway or PersistenceGateway(session)
        self._navigator = navigator
        self.rate_limiter = rate_limiter
        self.http_session = http_session
        self.browser_endpoint = browser_endpoint

    @property
    def navigator(self) -> BrowserNavigator:
        if self._navigator is None:
            self._navigator = BrowserNavigator(browser_endpoint=self.browser_endpoint)
        return self._navigator

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def resolve_source_type(self, target: str, source_type: Optional[str] = None) -> str:
        if source_type:
            if source_type not in SourceType.ALL:
                raise IdentityMissing(f"Unknown source type: {source_type}")
            return source_type
        return get_extractor_class(target).SOURCE_TYPE

    def resolve_native_id(self, target: str, source_type: Optional[str] = None) -> Optional[str]:
        """
        Native id for a work item before anything is fetched.

        None for a company searched by name (its NEQ is only known once the
        profile has been read).
        """
        source_type = self.resolve_source_type(target, source_type)
        if source_type == SourceType.EVALUATION_ROLL:
            return normalize_matricule(target)
        if source_type == SourceType.COMPANY_REGISTRY:
            return normalize_neq(target) if looks_like_neq(target) else None
        return get_extractor_class(target)().native_id(target)

    # ------------------------------------------------------------------
    # Scrape
    # ------------------------------------------------------------------

    def scrape(self, target: str, source_type: Optional[str] = None) -> StageResult:
        """
        Acquire and stage one item.

        Raises:
            IdentityMissing: target has no usable identity (nothing fetched)
            NavigationTimeout / NavigationError: browser session failed
            requests.RequestException: HTTP fetch failed
            TransientStoreFailure: staging failed
        """
        source_type = self.resolve_source_type(target, source_type)
        if source_type in PASTE_ONLY_SOURCES:
            raise BatchItemFailure(
                f"{source_type} items can only be imported from pasted JSON",
                reason=FailureReason.VALIDATION,
            )
        if source_type in NAVIGATOR_SOURCES:
            return self._scrape_with_navigator(target, source_type)
        return self._scrape_with_extractor(target)

    def _scrape_with_extractor(self, url: str) -> StageResult:
        extractor = get_extractor_for_url(url, self.rate_limiter, self.http_session)
        native_id = extractor.native_id(url)
        started = time.monotonic()
        try:
            item = extractor.scrape(url)
        except IdentityMissing:
            raise
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            self.raw_store.record_failure(
                extractor.SOURCE_TYPE, native_id, str(e), source_url=url, scrape_duration_ms=duration_ms
            )
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        reference = self.raw_store.put(
            item.source_type,
            item.source_native_id,
            item.raw_payload,
            source_url=url,
            scrape_duration_ms=duration_ms,
        )
        return StageResult(item.source_type, item.source_native_id, reference, url, duration_ms)

    def _scrape_with_navigator(self, query: str, source_type: str) -> StageResult:
        workflow = get_workflow(source_type)
        native_id = workflow.natural_key(query)
        known_id = native_id if source_type != SourceType.COMPANY_REGISTRY or looks_like_neq(query) else None

        started = time.monotonic()
        try:
            result = self.navigator.run(workflow, query)
        except IdentityMissing:
            raise
        except Exception as e:
            if known_id:
                self.raw_store.record_failure(
                    source_type, known_id, str(e),
                    scrape_duration_ms=int((time.monotonic() - started) * 1000),
                )
            raise

        payload = dict(result.payload)
        payload["source_url"] = result.source_url
        if source_type == SourceType.COMPANY_REGISTRY:
            native_id = normalize_neq(payload.get("neq") or "")
            payload["neq"] = native_id

        reference = self.raw_store.put(
            source_type,
            native_id,
            payload,
            source_url=result.source_url,
            scrape_duration_ms=result.duration_ms,
        )
        return StageResult(source_type, native_id, reference, result.source_url, result.duration_ms)

    # ------------------------------------------------------------------
    # Paste / capture
    # ------------------------------------------------------------------

    def import_payload(self, source_type: str, data: Any) -> StageResult:
        """Validate and stage a pasted JSON payload."""
        native_id, payload = parse_paste(source_type, data)
        reference = self.raw_store.put(
            source_type, native_id, payload, source_url=payload.get("source_url")
        )
        return StageResult(source_type, native_id, reference, payload.get("source_url"))

    def capture(self, html: str, source_url: str = "") -> StageResult:
        """Stage a registry profile page captured from the operator's browser."""
        profile = extract_company_profile(parse_document(html), source_url)
        native_id = normalize_neq(profile["neq"])
        profile["neq"] = native_id
        reference = self.raw_store.put(
            SourceType.COMPANY_REGISTRY, native_id, profile, source_url=source_url or None
        )
        return StageResult(SourceType.COMPANY_REGISTRY, native_id, reference, source_url or None)

    # ------------------------------------------------------------------
    # Transform
    # ------------------------------------------------------------------

    def _fail_transform(self, source_type: str, source_native_id: str, message: str):
        record = self.raw_store.get_record(source_type, source_native_id)
        if record is None:
            return
        record.mark_transform_failed(message)
        self.session.commit()

    def transform(self, source_type: str, source_native_id: str, force: bool = False) -> TransformResult:
        """
        Curate the staged payload and persist it.

        Curation errors and conflicts come back as the result status; a
        missing identity, a missing staged payload or a store failure raise.
        """
        key = f"{source_type}/{source_native_id}"
        record = self.raw_store.get_record(source_type, source_native_id)
        if record is None or not record.storage_reference:
            raise BatchItemFailure(
                "Nothing staged for this item", key, reason=FailureReason.VALIDATION
            )

        try:
            raw = self.raw_store.get(record.storage_reference)
        except FileNotFoundError:
            message = f"Staged object {record.storage_reference} is missing"
            self._fail_transform(source_type, source_native_id, message)
            raise BatchItemFailure(message, key, reason=FailureReason.STORE)

        try:
            curated: CuratedResult = curate(source_type, source_native_id, raw)
        except IdentityMissing as e:
            self._fail_transform(source_type, source_native_id, str(e))
            raise

        for warning in curated.warnings:
            logger.warning(f"[{key}] {warning}")

        if curated.errors:
            message = "; ".join(curated.errors)
            logger.error(f"[{key}] Curation failed: {message}")
            self._fail_transform(source_type, source_native_id, message)
            return TransformResult(
                source_type, source_native_id, TransformStatus.FAILED,
                warnings=curated.warnings, errors=curated.errors,
            )

        try:
            upsert = self.gateway.upsert(curated, force=force)
        except TransientStoreFailure as e:
            self._fail_transform(source_type, source_native_id, str(e))
            raise

        if upsert.conflict:
            return TransformResult(
                source_type, source_native_id, TransformStatus.CONFLICT,
                existing_entity_id=upsert.existing_entity_id,
                warnings=curated.warnings,
            )

        return TransformResult(
            source_type, source_native_id, TransformStatus.SUCCESS,
            entity_id=upsert.entity_id,
            created=upsert.created,
            warnings=curated.warnings,
        )

    def is_transformed(self, source_type: str, source_native_id: Optional[str]) -> bool:
        if not source_native_id:
            return False
        record = self.raw_store.get_record(source_type, source_native_id)
        return record is not None and record.is_transformed

    def process(self, target: str, source_type: Optional[str] = None, force: bool = False) -> Dict[str, Any]:
        """Scrape then transform one item (one batch unit of work)."""
        staged = self.scrape(target, source_type)
        result = self.transform(staged.source_type, staged.source_native_id, force=force)
        if result.status == TransformStatus.FAILED:
            raise BatchItemFailure(
                "; ".join(result.errors) or "Curation failed",
                staged.source_native_id,
                reason=FailureReason.VALIDATION,
            )
        return {"staged": staged.to_dict(), "transform": result.to_dict()}


def describe_error(error: Exception) -> str:
    if isinstance(error, IngestionError):
        return str(error)
    return f"{type(error).__name__}: {error}"


def create_pipeline(session, config) -> IngestionPipeline:
    """
    Build a pipeline from app config (RAW_STORAGE_ROOT, SCRAPING_BROWSER_ENDPOINT).

    config is a Flask config or any mapping with the same keys.
    """
    from ingestion.object_storage import LocalObjectStorage
    from scrapers.rate_limiter import get_scraper_rate_limiter

    storage = LocalObjectStorage(config.get("RAW_STORAGE_ROOT"))
    return IngestionPipeline(
        session,
        RawStore(storage, session),
        rate_limiter=get_scraper_rate_limiter(),
        browser_endpoint=config.get("SCRAPING_BROWSER_ENDPOINT"),
    )
