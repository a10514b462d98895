"""
Raw Store - Idempotent staging of raw payloads.

put() serializes the payload as canonical JSON (sorted keys, compact
separators) so identical content always produces a byte-identical object,
writes it under {source_type}/{source_native_id} (last write wins) and
upserts the item's IngestionRecord with scrape_status=success and a fresh
fetched_at. Staging never touches curated records or entities.

Usage:
    store = RawStore(LocalObjectStorage(root), db.session)
    ref = store.put("centris_rental", "12345678", payload, source_url=url)
    payload = store.get(ref)
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from ingestion.errors import TransientStoreFailure
from ingestion.object_storage import ObjectStorage
from models.ingestion_record import IngestionRecord, ScrapeStatus
from scrapers.identity import staging_key
from scrapers.utils.hashing import canonical_json_bytes

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 255


def _preview(value: Any, length: int = PREVIEW_LENGTH) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)[:length]


def build_previews(payload: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Title / price / address previews from any supported raw shape."""
    identification = payload.get("identification") or {}
    raw_data = payload.get("raw_data") if isinstance(payload.get("raw_data"), dict) else {}
    title = (
        payload.get("title")
        or raw_data.get("title")
        or payload.get("property_type")
        or identification.get("name")
    )
    price = payload.get("price_display") or payload.get("price") or raw_data.get("price")
    address = (
        payload.get("address")
        or identification.get("address")
        or identification.get("domicile_address")
        or raw_data.get("location")
    )
    return {
        "title_preview": _preview(title),
        "price_preview": _preview(price, 100),
        "address_preview": _preview(address),
    }


class RawStore:
    """Stages raw payloads and keeps their ingestion records in step."""

    def __init__(self, storage: ObjectStorage, session):
        self.storage = storage
        self.session = session

    def _get_or_create_record(self, source_type: str, source_native_id: str) -> IngestionRecord:
        record = self.session.query(IngestionRecord).filter_by(
            source_type=source_type,
            source_native_id=source_native_id,
        ).first()
        if record is None:
            record = IngestionRecord(
                source_type=source_type,
                source_native_id=source_native_id,
                transformation_attempts=0,
            )
            self.session.add(record)
        return record

    def _commit(self, natural_key: str):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise TransientStoreFailure(f"Failed to update ingestion record: {e}", natural_key)

    def put(
        self,
        source_type: str,
        source_native_id: str,
        payload: Dict[str, Any],
        source_url: Optional[str] = None,
        scrape_duration_ms: Optional[int] = None,
    ) -> str:
        """
        Stage payload and upsert the ingestion record.

        Returns:
            storage reference of the staged object

        Raises:
            IdentityMissing: empty source_native_id
            TransientStoreFailure: storage or database write failed
        """
        key = staging_key(source_type, source_native_id)
        data = canonical_json_bytes(payload)
        reference = self.storage.put(key, data)

        now = datetime.utcnow()
        record = self._get_or_create_record(source_type, source_native_id)
        record.storage_reference = reference
        record.raw_size_bytes = len(data)
        record.fetched_at = now
        record.scraped_at = now
        record.scrape_status = ScrapeStatus.SUCCESS.value
        record.scrape_error = None
        record.scrape_duration_ms = scrape_duration_ms
        record.source_url = source_url or payload.get("source_url") or record.source_url
        for column, value in build_previews(payload).items():
            setattr(record, column, value)

        self._commit(key)
        logger.info(f"[{key}] Staged {len(data)} bytes")
        return reference

    def get(self, reference: str) -> Dict[str, Any]:
        """Load a staged payload (FileNotFoundError if it was never staged)."""
        return json.loads(self.storage.get(reference).decode("utf-8"))

    def record_failure(
        self,
        source_type: str,
        source_native_id: str,
        error: str,
        source_url: Optional[str] = None,
        scrape_duration_ms: Optional[int] = None,
    ) -> IngestionRecord:
        """Mark an item's scrape as failed. The previously staged payload is kept."""
        key = staging_key(source_type, source_native_id)
        record = self._get_or_create_record(source_type, source_native_id)
        record.scrape_status = ScrapeStatus.FAILED.value
        record.scrape_error = error
        record.scrape_duration_ms = scrape_duration_ms
        record.scraped_at = datetime.utcnow()
        if source_url:
            record.source_url = source_url
        self._commit(key)
        return record

    def get_record(self, source_type: str, source_native_id: str) -> Optional[IngestionRecord]:
        return self.session.query(IngestionRecord).filter_by(
            source_type=source_type,
            source_native_id=source_native_id,
        ).first()
