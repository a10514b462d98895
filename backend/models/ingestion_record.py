"""
Ingestion Record Model - Per-item pipeline tracking.

One row per (source_type, source_native_id). Tracks:
- Where the raw payload is staged (storage_reference)
- Scrape lifecycle (pending -> success/failed)
- Transformation lifecycle (pending -> success/failed) with attempt counter
- Pointers to the curated record and the final entity once transformed

The source_type column discriminates per-source metadata; preview columns
let operators list staged items without reading the raw payload.
"""
from datetime import datetime
from enum import Enum

from models.database import db


class ScrapeStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TransformationStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class IngestionRecord(db.Model):
    """Tracks a single source item through staging and curation."""

    __tablename__ = "ingestion_records"

    id = db.Column(db.Integer, primary_key=True)

    # Identity
    source_type = db.Column(db.String(50), nullable=False, index=True)
    source_native_id = db.Column(db.String(100), nullable=False, index=True)
    source_url = db.Column(db.Text)

    # Staging
    storage_reference = db.Column(db.String(255))
    raw_size_bytes = db.Column(db.Integer)
    fetched_at = db.Column(db.DateTime)

    # Scrape lifecycle
    scrape_status = db.Column(
        db.String(20),
        nullable=False,
        default=ScrapeStatus.PENDING.value,
        index=True,
    )
    scrape_error = db.Column(db.Text)
    scrape_duration_ms = db.Column(db.Integer)
    scraped_at = db.Column(db.DateTime)

    # Previews (listing without fetching storage)
    title_preview = db.Column(db.String(255))
    price_preview = db.Column(db.String(100))
    address_preview = db.Column(db.String(255))

    # Transformation lifecycle
    transformation_status = db.Column(
        db.String(20),
        nullable=False,
        default=TransformationStatus.PENDING.value,
        index=True,
    )
    transformation_attempts = db.Column(db.Integer, nullable=False, default=0)
    transformation_error = db.Column(db.Text)
    transformed_at = db.Column(db.DateTime)

    curated_id = db.Column(db.Integer, db.ForeignKey("curated_records.id"))
    entity_id = db.Column(db.Integer)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        db.UniqueConstraint(
            "source_type", "source_native_id",
            name="uq_ingestion_record_source_item",
        ),
        db.CheckConstraint(
            "scrape_status IN ('pending', 'success', 'failed')",
            name="ck_ingestion_record_scrape_status",
        ),
        db.CheckConstraint(
            "transformation_status IN ('pending', 'success', 'failed')",
            name="ck_ingestion_record_transformation_status",
        ),
    )

    @property
    def staging_key(self) -> str:
        return f"{self.source_type}/{self.source_native_id}"

    @property
    def is_transformed(self) -> bool:
        return self.transformation_status == TransformationStatus.SUCCESS.value

    def mark_transform_failed(self, message: str):
        """Record a failed curation attempt."""
        self.transformation_status = TransformationStatus.FAILED.value
        self.transformation_error = message
        self.transformation_attempts = (self.transformation_attempts or 0) + 1

    def mark_transformed(self, curated_id: int, entity_id: int):
        """Point the record at the curated record and the entity it produced."""
        self.transformation_status = TransformationStatus.SUCCESS.value
        self.transformation_error = None
        self.transformation_attempts = (self.transformation_attempts or 0) + 1
        self.curated_id = curated_id
        self.entity_id = entity_id
        self.transformed_at = datetime.utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "source_type": self.source_type,
            "source_native_id": self.source_native_id,
            "source_url": self.source_url,
            "storage_reference": self.storage_reference,
            "raw_size_bytes": self.raw_size_bytes,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "scrape_status": self.scrape_status,
            "scrape_error": self.scrape_error,
            "scrape_duration_ms": self.scrape_duration_ms,
            "title_preview": self.title_preview,
            "price_preview": self.price_preview,
            "address_preview": self.address_preview,
            "transformation_status": self.transformation_status,
            "transformation_attempts": self.transformation_attempts,
            "transformation_error": self.transformation_error,
            "transformed_at": (
                self.transformed_at.isoformat() if self.transformed_at else None
            ),
            "curated_id": self.curated_id,
            "entity_id": self.entity_id,
        }

    def __repr__(self):
        return (
            f"<IngestionRecord {self.source_type}/{self.source_native_id} "
            f"scrape={self.scrape_status} transform={self.transformation_status}>"
        )
