"""
Curated Record Model - Validated output of one curation pass.

Each row is derived from exactly one raw payload. Re-curation of the same
source item keeps the earlier rows (is_current=False, superseded_at set) so
the history of curated versions is retained.
"""
from datetime import datetime

from models.database import db


class CuratedRecord(db.Model):
    """Normalized typed fields plus the warnings/errors produced curating them."""

    __tablename__ = "curated_records"

    id = db.Column(db.Integer, primary_key=True)

    source_type = db.Column(db.String(50), nullable=False, index=True)
    source_native_id = db.Column(db.String(100), nullable=False, index=True)
    source_url = db.Column(db.Text)

    fields = db.Column(db.JSON, nullable=False, default=dict)
    warnings = db.Column(db.JSON, nullable=False, default=list)
    errors = db.Column(db.JSON, nullable=False, default=list)
    fields_hash = db.Column(db.String(64), nullable=False)  # SHA256 of fields

    is_current = db.Column(db.Boolean, nullable=False, default=True, index=True)
    superseded_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index(
            "ix_curated_record_source_item", "source_type", "source_native_id"
        ),
    )

    def supersede(self):
        self.is_current = False
        self.superseded_at = datetime.utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "source_type": self.source_type,
            "source_native_id": self.source_native_id,
            "source_url": self.source_url,
            "fields": self.fields,
            "warnings": self.warnings,
            "errors": self.errors,
            "fields_hash": self.fields_hash,
            "is_current": self.is_current,
            "superseded_at": (
                self.superseded_at.isoformat() if self.superseded_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        state = "current" if self.is_current else "superseded"
        return f"<CuratedRecord {self.source_type}/{self.source_native_id} {state}>"
