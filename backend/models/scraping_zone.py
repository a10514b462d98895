"""
Scraping Zone Models - Geographic batches of evaluation pages.

- ScrapingZone: named lat/lng bounding box with optional unit-count filters
- ZoneScrapingJob: one requested run over a zone (pending -> running ->
  completed/failed/cancelled) with progress counters
"""
from datetime import datetime
from enum import Enum

from models.database import db


class ZoneJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ScrapingZone(db.Model):
    __tablename__ = "scraping_zones"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)

    min_lat = db.Column(db.Numeric(10, 7), nullable=False)
    max_lat = db.Column(db.Numeric(10, 7), nullable=False)
    min_lng = db.Column(db.Numeric(10, 7), nullable=False)
    max_lng = db.Column(db.Numeric(10, 7), nullable=False)

    min_units = db.Column(db.Integer)
    max_units = db.Column(db.Integer)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    jobs = db.relationship("ZoneScrapingJob", backref="zone", lazy="dynamic")

    __table_args__ = (
        db.CheckConstraint("min_lat <= max_lat", name="ck_zone_lat_bounds"),
        db.CheckConstraint("min_lng <= max_lng", name="ck_zone_lng_bounds"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "min_lat": float(self.min_lat),
            "max_lat": float(self.max_lat),
            "min_lng": float(self.min_lng),
            "max_lng": float(self.max_lng),
            "min_units": self.min_units,
            "max_units": self.max_units,
        }

    def __repr__(self):
        return f"<ScrapingZone {self.id} {self.name}>"


class ZoneScrapingJob(db.Model):
    __tablename__ = "zone_scraping_jobs"

    id = db.Column(db.Integer, primary_key=True)
    zone_id = db.Column(
        db.Integer, db.ForeignKey("scraping_zones.id"), nullable=False, index=True
    )
    requested_limit = db.Column(db.Integer)

    status = db.Column(
        db.String(20),
        nullable=False,
        default=ZoneJobStatus.PENDING.value,
        index=True,
    )
    total_items = db.Column(db.Integer, default=0)
    completed_items = db.Column(db.Integer, default=0)
    failed_items = db.Column(db.Integer, default=0)
    skipped_items = db.Column(db.Integer, default=0)
    summary = db.Column(db.JSON)
    error_message = db.Column(db.Text)

    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_zone_job_status",
        ),
    )

    def start(self):
        """Mark job as started."""
        self.status = ZoneJobStatus.RUNNING.value
        self.started_at = datetime.utcnow()

    def complete(self, summary):
        """Mark job as completed with the batch summary."""
        self.status = (
            ZoneJobStatus.CANCELLED.value
            if summary.get("cancelled")
            else ZoneJobStatus.COMPLETED.value
        )
        self.completed_at = datetime.utcnow()
        self.summary = summary
        self.completed_items = summary.get("succeeded", 0)
        self.failed_items = summary.get("failed", 0)
        self.skipped_items = summary.get("skipped", 0)

    def fail(self, error: Exception):
        """Mark job as failed."""
        self.status = ZoneJobStatus.FAILED.value
        self.completed_at = datetime.utcnow()
        self.error_message = str(error)

    def to_dict(self):
        return {
            "id": self.id,
            "zone_id": self.zone_id,
            "requested_limit": self.requested_limit,
            "status": self.status,
            "total_items": self.total_items,
            "completed_items": self.completed_items,
            "failed_items": self.failed_items,
            "skipped_items": self.skipped_items,
            "summary": self.summary,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<ZoneScrapingJob {self.id} zone={self.zone_id} {self.status}>"
