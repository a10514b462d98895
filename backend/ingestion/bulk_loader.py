"""
Bulk Loader - Chunked import of the assessment-roll CSV.

Flow:
1. Read the CSV with pandas in chunks (all columns as text)
2. Validate each row against EvaluationRow; invalid rows are counted
3. Drop duplicate id_uev values (first occurrence wins, ids already in the
   table count as duplicates too)
4. Commit fixed-size chunks; a failing chunk is retried with exponential
   backoff (1s, 2s, ... for max_attempts), then committed row by row so one
   bad row only loses itself

Usage:
    loader = BulkLoader(db.session)
    report = loader.load_csv("uniteevaluationfonciere.csv")
    print(report.to_dict())
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import pandas as pd
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ingestion.schemas import EvaluationRow
from ingestion.settings import IngestionSettings, get_settings
from models.evaluation import EvaluationUnit

logger = logging.getLogger(__name__)


@dataclass
class LoadReport:
    """Counters for one bulk load plus a capped sample of failures."""
    total_read: int = 0
    valid: int = 0
    invalid: int = 0
    duplicates: int = 0
    committed: int = 0
    failed: int = 0
    chunks: int = 0
    chunk_retries: int = 0
    row_fallbacks: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)
    sample_limit: int = 100

    def add_failure(self, natural_key: Any, error: str, payload: Optional[Dict[str, Any]] = None):
        if len(self.failures) < self.sample_limit:
            self.failures.append({
                "natural_key": natural_key,
                "error": error,
                "payload": payload,
            })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_read": self.total_read,
            "valid": self.valid,
            "invalid": self.invalid,
            "duplicates": self.duplicates,
            "committed": self.committed,
            "failed": self.failed,
            "chunks": self.chunks,
            "chunk_retries": self.chunk_retries,
            "row_fallbacks": self.row_fallbacks,
            "failures": self.failures,
        }


class BulkLoader:
    """Loads validated EvaluationRow records into evaluation_units."""

    def __init__(
        self,
        session,
        settings: Optional[IngestionSettings] = None,
        chunk_size: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        policy = (settings or get_settings()).bulk_load
        self.chunk_size = int(chunk_size or policy["chunk_size"])
        self.max_attempts = int(policy["max_attempts"])
        self.initial_backoff = float(policy["initial_backoff_seconds"])
        self.backoff_multiplier = float(policy["backoff_multiplier"])
        self.sample_limit = int(policy["failure_sample_limit"])
        self.sleep = sleep

        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def load_csv(self, csv_path: str) -> LoadReport:
        """Stream a CSV file through the loader."""
        logger.info("=" * 70)
        logger.info(f"Bulk load: {csv_path} (chunk size {self.chunk_size})")
        logger.info("=" * 70)

        reader = pd.read_csv(
            csv_path,
            dtype=str,
            keep_default_na=False,
            chunksize=self.chunk_size,
        )
        return self.load_records(
            record
            for frame in reader
            for record in frame.to_dict(orient="records")
        )

    def load_records(self, records: Iterable[Dict[str, Any]]) -> LoadReport:
        """Validate, dedupe and commit a stream of raw row dicts."""
        report = LoadReport(sample_limit=self.sample_limit)
        seen: Set[int] = set()
        pending: List[EvaluationRow] = []

        for raw in records:
            report.total_read += 1
            try:
                row = EvaluationRow.model_validate(raw)
            except (ValidationError, ValueError, TypeError, OverflowError) as e:
                report.invalid += 1
                logger.debug(f"Invalid row {raw.get('ID_UEV')!r}: {e}")
                continue
            report.valid += 1

            if row.id_uev in seen:
                report.duplicates += 1
                continue
            seen.add(row.id_uev)
            pending.append(row)

            if len(pending) >= self.chunk_size:
                self._load_chunk(pending, report)
                pending = []

        if pending:
            self._load_chunk(pending, report)

        logger.info("=" * 70)
        logger.info(
            f"Bulk load done: read {report.total_read:,}, valid {report.valid:,}, "
            f"invalid {report.invalid:,}, duplicates {report.duplicates:,}, "
            f"committed {report.committed:,}, failed {report.failed:,}"
        )
        logger.info("=" * 70)
        return report

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def _existing_ids(self, ids: List[int]) -> Set[int]:
        rows = self.session.query(EvaluationUnit.id_uev).filter(
            EvaluationUnit.id_uev.in_(ids)
        ).all()
        return {row[0] for row in rows}

    def _commit_rows(self, rows: List[EvaluationRow]):
        self.session.add_all([EvaluationUnit(**row.to_model_fields()) for row in rows])
        self.session.commit()

    def _load_chunk(self, rows: List[EvaluationRow], report: LoadReport):
        report.chunks += 1
        checked = False

        delay = self.initial_backoff
        for attempt in range(1, self.max_attempts + 1):
            try:
                if not checked:
                    existing = self._existing_ids([row.id_uev for row in rows])
                    checked = True
                    if existing:
                        report.duplicates += len(existing)
                        rows = [row for row in rows if row.id_uev not in existing]
                    if not rows:
                        return
                self._commit_rows(rows)
                report.committed += len(rows)
                logger.info(
                    f"Chunk {report.chunks}: committed {len(rows)} rows "
                    f"({report.committed:,} total)"
                )
                return
            except SQLAlchemyError as e:
                self.session.rollback()
                if attempt == self.max_attempts:
                    logger.error(
                        f"Chunk {report.chunks} failed after {attempt} attempts: {e}; "
                        f"falling back to per-row commits"
                    )
                    break
                report.chunk_retries += 1
                logger.warning(
                    f"Chunk {report.chunks} failed (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                self.sleep(delay)
                delay *= self.backoff_multiplier

        report.row_fallbacks += 1
        self._load_rows(rows, report)

    def _load_rows(self, rows: List[EvaluationRow], report: LoadReport):
        for row in rows:
            try:
                self._commit_rows([row])
                report.committed += 1
            except SQLAlchemyError as e:
                self.session.rollback()
                report.failed += 1
                payload = row.to_model_fields()
                logger.error(f"[id_uev={row.id_uev}] Row failed: {e} payload={payload}")
                report.add_failure(row.id_uev, str(e), payload)
