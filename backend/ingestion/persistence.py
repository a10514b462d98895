"""
Persistence Gateway - Conflict-aware upsert of curated results.

upsert(curated, force=False):
- no entity for the natural key: create it
- entity exists, not forced: return a conflict carrying the existing id;
  nothing is written
- entity exists, forced: update it in place (same id, child rows
  reconciled by position)

The entity write, the new curated record (older ones superseded) and the
ingestion record's status / pointers are committed together. Any database
failure rolls the whole unit back and surfaces as TransientStoreFailure.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ingestion.curator import CuratedResult
from ingestion.errors import TransientStoreFailure
from models.company import Company
from models.curated_record import CuratedRecord
from models.evaluation import EvaluationDetail
from models.ingestion_record import IngestionRecord
from models.listing import Listing
from scrapers.identity import SourceType, staging_key

logger = logging.getLogger(__name__)

ENTITY_MODELS = {
    SourceType.CENTRIS_LISTING: Listing,
    SourceType.CENTRIS_RENTAL: Listing,
    SourceType.GENERIC_LISTING: Listing,
    SourceType.FACEBOOK_RENTAL: Listing,
    SourceType.EVALUATION_ROLL: EvaluationDetail,
    SourceType.COMPANY_REGISTRY: Company,
}


@dataclass
class UpsertResult:
    """Entity id on success; conflict=True with the existing id otherwise."""
    entity_id: Optional[int] = None
    conflict: bool = False
    existing_entity_id: Optional[int] = None
    created: bool = False
    curated_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "conflict": self.conflict,
            "existing_entity_id": self.existing_entity_id,
            "created": self.created,
            "curated_id": self.curated_id,
        }


class PersistenceGateway:
    def __init__(self, session):
        self.session = session

    def _model_for(self, source_type: str):
        model = ENTITY_MODELS.get(source_type)
        if model is None:
            raise ValueError(f"No entity model for source type {source_type}")
        return model

    def find_entity(self, source_type: str, source_native_id: str, fields: Optional[Dict] = None):
        model = self._model_for(source_type)
        key = model.natural_key(source_type, source_native_id, fields or {})
        return self.session.query(model).filter_by(**key).first()

    def _ingestion_record(self, curated: CuratedResult) -> IngestionRecord:
        record = self.session.query(IngestionRecord).filter_by(
            source_type=curated.source_type,
            source_native_id=curated.source_native_id,
        ).first()
        if record is None:
            record = IngestionRecord(
                source_type=curated.source_type,
                source_native_id=curated.source_native_id,
                source_url=curated.source_url,
                transformation_attempts=0,
            )
            self.session.add(record)
        return record

    def _write_curated(self, curated: CuratedResult) -> CuratedRecord:
        previous = self.session.query(CuratedRecord).filter_by(
            source_type=curated.source_type,
            source_native_id=curated.source_native_id,
            is_current=True,
        ).all()
        for row in previous:
            row.supersede()

        row = CuratedRecord(
            source_type=curated.source_type,
            source_native_id=curated.source_native_id,
            source_url=curated.source_url,
            fields=curated.fields,
            warnings=curated.warnings,
            errors=curated.errors,
            fields_hash=curated.fields_hash,
            is_current=True,
        )
        self.session.add(row)
        return row

    def upsert(self, curated: CuratedResult, force: bool = False) -> UpsertResult:
        """
        Write a curated result to its entity table.

        Returns:
            UpsertResult (conflict=True when the entity exists and force is False)

        Raises:
            ValueError: curated result carries errors or has no entity table
            TransientStoreFailure: the transaction failed and was rolled back
        """
        key = staging_key(curated.source_type, curated.source_native_id)
        if curated.errors:
            raise ValueError(f"[{key}] Refusing to persist a curated result with errors")

        model = self._model_for(curated.source_type)
        existing = self.find_entity(curated.source_type, curated.source_native_id, curated.fields)

        if existing is not None and not force:
            logger.info(f"[{key}] Entity {existing.id} exists, not forced: conflict")
            return UpsertResult(conflict=True, existing_entity_id=existing.id)

        try:
            created = existing is None
            entity = existing
            if entity is None:
                entity = model(**model.natural_key(
                    curated.source_type, curated.source_native_id, curated.fields
                ))
                self.session.add(entity)
            entity.apply_curated(curated.fields)

            curated_row = self._write_curated(curated)
            self.session.flush()

            record = self._ingestion_record(curated)
            record.mark_transformed(curated_row.id, entity.id)

            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            existing = self.find_entity(curated.source_type, curated.source_native_id, curated.fields)
            if existing is not None and not force:
                logger.warning(f"[{key}] Entity created concurrently: conflict")
                return UpsertResult(conflict=True, existing_entity_id=existing.id)
            raise TransientStoreFailure(f"Upsert failed: {e}", key)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise TransientStoreFailure(f"Upsert failed: {e}", key)

        action = "Created" if created else "Updated"
        logger.info(f"[{key}] {action} {model.__name__} {entity.id}")
        return UpsertResult(
            entity_id=entity.id,
            created=created,
            curated_id=curated_row.id,
        )
