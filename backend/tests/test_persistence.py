"""
Tests for the persistence gateway: create, conflict, forced update.
"""

import pytest

from ingestion.curator import CuratedResult, curate
from ingestion.persistence import PersistenceGateway
from models.company import Company, CompanyShareholder
from models.curated_record import CuratedRecord
from models.evaluation import EvaluationDetail
from models.ingestion_record import IngestionRecord, TransformationStatus
from models.listing import Listing

RENTAL_URL = "https://www.centris.ca/fr/appartement~a-louer~montreal/21212121"


def rental(price="1850", **extra):
    raw = {
        "centris_id": "21212121",
        "source_url": RENTAL_URL,
        "property_type": "Appartement à louer",
        "price": price,
        "characteristics": {"Animaux": "Non admis"},
    }
    raw.update(extra)
    return curate("centris_rental", "21212121", raw)


def company(shareholders):
    return curate("company_registry", "1171234567", {
        "neq": "1171234567",
        "identification": {"name": "GESTION EXEMPLE INC.", "status": "Immatriculée"},
        "shareholders": shareholders,
        "administrators": [{"name": "Marie Tremblay", "position_title": "Président", "position_order": 1}],
    })


@pytest.fixture
def gateway(session):
    return PersistenceGateway(session)


# =============================================================================
# Create / conflict / force
# =============================================================================

class TestUpsert:
    def test_create(self, gateway, session):
        result = gateway.upsert(rental())

        assert result.created
        assert not result.conflict
        listing = session.get(Listing, result.entity_id)
        assert listing.price == 1850
        assert listing.listing_kind == "rent"
        assert listing.characteristics == {"Animaux": "Non admis"}

        record = session.query(IngestionRecord).one()
        assert record.transformation_status == TransformationStatus.SUCCESS.value
        assert record.entity_id == result.entity_id
        assert record.curated_id == result.curated_id

    def test_conflict_writes_nothing(self, gateway, session):
        first = gateway.upsert(rental())

        result = gateway.upsert(rental(price="1900"))

        assert result.conflict
        assert result.existing_entity_id == first.entity_id
        assert result.entity_id is None
        assert session.get(Listing, first.entity_id).price == 1850
        assert session.query(CuratedRecord).count() == 1

    def test_force_updates_same_entity(self, gateway, session):
        first = gateway.upsert(rental())

        result = gateway.upsert(rental(price="1900"), force=True)

        assert not result.created
        assert result.entity_id == first.entity_id
        assert session.query(Listing).count() == 1
        assert session.get(Listing, first.entity_id).price == 1900

    def test_curated_history_kept(self, gateway, session):
        gateway.upsert(rental())
        gateway.upsert(rental(price="1900"), force=True)

        rows = session.query(CuratedRecord).order_by(CuratedRecord.id).all()
        assert [row.is_current for row in rows] == [False, True]
        assert rows[0].superseded_at is not None
        assert rows[1].fields["price"] == 1900.0

        record = session.query(IngestionRecord).one()
        assert record.curated_id == rows[1].id
        assert record.transformation_attempts == 2

    def test_errors_refused(self, gateway, session):
        curated = CuratedResult("facebook_rental", "998877", "https://fb/x", {}, errors=["Title is required"])
        with pytest.raises(ValueError):
            gateway.upsert(curated)
        assert session.query(Listing).count() == 0

    def test_unknown_source_type(self, gateway):
        with pytest.raises(ValueError):
            gateway.upsert(CuratedResult("craigslist", "1", None, {}))


# =============================================================================
# Entities
# =============================================================================

class TestEvaluationEntity:
    def test_keyed_by_matricule(self, gateway, session):
        curated = curate("evaluation_roll", "9739-08-6546-0-000-0000", {
            "matricule": "9739-08-6546-0-000-0000",
            "identification": {"address": "5555 Rue Molson"},
            "valuation": {"current": {"total_value": "810 100 $"}},
        })
        result = gateway.upsert(curated)

        detail = session.get(EvaluationDetail, result.entity_id)
        assert detail.matricule == "9739-08-6546-0-000-0000"
        assert detail.address == "5555 Rue Molson"
        assert float(detail.current_total_value) == 810100.0


class TestCompanyChildren:
    """Children are reconciled by position on a forced refresh."""

    SHAREHOLDERS = [
        {"name": "Marie Tremblay", "position": 1, "is_majority": True, "address": "Laval"},
        {"name": "PLACEMENTS XYZ INC.", "position": 2, "is_majority": False, "address": ""},
    ]

    def test_children_created(self, gateway, session):
        result = gateway.upsert(company(self.SHAREHOLDERS))
        entity = session.get(Company, result.entity_id)
        assert [s.shareholder_name for s in entity.shareholders] == ["Marie Tremblay", "PLACEMENTS XYZ INC."]
        assert entity.shareholders[0].is_majority_shareholder
        assert not entity.shareholders[1].address_publishable
        assert entity.administrators[0].position_title == "Président"

    def test_forced_refresh_keeps_ids_and_drops_missing(self, gateway, session):
        result = gateway.upsert(company(self.SHAREHOLDERS))
        first_id = session.get(Company, result.entity_id).shareholders[0].id

        renamed = [dict(self.SHAREHOLDERS[0], name="Marie Tremblay-Roy")]
        gateway.upsert(company(renamed), force=True)

        entity = session.get(Company, result.entity_id)
        assert [(s.id, s.shareholder_name) for s in entity.shareholders] == [(first_id, "Marie Tremblay-Roy")]
        assert session.query(CompanyShareholder).count() == 1
