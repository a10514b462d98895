"""
Tests for zone selection and zone scraping jobs.
"""

import pytest

from ingestion.batch import BatchOrchestrator
from ingestion.zones import run_zone_job, select_zone_matricules
from models.evaluation import EvaluationDetail, EvaluationUnit
from models.scraping_zone import ScrapingZone, ZoneJobStatus, ZoneScrapingJob


def add_unit(session, id_uev, lat, lng, units=3):
    session.add(EvaluationUnit(
        id_uev=id_uev,
        matricule83=f"9739-08-{id_uev:04d}-0-000-0000",
        nom_rue="Rue Molson",
        nombre_logement=units,
        libelle_utilisation="Logement",
        categorie_uef="Régulier",
        latitude=lat,
        longitude=lng,
    ))


@pytest.fixture
def zone(session):
    zone = ScrapingZone(name="Rosemont", min_lat=45.54, max_lat=45.56, min_lng=-73.60, max_lng=-73.57)
    session.add(zone)
    add_unit(session, 1, 45.550, -73.580, units=3)
    add_unit(session, 2, 45.551, -73.581, units=1)
    add_unit(session, 3, 45.552, -73.582, units=6)
    add_unit(session, 4, 45.600, -73.580, units=3)  # outside the box
    add_unit(session, 5, None, None, units=3)  # not geocoded
    session.commit()
    return zone


class TestSelectZoneMatricules:
    def test_inside_box_only(self, session, zone):
        assert select_zone_matricules(session, zone) == [
            "9739-08-0001-0-000-0000",
            "9739-08-0002-0-000-0000",
            "9739-08-0003-0-000-0000",
        ]

    def test_unit_filter(self, session, zone):
        zone.min_units = 2
        zone.max_units = 4
        assert select_zone_matricules(session, zone) == ["9739-08-0001-0-000-0000"]

    def test_min_units_argument_overrides_zone(self, session, zone):
        zone.min_units = 10
        assert select_zone_matricules(session, zone, min_units=5) == ["9739-08-0003-0-000-0000"]

    def test_already_scraped_left_out(self, session, zone):
        session.add(EvaluationDetail(matricule="9739-08-0001-0-000-0000"))
        session.commit()
        assert "9739-08-0001-0-000-0000" not in select_zone_matricules(session, zone)

    def test_limit(self, session, zone):
        assert len(select_zone_matricules(session, zone, limit=2)) == 2


class TestRunZoneJob:
    def test_job_tracks_batch(self, session, zone, settings):
        processed = []

        def process(target, source_type, force):
            processed.append((target, source_type))
            return {"staged": {"source_native_id": target}, "transform": {"status": "success", "entity_id": 1}}

        job = ZoneScrapingJob(zone_id=zone.id, requested_limit=2)
        session.add(job)
        session.commit()

        orchestrator = BatchOrchestrator(process, settings=settings, sleep=lambda s: None)
        summary = run_zone_job(session, None, zone, job=job, orchestrator=orchestrator)

        assert [source_type for _, source_type in processed] == ["evaluation_roll", "evaluation_roll"]
        assert summary["succeeded"] == 2
        assert job.status == ZoneJobStatus.COMPLETED.value
        assert job.total_items == 2
        assert job.completed_items == 2
        assert job.completed_at is not None

    def test_job_failure_recorded(self, session, zone):
        class Exploding:
            def run(self, batch):
                raise RuntimeError("browser crashed")

        job = ZoneScrapingJob(zone_id=zone.id)
        session.add(job)
        session.commit()

        with pytest.raises(RuntimeError):
            run_zone_job(session, None, zone, job=job, orchestrator=Exploding())

        assert job.status == ZoneJobStatus.FAILED.value
        assert job.error_message == "browser crashed"
