"""
Zone scraping - evaluation pages for every building inside a zone.

Buildings come from evaluation_units (geocoded rows inside the zone's
lat/lng box, optionally filtered by unit count). Matricules that already
have an evaluation detail are left out before the batch starts; the rest run
through the batch orchestrator with the "zone" pacing profile.
"""
import logging
from typing import List, Optional

from ingestion.batch import BatchJob, BatchOrchestrator, WorkItem
from models.evaluation import EvaluationDetail, EvaluationUnit
from models.scraping_zone import ScrapingZone, ZoneScrapingJob
from scrapers.identity import SourceType

logger = logging.getLogger(__name__)

ZONE_PACING_PROFILE = "zone"


def select_zone_matricules(
    session,
    zone: ScrapingZone,
    limit: Optional[int] = None,
    min_units: Optional[int] = None,
    max_units: Optional[int] = None,
) -> List[str]:
    """Unscraped matricules inside the zone, in id order, capped at limit."""
    min_units = min_units if min_units is not None else zone.min_units
    max_units = max_units if max_units is not None else zone.max_units

    query = session.query(EvaluationUnit).filter(
        EvaluationUnit.latitude.isnot(None),
        EvaluationUnit.longitude.isnot(None),
        EvaluationUnit.latitude >= zone.min_lat,
        EvaluationUnit.latitude <= zone.max_lat,
        EvaluationUnit.longitude >= zone.min_lng,
        EvaluationUnit.longitude <= zone.max_lng,
    )
    if min_units is not None:
        query = query.filter(EvaluationUnit.nombre_logement >= min_units)
    if max_units is not None:
        query = query.filter(EvaluationUnit.nombre_logement <= max_units)

    units = query.order_by(EvaluationUnit.id).all()
    matricules = []
    for unit in units:
        if unit.matricule83 and unit.matricule83 not in matricules:
            matricules.append(unit.matricule83)
    if not matricules:
        return []

    scraped = {
        row[0]
        for row in session.query(EvaluationDetail.matricule).filter(
            EvaluationDetail.matricule.in_(matricules)
        ).all()
    }
    remaining = [m for m in matricules if m not in scraped]
    logger.info(
        f"Zone {zone.id} ({zone.name}): {len(matricules)} buildings, "
        f"{len(scraped)} already scraped, {len(remaining)} to scrape"
    )
    return remaining[:limit] if limit else remaining


def run_zone_job(session, pipeline, zone: ScrapingZone, job: Optional[ZoneScrapingJob] = None,
                 limit: Optional[int] = None, min_units: Optional[int] = None,
                 orchestrator: Optional[BatchOrchestrator] = None) -> dict:
    """
    Scrape the zone's unscraped buildings; job (when given) tracks status.

    Returns the batch summary.
    """
    if job is not None:
        limit = limit or job.requested_limit
        job.start()
        session.commit()

    try:
        matricules = select_zone_matricules(session, zone, limit=limit, min_units=min_units)
        batch = BatchJob.create(
            [WorkItem(m, SourceType.EVALUATION_ROLL) for m in matricules],
            profile=ZONE_PACING_PROFILE,
        )
        if job is not None:
            job.total_items = batch.total
            session.commit()

        orchestrator = orchestrator or BatchOrchestrator(pipeline.process)
        summary = orchestrator.run(batch)
    except Exception as e:
        session.rollback()
        if job is not None:
            job.fail(e)
            session.commit()
        raise

    if job is not None:
        job.complete(summary)
        session.commit()
    return summary
