"""
Zone Scraper CLI - Scrapes evaluation pages for every building in a zone

Usage:
    python scripts/scrape_zone.py --zone-id 3                 # Every unscraped building
    python scripts/scrape_zone.py --zone-id 3 --limit 50      # First 50
    python scripts/scrape_zone.py --zone-id 3 --min-units 3   # Plexes of 3+ units
    python scripts/scrape_zone.py --job-id 12                 # Run a queued zone job

Pipeline: Select geocoded buildings in zone -> skip already scraped ->
browser session per matricule (90-180s apart) -> stage -> curate -> store
"""

import sys
import os
import argparse

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from flask import Flask
from config import Config, get_database_url
from models.database import db


def create_app():
    """Create Flask app for database access"""
    app = Flask(__name__)
    app.config.from_object(Config)
    app.config['SQLALCHEMY_DATABASE_URI'] = get_database_url()
    db.init_app(app)
    return app


def scrape_zone(zone_id=None, job_id=None, limit=None, min_units=None):
    """Run a zone scrape, optionally tracked by a ZoneScrapingJob."""
    from app import configure_logging
    from ingestion.pipeline import create_pipeline
    from ingestion.zones import run_zone_job
    from models.scraping_zone import ScrapingZone, ZoneScrapingJob

    configure_logging()
    app = create_app()

    with app.app_context():
        # Create tables if they don't exist
        db.create_all()

        job = None
        if job_id is not None:
            job = db.session.get(ZoneScrapingJob, job_id)
            if job is None:
                print(f"Job {job_id} not found")
                return 1
            zone_id = job.zone_id

        zone = db.session.get(ScrapingZone, zone_id)
        if zone is None:
            print(f"Zone {zone_id} not found")
            return 1

        print("=" * 60)
        print(f"Zone Scraper - {zone.name} (zone {zone.id})")
        print("=" * 60)
        print(f"Bounds:    {float(zone.min_lat):.5f},{float(zone.min_lng):.5f} -> "
              f"{float(zone.max_lat):.5f},{float(zone.max_lng):.5f}")
        if limit:
            print(f"Limit:     {limit}")
        if min_units is not None:
            print(f"Min units: {min_units}")
        print("-" * 60)

        pipeline = create_pipeline(db.session, app.config)
        try:
            summary = run_zone_job(
                db.session, pipeline, zone, job=job, limit=limit, min_units=min_units
            )
        except KeyboardInterrupt:
            print("\nInterrupted")
            return 130

        print("\n" + "=" * 60)
        print("SCRAPE COMPLETE" if not summary["cancelled"] else "SCRAPE CANCELLED")
        print("=" * 60)
        print(f"Buildings:          {summary['total']}")
        print(f"Scraped:            {summary['succeeded']}")
        print(f"Failed:             {summary['failed']}")
        print(f"Skipped:            {summary['skipped']}")
        for outcome in summary["outcomes"]:
            if outcome["status"] == "failed":
                print(f"  x {outcome['target']}: {outcome['error']}")
        return 0


def main():
    parser = argparse.ArgumentParser(
        description='Scrape evaluation pages for every building in a zone'
    )
    parser.add_argument('--zone-id', type=int, help='Zone to scrape')
    parser.add_argument('--job-id', type=int, help='Queued zone job to run (uses its zone and limit)')
    parser.add_argument('--limit', type=int, default=None, help='Max buildings to scrape')
    parser.add_argument('--min-units', type=int, default=None,
                        help="Minimum dwelling units (defaults to the zone's filter)")
    args = parser.parse_args()

    if args.zone_id is None and args.job_id is None:
        parser.error('--zone-id or --job-id is required')

    sys.exit(scrape_zone(
        zone_id=args.zone_id,
        job_id=args.job_id,
        limit=args.limit,
        min_units=args.min_units,
    ))


if __name__ == '__main__':
    main()
