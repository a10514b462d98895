"""
Evaluation Import - Bulk loads the municipal assessment-roll CSV

Usage:
    python scripts/import_evaluations.py data/uniteevaluationfonciere.csv
    python scripts/import_evaluations.py data/uniteevaluationfonciere.csv --chunk-size 500

Rows are validated, de-duplicated on ID_UEV and committed in chunks; a
failing chunk is retried with backoff and then committed row by row.
"""

import sys
import os
import json
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


def import_evaluations(csv_path: str, chunk_size: int = None) -> int:
    from app import configure_logging
    from ingestion.bulk_loader import BulkLoader

    configure_logging()
    app = create_app()

    with app.app_context():
        # Create tables if they don't exist
        db.create_all()

        print("=" * 60)
        print(f"Evaluation Import - {csv_path}")
        print("=" * 60)

        report = BulkLoader(db.session, chunk_size=chunk_size).load_csv(csv_path)

        print("\n" + "=" * 60)
        print("IMPORT COMPLETE")
        print("=" * 60)
        print(f"Rows read:          {report.total_read:,}")
        print(f"Valid:              {report.valid:,}")
        print(f"Invalid:            {report.invalid:,}")
        print(f"Duplicates:         {report.duplicates:,}")
        print(f"Committed:          {report.committed:,}")
        print(f"Failed:             {report.failed:,}")
        if report.failures:
            print(f"\nFirst {len(report.failures)} failures:")
            for failure in report.failures[:10]:
                print(f"  id_uev={failure['natural_key']}: {failure['error']}")
                print(f"    {json.dumps(failure['payload'], ensure_ascii=False)}")

        return 1 if report.failed else 0


def main():
    parser = argparse.ArgumentParser(description='Bulk load the assessment-roll CSV')
    parser.add_argument('csv_path', help='Path to the assessment-roll CSV')
    parser.add_argument('--chunk-size', type=int, default=None,
                        help='Rows per commit (default from ingestion config, 1000)')
    args = parser.parse_args()

    if not os.path.exists(args.csv_path):
        parser.error(f'File not found: {args.csv_path}')

    sys.exit(import_evaluations(args.csv_path, chunk_size=args.chunk_size))


if __name__ == '__main__':
    main()
