#!/usr/bin/env python3
"""
CLI for the ingestion pipeline

Commands:
    scrape     - Scrape + stage one item (listing URL, matricule, NEQ)
    transform  - Curate + persist a staged item
    batch      - Run a paced batch from a file of targets
    company    - Look up a company in the registry by NEQ or name

Usage:
    python cli.py scrape "https://www.centris.ca/fr/condo~a-vendre~montreal/12345678"
    python cli.py scrape 9739-08-6546-0-000-0000 --source-type evaluation_roll --transform
    python cli.py transform centris_listing 12345678 --force
    python cli.py batch targets.txt --source-type evaluation_roll --profile high_risk
    python cli.py company "Gestion Exemple inc."
"""

import json
import sys

import click


def get_app_context():
    """Get Flask app context for database access."""
    from app import configure_logging, create_app
    configure_logging()
    app = create_app()
    return app, app.app_context()


def _print_transform(result):
    color = {"success": "green", "conflict": "yellow", "failed": "red"}.get(result.status, None)
    click.secho(f"Transform: {result.status}", fg=color, bold=True)
    if result.entity_id:
        click.echo(f"  Entity id: {result.entity_id} ({'created' if result.created else 'updated'})")
    if result.existing_entity_id:
        click.echo(f"  Existing entity: {result.existing_entity_id} (use --force to update)")
    for warning in result.warnings:
        click.secho(f"  ! {warning}", fg="yellow")
    for error in result.errors:
        click.secho(f"  x {error}", fg="red")


@click.group()
@click.version_option(version="1.0.0", prog_name="ingestion-cli")
def cli():
    """Ingestion CLI - scrape, stage, curate and persist source records."""
    pass


@cli.command("scrape")
@click.argument("target")
@click.option("--source-type", "-s", default=None, help="evaluation_roll / company_registry for non-URL targets")
@click.option("--transform", "do_transform", is_flag=True, help="Curate and persist after staging")
@click.option("--force", is_flag=True, help="Update an existing entity in place")
def scrape(target, source_type, do_transform, force):
    """
    Scrape one item and stage its raw payload.

    TARGET: listing URL, matricule, NEQ or company name
    """
    from ingestion.errors import IngestionError

    app, ctx = get_app_context()
    with ctx:
        from models.database import db
        from ingestion.pipeline import create_pipeline

        pipeline = create_pipeline(db.session, app.config)
        try:
            staged = pipeline.scrape(target, source_type)
        except IngestionError as e:
            click.secho(f"Error ({e.reason.value}): {e}", fg="red")
            sys.exit(1)

        click.secho(f"Staged {staged.source_type}/{staged.source_native_id}", fg="green")
        click.echo(f"  Reference: {staged.storage_reference}")
        click.echo(f"  Duration:  {staged.duration_ms}ms")

        if do_transform:
            try:
                result = pipeline.transform(staged.source_type, staged.source_native_id, force=force)
            except IngestionError as e:
                click.secho(f"Error ({e.reason.value}): {e}", fg="red")
                sys.exit(1)
            _print_transform(result)
            if result.status == "failed":
                sys.exit(1)


@cli.command("transform")
@click.argument("source_type")
@click.argument("source_native_id")
@click.option("--force", is_flag=True, help="Update an existing entity in place")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def transform(source_type, source_native_id, force, output_json):
    """Curate and persist a staged item."""
    from ingestion.errors import IngestionError

    app, ctx = get_app_context()
    with ctx:
        from models.database import db
        from ingestion.pipeline import create_pipeline

        pipeline = create_pipeline(db.session, app.config)
        try:
            result = pipeline.transform(source_type, source_native_id, force=force)
        except IngestionError as e:
            click.secho(f"Error ({e.reason.value}): {e}", fg="red")
            sys.exit(1)

        if output_json:
            click.echo(json.dumps(result.to_dict(), indent=2))
        else:
            _print_transform(result)
        if result.status == "failed":
            sys.exit(1)


@cli.command("batch")
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--source-type", "-s", default=None, help="Source type for every target")
@click.option("--profile", "-p", default=None, help="Pacing profile (standard, high_risk, zone)")
@click.option("--force", is_flag=True, help="Re-process items already transformed")
@click.option("--limit", type=int, default=None, help="Only the first N targets")
def batch(file_path, source_type, profile, force, limit):
    """
    Run a paced batch over targets read from FILE_PATH (one per line).

    Ctrl+C cancels before the next item starts.
    """
    from ingestion.batch import BatchJob, BatchOrchestrator

    with open(file_path, "r") as f:
        targets = [line.strip() for line in f if line.strip() and not line.startswith("#")]
    if limit:
        targets = targets[:limit]
    if not targets:
        click.secho("No targets found", fg="yellow")
        return

    app, ctx = get_app_context()
    with ctx:
        from models.database import db
        from ingestion.pipeline import create_pipeline

        pipeline = create_pipeline(db.session, app.config)
        job = BatchJob.create(targets, source_type=source_type, profile=profile, force=force)

        def is_transformed(item):
            return pipeline.is_transformed(
                pipeline.resolve_source_type(item.target, item.source_type),
                pipeline.resolve_native_id(item.target, item.source_type),
            )

        orchestrator = BatchOrchestrator(pipeline.process, is_transformed=is_transformed)
        click.echo(f"Running batch of {job.total} items...")
        try:
            summary = orchestrator.run(job)
        except KeyboardInterrupt:
            job.cancel()
            click.secho("Cancelled", fg="yellow")
            summary = job.summary()

    click.echo()
    click.secho("Batch summary", bold=True)
    click.echo(f"  Succeeded:   {summary['succeeded']}")
    click.echo(f"  Failed:      {summary['failed']}")
    click.echo(f"  Skipped:     {summary['skipped']}")
    click.echo(f"  Conflicts:   {summary['conflicts']}")
    click.echo(f"  Not started: {summary['not_started']}")
    for outcome in summary["outcomes"]:
        if outcome["status"] == "failed":
            click.secho(f"  x {outcome['target']}: {outcome['error']}", fg="red")


@cli.command("company")
@click.argument("query")
@click.option("--force", is_flag=True, help="Refresh an existing company profile")
def company(query, force):
    """
    Look up a company by NEQ (10 digits) or by name, then persist its profile.
    """
    from ingestion.errors import IngestionError
    from scrapers.identity import SourceType
    from scrapers.workflows.company_registry import looks_like_neq

    mode = "NEQ" if looks_like_neq(query) else "name"
    click.echo(f"Searching registry by {mode}: {query}")

    app, ctx = get_app_context()
    with ctx:
        from models.database import db
        from models.company import Company
        from ingestion.pipeline import create_pipeline

        pipeline = create_pipeline(db.session, app.config)
        try:
            staged = pipeline.scrape(query, SourceType.COMPANY_REGISTRY)
            result = pipeline.transform(staged.source_type, staged.source_native_id, force=force)
        except IngestionError as e:
            click.secho(f"Error ({e.reason.value}): {e}", fg="red")
            sys.exit(1)

        _print_transform(result)
        entity_id = result.entity_id or result.existing_entity_id
        profile = db.session.get(Company, entity_id) if entity_id else None
        if profile is not None:
            click.echo(json.dumps(profile.to_dict(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    cli()
