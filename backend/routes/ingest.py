"""
Ingestion API Routes

Operator endpoints for the acquisition pipeline:
- POST /scrape            scrape + stage one item (optionally transform)
- POST /transform         curate + persist a staged item
- POST /import-json       stage a pasted JSON payload
- POST /capture           stage a registry page captured in the browser
- POST /batches           start a paced batch in a background thread
- GET  /batches/<id>      batch progress / summary
- POST /batches/<id>/cancel
"""
import logging
import threading
import time

from flask import Blueprint, current_app, jsonify, request

from ingestion.batch import BatchJob, BatchOrchestrator, get_job_registry
from ingestion.errors import (
    BatchItemFailure,
    ConfigurationError,
    IdentityMissing,
    IngestionError,
    NavigationError,
    NavigationTimeout,
)
from ingestion.pipeline import TransformStatus, create_pipeline
from models.database import db

logger = logging.getLogger(__name__)

ingest_bp = Blueprint('ingest', __name__)


def _pipeline():
    return create_pipeline(db.session, current_app.config)


def _error_status(error: IngestionError) -> int:
    if isinstance(error, (IdentityMissing, BatchItemFailure)):
        return 400
    if isinstance(error, (NavigationTimeout, NavigationError)):
        return 502
    if isinstance(error, ConfigurationError):
        return 500
    return 503


def _transform_response(result):
    body = {"success": result.status == TransformStatus.SUCCESS, **result.to_dict()}
    if result.status == TransformStatus.CONFLICT:
        body["message"] = "Entity already exists; resend with force=true to update it"
        return jsonify(body), 409
    if result.status == TransformStatus.FAILED:
        return jsonify(body), 422
    return jsonify(body), 201 if result.created else 200


@ingest_bp.route("/scrape", methods=["POST"])
def scrape():
    """
    Scrape one item.

    Body:
        - target: listing URL, matricule, NEQ or company name (required)
        - source_type: required for evaluation_roll / company_registry
        - transform: also curate + persist (default false)
        - force: update an existing entity (default false)
    """
    start = time.time()
    data = request.get_json(silent=True) or {}
    target = (data.get("target") or data.get("url") or "").strip()
    if not target:
        return jsonify({"error": "target is required"}), 400

    try:
        pipeline = _pipeline()
        staged = pipeline.scrape(target, data.get("source_type"))
        if not data.get("transform"):
            elapsed = time.time() - start
            logger.info(f"POST /api/ingest/scrape took {elapsed:.2f}s ({staged.source_native_id})")
            return jsonify({"success": True, "staged": staged.to_dict()}), 201
        result = pipeline.transform(
            staged.source_type, staged.source_native_id, force=bool(data.get("force"))
        )
        response, status = _transform_response(result)
        payload = response.get_json()
        payload["staged"] = staged.to_dict()
        return jsonify(payload), status
    except IngestionError as e:
        logger.warning(f"POST /api/ingest/scrape failed for {target}: {e}")
        return jsonify({"error": str(e), "reason": e.reason.value}), _error_status(e)
    except Exception as e:
        logger.exception(f"POST /api/ingest/scrape ERROR for {target}")
        return jsonify({"error": str(e)}), 500


@ingest_bp.route("/transform", methods=["POST"])
def transform():
    """
    Curate and persist a staged item.

    Body:
        - source_type, source_native_id (required)
        - force: update the existing entity in place (default false)
    """
    data = request.get_json(silent=True) or {}
    source_type = data.get("source_type")
    source_native_id = str(data.get("source_native_id") or "").strip()
    if not source_type or not source_native_id:
        return jsonify({"error": "source_type and source_native_id are required"}), 400

    try:
        result = _pipeline().transform(source_type, source_native_id, force=bool(data.get("force")))
        return _transform_response(result)
    except IngestionError as e:
        return jsonify({"error": str(e), "reason": e.reason.value}), _error_status(e)
    except Exception as e:
        logger.exception(f"POST /api/ingest/transform ERROR for {source_type}/{source_native_id}")
        return jsonify({"error": str(e)}), 500


@ingest_bp.route("/import-json", methods=["POST"])
def import_json():
    """
    Stage a pasted payload.

    Body:
        - source_type: centris_rental or facebook_rental
        - payload: the pasted JSON object
        - transform / force: as for /scrape
    """
    data = request.get_json(silent=True) or {}
    source_type = data.get("source_type")
    payload = data.get("payload")
    if not source_type or payload is None:
        return jsonify({"error": "source_type and payload are required"}), 400

    try:
        pipeline = _pipeline()
        staged = pipeline.import_payload(source_type, payload)
        body = {"success": True, "staged": staged.to_dict()}
        if data.get("transform"):
            result = pipeline.transform(
                staged.source_type, staged.source_native_id, force=bool(data.get("force"))
            )
            response, status = _transform_response(result)
            body = response.get_json()
            body["staged"] = staged.to_dict()
            return jsonify(body), status
        return jsonify(body), 201
    except IngestionError as e:
        return jsonify({"error": str(e), "reason": e.reason.value}), _error_status(e)
    except Exception as e:
        logger.exception("POST /api/ingest/import-json ERROR")
        return jsonify({"error": str(e)}), 500


@ingest_bp.route("/capture", methods=["POST"])
def capture():
    """
    Stage a registry profile captured in the operator's browser.

    Body:
        - html: rendered page HTML (required)
        - source_url: page URL (optional)
        - transform / force: as for /scrape
    """
    data = request.get_json(silent=True) or {}
    html = data.get("html")
    if not html:
        return jsonify({"error": "html is required"}), 400

    try:
        pipeline = _pipeline()
        staged = pipeline.capture(html, data.get("source_url") or "")
        if data.get("transform"):
            result = pipeline.transform(
                staged.source_type, staged.source_native_id, force=bool(data.get("force"))
            )
            response, status = _transform_response(result)
            body = response.get_json()
            body["staged"] = staged.to_dict()
            return jsonify(body), status
        return jsonify({"success": True, "staged": staged.to_dict()}), 201
    except IngestionError as e:
        return jsonify({"error": str(e), "reason": e.reason.value}), _error_status(e)
    except Exception as e:
        logger.exception("POST /api/ingest/capture ERROR")
        return jsonify({"error": str(e)}), 500


# =============================================================================
# Batches
# =============================================================================

def _run_batch(app, job: BatchJob):
    """Batch thread body; owns its own app context and session."""
    with app.app_context():
        pipeline = create_pipeline(db.session, app.config)

        def is_transformed(item):
            return pipeline.is_transformed(
                pipeline.resolve_source_type(item.target, item.source_type),
                pipeline.resolve_native_id(item.target, item.source_type),
            )

        orchestrator = BatchOrchestrator(pipeline.process, is_transformed=is_transformed)
        try:
            orchestrator.run(job)
        except Exception:
            logger.exception(f"Batch {job.id} aborted")
        finally:
            db.session.remove()


@ingest_bp.route("/batches", methods=["POST"])
def start_batch():
    """
    Start a batch.

    Body:
        - targets: list of URLs / matricules / NEQs (required)
        - source_type: applies to every target (optional for URLs)
        - profile: pacing profile (standard, high_risk, zone)
        - force: update existing entities
    """
    data = request.get_json(silent=True) or {}
    targets = data.get("targets") or []
    if not isinstance(targets, list) or not targets:
        return jsonify({"error": "targets must be a non-empty list"}), 400

    job = BatchJob.create(
        targets,
        source_type=data.get("source_type"),
        profile=data.get("profile"),
        force=bool(data.get("force")),
    )
    if not job.total:
        return jsonify({"error": "targets must be a non-empty list"}), 400

    app = current_app._get_current_object()
    thread = threading.Thread(target=_run_batch, args=(app, job), name=f"batch-{job.id[:8]}", daemon=True)
    get_job_registry().add(job, thread)
    thread.start()

    logger.info(f"Started batch {job.id} with {job.total} items")
    return jsonify({"success": True, "job_id": job.id, "progress": job.progress()}), 202


@ingest_bp.route("/batches/<job_id>", methods=["GET"])
def get_batch(job_id):
    job = get_job_registry().get(job_id)
    if job is None:
        return jsonify({"error": f"Unknown batch {job_id}"}), 404
    return jsonify({"progress": job.progress(), "summary": job.summary()})


@ingest_bp.route("/batches/<job_id>/cancel", methods=["POST"])
def cancel_batch(job_id):
    job = get_job_registry().get(job_id)
    if job is None:
        return jsonify({"error": f"Unknown batch {job_id}"}), 404
    job.cancel()
    logger.info(f"Cancel requested for batch {job_id}")
    return jsonify({"success": True, "progress": job.progress()})
