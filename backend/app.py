"""
Flask Application Factory - Ingestion service

Serves the operator API for the acquisition-to-curation pipeline:
- /api/ingest/*   scrape, transform, paste import, capture, batches
- /api/health     liveness + database check

Tests pass config_overrides (in-memory SQLite, temp storage root) so no
DATABASE_URL is needed.
"""
import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import Config, get_database_url
from models.database import db

logger = logging.getLogger(__name__)


def configure_logging(level: str = None):
    logging.basicConfig(
        level=getattr(logging, (level or os.getenv('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        app.config['SQLALCHEMY_DATABASE_URI'] = get_database_url()

    # Operator UI is served from another origin
    CORS(app,
         resources={r"/api/*": {"origins": "*"}},
         methods=["GET", "POST", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization"],
         supports_credentials=False)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        """Keep HTTP status codes (404, 405, ...), JSON body."""
        response = jsonify({
            "error": {
                "code": error.name.upper().replace(' ', '_'),
                "message": error.description,
            }
        })
        response.status_code = error.code
        return response

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Real 500s."""
        if isinstance(error, HTTPException):
            return handle_http_exception(error)
        logger.exception("Unhandled error")
        response = jsonify({
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            }
        })
        response.status_code = 500
        return response

    db.init_app(app)

    with app.app_context():
        # Import all models before create_all to ensure tables are created
        import models  # noqa: F401

        env = (os.environ.get("ENV") or os.environ.get("FLASK_ENV") or "").lower()
        is_prod = env in {"prod", "production"}
        if app.config.get("TESTING") or not is_prod:
            db.create_all()
            logger.info("Database initialized")
        else:
            logger.info("Database ready (schema creation disabled in production)")

    from routes.ingest import ingest_bp
    app.register_blueprint(ingest_bp, url_prefix='/api/ingest')

    @app.route("/api/health", methods=["GET"])
    def health():
        from sqlalchemy import text
        try:
            db.session.execute(text("SELECT 1"))
            return jsonify({"status": "ok", "database": "ok"})
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return jsonify({"status": "degraded", "database": str(e)}), 503

    return app


if __name__ == "__main__":
    configure_logging()
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=app.config.get("DEBUG", False))
