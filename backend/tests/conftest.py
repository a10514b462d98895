"""
Root pytest configuration for backend tests.

Provides:
- Shared fixtures (app, client, session) on in-memory SQLite
- Settings with zero-length pacing windows
- Raw store / pipeline fixtures over a temp storage root
- HTML page fixtures for the extractors and workflows
"""

import sys
from pathlib import Path

# Add backend directory to Python path so imports like
# `from ingestion.curator import ...` and `from models.listing import ...` work
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings and the batch registry are process globals; reset around each test."""
    from ingestion.batch import get_job_registry
    from ingestion.settings import reset_settings

    reset_settings()
    get_job_registry().clear()
    yield
    reset_settings()
    get_job_registry().clear()


@pytest.fixture
def settings(tmp_path):
    """Built-in defaults with instant pacing (no config file)."""
    from ingestion.settings import IngestionSettings

    return IngestionSettings(
        config_path=str(tmp_path / "missing.yaml"),
        overrides={
            "pacing": {
                "profiles": {
                    "standard": {"min_seconds": 0, "max_seconds": 0},
                    "high_risk": {"min_seconds": 0, "max_seconds": 0},
                    "zone": {"min_seconds": 0, "max_seconds": 0},
                },
            },
        },
    )


@pytest.fixture
def app(tmp_path):
    """Create test Flask application."""
    from app import create_app
    from models.database import db

    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'RAW_STORAGE_ROOT': str(tmp_path / 'storage'),
        'SCRAPING_BROWSER_ENDPOINT': None,
    })
    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def session(app):
    """Database session inside an application context."""
    from models.database import db

    with app.app_context():
        yield db.session
        db.session.rollback()


@pytest.fixture
def storage(tmp_path):
    from ingestion.object_storage import LocalObjectStorage

    return LocalObjectStorage(str(tmp_path / "objects"))


@pytest.fixture
def raw_store(storage, session):
    from ingestion.raw_store import RawStore

    return RawStore(storage, session)


# =============================================================================
# HTML pages
# =============================================================================

@pytest.fixture
def rental_html():
    return load_fixture("centris_rental.html")


@pytest.fixture
def sale_html():
    return load_fixture("centris_sale.html")


@pytest.fixture
def evaluation_html():
    return load_fixture("evaluation_detail.html")


@pytest.fixture
def company_html():
    return load_fixture("company_profile.html")
