"""
Tests for the single-item pipeline: scrape -> stage -> curate -> persist.

HTTP fetches use a fake requests session and browser sessions a fake
navigator that returns canned NavigationResults, so every stage from
staging onwards runs for real against SQLite and a temp bucket.
"""

import pytest
import requests

from ingestion.errors import BatchItemFailure, FailureReason, IdentityMissing, NavigationTimeout
from ingestion.pipeline import IngestionPipeline, TransformStatus, describe_error
from models.company import Company
from models.evaluation import EvaluationDetail
from models.ingestion_record import IngestionRecord, ScrapeStatus, TransformationStatus
from models.listing import Listing
from scrapers.label_walk import parse_document
from scrapers.navigator import NavigationResult
from scrapers.workflows import extract_company_profile, extract_evaluation

RENTAL_URL = "https://www.centris.ca/fr/appartement~a-louer~montreal-villeray/21212121"
MATRICULE = "9739-08-6546-0-000-0000"


class FakeResponse:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeHttpSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.urls = []

    def get(self, url, timeout=None, headers=None):
        self.urls.append(url)
        return self.responses.pop(0)


class FakeNavigator:
    """Returns a canned payload per source type, or raises."""

    def __init__(self, payloads=None, error=None):
        self.payloads = payloads or {}
        self.error = error
        self.runs = []

    def run(self, workflow, query):
        natural_key = workflow.natural_key(query)
        self.runs.append((workflow.source_type, query))
        if self.error is not None:
            raise self.error
        return NavigationResult(
            source_type=workflow.source_type,
            natural_key=natural_key,
            payload=self.payloads[workflow.source_type],
            source_url=f"https://example.test/{workflow.source_type}/detail",
            duration_ms=1500,
            steps=["launch", "extract"],
        )


def make_pipeline(session, raw_store, http=None, navigator=None):
    return IngestionPipeline(session, raw_store, navigator=navigator, http_session=http)


# =============================================================================
# HTTP listings
# =============================================================================

class TestListingScrape:
    def test_scrape_then_transform(self, session, raw_store, rental_html):
        pipeline = make_pipeline(session, raw_store, FakeHttpSession(FakeResponse(rental_html)))

        staged = pipeline.scrape(RENTAL_URL)
        assert staged.source_type == "centris_rental"
        assert staged.source_native_id == "21212121"

        result = pipeline.transform("centris_rental", "21212121")
        assert result.status == TransformStatus.SUCCESS
        assert result.created
        listing = session.get(Listing, result.entity_id)
        assert listing.square_footage == 495

    def test_second_transform_conflicts_until_forced(self, session, raw_store, rental_html):
        pipeline = make_pipeline(session, raw_store, FakeHttpSession(FakeResponse(rental_html)))
        pipeline.scrape(RENTAL_URL)
        first = pipeline.transform("centris_rental", "21212121")

        conflict = pipeline.transform("centris_rental", "21212121")
        assert conflict.conflict
        assert conflict.existing_entity_id == first.entity_id

        forced = pipeline.transform("centris_rental", "21212121", force=True)
        assert forced.status == TransformStatus.SUCCESS
        assert forced.entity_id == first.entity_id
        assert not forced.created

    def test_http_failure_recorded(self, session, raw_store):
        pipeline = make_pipeline(session, raw_store, FakeHttpSession(FakeResponse("", 503)))

        with pytest.raises(requests.HTTPError):
            pipeline.scrape(RENTAL_URL)

        record = raw_store.get_record("centris_rental", "21212121")
        assert record.scrape_status == ScrapeStatus.FAILED.value
        assert "503" in record.scrape_error
        assert record.storage_reference is None

    def test_url_without_id_fetches_nothing(self, session, raw_store):
        http = FakeHttpSession()
        with pytest.raises(IdentityMissing):
            make_pipeline(session, raw_store, http).scrape("https://www.centris.ca/fr/appartements~a-louer")
        assert http.urls == []
        assert session.query(IngestionRecord).count() == 0

    def test_process_returns_both_stages(self, session, raw_store, rental_html):
        pipeline = make_pipeline(session, raw_store, FakeHttpSession(FakeResponse(rental_html)))
        outcome = pipeline.process(RENTAL_URL)
        assert outcome["staged"]["source_native_id"] == "21212121"
        assert outcome["transform"]["status"] == "success"


# =============================================================================
# Browser sources
# =============================================================================

class TestNavigatorScrape:
    def test_evaluation(self, session, raw_store, evaluation_html):
        navigator = FakeNavigator({
            "evaluation_roll": extract_evaluation(parse_document(evaluation_html), MATRICULE),
        })
        pipeline = make_pipeline(session, raw_store, navigator=navigator)

        staged = pipeline.scrape(MATRICULE, "evaluation_roll")
        assert staged.source_native_id == MATRICULE
        assert staged.duration_ms == 1500
        assert raw_store.get(staged.storage_reference)["source_url"].endswith("/detail")

        result = pipeline.transform("evaluation_roll", MATRICULE)
        detail = session.get(EvaluationDetail, result.entity_id)
        assert detail.building_units == 3

    def test_company_name_rekeyed_to_neq(self, session, raw_store, company_html):
        navigator = FakeNavigator({
            "company_registry": extract_company_profile(parse_document(company_html)),
        })
        pipeline = make_pipeline(session, raw_store, navigator=navigator)

        staged = pipeline.scrape("Gestion Exemple inc.", "company_registry")

        assert staged.source_native_id == "1171234567"
        pipeline.transform("company_registry", "1171234567")
        assert session.query(Company).one().neq == "1171234567"

    def test_navigation_failure_recorded(self, session, raw_store):
        error = NavigationTimeout("submit_search", FailureReason.SITE_STRUCTURE, MATRICULE)
        pipeline = make_pipeline(session, raw_store, navigator=FakeNavigator(error=error))

        with pytest.raises(NavigationTimeout):
            pipeline.scrape(MATRICULE, "evaluation_roll")

        record = raw_store.get_record("evaluation_roll", MATRICULE)
        assert record.scrape_status == ScrapeStatus.FAILED.value

    def test_bad_matricule_never_navigates(self, session, raw_store):
        navigator = FakeNavigator()
        with pytest.raises(IdentityMissing):
            make_pipeline(session, raw_store, navigator=navigator).scrape("9739", "evaluation_roll")
        assert navigator.runs == []


class TestResolve:
    def test_native_ids(self, session, raw_store):
        pipeline = make_pipeline(session, raw_store)
        assert pipeline.resolve_native_id(RENTAL_URL) == "21212121"
        assert pipeline.resolve_native_id(MATRICULE, "evaluation_roll") == MATRICULE
        assert pipeline.resolve_native_id("1171-234-567", "company_registry") == "1171234567"
        assert pipeline.resolve_native_id("Gestion Exemple", "company_registry") is None

    def test_unknown_source_type(self, session, raw_store):
        with pytest.raises(IdentityMissing):
            make_pipeline(session, raw_store).resolve_source_type("x", "craigslist")

    def test_paste_only_source_cannot_be_scraped(self, session, raw_store):
        with pytest.raises(BatchItemFailure) as exc:
            make_pipeline(session, raw_store).scrape("https://www.facebook.com/marketplace/item/1/", "facebook_rental")
        assert exc.value.reason == FailureReason.VALIDATION


# =============================================================================
# Paste, capture and transform failures
# =============================================================================

class TestImportAndCapture:
    def test_import_payload(self, session, raw_store):
        pipeline = make_pipeline(session, raw_store)
        staged = pipeline.import_payload("facebook_rental", {
            "id": "998877",
            "url": "https://www.facebook.com/marketplace/item/998877/",
            "title": "4 1/2 Rosemont",
            "price": "CA$2,175 / Month",
        })
        result = pipeline.transform("facebook_rental", staged.source_native_id)
        assert result.status == TransformStatus.SUCCESS
        assert session.get(Listing, result.entity_id).price == 2175

    def test_capture(self, session, raw_store, company_html):
        staged = make_pipeline(session, raw_store).capture(company_html, "https://registre.example/x")
        assert staged.source_native_id == "1171234567"
        assert raw_store.get(staged.storage_reference)["identification"]["name"] == "GESTION EXEMPLE INC."


class TestTransformFailures:
    def test_nothing_staged(self, session, raw_store):
        with pytest.raises(BatchItemFailure) as exc:
            make_pipeline(session, raw_store).transform("centris_rental", "21212121")
        assert exc.value.reason == FailureReason.VALIDATION

    def test_missing_object(self, session, raw_store, storage, tmp_path):
        ref = raw_store.put("centris_rental", "21212121", {"source_url": RENTAL_URL})
        (storage.root / ref).unlink()

        with pytest.raises(BatchItemFailure) as exc:
            make_pipeline(session, raw_store).transform("centris_rental", "21212121")

        assert exc.value.reason == FailureReason.STORE
        record = raw_store.get_record("centris_rental", "21212121")
        assert record.transformation_status == TransformationStatus.FAILED.value
        assert record.transformation_attempts == 1

    def test_curation_errors_fail_without_entity(self, session, raw_store):
        pipeline = make_pipeline(session, raw_store)
        staged = pipeline.import_payload("facebook_rental", {
            "id": "998877", "url": "https://www.facebook.com/marketplace/item/998877/",
        })

        result = pipeline.transform("facebook_rental", staged.source_native_id)

        assert result.status == TransformStatus.FAILED
        assert result.errors == ["Title is required"]
        assert session.query(Listing).count() == 0
        record = raw_store.get_record("facebook_rental", "998877")
        assert record.transformation_error == "Title is required"

    def test_process_raises_on_curation_failure(self, session, raw_store):
        pipeline = make_pipeline(session, raw_store)
        pipeline.import_payload("facebook_rental", {
            "id": "998877", "url": "https://www.facebook.com/marketplace/item/998877/",
        })

        class Pipeline(IngestionPipeline):
            def scrape(self, target, source_type=None):
                return type("Staged", (), {
                    "source_type": "facebook_rental",
                    "source_native_id": "998877",
                    "to_dict": lambda self: {},
                })()

        with pytest.raises(BatchItemFailure) as exc:
            Pipeline(session, raw_store).process("998877", "facebook_rental")
        assert exc.value.reason == FailureReason.VALIDATION


def test_describe_error():
    assert describe_error(ValueError("boom")) == "ValueError: boom"
    assert describe_error(IdentityMissing("no id", "k")) == "[k] no id"
