"""
Tests for the HTTP listing extractors and their capability table.

Pages come from tests/fixtures; fetches go through a fake requests
session so nothing touches the network.
"""

import pytest
import requests

from ingestion.errors import IdentityMissing
from scrapers.extractors import (
    CentrisListingExtractor,
    CentrisRentalExtractor,
    GenericExtractor,
    detect_source,
    get_extractor_class,
)
from scrapers.extractors.centris_listing import infer_property_type
from scrapers.extractors.centris_rental import high_res
from scrapers.identity import SourceType, url_native_id

RENTAL_URL = "https://www.centris.ca/fr/appartement~a-louer~montreal-villeray/21212121"
SALE_URL = "https://www.centris.ca/fr/triplex~a-vendre~montreal-rosemont/12345678"


class FakeResponse:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeHttpSession:
    """Records requests and serves canned responses."""

    def __init__(self, response):
        self.response = response
        self.requests = []

    def get(self, url, timeout=None, headers=None):
        self.requests.append({"url": url, "timeout": timeout, "headers": headers})
        return self.response


# =============================================================================
# Capability table
# =============================================================================

class TestCapabilityTable:
    """First matching predicate wins; anything else is generic."""

    def test_rental_before_sale_on_same_domain(self):
        assert get_extractor_class(RENTAL_URL) is CentrisRentalExtractor
        assert get_extractor_class(SALE_URL) is CentrisListingExtractor

    def test_unknown_domain_is_generic(self):
        assert get_extractor_class("https://www.duproprio.com/fr/montreal/maison-123") is GenericExtractor

    def test_source_types(self):
        assert get_extractor_class(RENTAL_URL).SOURCE_TYPE == SourceType.CENTRIS_RENTAL
        assert get_extractor_class(SALE_URL).SOURCE_TYPE == SourceType.CENTRIS_LISTING

    def test_detect_source(self):
        assert detect_source(SALE_URL) == "centris"
        assert detect_source("https://www.realtor.ca/real-estate/1") == "realtor"
        assert detect_source("not a url") == "unknown"


# =============================================================================
# Centris rentals
# =============================================================================

class TestCentrisRentalExtractor:
    """Rental payload keeps page text; the curator does the typing."""

    @pytest.fixture
    def payload(self, rental_html):
        return CentrisRentalExtractor(http_session=FakeHttpSession(None)).extract(
            RENTAL_URL, rental_html
        ).raw_payload

    def test_identity(self, payload):
        assert payload["centris_id"] == "21212121"
        assert payload["source_url"] == RENTAL_URL
        assert payload["listing_id"] == "21212121"

    def test_repeated_title_collapsed(self, payload):
        assert payload["property_type"] == "Appartement à louer"

    def test_address_first_line_only(self, payload):
        assert payload["address"] == "1234, rue Jarry Est, Montréal (Villeray)"

    def test_price_and_coordinates_as_text(self, payload):
        assert payload["price"] == "1850"
        assert payload["price_currency"] == "CAD"
        assert payload["price_display"] == "1 850 $/mois"
        assert payload["latitude"] == "45.5512"
        assert payload["longitude"] == "-73.6201"

    def test_characteristics_map(self, payload):
        assert payload["characteristics"] == {
            "Superficie nette": "46 m²",
            "Année de construction": "1965",
            "Stationnement total": "Garage (1)",
            "Animaux": "Non admis",
        }

    def test_images_in_both_resolutions(self, payload):
        assert len(payload["images"]) == 2
        assert "w=640&h=480" in payload["images"][0]
        assert payload["images_high_res"][0].endswith("w=1024&h=768")

    def test_brokers(self, payload):
        assert payload["brokers"] == [{
            "name": "Marie Tremblay",
            "title": "Courtier immobilier résidentiel",
            "phone": "514-555-0101",
            "agency": "Agence Exemple inc.",
            "photo": "https://mspublic.centris.ca/media.ashx?id=BRK",
            "website": "https://www.agence-exemple.ca/marie-tremblay",
        }]

    def test_high_res_rewrites_size(self):
        assert high_res("https://x/media.ashx?id=1&w=320&h=240") == "https://x/media.ashx?id=1&w=1024&h=768"


# =============================================================================
# Centris sale listings
# =============================================================================

class TestCentrisListingExtractor:
    @pytest.fixture
    def payload(self, sale_html):
        return CentrisListingExtractor(http_session=FakeHttpSession(None)).extract(
            SALE_URL, sale_html
        ).raw_payload

    def test_core_fields(self, payload):
        assert payload["centris_id"] == "12345678"
        assert payload["title"] == "Triplex à vendre, Montréal (Rosemont)"
        assert payload["address"] == "5555, rue Molson"
        assert payload["city"] == "Montréal"
        assert payload["postal_code"] == "H1Y 3C1"
        assert payload["price"] == "899000"
        assert payload["mls_number"] == "12345678"

    def test_characteristics_kept_as_text(self, payload):
        assert payload["bedrooms"] == "6"
        assert payload["living_area"] == "1 200 pc"
        assert payload["year_built"] == "1925"
        assert payload["units"] == "3"
        assert payload["property_type"] == "triplex"

    def test_unit_breakdown_from_body(self, payload):
        assert payload["unit_details"] == ["3 x 5½"]

    def test_features_deduplicated(self, payload):
        assert payload["features"] == ["Sous-sol aménagé", "Cour arrière"]

    def test_images_og_first_logo_dropped(self, payload):
        assert payload["images"] == [
            "https://mspublic.centris.ca/media.ashx?id=COVER",
            "https://mspublic.centris.ca/media.ashx?id=P1",
            "https://mspublic.centris.ca/media.ashx?id=P2",
        ]

    def test_tax_table(self, payload):
        assert payload["taxes"] == 4720.0
        assert payload["taxes_municipal"] == 4200.0
        assert payload["taxes_school"] == 520.0

    def test_missing_financials_are_none(self, payload):
        assert payload["expenses"] is None
        assert payload["municipal_assessment"] is None
        assert payload["potential_revenue"] is None


def test_infer_property_type():
    assert infer_property_type("Condo à vendre") == "condo"
    assert infer_property_type("Maison unifamiliale") == "single_family"
    assert infer_property_type("Quintuplex") == "plex"
    assert infer_property_type(None) is None


# =============================================================================
# Generic extractor
# =============================================================================

class TestGenericExtractor:
    URL = "https://www.example-realty.ca/listings/maison-rosemont"

    def test_markup_conventions(self):
        html = """
        <html><head>
          <meta property="og:title" content="Maison à vendre">
          <meta property="og:image" content="https://cdn.example.ca/1.jpg">
        </head><body>
          <div class="listing-price">549 000 $</div>
          <div class="bedrooms">3 chambres</div>
          <p>Secteur H2G 1A1</p>
        </body></html>
        """
        item = GenericExtractor(http_session=FakeHttpSession(None)).extract(self.URL, html)
        assert item.source_type == SourceType.GENERIC_LISTING
        assert item.source_native_id == url_native_id(self.URL)
        assert item.raw_payload["title"] == "Maison à vendre"
        assert item.raw_payload["price"] == "549 000 $"
        assert item.raw_payload["bedrooms"] == "3 chambres"
        assert item.raw_payload["postal_code"] == "H2G 1A1"
        assert item.raw_payload["images"] == ["https://cdn.example.ca/1.jpg"]

    def test_untitled_fallback(self):
        item = GenericExtractor(http_session=FakeHttpSession(None)).extract(self.URL, "<html></html>")
        assert item.raw_payload["title"] == "Untitled Property"


# =============================================================================
# Fetching
# =============================================================================

class TestScrape:
    def test_identity_checked_before_any_request(self):
        http = FakeHttpSession(FakeResponse("<html></html>"))
        extractor = CentrisRentalExtractor(http_session=http)
        with pytest.raises(IdentityMissing):
            extractor.scrape("https://www.centris.ca/fr/appartements~a-louer~montreal")
        assert http.requests == []

    def test_fetch_uses_rotated_headers(self, rental_html):
        http = FakeHttpSession(FakeResponse(rental_html))
        item = CentrisRentalExtractor(http_session=http).scrape(RENTAL_URL)
        assert item.source_native_id == "21212121"
        assert http.requests[0]["headers"]["Accept-Language"].startswith("fr-CA")

    def test_http_error_propagates(self):
        http = FakeHttpSession(FakeResponse("", status_code=503))
        with pytest.raises(requests.HTTPError):
            CentrisRentalExtractor(http_session=http).scrape(RENTAL_URL)

    def test_rate_limiter_keyed_by_domain(self, rental_html):
        domains = []

        class Limiter:
            def wait(self, domain):
                domains.append(domain)

        CentrisRentalExtractor(rate_limiter=Limiter(), http_session=FakeHttpSession(FakeResponse(rental_html))).scrape(
            RENTAL_URL
        )
        assert domains == ["www.centris.ca"]
