"""
Tests for curation: raw payload -> typed fields, warnings and errors.

Curators are pure, so every test feeds a payload straight in; the rental,
evaluation and company payloads come from the extractors run on fixture
pages to keep both ends honest.
"""

import pytest

from ingestion.curator import (
    curate,
    mine_characteristics,
    parse_rent,
    parse_rental_location,
    parse_unit_details,
    FieldReader,
)
from ingestion.errors import IdentityMissing
from scrapers.extractors import CentrisRentalExtractor
from scrapers.identity import SourceType
from scrapers.label_walk import parse_document
from scrapers.workflows import extract_company_profile, extract_evaluation

RENTAL_URL = "https://www.centris.ca/fr/appartement~a-louer~montreal-villeray/21212121"
SALE_URL = "https://www.centris.ca/fr/triplex~a-vendre~montreal-rosemont/12345678"
MATRICULE = "9739-08-6546-0-000-0000"


@pytest.fixture
def rental_payload(rental_html):
    return CentrisRentalExtractor().extract(RENTAL_URL, rental_html).raw_payload


# =============================================================================
# Centris rentals
# =============================================================================

class TestCentrisRental:
    """Characteristics are mined into columns; the rest is kept verbatim."""

    def test_fields(self, rental_payload):
        result = curate(SourceType.CENTRIS_RENTAL, "21212121", rental_payload)

        assert result.ok
        assert result.warnings == []
        assert result.source_native_id == "21212121"
        fields = result.fields
        assert fields["listing_kind"] == "rent"
        assert fields["price"] == 1850.0
        assert fields["price_currency"] == "CAD"
        assert fields["rooms"] == 5
        assert fields["bedrooms"] == 2
        assert fields["bathrooms"] == 1.0
        assert fields["square_footage"] == 495
        assert fields["year_built"] == 1965
        assert fields["parking"] == 1
        assert fields["characteristics"] == {"Animaux": "Non admis"}
        assert fields["latitude"] == pytest.approx(45.5512)
        assert fields["longitude"] == pytest.approx(-73.6201)
        assert fields["walk_score"] == 88
        assert fields["broker_name"] == "Marie Tremblay"

    def test_high_res_images_preferred(self, rental_payload):
        fields = curate(SourceType.CENTRIS_RENTAL, "21212121", rental_payload).fields
        assert len(fields["image_urls"]) == 2
        assert all(url.endswith("w=1024&h=768") for url in fields["image_urls"])

    def test_unparseable_area_warns_once(self):
        reader = FieldReader()
        area, year, parking, remaining = mine_characteristics(
            {"Superficie habitable": "grande", "Stationnement": "Rue"}, reader
        )
        assert area is None
        assert parking is None
        assert reader.warnings == ["Could not parse square footage from: grande"]

    def test_missing_source_url(self):
        with pytest.raises(IdentityMissing):
            curate(SourceType.CENTRIS_RENTAL, "21212121", {"centris_id": "21212121"})

    def test_broker_without_contact_details(self):
        result = curate(SourceType.CENTRIS_RENTAL, "21212121", {
            "centris_id": "21212121", "source_url": RENTAL_URL, "brokers": ["Équipe Tremblay"],
        })
        assert result.ok
        assert result.fields["broker_name"] is None
        assert result.fields["broker_url"] is None


# =============================================================================
# Sale listings
# =============================================================================

class TestSaleListing:
    def test_unparseable_price_is_null_with_one_warning(self):
        result = curate(SourceType.CENTRIS_LISTING, "12345678", {
            "source_url": SALE_URL,
            "title": "Triplex à vendre",
            "price": "N/A",
        })
        assert result.ok
        assert result.fields["price"] is None
        assert result.fields["price_display"] == "N/A"
        assert result.warnings == ["Could not parse price from: N/A"]

    def test_typed_characteristics(self):
        result = curate(SourceType.CENTRIS_LISTING, "12345678", {
            "source_url": SALE_URL,
            "price": "899000",
            "bedrooms": "6",
            "bathrooms": "3",
            "living_area": "1 200 pc",
            "year_built": "1925",
            "units": "3",
            "taxes": 4720.0,
            "expense_heating": 1800.0,
            "images": ["a", "b", "a"],
        })
        fields = result.fields
        assert fields["price"] == 899000.0
        assert fields["square_footage"] == 1200
        assert fields["year_built"] == 1925
        assert fields["taxes_total"] == 4720.0
        assert fields["expense_breakdown"] == {"expense_heating": 1800.0}
        assert fields["image_urls"] == ["a", "b"]

    def test_bad_year_warns(self):
        result = curate(SourceType.GENERIC_LISTING, "abc", {
            "source_url": "https://example.ca/x", "year_built": "Inconnue",
        })
        assert result.fields["year_built"] is None
        assert result.warnings == ["Could not parse year of construction from: Inconnue"]

    def test_source_url_required(self):
        with pytest.raises(IdentityMissing):
            curate(SourceType.CENTRIS_LISTING, "12345678", {"price": "1"})


# =============================================================================
# Facebook rentals
# =============================================================================

def facebook_payload(**raw_data):
    data = {
        "title": "4 1/2 Rosemont",
        "price": "CA$2,175 / Month",
        "unitDetails": ["2 beds 1 bath", "Apartment", "Cat friendly", "850 square feet", "Laundry in unit"],
        "rentalLocation": "Montréal, QC, H2S 2Z5",
        "sellerInfo": {"name": "Luc", "profileUrl": "https://facebook.com/luc"},
        "media": {"images": ["i1", "i2"], "videos": []},
    }
    data.update(raw_data)
    return {
        "facebook_id": "998877",
        "source_url": "https://www.facebook.com/marketplace/item/998877/",
        "extracted_date": "2024-05-02T08:00:00",
        "scraper_version": "console-v1",
        "raw_data": data,
    }


class TestFacebookRental:
    def test_fields(self):
        result = curate(SourceType.FACEBOOK_RENTAL, "998877", facebook_payload())
        fields = result.fields
        assert result.ok
        assert fields["price"] == 2175.0
        assert fields["bedrooms"] == 2
        assert fields["bathrooms"] == 1.0
        assert fields["square_footage"] == 850
        assert fields["property_type"] == "apartment"
        assert fields["pet_policy"] == ["cat_friendly"]
        assert fields["city"] == "Montréal"
        assert fields["postal_code"] == "H2S 2Z5"
        assert fields["broker_name"] == "Luc"

    def test_missing_title_is_an_error(self):
        result = curate(SourceType.FACEBOOK_RENTAL, "998877", facebook_payload(title=""))
        assert not result.ok
        assert result.errors == ["Title is required"]

    def test_unparseable_price(self):
        result = curate(SourceType.FACEBOOK_RENTAL, "998877", facebook_payload(price="Free"))
        assert result.fields["price"] is None
        assert result.warnings == ["Could not parse price from: Free"]


def test_parse_rent():
    assert parse_rent("CA$2,175 / Month") == 2175.0
    assert parse_rent("Free") is None
    assert parse_rent(None) is None


def test_parse_unit_details_amenities():
    details = parse_unit_details(["Dog friendly", "Laundry in building", "1 bed"])
    assert details["pet_policy"] == ["dog_friendly"]
    assert details["amenities"] == ["Laundry in building"]
    assert details["bedrooms"] == 1


def test_parse_unit_details_keeps_zero_counts():
    details = parse_unit_details(["0 beds, 1 bath", "Apartment", "Listed as 2 beds 2 baths"])
    assert details["bedrooms"] == 0
    assert details["bathrooms"] == 1.0


def test_parse_rental_location():
    assert parse_rental_location("Laval, QC") == ("Laval", None)
    assert parse_rental_location(None) == (None, None)


# =============================================================================
# Evaluation and company
# =============================================================================

class TestEvaluation:
    def test_values_parsed(self, evaluation_html):
        raw = extract_evaluation(parse_document(evaluation_html), MATRICULE)
        result = curate(SourceType.EVALUATION_ROLL, MATRICULE, raw)

        fields = result.fields
        assert result.ok
        assert result.source_native_id == MATRICULE
        assert fields["current_total_value"] == 810100.0
        assert fields["previous_total_value"] == 640000.0
        assert fields["land_area"] == pytest.approx(232.3)
        assert fields["land_frontage"] == pytest.approx(7.62)
        assert fields["building_year"] == 1925
        assert fields["building_units"] == 3
        assert fields["owner_name"] == "GESTION EXEMPLE INC."

    def test_bad_matricule(self):
        with pytest.raises(IdentityMissing):
            curate(SourceType.EVALUATION_ROLL, "12-34", {"matricule": "12-34"})


class TestCompany:
    def test_children(self, company_html):
        raw = extract_company_profile(parse_document(company_html), "https://registre.example/x")
        result = curate(SourceType.COMPANY_REGISTRY, "1171234567", raw)

        assert result.ok
        assert result.source_native_id == "1171234567"
        assert result.fields["company_name"] == "GESTION EXEMPLE INC."
        assert [s["name"] for s in result.fields["shareholders"]] == ["Marie Tremblay", "PLACEMENTS XYZ INC."]
        assert result.fields["shareholders"][0]["is_majority"] is True
        assert result.fields["administrators"][0]["domicile_address"] is None

    def test_name_required(self):
        result = curate(SourceType.COMPANY_REGISTRY, "1171234567", {"neq": "1171234567"})
        assert result.errors == ["Company name is required"]


# =============================================================================
# Determinism
# =============================================================================

class TestDeterminism:
    def test_same_payload_same_result(self, rental_payload):
        first = curate(SourceType.CENTRIS_RENTAL, "21212121", rental_payload)
        second = curate(SourceType.CENTRIS_RENTAL, "21212121", dict(rental_payload))
        assert first.to_dict() == second.to_dict()
        assert first.fields_hash == second.fields_hash

    def test_unknown_source_type(self):
        with pytest.raises(IdentityMissing):
            curate("craigslist", "1", {})
