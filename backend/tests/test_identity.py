"""
Tests for source identity: native ids and staging keys.
"""

import pytest

from ingestion.errors import FailureReason, IdentityMissing
from scrapers.identity import (
    SourceType,
    listing_id_from_url,
    normalize_matricule,
    normalize_neq,
    require_listing_id,
    split_matricule,
    staging_key,
    url_native_id,
)


class TestStagingKey:
    def test_key_format(self):
        assert staging_key(SourceType.CENTRIS_RENTAL, "21212121") == "centris_rental/21212121"

    def test_empty_native_id_rejected(self):
        with pytest.raises(IdentityMissing):
            staging_key(SourceType.CENTRIS_RENTAL, "")


class TestListingIds:
    """Numeric id at the end of the listing URL."""

    def test_trailing_id(self):
        url = "https://www.centris.ca/fr/condo~a-vendre~montreal/12345678"
        assert listing_id_from_url(url) == "12345678"

    def test_trailing_id_before_query(self):
        url = "https://www.centris.ca/fr/condo~a-vendre~montreal/12345678?view=Summary"
        assert listing_id_from_url(url) == "12345678"

    def test_no_id(self):
        assert listing_id_from_url("https://www.centris.ca/fr/condos~a-vendre") is None
        assert listing_id_from_url("") is None

    def test_require_raises_identity_missing(self):
        with pytest.raises(IdentityMissing) as exc:
            require_listing_id("https://www.centris.ca/fr/condos~a-vendre")
        assert exc.value.reason == FailureReason.VALIDATION


class TestMatricule:
    """Six dash-separated numeric segments."""

    def test_split(self):
        assert split_matricule("9739-08-6546-0-000-0000") == [
            "9739", "08", "6546", "0", "000", "0000",
        ]

    def test_normalize_strips_whitespace(self):
        assert normalize_matricule(" 9739-08-6546-0-000-0000 ") == "9739-08-6546-0-000-0000"
        assert normalize_matricule("9739 - 08-6546-0-000-0000") == "9739-08-6546-0-000-0000"

    @pytest.mark.parametrize("value", [
        "9739-08-6546-0-000",
        "9739-08-6546-0-000-0000-1",
        "9739-08-65A6-0-000-0000",
        "9739--6546-0-000-0000",
        "",
    ])
    def test_invalid(self, value):
        with pytest.raises(IdentityMissing):
            normalize_matricule(value)


class TestNeq:
    def test_separators_removed(self):
        assert normalize_neq("1171-234-567") == "1171234567"
        assert normalize_neq("1171 234 567") == "1171234567"

    def test_wrong_length(self):
        with pytest.raises(IdentityMissing):
            normalize_neq("117123456")

    def test_name_is_not_a_neq(self):
        with pytest.raises(IdentityMissing):
            normalize_neq("Gestion Exemple inc.")


class TestUrlNativeId:
    """Digest ids for listing sites that have no id of their own."""

    def test_stable_across_query_and_trailing_slash(self):
        a = url_native_id("https://example.com/listing/maison-rosemont/")
        b = url_native_id("https://EXAMPLE.com/listing/maison-rosemont?utm_source=x#photos")
        assert a == b
        assert len(a) == 16

    def test_different_paths_differ(self):
        assert url_native_id("https://example.com/a") != url_native_id("https://example.com/b")

    def test_relative_url_rejected(self):
        with pytest.raises(IdentityMissing):
            url_native_id("/listing/123")
