"""
Source identity - native ids and staging keys.

Every source item is keyed by (source_type, source_native_id). Supported id
formats:
- plain numeric listing id taken from the listing URL
- 6-segment dash-joined property matricule (e.g. 9739-08-6546-0-000-0000)
- 10-digit business registry number (NEQ)
- URL digest for generic listings with no id of their own
"""
import hashlib
import re
from typing import List, Optional
from urllib.parse import urlparse, urlunparse

from ingestion.errors import IdentityMissing


class SourceType:
    CENTRIS_LISTING = "centris_listing"
    CENTRIS_RENTAL = "centris_rental"
    GENERIC_LISTING = "generic_listing"
    FACEBOOK_RENTAL = "facebook_rental"
    EVALUATION_ROLL = "evaluation_roll"
    COMPANY_REGISTRY = "company_registry"

    ALL = (
        CENTRIS_LISTING,
        CENTRIS_RENTAL,
        GENERIC_LISTING,
        FACEBOOK_RENTAL,
        EVALUATION_ROLL,
        COMPANY_REGISTRY,
    )


LISTING_ID_PATTERN = re.compile(r"/(\d+)(?:\?|$)")
MATRICULE_SEGMENTS = 6
NEQ_PATTERN = re.compile(r"^\d{10}$")


def staging_key(source_type: str, source_native_id: str) -> str:
    """Object-storage key for a source item: {source_type}/{source_native_id}."""
    if not source_native_id:
        raise IdentityMissing(f"Cannot build staging key without a native id for {source_type}")
    return f"{source_type}/{source_native_id}"


def listing_id_from_url(url: str) -> Optional[str]:
    """Numeric id at the end of a listing URL path, or None."""
    if not url:
        return None
    match = LISTING_ID_PATTERN.search(url)
    return match.group(1) if match else None


def require_listing_id(url: str) -> str:
    listing_id = listing_id_from_url(url)
    if not listing_id:
        raise IdentityMissing(f"Could not extract listing id from URL: {url}")
    return listing_id


def split_matricule(matricule: str) -> List[str]:
    """
    Split a matricule into its six numeric segments.

    Raises IdentityMissing when the value does not have exactly six
    non-empty numeric segments.
    """
    parts = [part.strip() for part in (matricule or "").strip().split("-")]
    if len(parts) != MATRICULE_SEGMENTS or not all(p.isdigit() for p in parts):
        raise IdentityMissing(
            f"Invalid matricule format: {matricule!r} "
            f"(expected {MATRICULE_SEGMENTS} dash-separated numeric segments)"
        )
    return parts


def normalize_matricule(matricule: str) -> str:
    return "-".join(split_matricule(matricule))


def normalize_neq(neq: str) -> str:
    """Strip separators from a registry number and check it has 10 digits."""
    cleaned = re.sub(r"[\s-]", "", neq or "")
    if not NEQ_PATTERN.match(cleaned):
        raise IdentityMissing(f"Invalid registry number (NEQ): {neq!r}")
    return cleaned


def url_native_id(url: str) -> str:
    """
    Stable id for sources without one: first 16 hex chars of the SHA256 of
    the URL without query string or fragment.
    """
    if not url:
        raise IdentityMissing("Source URL is required")
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        raise IdentityMissing(f"Not an absolute URL: {url}")
    canonical = urlunparse((
        parsed.scheme.lower(), parsed.netloc.lower(), parsed.path.rstrip("/"), "", "", ""
    ))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
