"""
Extractor capability table.

Ordered (predicate, extractor class) entries; the first predicate that
accepts the URL wins and anything unclaimed goes to the generic extractor.
More specific entries come first (rentals before sale listings on the same
domain).
"""
import re
from typing import Callable, List, Tuple, Type
from urllib.parse import urlparse

from scrapers.base import BaseExtractor
from scrapers.extractors.centris_listing import CentrisListingExtractor
from scrapers.extractors.centris_rental import CentrisRentalExtractor
from scrapers.extractors.generic import GenericExtractor

Predicate = Callable[[str], bool]

EXTRACTORS: List[Tuple[Predicate, Type[BaseExtractor]]] = [
    (CentrisRentalExtractor.can_handle, CentrisRentalExtractor),
    (CentrisListingExtractor.can_handle, CentrisListingExtractor),
]

DEFAULT_EXTRACTOR = GenericExtractor

# Known listing portals by hostname; only centris has a dedicated extractor
SOURCE_PATTERNS = (
    ("centris", (r"centris\.ca", r"centris\.com")),
    ("realtor", (r"realtor\.ca",)),
    ("duproprio", (r"duproprio\.com", r"duproprio\.ca")),
    ("remax", (r"remax\.ca", r"remax\.com", r"remax-quebec\.com")),
    ("royallepage", (r"royallepage\.ca", r"royallepage\.com")),
)


def get_extractor_class(url: str) -> Type[BaseExtractor]:
    for predicate, extractor_class in EXTRACTORS:
        if predicate(url):
            return extractor_class
    return DEFAULT_EXTRACTOR


def get_extractor_for_url(url: str, rate_limiter=None, http_session=None) -> BaseExtractor:
    """Instantiate the extractor that handles url."""
    return get_extractor_class(url)(rate_limiter=rate_limiter, http_session=http_session)


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url or "")
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)


def detect_source(url: str) -> str:
    """Portal name for a URL's hostname, or 'unknown'."""
    if not is_valid_url(url):
        return "unknown"
    hostname = urlparse(url).hostname or ""
    for name, patterns in SOURCE_PATTERNS:
        if any(re.search(p, hostname, re.IGNORECASE) for p in patterns):
            return name
    return "unknown"


__all__ = [
    "CentrisListingExtractor",
    "CentrisRentalExtractor",
    "DEFAULT_EXTRACTOR",
    "EXTRACTORS",
    "GenericExtractor",
    "detect_source",
    "get_extractor_class",
    "get_extractor_for_url",
    "is_valid_url",
]
