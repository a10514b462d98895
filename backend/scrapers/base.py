"""
Base Extractor - Abstract template for HTTP-fetched listing sources.

Provides common functionality:
- URL matching (capability table entry)
- Rate-limited fetching with rotated headers
- SourceItem construction with the mandatory identity check

Extraction is best effort: optional fields that cannot be found are None in
the payload. Only a missing native id fails the item (IdentityMissing).
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Pattern
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from scrapers.strategies import make_soup
from scrapers.user_agents import get_headers

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_SECONDS = 30


@dataclass
class SourceItem:
    """One fetched source record, before staging."""
    source_type: str
    source_native_id: str
    fetch_url: str
    raw_payload: Dict[str, Any]
    fetched_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_type": self.source_type,
            "source_native_id": self.source_native_id,
            "fetch_url": self.fetch_url,
            "raw_payload": self.raw_payload,
            "fetched_at": self.fetched_at.isoformat(),
        }


class BaseExtractor(ABC):
    """
    Abstract base class for listing extractors.

    Subclasses must implement:
    - native_id(): Source-native id for a URL (raise IdentityMissing if none)
    - parse(): Build the raw payload from the parsed document

    Subclasses should set class attributes:
    - SOURCE_TYPE: Source type stored on the ingestion record
    - SOURCE_DOMAIN: Domain used for rate limiting
    - URL_PATTERN: Regex of URLs this extractor handles
    - LANG: Accept-Language flavour for requests
    """

    # Override in subclass
    SOURCE_TYPE: str = ""
    SOURCE_DOMAIN: str = ""
    URL_PATTERN: Optional[Pattern] = None
    LANG: str = "fr"

    def __init__(self, rate_limiter=None, http_session: Optional[requests.Session] = None):
        """
        Args:
            rate_limiter: Optional ScraperRateLimiter instance
            http_session: Optional requests session (tests inject a fake)
        """
        self.rate_limiter = rate_limiter
        self.http = http_session or requests.Session()

    @classmethod
    def can_handle(cls, url: str) -> bool:
        if cls.URL_PATTERN is None:
            return False
        return bool(re.search(cls.URL_PATTERN, url or ""))

    @abstractmethod
    def native_id(self, url: str) -> str:
        pass

    @abstractmethod
    def parse(self, soup: BeautifulSoup, url: str, html: str) -> Dict[str, Any]:
        pass

    def fetch_page(self, url: str) -> str:
        """
        Fetch a page with rate limiting and rotated headers.

        Raises:
            requests.HTTPError: non-2xx response (403/429/503 classify as
                rate_limited, the rest as network)
            requests.RequestException: connection problems
        """
        domain = self.SOURCE_DOMAIN or urlparse(url).netloc
        if self.rate_limiter:
            self.rate_limiter.wait(domain)

        response = self.http.get(url, timeout=FETCH_TIMEOUT_SECONDS, headers=get_headers(self.LANG))
        response.raise_for_status()
        return response.text

    def scrape(self, url: str) -> SourceItem:
        """Fetch url and extract it. Identity is checked before any request."""
        self.native_id(url)
        html = self.fetch_page(url)
        return self.extract(url, html)

    def extract(self, url: str, html: str) -> SourceItem:
        """Extract a SourceItem from already fetched HTML."""
        native_id = self.native_id(url)
        payload = self.parse(make_soup(html), url, html)
        logger.debug(f"[{native_id}] Extracted {len(payload)} fields from {url}")
        return SourceItem(
            source_type=self.SOURCE_TYPE,
            source_native_id=native_id,
            fetch_url=url,
            raw_payload=payload,
        )

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.SOURCE_TYPE}>"
