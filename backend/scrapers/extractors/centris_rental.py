"""
Centris rental listings (URLs containing ~a-louer~).

Produces the Centris-native raw shape with minimal transformation: values
are kept as page text, the characteristics block is kept as a label -> value
map, and images come in standard and high resolution lists. The same shape
is produced by the browser console capture, so pasted and fetched rentals
curate identically.
"""
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from scrapers.base import BaseExtractor
from scrapers.identity import SourceType, require_listing_id
from scrapers.strategies import (
    attr_chain,
    first_line,
    first_match,
    remove_repeated,
    select_attr,
    select_text,
    text_chain,
    unique,
)

HIGH_RES_SIZE = "w=1024&h=768"
THUMBNAIL_SIZE_PATTERN = re.compile(r"w=\d+&h=\d+")

# Raw html kept with the payload for debugging selector drift
HTML_SNIPPET_LENGTH = 5000


def high_res(url: str) -> str:
    return THUMBNAIL_SIZE_PATTERN.sub(HIGH_RES_SIZE, url)


class CentrisRentalExtractor(BaseExtractor):
    SOURCE_TYPE = SourceType.CENTRIS_RENTAL
    SOURCE_DOMAIN = "www.centris.ca"
    URL_PATTERN = re.compile(r"centris\.ca.*~a-louer~", re.IGNORECASE)

    LISTING_ID_CHAIN = text_chain("#ListingId", "#ListingDisplayId")
    PRICE_CHAIN = attr_chain(('meta[itemprop="price"]', "content"))

    def native_id(self, url: str) -> str:
        return require_listing_id(url)

    def parse(self, soup: BeautifulSoup, url: str, html: str) -> Dict[str, Any]:
        images = self._images(soup)
        return {
            "centris_id": self.native_id(url),
            "source_url": url,
            "listing_id": first_match(self.LISTING_ID_CHAIN, soup),
            "property_type": remove_repeated(select_text(soup, '[data-id="PageTitle"]')),
            "address": self._address(soup),
            "price": first_match(self.PRICE_CHAIN, soup),
            "price_currency": select_attr(soup, 'meta[itemprop="priceCurrency"]', "content"),
            "price_display": select_text(soup, ".price .text-nowrap"),
            "latitude": select_attr(soup, 'meta[itemprop="latitude"]', "content"),
            "longitude": select_attr(soup, 'meta[itemprop="longitude"]', "content"),
            "rooms": select_text(soup, ".teaser .piece"),
            "bedrooms": select_text(soup, ".teaser .cac"),
            "bathrooms": select_text(soup, ".teaser .sdb"),
            "characteristics": self._characteristics(soup),
            "description": select_text(soup, '[itemprop="description"]'),
            "walk_score": select_text(soup, ".walkscore span"),
            "images": images,
            "images_high_res": [high_res(u) for u in images],
            "brokers": self._brokers(soup),
            "html_snippet": (html or "")[:HTML_SNIPPET_LENGTH],
        }

    def _address(self, soup) -> Optional[str]:
        element = soup.select_one('h2[itemprop="address"]')
        if element is None:
            return None
        # The address block repeats itself on a second line
        return first_line(element.get_text("\n"))

    def _characteristics(self, soup) -> Dict[str, str]:
        characteristics = {}
        for container in soup.select(".carac-container"):
            title = select_text(container, ".carac-title")
            value = select_text(container, ".carac-value span")
            if title and value:
                characteristics[title] = value
        return characteristics

    def _images(self, soup) -> List[str]:
        photo_urls = select_attr(soup, "#property-roomvo-data", "data-photo-urls")
        if photo_urls:
            return unique(u.strip() for u in photo_urls.split(","))
        return unique(img.get("src") for img in soup.select(".summary-photos img"))

    def _brokers(self, soup) -> List[Dict[str, Optional[str]]]:
        brokers = []
        for broker in soup.select(".property-summary-item__brokers-content .broker-info"):
            entry = {
                "name": select_text(broker, '[itemprop="name"]'),
                "title": select_text(broker, '[itemprop="jobTitle"]'),
                "phone": select_text(broker, '[itemprop="telephone"]'),
                "agency": select_text(broker, '[itemprop="legalName"]'),
                "photo": select_attr(broker, ".broker-info-broker-image", "src"),
                "website": select_attr(broker, 'a[target="_blank"]', "href"),
            }
            if entry["name"]:
                brokers.append(entry)
        return brokers
