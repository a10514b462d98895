"""
Generic listing extractor - default for any URL no other extractor claims.

Relies on common markup conventions (schema.org itemprops, Open Graph
meta tags, class names containing price / bedroom / address). Sites without
their own id are keyed by a digest of the URL.
"""
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from scrapers.base import BaseExtractor
from scrapers.extractors.centris_listing import infer_property_type
from scrapers.identity import SourceType, url_native_id
from scrapers.strategies import (
    always,
    attr_chain,
    body_text,
    clean_text,
    first_match,
    select_attr,
    text_chain,
    unique,
)

POSTAL_CODE_PATTERN = re.compile(r"[A-Z]\d[A-Z]\s?\d[A-Z]\d", re.IGNORECASE)
UNTITLED = "Untitled Property"
MAX_IMAGES = 20


def _postal_code_in_body(soup) -> Optional[str]:
    match = POSTAL_CODE_PATTERN.search(body_text(soup))
    return match.group(0).upper() if match else None


class GenericExtractor(BaseExtractor):
    SOURCE_TYPE = SourceType.GENERIC_LISTING
    URL_PATTERN = re.compile(r".*")
    LANG = "en"

    TITLE_CHAIN = attr_chain(
        ('meta[property="og:title"]', "content"), ('meta[name="title"]', "content"),
    ) + text_chain("h1", "title") + [
        (always, lambda soup: UNTITLED),
    ]
    ADDRESS_CHAIN = text_chain('[itemprop="streetAddress"]', '[class*="address"]', '[id*="address"]')
    CITY_CHAIN = text_chain('[itemprop="addressLocality"]', '[class*="city"]')
    POSTAL_CODE_CHAIN = text_chain('[itemprop="postalCode"]') + [(always, _postal_code_in_body)]
    PRICE_CHAIN = attr_chain(('[itemprop="price"]', "content")) + text_chain(
        '[itemprop="price"]', '[class*="price"]',
    ) + attr_chain(('meta[property="product:price:amount"]', "content"))
    BEDROOMS_CHAIN = text_chain('[class*="bedroom"]', '[class*="bed"]')
    BATHROOMS_CHAIN = text_chain('[class*="bathroom"]', '[class*="bath"]')
    AREA_CHAIN = text_chain('[class*="sqft"]', '[class*="area"]', '[class*="size"]')
    LOT_CHAIN = text_chain('[class*="lot"]')
    YEAR_CHAIN = text_chain('[class*="year"]')
    TYPE_CHAIN = text_chain('[class*="property-type"]', '[class*="type"]')
    MLS_CHAIN = text_chain('[class*="mls"]', '[class*="listing-id"]')
    DESCRIPTION_CHAIN = text_chain('[itemprop="description"]') + attr_chain(
        ('meta[property="og:description"]', "content"), ('meta[name="description"]', "content"),
    ) + text_chain('[class*="description"]')

    def native_id(self, url: str) -> str:
        return url_native_id(url)

    def parse(self, soup: BeautifulSoup, url: str, html: str) -> Dict[str, Any]:
        title = first_match(self.TITLE_CHAIN, soup)
        mls_text = first_match(self.MLS_CHAIN, soup)
        mls_match = re.search(r"\d+", mls_text or "")
        return {
            "source_url": url,
            "title": title,
            "address": first_match(self.ADDRESS_CHAIN, soup),
            "city": first_match(self.CITY_CHAIN, soup),
            "postal_code": first_match(self.POSTAL_CODE_CHAIN, soup),
            "price": first_match(self.PRICE_CHAIN, soup),
            "bedrooms": first_match(self.BEDROOMS_CHAIN, soup),
            "bathrooms": first_match(self.BATHROOMS_CHAIN, soup),
            "living_area": first_match(self.AREA_CHAIN, soup),
            "lot_dimensions": first_match(self.LOT_CHAIN, soup),
            "year_built": first_match(self.YEAR_CHAIN, soup),
            "property_type": infer_property_type(first_match(self.TYPE_CHAIN, soup) or title),
            "mls_number": mls_match.group(0) if mls_match else None,
            "description": first_match(self.DESCRIPTION_CHAIN, soup),
            "features": self._features(soup),
            "images": self._images(soup),
        }

    def _features(self, soup) -> List[str]:
        return unique(
            clean_text(li.get_text(" "))
            for li in soup.select('[class*="feature"] li, [class*="amenit"] li')
        )

    def _images(self, soup) -> List[str]:
        images = []
        og_image = select_attr(soup, 'meta[property="og:image"]', "content")
        if og_image:
            images.append(og_image)
        for img in soup.select('[class*="gallery"] img, [class*="carousel"] img, [class*="slider"] img'):
            src = img.get("src") or img.get("data-src")
            if src and src.startswith("http") and "placeholder" not in src and "logo" not in src:
                images.append(src)
        return unique(images)[:MAX_IMAGES]
