"""
Centris sale listings (houses, condos, plexes).

Fields are read through strategy chains; values stay as page text where the
curator does the typing (price, rooms, areas, year), while plex financial
totals are scanned out of the financial tables here because finding the
right cell needs the number itself.

URL: https://www.centris.ca/fr/triplex~a-vendre~montreal/12345678
Native id: trailing numeric id of the URL.
"""
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from scrapers.base import BaseExtractor
from scrapers.identity import SourceType, require_listing_id
from scrapers.strategies import (
    always,
    attr_chain,
    body_regex,
    body_text,
    clean_text,
    first_match,
    html_regex_amount,
    labeled_row_value,
    parse_price,
    select_attr,
    select_text,
    text_chain,
    unique,
)

FINANCIAL_ROWS = ".financial-details-table-yearly tr, .financial-details-table tr"
YEARLY_ROWS = ".financial-details-table-yearly tr"
VALUE_CELLS = "td.text-right, td:last-child"
TOTAL_CELLS = ".financial-details-table-total td.text-right, tfoot td.text-right"

ADDRESS_PATTERN = re.compile(
    r"(\d{1,5}\s+(?:rue|avenue|av\.|boul\.|boulevard|chemin|ch\.|place|pl\.)\s+[A-Za-zÀ-ÿ\-\s]+?)"
    r"(?:,|\s+Montréal|\s+Montreal|\s+H\d)",
    re.IGNORECASE,
)
TYPE_IN_BODY_PATTERN = re.compile(
    r"(multifamilial|duplex|triplex|quadruplex|quintuplex|maison|condo)", re.IGNORECASE
)
UNITS_IN_BODY_PATTERN = re.compile(r"(\d+)\s*(?:logements?|units?|appartements?)", re.IGNORECASE)
UNIT_BREAKDOWN_PATTERN = re.compile(r"(\d+\s*x\s*\d+½?|\d+½)", re.IGNORECASE)
REVENUE_PATTERN = re.compile(
    r"(?:revenus?\s*(?:potentiels?|annuels?)?|potential\s*(?:revenue|income))\s*:?\s*\$?\s*([\d\s,]+)",
    re.IGNORECASE,
)

PLEX_UNITS_BY_NAME = (
    (("duplex", "2-plex"), 2),
    (("triplex", "3-plex"), 3),
    (("quadruplex", "4-plex"), 4),
    (("quintuplex", "5-plex"), 5),
)

DEFAULT_CITY = "Montreal"


def infer_property_type(text: Optional[str]) -> Optional[str]:
    """Map free text onto a coarse property type, or None."""
    if not text:
        return None
    lower = text.lower()
    if any(k in lower for k in ("condo", "appartement", "apartment")):
        return "condo"
    if "triplex" in lower:
        return "triplex"
    if "duplex" in lower:
        return "duplex"
    if any(k in lower for k in ("plex", "multiplex", "revenue")):
        return "plex"
    if any(k in lower for k in ("terrain", "land", "lot")):
        return "land"
    if any(k in lower for k in ("commercial", "bureau", "office")):
        return "commercial"
    if any(k in lower for k in ("maison", "house", "detached", "unifamiliale")):
        return "single_family"
    return None


def _og_title(soup) -> Optional[str]:
    title = select_attr(soup, 'meta[property="og:title"]', "content")
    if title and "centris" not in title.lower():
        return title
    return None


def _headline(soup) -> Optional[str]:
    text = select_text(soup, "h1")
    # Broker names also render in <h1>; they are short or mention "courtier"
    if text and len(text) > 20 and "courtier" not in text.lower():
        return text
    return None


def _table_total(soup, matches) -> Optional[float]:
    for table in soup.select(".financial-details-table, .financial-details-table-yearly"):
        if not matches(table.get_text(" ")):
            continue
        for cell in table.select(TOTAL_CELLS):
            value = parse_price(cell.get_text(" "))
            if value:
                return value
    return None


def _is_assessment_table(text: str) -> bool:
    return bool(re.search(r"[ÉE]valuation\s*municipale", text, re.IGNORECASE))


def _is_tax_table(text: str) -> bool:
    return bool(re.search(r"Taxes", text, re.IGNORECASE)) and bool(
        re.search(r"Municipales|Scolaires", text, re.IGNORECASE)
    )


def _is_expense_table(text: str) -> bool:
    return bool(re.search(r"Mazout|[ÉE]lectricit[ée]", text, re.IGNORECASE)) and not re.search(
        r"Taxes", text, re.IGNORECASE
    )


def financial_value(soup, html: str, label_pattern: str) -> Optional[float]:
    """Row scan of the financial tables, then a label ... amount $ regex over the markup."""
    value = labeled_row_value(soup, label_pattern, FINANCIAL_ROWS, VALUE_CELLS)
    if value:
        return value
    return html_regex_amount(html, label_pattern)


def yearly_value(soup, html: str, label_pattern: str, fallback_pattern: Optional[str] = None) -> Optional[float]:
    """Prefer the yearly table row; fall back to any financial row."""
    value = labeled_row_value(soup, label_pattern, YEARLY_ROWS, VALUE_CELLS)
    if value:
        return value
    return financial_value(soup, html, fallback_pattern or label_pattern)


class CentrisListingExtractor(BaseExtractor):
    SOURCE_TYPE = SourceType.CENTRIS_LISTING
    SOURCE_DOMAIN = "www.centris.ca"
    URL_PATTERN = re.compile(r"centris\.(ca|com)", re.IGNORECASE)

    CITY_CHAIN = text_chain('[itemprop="addressLocality"]', ".address-container .city") + [
        (always, lambda soup: DEFAULT_CITY),
    ]
    ADDRESS_CHAIN = text_chain(
        '[itemprop="streetAddress"]', ".address-container .address", ".listing-address",
    ) + [
        (always, lambda soup: body_regex(soup, ADDRESS_PATTERN)),
    ]
    POSTAL_CODE_CHAIN = text_chain('[itemprop="postalCode"]', ".address-container .postal-code")
    PRICE_CHAIN = attr_chain(('[itemprop="price"]', "content")) + text_chain(
        '[itemprop="price"]', ".price", ".listing-price",
    )
    BEDROOMS_CHAIN = text_chain('[data-label="Bedrooms"]', ".cac", ".bedrooms")
    BATHROOMS_CHAIN = text_chain('[data-label="Bathrooms"]', ".sdb", ".bathrooms")
    AREA_CHAIN = text_chain(
        '[data-label="Living area"]', '[data-label="Superficie habitable"]', ".living-area",
    )
    LOT_CHAIN = text_chain(
        '[data-label="Lot dimensions"]', '[data-label="Dimensions du terrain"]', ".lot-size",
    )
    YEAR_CHAIN = text_chain(
        '[data-label="Year built"]', '[data-label="Année de construction"]', ".year-built",
    )
    TYPE_CHAIN = text_chain(
        '[data-label="Property type"]', '[data-label="Type de propriété"]', ".property-type",
    )
    MLS_CHAIN = text_chain('[data-label="MLS"]', '[data-label="Centris No."]', ".mls-number")
    DESCRIPTION_CHAIN = text_chain(
        '[itemprop="description"]', ".description-text", ".listing-description",
    )
    UNITS_CHAIN = text_chain(
        '[data-label="Number of units"]', '[data-label="Nombre de logements"]',
        '[data-label="Units"]', '[data-label="Logements"]',
    )

    def native_id(self, url: str) -> str:
        return require_listing_id(url)

    def parse(self, soup: BeautifulSoup, url: str, html: str) -> Dict[str, Any]:
        city = first_match(self.CITY_CHAIN, soup)
        title = self._title(soup, city)
        units = self._units(soup, title)

        return {
            "centris_id": self.native_id(url),
            "source_url": url,
            "title": title,
            "address": first_match(self.ADDRESS_CHAIN, soup),
            "city": city,
            "postal_code": first_match(self.POSTAL_CODE_CHAIN, soup),
            "price": first_match(self.PRICE_CHAIN, soup),
            "bedrooms": first_match(self.BEDROOMS_CHAIN, soup),
            "bathrooms": first_match(self.BATHROOMS_CHAIN, soup),
            "living_area": first_match(self.AREA_CHAIN, soup),
            "lot_dimensions": first_match(self.LOT_CHAIN, soup),
            "year_built": first_match(self.YEAR_CHAIN, soup),
            "property_type": infer_property_type(first_match(self.TYPE_CHAIN, soup) or title),
            "mls_number": first_match(self.MLS_CHAIN, soup),
            "description": first_match(self.DESCRIPTION_CHAIN, soup),
            "features": self._features(soup),
            "images": self._images(soup),
            "units": units,
            "unit_details": self._unit_details(soup),
            "potential_revenue": self._potential_revenue(soup),
            "municipal_assessment": self._total(soup, _is_assessment_table, r"(?:évaluation\s*municipale|municipal\s*assessment)"),
            "assessment_land": financial_value(soup, html, r"Terrain"),
            "assessment_building": financial_value(soup, html, r"B[âa]timent"),
            "taxes": self._total(soup, _is_tax_table, r"Taxes"),
            "taxes_municipal": yearly_value(soup, html, r"Municipales"),
            "taxes_school": yearly_value(soup, html, r"Scolaires"),
            "expenses": self._total(soup, _is_expense_table, r"(?:D[ée]penses|Expenses)"),
            "expense_electricity": yearly_value(soup, html, r"[ÉE]lectricit[ée]"),
            "expense_heating": yearly_value(soup, html, r"Mazout|Chauffage|Gaz", r"Mazout|Chauffage"),
        }

    def _title(self, soup, city: Optional[str]) -> str:
        title = _og_title(soup) or _headline(soup)
        if title:
            return title
        match = TYPE_IN_BODY_PATTERN.search(body_text(soup))
        kind = match.group(1) if match else "Property"
        return f"{kind[:1].upper()}{kind[1:]} - {city or DEFAULT_CITY}"

    def _units(self, soup, title: str) -> Optional[str]:
        for value in soup.select(".carac-value, .property-characteristic-value, [class*='characteristic'] span"):
            label = value.find_previous_sibling()
            label_text = label.get_text(" ").lower() if label else ""
            if "logement" in label_text or "unit" in label_text:
                return clean_text(value.get_text(" "))

        text = first_match(self.UNITS_CHAIN, soup)
        if text:
            return text

        lowered = (title or "").lower()
        for names, count in PLEX_UNITS_BY_NAME:
            if any(name in lowered for name in names):
                return str(count)

        match = UNITS_IN_BODY_PATTERN.search(body_text(soup))
        return match.group(1) if match else None

    def _unit_details(self, soup) -> List[str]:
        details = []
        for element in soup.select(".unit-table tr, .units-list li, [class*='unit'] li, .logement-item"):
            text = clean_text(element.get_text(" "))
            if text and (
                "½" in text
                or re.search(r"\d+\s*x\s*\d", text, re.IGNORECASE)
                or re.search(r"\d+\s*pièces?", text, re.IGNORECASE)
            ):
                details.append(text)
        if details:
            return details

        found = UNIT_BREAKDOWN_PATTERN.findall(body_text(soup))
        # Dimensions like "12 x 10" are not unit counts
        return unique(
            p for p in found if "½" in p or re.match(r"^\d+\s*x\s*[3-9]", p)
        )

    def _features(self, soup) -> List[str]:
        return unique(
            clean_text(li.get_text(" "))
            for li in soup.select(".feature-list li, .characteristics li, .amenities li")
        )

    def _images(self, soup) -> List[str]:
        images = []
        for img in soup.select('img[itemprop="image"], .gallery img, .photo-gallery img, .carousel img'):
            src = img.get("src") or img.get("data-src")
            if not src or "placeholder" in src or "logo" in src:
                continue
            if src.startswith("http"):
                images.append(src)
            elif src.startswith("//"):
                images.append(f"https:{src}")

        og_image = select_attr(soup, 'meta[property="og:image"]', "content")
        if og_image and og_image not in images:
            images.insert(0, og_image)
        return unique(images)

    def _potential_revenue(self, soup) -> Optional[float]:
        for element in soup.select(".financial-info, .revenue-info, [class*='financial'], [class*='revenue']"):
            text = element.get_text(" ")
            if re.search(r"revenu|revenue|potentiel", text, re.IGNORECASE):
                value = parse_price(text)
                if value:
                    return value
        match = REVENUE_PATTERN.search(body_text(soup))
        return parse_price(match.group(1)) if match else None

    def _total(self, soup, table_matches, body_label: str) -> Optional[float]:
        value = _table_total(soup, table_matches)
        if value:
            return value
        match = re.search(body_label + r"[^\d]*Total[^\d]*([\d\s,]+)\s*\$", body_text(soup), re.IGNORECASE)
        return parse_price(match.group(1)) if match else None
