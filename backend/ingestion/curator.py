"""
Curator - Raw payload -> curated fields + warnings + errors.

Every curator is a pure function of the staged payload: the same raw bytes
always curate to the same fields, warnings and errors.

Rules:
- A field that is present but cannot be parsed is left null and reported
  once as "Could not parse <field> from: <raw>"; curation still succeeds.
- A missing native id (or source URL for listing sources) raises
  IdentityMissing; nothing downstream runs.
- Errors (e.g. a required title) are recorded on the result; the pipeline
  refuses to persist a result that has errors.

Curators per source type:
- centris_listing / generic_listing: sale listings
- centris_rental: rentals in the Centris-native shape (characteristics map)
- facebook_rental: console-captured Marketplace rentals
- evaluation_roll: municipal evaluation page
- company_registry: registry profile with shareholders / administrators
"""
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ingestion.errors import FieldParseWarning, IdentityMissing
from scrapers.identity import SourceType, normalize_matricule, normalize_neq
from scrapers.strategies import (
    clean_text,
    is_empty,
    parse_area_sqft,
    parse_decimal,
    parse_int,
    parse_number,
    parse_price,
    parse_year,
    unique,
)
from scrapers.utils.hashing import compute_json_hash

DEFAULT_CURRENCY = "CAD"
POSTAL_CODE_PATTERN = re.compile(r"[A-Z]\d[A-Z]\s*\d[A-Z]\d", re.IGNORECASE)


@dataclass
class CuratedResult:
    """Normalized fields for one source item plus everything that went wrong."""
    source_type: str
    source_native_id: str
    source_url: Optional[str]
    fields: Dict[str, Any]
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def fields_hash(self) -> str:
        return compute_json_hash(self.fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_type": self.source_type,
            "source_native_id": self.source_native_id,
            "source_url": self.source_url,
            "fields": self.fields,
            "warnings": self.warnings,
            "errors": self.errors,
        }


class FieldReader:
    """Applies Optional-returning parsers and collects parse warnings."""

    def __init__(self):
        self.warnings: List[str] = []
        self.errors: List[str] = []

    def parse(self, field_name: str, raw: Any, parser: Callable[[Any], Any]) -> Any:
        if is_empty(raw):
            return None
        value = parser(raw)
        if value is None:
            self.warnings.append(FieldParseWarning(field_name, str(raw)).message)
        return value

    def text(self, raw: Any) -> Optional[str]:
        if is_empty(raw):
            return None
        return clean_text(str(raw))


def _require(value: Any, message: str, natural_key: Optional[str] = None) -> str:
    if is_empty(value):
        raise IdentityMissing(message, natural_key)
    return str(value).strip()


def _amount(value: Any) -> Optional[float]:
    """Financial figures are already numeric in the extractor output."""
    if value is None:
        return None
    return parse_price(value)


# =============================================================================
# Sale listings (centris_listing, generic_listing)
# =============================================================================

def curate_sale_listing(source_type: str, source_native_id: str, raw: Dict[str, Any]) -> CuratedResult:
    source_url = _require(raw.get("source_url"), "Source URL is required", source_native_id)
    reader = FieldReader()

    units_detail = raw.get("unit_details") or []
    fields = {
        "listing_kind": "sale",
        "source_url": source_url,
        "title": reader.text(raw.get("title")),
        "property_type": reader.text(raw.get("property_type")),
        "description": reader.text(raw.get("description")),
        "mls_number": reader.text(raw.get("mls_number")),
        "address": reader.text(raw.get("address")),
        "city": reader.text(raw.get("city")),
        "postal_code": reader.text(raw.get("postal_code")),
        "price": reader.parse("price", raw.get("price"), parse_price),
        "price_currency": DEFAULT_CURRENCY,
        "price_display": reader.text(raw.get("price")),
        "bedrooms": reader.parse("bedrooms", raw.get("bedrooms"), parse_int),
        "bathrooms": reader.parse("bathrooms", raw.get("bathrooms"), parse_decimal),
        "square_footage": reader.parse("square footage", raw.get("living_area"), parse_area_sqft),
        "lot_size": reader.parse("lot size", raw.get("lot_dimensions"), parse_area_sqft),
        "year_built": reader.parse("year of construction", raw.get("year_built"), parse_year),
        "units": reader.parse("units", raw.get("units"), parse_int),
        "unit_breakdown": units_detail or None,
        "potential_revenue": _amount(raw.get("potential_revenue")),
        "municipal_assessment": _amount(raw.get("municipal_assessment")),
        "assessment_land": _amount(raw.get("assessment_land")),
        "assessment_building": _amount(raw.get("assessment_building")),
        "taxes_total": _amount(raw.get("taxes")),
        "taxes_municipal": _amount(raw.get("taxes_municipal")),
        "taxes_school": _amount(raw.get("taxes_school")),
        "expenses_total": _amount(raw.get("expenses")),
        "image_urls": unique(raw.get("images") or []),
        "features": list(raw.get("features") or []) or None,
    }

    # Expense breakdown has no column of its own
    breakdown = {
        key: _amount(raw.get(key))
        for key in ("expense_electricity", "expense_heating")
        if raw.get(key) is not None
    }
    if breakdown:
        fields["expense_breakdown"] = breakdown

    return CuratedResult(source_type, source_native_id, source_url, fields, reader.warnings, reader.errors)


# =============================================================================
# Centris rentals
# =============================================================================

def mine_characteristics(
    characteristics: Dict[str, Any], reader: FieldReader
) -> Tuple[Optional[int], Optional[int], Optional[int], Dict[str, Any]]:
    """
    Pull area, construction year and parking out of the characteristics map.

    Returns (square_footage, year_built, parking, remaining) where remaining
    holds every other entry verbatim.
    """
    square_footage = None
    year_built = None
    parking = None
    remaining: Dict[str, Any] = {}

    for key, value in (characteristics or {}).items():
        lower = key.lower()
        if "superficie" in lower:
            square_footage = reader.parse("square footage", value, parse_area_sqft)
        elif "année" in lower or "construction" in lower:
            year_built = reader.parse("year of construction", value, parse_year)
        elif "stationnement" in lower:
            # "Garage (1), Allée (2)" and similar counts are not parsed as a
            # field failure; a missing number just leaves parking null
            parking = parse_int(value)
        else:
            remaining[key] = value

    return square_footage, year_built, parking, remaining


def preferred_images(raw: Dict[str, Any]) -> List[str]:
    """One image list, high-res when the payload has it."""
    return unique(raw.get("images_high_res") or raw.get("images") or [])


def curate_centris_rental(source_type: str, source_native_id: str, raw: Dict[str, Any]) -> CuratedResult:
    centris_id = _require(
        raw.get("centris_id") or source_native_id, "Centris id is required", source_native_id
    )
    source_url = _require(raw.get("source_url"), "Source URL is required", centris_id)
    reader = FieldReader()

    square_footage, year_built, parking, remaining = mine_characteristics(
        raw.get("characteristics") or {}, reader
    )
    brokers = raw.get("brokers") or []
    broker = brokers[0] if brokers and isinstance(brokers[0], dict) else {}

    fields = {
        "listing_kind": "rent",
        "source_url": source_url,
        "title": reader.text(raw.get("property_type")),
        "property_type": reader.text(raw.get("property_type")),
        "description": reader.text(raw.get("description")),
        "address": reader.text(raw.get("address")),
        "latitude": parse_number(raw.get("latitude")),
        "longitude": parse_number(raw.get("longitude")),
        "price": reader.parse("price", raw.get("price"), parse_price),
        "price_currency": raw.get("price_currency") or DEFAULT_CURRENCY,
        "price_display": reader.text(raw.get("price_display")),
        "rooms": reader.parse("rooms", raw.get("rooms"), parse_int),
        "bedrooms": reader.parse("bedrooms", raw.get("bedrooms"), parse_int),
        "bathrooms": reader.parse("bathrooms", raw.get("bathrooms"), parse_decimal),
        "square_footage": square_footage,
        "year_built": year_built,
        "parking": parking,
        "characteristics": remaining or None,
        "image_urls": preferred_images(raw),
        "broker_name": reader.text(broker.get("name")),
        "broker_url": reader.text(broker.get("website")),
        "walk_score": parse_int(raw.get("walk_score")),
    }

    # Negative longitudes can come through as text with a unicode minus
    if fields["longitude"] is not None and str(raw.get("longitude")).strip().startswith(("-", "−")):
        fields["longitude"] = -abs(fields["longitude"])
    if fields["latitude"] is not None and str(raw.get("latitude")).strip().startswith(("-", "−")):
        fields["latitude"] = -abs(fields["latitude"])

    return CuratedResult(source_type, centris_id, source_url, fields, reader.warnings, reader.errors)


# =============================================================================
# Facebook Marketplace rentals
# =============================================================================

UNIT_TYPES = ("apartment", "house", "condo", "townhouse", "studio", "loft")
PET_POLICIES = ("cat friendly", "dog friendly", "cats ok", "dogs ok", "pet friendly")

_BEDS_PATTERN = re.compile(r"(\d+)\s*beds?\b")
_BATHS_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*baths?\b")
_SQFT_PATTERN = re.compile(r"(\d+(?:,\d+)?)\s*(?:square\s*feet|sq\.?\s*ft\.?)")
_RENT_PATTERN = re.compile(r"[\d,]+")


def parse_rent(text: Any) -> Optional[float]:
    """"CA$2,175 / Month" -> 2175.0"""
    if text is None:
        return None
    match = _RENT_PATTERN.search(str(text))
    if not match:
        return None
    digits = match.group(0).replace(",", "")
    if not digits:
        return None
    return float(digits)


def parse_unit_details(details: List[str]) -> Dict[str, Any]:
    """
    Split Marketplace unit details.

    Bedroom / bathroom / area counts are read from any entry; the remaining
    entries become the unit type (first known type), pet policy flags or
    amenities.
    """
    bedrooms = None
    bathrooms = None
    square_footage = None
    unit_type = None
    pet_policy: List[str] = []
    amenities: List[str] = []

    for detail in details:
        lower = detail.lower()

        beds = _BEDS_PATTERN.search(lower)
        if beds and bedrooms is None:
            bedrooms = int(beds.group(1))
        baths = _BATHS_PATTERN.search(lower)
        if baths and bathrooms is None:
            bathrooms = float(baths.group(1))
        area = _SQFT_PATTERN.search(lower)
        if area and square_footage is None:
            square_footage = int(area.group(1).replace(",", ""))

        matched_type = next((t for t in UNIT_TYPES if t in lower), None)
        if matched_type and not unit_type:
            unit_type = matched_type
            continue

        if any(policy in lower for policy in PET_POLICIES):
            if "cat" in lower:
                pet_policy.append("cat_friendly")
            if "dog" in lower:
                pet_policy.append("dog_friendly")
            continue

        if "bed" in lower or "bath" in lower:
            continue

        amenities.append(detail)

    return {
        "bedrooms": bedrooms,
        "bathrooms": bathrooms,
        "square_footage": square_footage,
        "unit_type": unit_type,
        "pet_policy": unique(pet_policy),
        "amenities": amenities,
    }


def parse_rental_location(location: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """"Montréal, QC, H2S 2Z5" -> ("Montréal", "H2S 2Z5")"""
    if not location:
        return None, None
    parts = [part.strip() for part in location.split(",")]
    match = POSTAL_CODE_PATTERN.search(parts[-1]) if parts else None
    postal_code = match.group(0).upper() if match else None
    return parts[0] or None, postal_code


def curate_facebook_rental(source_type: str, source_native_id: str, raw: Dict[str, Any]) -> CuratedResult:
    facebook_id = _require(
        raw.get("facebook_id") or source_native_id, "Facebook id is required", source_native_id
    )
    source_url = _require(raw.get("source_url"), "Source URL is required", facebook_id)
    data = raw.get("raw_data") or {}
    reader = FieldReader()

    title = reader.text(data.get("title"))
    if not title:
        reader.errors.append("Title is required")

    price = reader.parse("price", data.get("price"), parse_rent)

    details = [str(d) for d in data.get("unitDetails") or []]
    unit = parse_unit_details(details)
    city, postal_code = parse_rental_location(data.get("rentalLocation"))
    seller = data.get("sellerInfo") or {}
    media = data.get("media") or {}

    fields = {
        "listing_kind": "rent",
        "source_url": source_url,
        "title": title,
        "description": reader.text(data.get("description")),
        "address": reader.text(data.get("address")),
        "city": city,
        "postal_code": postal_code,
        "price": price,
        "price_currency": DEFAULT_CURRENCY,
        "price_display": reader.text(data.get("price")),
        "bedrooms": unit["bedrooms"],
        "bathrooms": unit["bathrooms"],
        "square_footage": unit["square_footage"],
        "property_type": unit["unit_type"],
        "image_urls": unique(media.get("images") or []),
        "features": unit["amenities"] or None,
        "broker_name": reader.text(seller.get("name")),
        "broker_url": reader.text(seller.get("profileUrl")),
        # Columnless fields end up in the listing's extras
        "rental_location": reader.text(data.get("rentalLocation")),
        "pet_policy": unit["pet_policy"],
        "unit_details_raw": details,
        "building_details": list(data.get("buildingDetails") or []),
        "video_urls": list(media.get("videos") or []),
        "extracted_date": raw.get("extracted_date"),
        "scraper_version": raw.get("scraper_version"),
    }

    return CuratedResult(source_type, facebook_id, source_url, fields, reader.warnings, reader.errors)


# =============================================================================
# Municipal evaluation
# =============================================================================

def curate_evaluation(source_type: str, source_native_id: str, raw: Dict[str, Any]) -> CuratedResult:
    matricule = normalize_matricule(
        _require(raw.get("matricule") or source_native_id, "Matricule is required")
    )
    reader = FieldReader()

    identification = raw.get("identification") or {}
    owner = raw.get("owner") or {}
    land = raw.get("land") or {}
    building = raw.get("building") or {}
    valuation = raw.get("valuation") or {}
    current = valuation.get("current") or {}
    previous = valuation.get("previous") or {}
    fiscal = raw.get("fiscal") or {}
    metadata = raw.get("metadata") or {}

    fields = {
        "source_url": reader.text(raw.get("source_url")),
        "address": reader.text(identification.get("address")),
        "arrondissement": reader.text(identification.get("arrondissement")),
        "lot_exclusif": reader.text(identification.get("lot_exclusif")),
        "lot_commun": reader.text(identification.get("lot_commun")),
        "usage_predominant": reader.text(identification.get("usage_predominant")),
        "numero_unite_voisinage": reader.text(identification.get("numero_unite_voisinage")),
        "numero_compte_foncier": reader.text(identification.get("numero_compte_foncier")),
        "owner_name": reader.text(owner.get("name")),
        "owner_status": reader.text(owner.get("status")),
        "owner_postal_address": reader.text(owner.get("postal_address")),
        "owner_registration_date": reader.text(owner.get("registration_date")),
        "owner_special_conditions": reader.text(owner.get("special_conditions")),
        "land_frontage": reader.parse("land frontage", land.get("frontage"), parse_number),
        "land_area": reader.parse("land area", land.get("area"), parse_number),
        "building_floors": reader.parse("floors", building.get("floors"), parse_int),
        "building_year": reader.parse("year of construction", building.get("year"), parse_year),
        "building_floor_area": reader.parse("floor area", building.get("floor_area"), parse_number),
        "building_construction_type": reader.text(building.get("construction_type")),
        "building_physical_link": reader.text(building.get("physical_link")),
        "building_units": reader.parse("units", building.get("units"), parse_int),
        "building_non_residential_spaces": reader.parse(
            "non-residential spaces", building.get("non_residential_spaces"), parse_int
        ),
        "building_rental_rooms": reader.parse("rental rooms", building.get("rental_rooms"), parse_int),
        "current_market_date": reader.text(current.get("market_date")),
        "current_land_value": reader.parse("land value", current.get("land_value"), parse_number),
        "current_building_value": reader.parse(
            "building value", current.get("building_value"), parse_number
        ),
        "current_total_value": reader.parse("total value", current.get("total_value"), parse_number),
        "previous_market_date": reader.text(previous.get("market_date")),
        "previous_total_value": reader.parse(
            "previous total value", previous.get("total_value"), parse_number
        ),
        "tax_category": reader.text(fiscal.get("tax_category")),
        "taxable_value": reader.parse("taxable value", fiscal.get("taxable_value"), parse_number),
        "non_taxable_value": reader.parse(
            "non-taxable value", fiscal.get("non_taxable_value"), parse_number
        ),
        "roll_period": reader.text(metadata.get("roll_period")),
    }

    return CuratedResult(
        source_type, matricule, fields["source_url"], fields, reader.warnings, reader.errors
    )


# =============================================================================
# Company registry
# =============================================================================

def curate_company(source_type: str, source_native_id: str, raw: Dict[str, Any]) -> CuratedResult:
    neq = normalize_neq(_require(raw.get("neq") or source_native_id, "NEQ is required"))
    reader = FieldReader()

    identification = raw.get("identification") or {}
    activity = raw.get("economic_activity") or {}

    name = reader.text(identification.get("name"))
    if not name:
        reader.errors.append("Company name is required")

    shareholders = []
    for item in raw.get("shareholders") or []:
        shareholder_name = reader.text(item.get("name"))
        if not shareholder_name:
            continue
        shareholders.append({
            "name": shareholder_name,
            "position": item.get("position"),
            "is_majority": bool(item.get("is_majority")),
            "address": reader.text(item.get("address")),
        })

    administrators = []
    for item in raw.get("administrators") or []:
        administrator_name = reader.text(item.get("name"))
        if not administrator_name:
            continue
        administrators.append({
            "name": administrator_name,
            "position_title": reader.text(item.get("position_title")),
            "position_order": item.get("position_order"),
            "domicile_address": reader.text(item.get("domicile_address")),
            "professional_address": reader.text(item.get("professional_address")),
        })

    source_url = reader.text(raw.get("source_url"))
    fields = {
        "company_name": name,
        "company_status": reader.text(identification.get("status")),
        "domicile_address": reader.text(identification.get("domicile_address")),
        "registration_date": reader.text(identification.get("registration_date")),
        "status_date": reader.text(identification.get("status_date")),
        "cae_code": reader.text(activity.get("cae_code")),
        "cae_description": reader.text(activity.get("cae_description")),
        "source_url": source_url,
        "shareholders": shareholders,
        "administrators": administrators,
    }

    return CuratedResult(source_type, neq, source_url, fields, reader.warnings, reader.errors)


# =============================================================================
# Registry
# =============================================================================

CURATORS: Dict[str, Callable[[str, str, Dict[str, Any]], CuratedResult]] = {
    SourceType.CENTRIS_LISTING: curate_sale_listing,
    SourceType.GENERIC_LISTING: curate_sale_listing,
    SourceType.CENTRIS_RENTAL: curate_centris_rental,
    SourceType.FACEBOOK_RENTAL: curate_facebook_rental,
    SourceType.EVALUATION_ROLL: curate_evaluation,
    SourceType.COMPANY_REGISTRY: curate_company,
}


def curate(source_type: str, source_native_id: str, raw: Dict[str, Any]) -> CuratedResult:
    """
    Curate one staged payload.

    Raises:
        IdentityMissing: no native id / source URL, or unknown source type
    """
    curator = CURATORS.get(source_type)
    if curator is None:
        raise IdentityMissing(f"No curator for source type {source_type}", source_native_id)
    if not isinstance(raw, dict):
        raise IdentityMissing("Raw payload must be an object", source_native_id)
    return curator(source_type, source_native_id, raw)
