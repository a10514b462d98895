"""
Pydantic schemas for inbound records.

- Paste payloads from the operator paste form / browser console capture.
  Current and legacy field names are both accepted (validation aliases) and
  normalized into the raw shape the HTTP extractors produce.
- EvaluationRow: one row of the assessment-roll CSV for the bulk loader.

Validation failures are reported as IdentityMissing when the native id or
source URL is missing, so a bad paste is rejected before anything is staged.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ingestion.errors import IdentityMissing
from scrapers.extractors.centris_rental import high_res
from scrapers.identity import SourceType, listing_id_from_url


class PastePayload(BaseModel):
    """
    Base model for pasted JSON.

    - Whitespace stripped from strings
    - Both alias and field name accepted
    - Unknown fields kept (legacy flat payloads carry their data as extras)
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
        extra='allow',
    )

    @field_validator('*', mode='before')
    @classmethod
    def ids_as_strings(cls, v, info):
        if info.field_name in ('centris_id', 'facebook_id') and isinstance(v, int):
            return str(v)
        return v

    def legacy(self, name: str, default=None):
        return (self.model_extra or {}).get(name, default)


# =============================================================================
# Centris rentals
# =============================================================================

class CentrisRentalPaste(PastePayload):
    """
    Centris rental capture.

    Current:  {centris_id, source_url, raw_data: {...}}
    Legacy:   {listingId, sourceUrl, propertyType, priceDisplay, coordinates, ...}
    """
    centris_id: str = Field(min_length=1, validation_alias=AliasChoices('centris_id', 'listingId'))
    source_url: str = Field(min_length=1, validation_alias=AliasChoices('source_url', 'sourceUrl'))
    scraped_at: Optional[str] = Field(
        default=None, validation_alias=AliasChoices('scraped_at', 'scrapedAt', 'extracted_at'),
    )
    raw_data: Optional[Dict[str, Any]] = None

    @model_validator(mode='before')
    @classmethod
    def id_from_url(cls, data):
        if not isinstance(data, dict) or data.get('centris_id') or data.get('listingId'):
            return data
        url = data.get('source_url') or data.get('sourceUrl')
        listing_id = listing_id_from_url(url) if isinstance(url, str) else None
        if listing_id:
            data = dict(data, centris_id=listing_id)
        return data

    def to_raw_payload(self) -> Dict[str, Any]:
        """Flatten into the extractor's raw shape."""
        if self.raw_data is not None:
            raw = dict(self.raw_data)
        else:
            coordinates = self.legacy('coordinates') or {}
            raw = {
                'listing_id': self.centris_id,
                'property_type': self.legacy('propertyType'),
                'address': self.legacy('address'),
                'price': self.legacy('price'),
                'price_currency': self.legacy('priceCurrency'),
                'price_display': self.legacy('priceDisplay'),
                'latitude': coordinates.get('latitude'),
                'longitude': coordinates.get('longitude'),
                'rooms': self.legacy('rooms'),
                'bedrooms': self.legacy('bedrooms'),
                'bathrooms': self.legacy('bathrooms'),
                'characteristics': self.legacy('characteristics') or {},
                'description': self.legacy('description'),
                'walk_score': self.legacy('walkScore'),
                'images': self.legacy('images') or [],
                'brokers': self.legacy('brokers') or [],
            }
        images = raw.get('images') or []
        raw.setdefault('images_high_res', [high_res(u) for u in images])
        raw.setdefault('characteristics', {})
        raw.setdefault('brokers', [])
        raw.update({
            'centris_id': self.centris_id,
            'source_url': self.source_url,
            'scraped_at': self.scraped_at or datetime.utcnow().isoformat(),
            'scraper_version': 'console',
        })
        return raw


# =============================================================================
# Facebook Marketplace rentals (paste only)
# =============================================================================

class FacebookRentalPaste(PastePayload):
    """
    Facebook Marketplace capture.

    Current:  {facebook_id, source_url, extracted_date, scraper_version, raw_data}
    Legacy:   flat {id, url, extractedDate, title, price, unitDetails, ...}
    """
    facebook_id: str = Field(min_length=1, validation_alias=AliasChoices('facebook_id', 'id'))
    source_url: str = Field(min_length=1, validation_alias=AliasChoices('source_url', 'url'))
    extracted_date: Optional[str] = Field(
        default=None, validation_alias=AliasChoices('extracted_date', 'extractedDate'),
    )
    scraper_version: str = 'console-v1'
    raw_data: Optional[Dict[str, Any]] = None

    def to_raw_payload(self) -> Dict[str, Any]:
        extracted = self.extracted_date or datetime.utcnow().isoformat()
        if self.raw_data is not None:
            raw_data = dict(self.raw_data)
        else:
            media = self.legacy('media') or {}
            seller = self.legacy('sellerInfo') or {}
            raw_data = {
                'extractedDate': extracted,
                'id': self.facebook_id,
                'url': self.source_url,
                'title': self.legacy('title'),
                'price': self.legacy('price'),
                'address': self.legacy('address') or '',
                'buildingDetails': self.legacy('buildingDetails') or [],
                'unitDetails': self.legacy('unitDetails') or [],
                'rentalLocation': self.legacy('rentalLocation') or '',
                'description': self.legacy('description') or '',
                'sellerInfo': {
                    'name': seller.get('name') or '',
                    'profileUrl': seller.get('profileUrl') or '',
                },
                'media': {
                    'images': media.get('images') or [],
                    'videos': media.get('videos') or [],
                },
            }
        return {
            'facebook_id': self.facebook_id,
            'source_url': self.source_url,
            'extracted_date': extracted,
            'scraper_version': self.scraper_version,
            'raw_data': raw_data,
        }


PASTE_MODELS = {
    SourceType.CENTRIS_RENTAL: (CentrisRentalPaste, 'centris_id'),
    SourceType.FACEBOOK_RENTAL: (FacebookRentalPaste, 'facebook_id'),
}


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = '.'.join(str(p) for p in item.get('loc', ())) or 'payload'
        parts.append(f"{location}: {item.get('msg')}")
    return '; '.join(parts)


def parse_paste(source_type: str, data: Any) -> Tuple[str, Dict[str, Any]]:
    """
    Validate a pasted payload.

    Returns:
        (source_native_id, raw payload in the staged shape)

    Raises:
        IdentityMissing: unsupported source type, or id / source URL missing
    """
    entry = PASTE_MODELS.get(source_type)
    if entry is None:
        raise IdentityMissing(f"Paste import is not supported for {source_type}")
    model_class, id_field = entry
    if not isinstance(data, dict):
        raise IdentityMissing("Pasted JSON must be an object")
    try:
        model = model_class.model_validate(data)
    except ValidationError as e:
        raise IdentityMissing(f"Invalid {source_type} payload: {_describe(e)}")
    return getattr(model, id_field), model.to_raw_payload()


# =============================================================================
# Assessment roll CSV rows
# =============================================================================

EVALUATION_CSV_COLUMNS: List[str] = [
    'ID_UEV', 'MATRICULE83', 'CIVIQUE_DEBUT', 'CIVIQUE_FIN', 'LETTRE_DEBUT',
    'LETTRE_FIN', 'NOM_RUE', 'SUITE_DEBUT', 'MUNICIPALITE', 'NO_ARROND_ILE_CUM',
    'ETAGE_HORS_SOL', 'NOMBRE_LOGEMENT', 'ANNEE_CONSTRUCTION', 'CODE_UTILISATION',
    'LIBELLE_UTILISATION', 'CATEGORIE_UEF', 'SUPERFICIE_TERRAIN', 'SUPERFICIE_BATIMENT',
]

_INT_COLUMNS = (
    'civique_debut', 'civique_fin', 'etage_hors_sol', 'nombre_logement',
    'annee_construction', 'code_utilisation', 'superficie_terrain', 'superficie_batiment',
)
_TEXT_COLUMNS = (
    'lettre_debut', 'lettre_fin', 'suite_debut', 'municipalite', 'no_arrond_ile_cum',
)


class EvaluationRow(BaseModel):
    """One assessment-roll row. Required: id, matricule, street, usage, category."""
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        populate_by_name=True,
        extra='ignore',
    )

    id_uev: int = Field(alias='ID_UEV')
    matricule83: str = Field(min_length=1, alias='MATRICULE83')
    civique_debut: Optional[int] = Field(default=None, alias='CIVIQUE_DEBUT')
    civique_fin: Optional[int] = Field(default=None, alias='CIVIQUE_FIN')
    lettre_debut: Optional[str] = Field(default=None, alias='LETTRE_DEBUT')
    lettre_fin: Optional[str] = Field(default=None, alias='LETTRE_FIN')
    nom_rue: str = Field(min_length=1, alias='NOM_RUE')
    suite_debut: Optional[str] = Field(default=None, alias='SUITE_DEBUT')
    municipalite: Optional[str] = Field(default=None, alias='MUNICIPALITE')
    no_arrond_ile_cum: Optional[str] = Field(default=None, alias='NO_ARROND_ILE_CUM')
    etage_hors_sol: Optional[int] = Field(default=None, alias='ETAGE_HORS_SOL')
    nombre_logement: Optional[int] = Field(default=None, alias='NOMBRE_LOGEMENT')
    annee_construction: Optional[int] = Field(default=None, alias='ANNEE_CONSTRUCTION')
    code_utilisation: Optional[int] = Field(default=None, alias='CODE_UTILISATION')
    libelle_utilisation: str = Field(min_length=1, alias='LIBELLE_UTILISATION')
    categorie_uef: str = Field(min_length=1, alias='CATEGORIE_UEF')
    superficie_terrain: Optional[int] = Field(default=None, alias='SUPERFICIE_TERRAIN')
    superficie_batiment: Optional[int] = Field(default=None, alias='SUPERFICIE_BATIMENT')

    @field_validator(*_INT_COLUMNS, mode='before')
    @classmethod
    def lenient_int(cls, v):
        """Blank or unparseable optional integers become None ("12.0" -> 12)."""
        if v is None:
            return None
        text = str(v).strip()
        if not text:
            return None
        try:
            return int(float(text))
        except (ValueError, OverflowError):
            return None

    @field_validator(*_TEXT_COLUMNS, mode='before')
    @classmethod
    def blank_as_none(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator('id_uev', mode='before')
    @classmethod
    def strict_id(cls, v):
        text = str(v).strip() if v is not None else ''
        if not text:
            raise ValueError('ID_UEV is required')
        try:
            return int(float(text))
        except (ValueError, OverflowError):
            raise ValueError(f'ID_UEV must be a whole number: {text!r}')

    @property
    def natural_key(self) -> int:
        return self.id_uev

    def to_model_fields(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=False)
