"""
Listing Model - Sale and rental listings promoted from curated records.

Natural key: (source_type, source_native_id). Populated by the persistence
gateway only; raw staging never writes here.

Sources:
- centris_listing: sale listings (incl. plex financials)
- centris_rental / facebook_rental: rental listings
- generic_listing: any other listing URL (best effort)
"""
from datetime import datetime

from models.database import db


def _num(value):
    return float(value) if value is not None else None


class Listing(db.Model):
    __tablename__ = 'listings'

    id = db.Column(db.Integer, primary_key=True)

    # Identity / provenance
    source_type = db.Column(db.String(50), nullable=False, index=True)
    source_native_id = db.Column(db.String(100), nullable=False)
    source_url = db.Column(db.Text, nullable=False)
    listing_kind = db.Column(db.String(10), nullable=False, default='sale')  # 'sale' or 'rent'

    # Description
    title = db.Column(db.Text)
    property_type = db.Column(db.String(100))
    description = db.Column(db.Text)
    mls_number = db.Column(db.String(50))

    # Location
    address = db.Column(db.Text)
    city = db.Column(db.String(100), index=True)
    postal_code = db.Column(db.String(10))
    latitude = db.Column(db.Numeric(10, 7))
    longitude = db.Column(db.Numeric(10, 7))

    # Price
    price = db.Column(db.Numeric(14, 2))
    price_currency = db.Column(db.String(3), default='CAD')
    price_display = db.Column(db.String(100))

    # Size / layout
    rooms = db.Column(db.Integer)
    bedrooms = db.Column(db.Integer)
    bathrooms = db.Column(db.Numeric(4, 1))
    square_footage = db.Column(db.Integer)  # sqft (metric converted)
    lot_size = db.Column(db.Integer)  # sqft
    year_built = db.Column(db.Integer)
    parking = db.Column(db.Integer)
    units = db.Column(db.Integer)
    unit_breakdown = db.Column(db.JSON)

    # Plex financials (yearly)
    potential_revenue = db.Column(db.Numeric(14, 2))
    municipal_assessment = db.Column(db.Numeric(14, 2))
    assessment_land = db.Column(db.Numeric(14, 2))
    assessment_building = db.Column(db.Numeric(14, 2))
    taxes_total = db.Column(db.Numeric(12, 2))
    taxes_municipal = db.Column(db.Numeric(12, 2))
    taxes_school = db.Column(db.Numeric(12, 2))
    expenses_total = db.Column(db.Numeric(12, 2))

    # Media / free-form
    image_urls = db.Column(db.JSON, nullable=False, default=list)
    features = db.Column(db.JSON)
    characteristics = db.Column(db.JSON)  # pass-through characteristics
    broker_name = db.Column(db.String(255))
    broker_url = db.Column(db.Text)
    extras = db.Column(db.JSON)  # source-specific leftovers

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('source_type', 'source_native_id', name='uq_listing_source_item'),
        db.CheckConstraint("listing_kind IN ('sale', 'rent')", name='ck_listing_kind'),
    )

    COLUMN_FIELDS = (
        'source_url', 'listing_kind', 'title', 'property_type', 'description',
        'mls_number', 'address', 'city', 'postal_code', 'latitude', 'longitude',
        'price', 'price_currency', 'price_display', 'rooms', 'bedrooms',
        'bathrooms', 'square_footage', 'lot_size', 'year_built', 'parking',
        'units', 'unit_breakdown', 'potential_revenue', 'municipal_assessment',
        'assessment_land', 'assessment_building', 'taxes_total',
        'taxes_municipal', 'taxes_school', 'expenses_total', 'image_urls',
        'features', 'characteristics', 'broker_name', 'broker_url',
    )

    @classmethod
    def natural_key(cls, source_type, source_native_id, fields):
        return {'source_type': source_type, 'source_native_id': source_native_id}

    def apply_curated(self, fields):
        """Copy curated fields onto columns; anything unmapped lands in extras."""
        extras = {}
        for name, value in fields.items():
            if name in self.COLUMN_FIELDS:
                setattr(self, name, value)
            elif name not in ('source_type', 'source_native_id'):
                extras[name] = value
        if self.image_urls is None:
            self.image_urls = []
        self.extras = extras or None

    def to_dict(self):
        """Convert to dictionary for JSON serialization"""
        return {
            'id': self.id,
            'source_type': self.source_type,
            'source_native_id': self.source_native_id,
            'source_url': self.source_url,
            'listing_kind': self.listing_kind,
            'title': self.title,
            'property_type': self.property_type,
            'description': self.description,
            'mls_number': self.mls_number,
            'address': self.address,
            'city': self.city,
            'postal_code': self.postal_code,
            'latitude': _num(self.latitude),
            'longitude': _num(self.longitude),
            'price': _num(self.price),
            'price_currency': self.price_currency,
            'price_display': self.price_display,
            'rooms': self.rooms,
            'bedrooms': self.bedrooms,
            'bathrooms': _num(self.bathrooms),
            'square_footage': self.square_footage,
            'lot_size': self.lot_size,
            'year_built': self.year_built,
            'parking': self.parking,
            'units': self.units,
            'unit_breakdown': self.unit_breakdown,
            'potential_revenue': _num(self.potential_revenue),
            'municipal_assessment': _num(self.municipal_assessment),
            'assessment_land': _num(self.assessment_land),
            'assessment_building': _num(self.assessment_building),
            'taxes_total': _num(self.taxes_total),
            'taxes_municipal': _num(self.taxes_municipal),
            'taxes_school': _num(self.taxes_school),
            'expenses_total': _num(self.expenses_total),
            'image_urls': self.image_urls or [],
            'features': self.features,
            'characteristics': self.characteristics,
            'broker_name': self.broker_name,
            'broker_url': self.broker_url,
            'extras': self.extras,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Listing {self.source_type}/{self.source_native_id} ({self.listing_kind})>"
