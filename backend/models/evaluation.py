"""
Municipal evaluation models.

Two tables:
- evaluation_units: assessment-roll rows bulk loaded from the open-data CSV
  (natural key: id_uev)
- evaluation_details: full evaluation page scraped by matricule through the
  browser navigator (natural key: matricule)

Coordinates on evaluation_units are filled by a separate geocoding job and
are only read here (zone selection).
"""
from datetime import datetime

from models.database import db


def _num(value):
    return float(value) if value is not None else None


class EvaluationUnit(db.Model):
    __tablename__ = 'evaluation_units'

    id = db.Column(db.Integer, primary_key=True)
    id_uev = db.Column(db.Integer, unique=True, nullable=False)
    matricule83 = db.Column(db.String(30), nullable=False, index=True)

    # Address parts
    civique_debut = db.Column(db.Integer)
    civique_fin = db.Column(db.Integer)
    lettre_debut = db.Column(db.String(5))
    lettre_fin = db.Column(db.String(5))
    nom_rue = db.Column(db.String(255), nullable=False)
    suite_debut = db.Column(db.String(20))
    municipalite = db.Column(db.String(10))
    no_arrond_ile_cum = db.Column(db.String(10))

    # Building
    etage_hors_sol = db.Column(db.Integer)
    nombre_logement = db.Column(db.Integer, index=True)
    annee_construction = db.Column(db.Integer)
    code_utilisation = db.Column(db.Integer)
    libelle_utilisation = db.Column(db.String(255), nullable=False)
    categorie_uef = db.Column(db.String(50), nullable=False)
    superficie_terrain = db.Column(db.Integer)
    superficie_batiment = db.Column(db.Integer)

    # Geocoding (filled elsewhere)
    latitude = db.Column(db.Numeric(10, 7))
    longitude = db.Column(db.Numeric(10, 7))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_evaluation_units_coords', 'latitude', 'longitude'),
    )

    @property
    def clean_address(self):
        number = str(self.civique_debut) if self.civique_debut is not None else ''
        if self.civique_fin and self.civique_fin != self.civique_debut:
            number = f"{number}-{self.civique_fin}"
        return f"{number} {self.nom_rue}".strip()

    def to_dict(self):
        return {
            'id': self.id,
            'id_uev': self.id_uev,
            'matricule83': self.matricule83,
            'civique_debut': self.civique_debut,
            'civique_fin': self.civique_fin,
            'lettre_debut': self.lettre_debut,
            'lettre_fin': self.lettre_fin,
            'nom_rue': self.nom_rue,
            'suite_debut': self.suite_debut,
            'municipalite': self.municipalite,
            'no_arrond_ile_cum': self.no_arrond_ile_cum,
            'etage_hors_sol': self.etage_hors_sol,
            'nombre_logement': self.nombre_logement,
            'annee_construction': self.annee_construction,
            'code_utilisation': self.code_utilisation,
            'libelle_utilisation': self.libelle_utilisation,
            'categorie_uef': self.categorie_uef,
            'superficie_terrain': self.superficie_terrain,
            'superficie_batiment': self.superficie_batiment,
            'clean_address': self.clean_address,
            'latitude': _num(self.latitude),
            'longitude': _num(self.longitude),
        }

    def __repr__(self):
        return f"<EvaluationUnit {self.id_uev} {self.matricule83}>"


class EvaluationDetail(db.Model):
    __tablename__ = 'evaluation_details'

    id = db.Column(db.Integer, primary_key=True)
    matricule = db.Column(db.String(30), unique=True, nullable=False)
    source_url = db.Column(db.Text)

    # Identification
    address = db.Column(db.Text)
    arrondissement = db.Column(db.String(255))
    lot_exclusif = db.Column(db.String(100))
    lot_commun = db.Column(db.String(100))
    usage_predominant = db.Column(db.String(255))
    numero_unite_voisinage = db.Column(db.String(50))
    numero_compte_foncier = db.Column(db.String(50))

    # Owner
    owner_name = db.Column(db.Text)
    owner_status = db.Column(db.String(100))
    owner_postal_address = db.Column(db.Text)
    owner_registration_date = db.Column(db.String(50))
    owner_special_conditions = db.Column(db.Text)

    # Land
    land_frontage = db.Column(db.Numeric(12, 2))
    land_area = db.Column(db.Numeric(14, 2))

    # Building
    building_floors = db.Column(db.Integer)
    building_year = db.Column(db.Integer)
    building_floor_area = db.Column(db.Numeric(14, 2))
    building_construction_type = db.Column(db.String(100))
    building_physical_link = db.Column(db.String(100))
    building_units = db.Column(db.Integer)
    building_non_residential_spaces = db.Column(db.Integer)
    building_rental_rooms = db.Column(db.Integer)

    # Valuation
    current_market_date = db.Column(db.String(50))
    current_land_value = db.Column(db.Numeric(14, 2))
    current_building_value = db.Column(db.Numeric(14, 2))
    current_total_value = db.Column(db.Numeric(14, 2))
    previous_market_date = db.Column(db.String(50))
    previous_total_value = db.Column(db.Numeric(14, 2))

    # Fiscal
    tax_category = db.Column(db.String(255))
    taxable_value = db.Column(db.Numeric(14, 2))
    non_taxable_value = db.Column(db.Numeric(14, 2))

    roll_period = db.Column(db.String(20))
    scraped_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    COLUMN_FIELDS = (
        'source_url', 'address', 'arrondissement', 'lot_exclusif', 'lot_commun',
        'usage_predominant', 'numero_unite_voisinage', 'numero_compte_foncier',
        'owner_name', 'owner_status', 'owner_postal_address',
        'owner_registration_date', 'owner_special_conditions', 'land_frontage',
        'land_area', 'building_floors', 'building_year', 'building_floor_area',
        'building_construction_type', 'building_physical_link', 'building_units',
        'building_non_residential_spaces', 'building_rental_rooms',
        'current_market_date', 'current_land_value', 'current_building_value',
        'current_total_value', 'previous_market_date', 'previous_total_value',
        'tax_category', 'taxable_value', 'non_taxable_value', 'roll_period',
    )

    @classmethod
    def natural_key(cls, source_type, source_native_id, fields):
        return {'matricule': source_native_id}

    def apply_curated(self, fields):
        for name in self.COLUMN_FIELDS:
            if name in fields:
                setattr(self, name, fields[name])
        self.scraped_at = datetime.utcnow()

    def to_dict(self):
        result = {'id': self.id, 'matricule': self.matricule}
        for name in self.COLUMN_FIELDS:
            value = getattr(self, name)
            if name in ('land_frontage', 'land_area', 'building_floor_area',
                        'current_land_value', 'current_building_value',
                        'current_total_value', 'previous_total_value',
                        'taxable_value', 'non_taxable_value'):
                value = _num(value)
            result[name] = value
        result['scraped_at'] = self.scraped_at.isoformat() if self.scraped_at else None
        return result

    def __repr__(self):
        return f"<EvaluationDetail {self.matricule}>"
