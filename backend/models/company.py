"""
Company registry models.

A company profile (natural key: NEQ, the 10-digit registry number) owns its
shareholder and administrator rows. Forced refreshes reconcile children by
their position so existing child ids stay stable.
"""
from datetime import datetime

from models.database import db


class Company(db.Model):
    __tablename__ = 'companies'

    id = db.Column(db.Integer, primary_key=True)
    neq = db.Column(db.String(10), unique=True, nullable=False)
    company_name = db.Column(db.String(500), nullable=False)
    company_status = db.Column(db.String(100))
    domicile_address = db.Column(db.Text)
    registration_date = db.Column(db.String(50))
    status_date = db.Column(db.String(50))
    cae_code = db.Column(db.String(20))
    cae_description = db.Column(db.Text)
    source_url = db.Column(db.Text)

    scraped_at = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    shareholders = db.relationship(
        'CompanyShareholder',
        backref='company',
        cascade='all, delete-orphan',
        order_by='CompanyShareholder.position',
    )
    administrators = db.relationship(
        'CompanyAdministrator',
        backref='company',
        cascade='all, delete-orphan',
        order_by='CompanyAdministrator.position_order',
    )

    @classmethod
    def natural_key(cls, source_type, source_native_id, fields):
        return {'neq': source_native_id}

    def apply_curated(self, fields):
        self.company_name = fields.get('company_name') or self.company_name or ''
        self.company_status = fields.get('company_status')
        self.domicile_address = fields.get('domicile_address')
        self.registration_date = fields.get('registration_date')
        self.status_date = fields.get('status_date')
        self.cae_code = fields.get('cae_code')
        self.cae_description = fields.get('cae_description')
        self.source_url = fields.get('source_url')
        self.scraped_at = datetime.utcnow()

        self._sync_children(
            self.shareholders, fields.get('shareholders') or [],
            CompanyShareholder, 'position',
        )
        self._sync_children(
            self.administrators, fields.get('administrators') or [],
            CompanyAdministrator, 'position_order',
        )

    def _sync_children(self, existing_rows, incoming, model, order_attr):
        by_position = {getattr(row, order_attr): row for row in existing_rows}
        seen = set()
        for item in incoming:
            position = item.get(order_attr)
            row = by_position.get(position)
            if row is None:
                row = model()
                existing_rows.append(row)
            row.update_from(item)
            seen.add(position)
        for position, row in by_position.items():
            if position not in seen:
                existing_rows.remove(row)

    def to_dict(self, include_children=True):
        result = {
            'id': self.id,
            'neq': self.neq,
            'company_name': self.company_name,
            'company_status': self.company_status,
            'domicile_address': self.domicile_address,
            'registration_date': self.registration_date,
            'status_date': self.status_date,
            'cae_code': self.cae_code,
            'cae_description': self.cae_description,
            'source_url': self.source_url,
            'scraped_at': self.scraped_at.isoformat() if self.scraped_at else None,
        }
        if include_children:
            result['shareholders'] = [s.to_dict() for s in self.shareholders]
            result['administrators'] = [a.to_dict() for a in self.administrators]
        return result

    def __repr__(self):
        return f"<Company {self.neq} {self.company_name}>"


class CompanyShareholder(db.Model):
    __tablename__ = 'company_shareholders'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True
    )
    shareholder_name = db.Column(db.String(500), nullable=False)
    position = db.Column(db.Integer)  # 1 = Premier actionnaire
    is_majority_shareholder = db.Column(db.Boolean, nullable=False, default=False)
    address = db.Column(db.Text)
    address_publishable = db.Column(db.Boolean, nullable=False, default=True)

    def update_from(self, item):
        self.shareholder_name = item.get('name') or ''
        self.position = item.get('position')
        self.is_majority_shareholder = bool(item.get('is_majority'))
        self.address = item.get('address') or None
        self.address_publishable = bool(item.get('address'))

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.shareholder_name,
            'position': self.position,
            'is_majority': self.is_majority_shareholder,
            'address': self.address,
        }


class CompanyAdministrator(db.Model):
    __tablename__ = 'company_administrators'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True
    )
    administrator_name = db.Column(db.String(500), nullable=False)
    position_title = db.Column(db.String(255))
    position_order = db.Column(db.Integer)
    domicile_address = db.Column(db.Text)
    domicile_address_publishable = db.Column(db.Boolean, nullable=False, default=False)
    professional_address = db.Column(db.Text)
    address_publishable = db.Column(db.Boolean, nullable=False, default=False)

    def update_from(self, item):
        self.administrator_name = item.get('name') or ''
        self.position_title = item.get('position_title') or None
        self.position_order = item.get('position_order')
        self.domicile_address = item.get('domicile_address') or None
        self.domicile_address_publishable = bool(item.get('domicile_address'))
        self.professional_address = item.get('professional_address') or None
        self.address_publishable = bool(item.get('professional_address'))

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.administrator_name,
            'position_title': self.position_title,
            'position_order': self.position_order,
            'domicile_address': self.domicile_address,
            'professional_address': self.professional_address,
        }
