"""
Models package - SQLAlchemy models
"""
from models.database import db
from models.ingestion_record import IngestionRecord
from models.curated_record import CuratedRecord
from models.listing import Listing
from models.evaluation import EvaluationUnit, EvaluationDetail
from models.company import Company, CompanyShareholder, CompanyAdministrator
from models.scraping_zone import ScrapingZone, ZoneScrapingJob

__all__ = [
    'db',
    'IngestionRecord',
    'CuratedRecord',
    'Listing',
    'EvaluationUnit',
    'EvaluationDetail',
    'Company',
    'CompanyShareholder',
    'CompanyAdministrator',
    'ScrapingZone',
    'ZoneScrapingJob',
]
