"""
Database handle shared by every model and the ingestion services.
"""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
