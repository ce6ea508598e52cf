# backend/judgefinder/db/__init__.py

"""
Database Module

Contains SQLAlchemy models, Pydantic schemas, and database configuration.
"""

from judgefinder.db.database import Base, engine, SessionLocal, get_db
from judgefinder.db import models, schemas
