"""
Adapters layer - Persistence on SQLAlchemy.
"""

from .database import create_db_engine, create_schema
from .sql_store import SqlSchedulingStore

__all__ = ["SqlSchedulingStore", "create_db_engine", "create_schema"]
