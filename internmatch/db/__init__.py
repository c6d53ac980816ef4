"""
Database module - relational store (SQLAlchemy) and MongoDB connections.
"""
from internmatch.db.postgres import get_db_session, init_engine, test_postgres_connection
from internmatch.db.mongodb import get_collection, test_mongo_connection

__all__ = [
    "get_db_session",
    "init_engine",
    "test_postgres_connection",
    "get_collection",
    "test_mongo_connection"
]
