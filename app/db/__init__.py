"""
Database module - PostgreSQL connection and schema migrations.
"""
from app.db.postgres import get_db_session, execute_raw_sql, test_postgres_connection

__all__ = [
    "get_db_session",
    "execute_raw_sql",
    "test_postgres_connection"
]
