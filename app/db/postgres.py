import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# pool_size=5 ready connections, max_overflow=10 extra under load
engine = create_engine(
    settings.postgres_url,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,
    echo=settings.debug
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.
    Usage:
        with get_db_session() as db:
            db.execute(text("SELECT * FROM users"))
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def test_postgres_connection() -> bool:
    """
    Test if PostgreSQL is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        with get_db_session() as db:
            result = db.execute(text("SELECT 1 as test"))
            row = result.fetchone()
            return row[0] == 1
    except Exception as e:
        logger.error("PostgreSQL connection failed: %s", e)
        return False


def rows_to_dicts(result) -> list:
    """Convert a SQLAlchemy result into a list of plain dicts."""
    if not result.returns_rows:
        return []
    columns = result.keys()
    return [dict(zip(columns, row)) for row in result.fetchall()]


def execute_raw_sql(sql: str, params: dict = None) -> list:
    """
    Execute raw SQL and return results as list of dicts.
    Writes with RETURNING are committed on exit.
    """
    with get_db_session() as db:
        result = db.execute(text(sql), params or {})
        return rows_to_dicts(result)
