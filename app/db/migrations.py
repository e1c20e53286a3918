"""
Schema Migrations

Applies the numbered .sql files in migrations/ in alphabetical order and
records each run in schema_migrations (filename, sha256 checksum,
execution time, success flag).

A file that was applied and then edited is refused: fix forward with a
new migration instead.
"""

import hashlib
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import text

from app.db.postgres import get_db_session, execute_raw_sql

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"
MIGRATIONS_TABLE = "schema_migrations"


class MigrationIntegrityError(Exception):
    """An already applied migration file has changed on disk."""


def calculate_checksum(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def get_migration_files(directory: Optional[Path] = None) -> List[Path]:
    directory = Path(directory or MIGRATIONS_DIR)
    if not directory.exists():
        return []
    return sorted(directory.glob("*.sql"), key=lambda p: p.name)


def ensure_migrations_table() -> None:
    with get_db_session() as db:
        db.execute(text(f"""
            CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                id SERIAL PRIMARY KEY,
                filename TEXT UNIQUE NOT NULL,
                checksum TEXT NOT NULL,
                executed_at TIMESTAMPTZ DEFAULT NOW(),
                execution_time_ms INTEGER,
                success BOOLEAN DEFAULT TRUE
            )
        """))


def get_applied_migrations() -> Dict[str, dict]:
    rows = execute_raw_sql(f"""
        SELECT filename, checksum, executed_at, success
        FROM {MIGRATIONS_TABLE}
        WHERE success = TRUE
        ORDER BY executed_at ASC
    """)
    return {row["filename"]: row for row in rows}


def validate_migration_integrity(filename: str, content: str, applied: Dict[str, dict]) -> bool:
    """
    Returns True when the migration still has to run, False when it was
    already applied unchanged. Raises MigrationIntegrityError on drift.
    """
    previous = applied.get(filename)
    if not previous:
        return True

    current_checksum = calculate_checksum(content)
    if previous["checksum"] != current_checksum:
        raise MigrationIntegrityError(
            f"La migration {filename} a été modifiée après son application "
            f"(attendu {previous['checksum']}, actuel {current_checksum}, "
            f"appliquée le {previous['executed_at']})"
        )
    return False


def _record(filename: str, checksum: str, elapsed_ms: int, success: bool) -> None:
    # Failed attempts are kept for diagnosis; the unique filename lets a retry overwrite them
    execute_raw_sql(f"""
        INSERT INTO {MIGRATIONS_TABLE} (filename, checksum, execution_time_ms, success)
        VALUES (:filename, :checksum, :elapsed, :success)
        ON CONFLICT (filename) DO UPDATE SET
            checksum = EXCLUDED.checksum,
            execution_time_ms = EXCLUDED.execution_time_ms,
            success = EXCLUDED.success,
            executed_at = NOW()
    """, {"filename": filename, "checksum": checksum, "elapsed": elapsed_ms, "success": success})


def execute_migration(filename: str, sql: str) -> int:
    """Run one migration file in its own transaction. Returns elapsed ms."""
    logger.info("Applying migration %s", filename)
    checksum = calculate_checksum(sql)
    start = time.monotonic()

    try:
        with get_db_session() as db:
            # Driver-level execution: SQL files may contain ':' casts
            db.connection().exec_driver_sql(sql)
    except Exception:
        elapsed = int((time.monotonic() - start) * 1000)
        _record(filename, checksum, elapsed, False)
        logger.exception("Migration %s failed", filename)
        raise

    elapsed = int((time.monotonic() - start) * 1000)
    _record(filename, checksum, elapsed, True)
    logger.info("Migration %s applied in %sms", filename, elapsed)
    return elapsed


def run_migrations(directory: Optional[Path] = None) -> List[str]:
    """Apply every pending migration. Returns the filenames applied."""
    ensure_migrations_table()
    applied = get_applied_migrations()
    files = get_migration_files(directory)
    logger.info("%d migration(s) applied, %d file(s) found", len(applied), len(files))

    executed = []
    for path in files:
        sql = path.read_text(encoding="utf-8")
        if validate_migration_integrity(path.name, sql, applied):
            execute_migration(path.name, sql)
            executed.append(path.name)

    if not executed:
        logger.info("Database schema is up to date")
    return executed


def get_migration_status(directory: Optional[Path] = None) -> List[dict]:
    """One entry per migration file: applied, pending or modified."""
    ensure_migrations_table()
    applied = get_applied_migrations()

    status = []
    for path in get_migration_files(directory):
        sql = path.read_text(encoding="utf-8")
        previous = applied.get(path.name)
        if not previous:
            state = "pending"
        elif previous["checksum"] != calculate_checksum(sql):
            state = "modified"
        else:
            state = "applied"
        status.append({
            "filename": path.name,
            "status": state,
            "executed_at": previous["executed_at"] if previous else None
        })
    return status
