from unittest.mock import patch

import pytest
from sqlalchemy.exc import ProgrammingError

from app.db import migrations
from app.db.migrations import (
    MigrationIntegrityError, calculate_checksum, get_migration_files, validate_migration_integrity,
    run_migrations, execute_migration, get_migration_status, MIGRATIONS_DIR
)


def test_checksum_is_sha256():
    assert calculate_checksum("SELECT 1;") == calculate_checksum("SELECT 1;")
    assert calculate_checksum("SELECT 1;") != calculate_checksum("SELECT 2;")
    assert len(calculate_checksum("")) == 64


def test_migration_files_sorted_by_name(tmp_path):
    for name in ("010_b.sql", "002_a.sql", "notes.txt"):
        (tmp_path / name).write_text("SELECT 1;", encoding="utf-8")
    assert [p.name for p in get_migration_files(tmp_path)] == ["002_a.sql", "010_b.sql"]


def test_missing_directory_has_no_migrations(tmp_path):
    assert get_migration_files(tmp_path / "missing") == []


def test_shipped_schema_is_found():
    assert "001_initial_schema.sql" in [p.name for p in get_migration_files(MIGRATIONS_DIR)]


def test_integrity_pending_applied_and_modified():
    sql = "CREATE TABLE t (id INT);"
    applied = {"001.sql": {"checksum": calculate_checksum(sql), "executed_at": "2024-01-01"}}

    assert validate_migration_integrity("002.sql", sql, applied) is True
    assert validate_migration_integrity("001.sql", sql, applied) is False
    with pytest.raises(MigrationIntegrityError):
        validate_migration_integrity("001.sql", sql + " -- edited", applied)


def test_run_migrations_applies_only_pending(tmp_path):
    (tmp_path / "001_init.sql").write_text("CREATE TABLE a (id INT);", encoding="utf-8")
    (tmp_path / "002_more.sql").write_text("CREATE TABLE b (id INT);", encoding="utf-8")
    applied = {"001_init.sql": {"checksum": calculate_checksum("CREATE TABLE a (id INT);"),
                                "executed_at": "2024-01-01"}}

    with patch.object(migrations, "ensure_migrations_table"), \
            patch.object(migrations, "get_applied_migrations", return_value=applied), \
            patch.object(migrations, "execute_migration", return_value=3) as execute:
        executed = run_migrations(tmp_path)

    assert executed == ["002_more.sql"]
    execute.assert_called_once_with("002_more.sql", "CREATE TABLE b (id INT);")


def test_run_migrations_stops_on_modified_file(tmp_path):
    (tmp_path / "001_init.sql").write_text("CREATE TABLE a (id BIGINT);", encoding="utf-8")
    applied = {"001_init.sql": {"checksum": calculate_checksum("CREATE TABLE a (id INT);"),
                                "executed_at": "2024-01-01"}}

    with patch.object(migrations, "ensure_migrations_table"), \
            patch.object(migrations, "get_applied_migrations", return_value=applied), \
            patch.object(migrations, "execute_migration") as execute:
        with pytest.raises(MigrationIntegrityError):
            run_migrations(tmp_path)
    execute.assert_not_called()


def test_execute_migration_records_success(fake_db):
    with patch.object(migrations, "get_db_session", return_value=fake_db.context), \
            patch.object(migrations, "execute_raw_sql") as mock_sql:
        execute_migration("001_init.sql", "CREATE TABLE t (id INT);")

    fake_db.session.connection.return_value.exec_driver_sql.assert_called_once_with("CREATE TABLE t (id INT);")
    params = mock_sql.call_args.args[1]
    assert params["filename"] == "001_init.sql"
    assert params["checksum"] == calculate_checksum("CREATE TABLE t (id INT);")
    assert params["success"] is True


def test_failed_migration_is_recorded_then_raised(fake_db):
    error = ProgrammingError("CREATE TABLE", {}, Exception("syntax error"))
    fake_db.session.connection.return_value.exec_driver_sql.side_effect = error

    with patch.object(migrations, "get_db_session", return_value=fake_db.context), \
            patch.object(migrations, "execute_raw_sql") as mock_sql:
        with pytest.raises(ProgrammingError):
            execute_migration("002_broken.sql", "CREATE TABL oops;")

    mock_sql.assert_called_once()
    sql, params = mock_sql.call_args.args
    assert "INSERT INTO schema_migrations" in sql
    assert params["filename"] == "002_broken.sql"
    assert params["success"] is False
    assert params["elapsed"] >= 0


def test_migration_status(tmp_path):
    (tmp_path / "001_a.sql").write_text("SELECT 1;", encoding="utf-8")
    (tmp_path / "002_b.sql").write_text("SELECT 2; -- edited", encoding="utf-8")
    (tmp_path / "003_c.sql").write_text("SELECT 3;", encoding="utf-8")
    applied = {
        "001_a.sql": {"checksum": calculate_checksum("SELECT 1;"), "executed_at": "2024-01-01"},
        "002_b.sql": {"checksum": calculate_checksum("SELECT 2;"), "executed_at": "2024-01-02"},
    }

    with patch.object(migrations, "ensure_migrations_table"), \
            patch.object(migrations, "get_applied_migrations", return_value=applied):
        status = get_migration_status(tmp_path)

    assert status == [
        {"filename": "001_a.sql", "status": "applied", "executed_at": "2024-01-01"},
        {"filename": "002_b.sql", "status": "modified", "executed_at": "2024-01-02"},
        {"filename": "003_c.sql", "status": "pending", "executed_at": None},
    ]
