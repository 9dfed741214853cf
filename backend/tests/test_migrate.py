import sqlite3

import migrate
from booking_engine.models import Base


def table_columns(db_path):
    conn = sqlite3.connect(db_path)
    try:
        tables = [r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")]
        return {t: {r[1] for r in conn.execute(f"PRAGMA table_info({t})")} for t in tables}
    finally:
        conn.close()


def test_initial_schema_matches_models(tmp_path):
    db_path = str(tmp_path / "booking.db")

    assert migrate.apply_migrations(db_path) == ["001_initial.sql"]

    columns = table_columns(db_path)
    for table in Base.metadata.sorted_tables:
        assert table.name in columns
        assert {c.name for c in table.columns} == columns[table.name]


def test_migrations_are_applied_once(tmp_path):
    db_path = str(tmp_path / "booking.db")
    migrate.apply_migrations(db_path)

    assert migrate.apply_migrations(db_path) == []


def test_sqlite_path():
    assert migrate.sqlite_path("sqlite:////srv/data/booking.db") == "/srv/data/booking.db"
