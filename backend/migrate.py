"""
SQLite schema migrations.

Applies backend/migrations/NNN_<name>.sql (or NNN_<name>.py exposing run())
in version order, recording each in schema_migrations.

    python backend/migrate.py
"""

import glob
import importlib.util
import os
import sqlite3

from dotenv import load_dotenv

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "migrations")


def sqlite_path(url: str) -> str:
    if not url.startswith("sqlite:///"):
        raise SystemExit(f"migrate.py only handles SQLite databases, got {url}; use alembic")
    return url.replace("sqlite:///", "", 1)


def discover(migrations_dir: str = MIGRATIONS_DIR) -> list[tuple[int, str]]:
    paths = glob.glob(os.path.join(migrations_dir, "*.sql")) + glob.glob(os.path.join(migrations_dir, "*.py"))
    return sorted((int(os.path.basename(p).split("_")[0]), p) for p in paths)


def current_version(conn: sqlite3.Connection) -> int:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
    """)
    return conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations;").fetchone()[0]


def apply_migrations(db_path: str, migrations_dir: str = MIGRATIONS_DIR) -> list[str]:
    """
    Apply every migration newer than the recorded version.

    Returns:
        File names applied, in order.
    """
    print(f"Using DB: {db_path}")
    applied = []

    conn = sqlite3.connect(db_path)
    try:
        version = current_version(conn)
        conn.commit()
    finally:
        conn.close()
    print(f"Current schema version: {version}")

    for number, path in discover(migrations_dir):
        if number <= version:
            continue
        filename = os.path.basename(path)
        print(f"Applying migration {filename}...")

        if path.endswith(".py"):
            os.environ["DB_PATH"] = db_path
            spec = importlib.util.spec_from_file_location(f"migration_{number}", path)
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
            module.run()
        else:
            with open(path, "r", encoding="utf-8") as f:
                script = f.read()
            conn = sqlite3.connect(db_path)
            try:
                conn.executescript(script)
                conn.execute("INSERT INTO schema_migrations(version) VALUES (?)", (number,))
                conn.commit()
            finally:
                conn.close()

        applied.append(filename)
        print(f"✔ Applied {filename}")

    print("All migrations applied.")
    return applied


if __name__ == "__main__":
    load_dotenv()
    from booking_engine.config import settings

    apply_migrations(sqlite_path(settings.resolved_database_url))
