"""SQLite storage utilities and migrations."""
from __future__ import annotations

import datetime as dt
import logging
import pathlib
import sqlite3

LOGGER = logging.getLogger(__name__)


class MigrationError(RuntimeError):
    """Raised when migrations fail."""


def default_migrations_dir() -> pathlib.Path:
    return pathlib.Path(__file__).resolve().parent / "migrations"


def get_connection(db_path: str | pathlib.Path) -> sqlite3.Connection:
    conn = sqlite3.connect(pathlib.Path(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_db(
    db_path: str | pathlib.Path,
    migrations_dir: str | pathlib.Path | None = None,
) -> None:
    """Create the database file if needed and apply pending migrations."""
    path_obj = pathlib.Path(db_path)
    if not path_obj.parent.exists():
        path_obj.parent.mkdir(parents=True, exist_ok=True)

    with get_connection(path_obj) as conn:
        applied = apply_migrations(conn, migrations_dir or default_migrations_dir())

    if applied:
        LOGGER.info("Database %s upgraded to %s", path_obj, applied[-1])
    else:
        LOGGER.debug("Database %s is up to date", path_obj)


def apply_migrations(conn: sqlite3.Connection, migrations_dir: str | pathlib.Path) -> list[str]:
    migrations_path = pathlib.Path(migrations_dir)
    if not migrations_path.exists():
        raise MigrationError(f"Missing migrations dir: {migrations_path}")

    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations (version TEXT PRIMARY KEY, applied_at TEXT NOT NULL);"
    )

    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations;").fetchall()
    }

    newly_applied: list[str] = []
    migration_files = sorted(
        p for p in migrations_path.iterdir() if p.is_file() and p.suffix == ".sql"
    )
    for migration in migration_files:
        version = migration.stem
        if version in applied:
            continue

        LOGGER.info("Applying migration %s", migration.name)
        sql = migration.read_text(encoding="utf-8")
        try:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?);",
                (version, _utc_now()),
            )
            conn.commit()
        except sqlite3.DatabaseError as exc:
            conn.rollback()
            raise MigrationError(f"Failed migration {migration.name}: {exc}") from exc
        newly_applied.append(version)

    return newly_applied


def _utc_now() -> str:
    return dt.datetime.now(tz=dt.timezone.utc).isoformat()
