import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_PATH = Path(__file__).parent / "migrations"


def ensure_migration_table(conn: sqlite3.Connection):
    conn.execute("""
    CREATE TABLE IF NOT EXISTS schema_migrations (
        filename TEXT PRIMARY KEY,
        applied_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """)
    conn.commit()


def get_applied_migrations(conn: sqlite3.Connection) -> set:
    ensure_migration_table(conn)
    return {row[0] for row in conn.execute("SELECT filename FROM schema_migrations")}


def apply_migrations(conn: sqlite3.Connection, migrations_path: Path = MIGRATIONS_PATH) -> list:
    """
    Apply every *.sql file under migrations_path not yet recorded.

    Files run in filename order. Returns the names applied in this call.
    """
    applied = get_applied_migrations(conn)
    newly_applied = []

    for sql_file in sorted(migrations_path.glob("*.sql")):
        name = sql_file.name
        if name in applied:
            continue

        sql = sql_file.read_text(encoding="utf-8")
        try:
            logger.debug("🔧 Applying migration: %s", name)
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_migrations (filename, applied_at) VALUES (?, ?)",
                (name, datetime.now(timezone.utc).isoformat())
            )
            conn.commit()
            newly_applied.append(name)
        except sqlite3.OperationalError as e:
            msg = str(e).lower()
            if "duplicate column name" in msg or "already exists" in msg:
                logger.warning("⚠️  Skipping migration %s (already applied based on error: %s)", name, e)
                conn.execute("INSERT OR IGNORE INTO schema_migrations (filename) VALUES (?)", (name,))
                conn.commit()
            else:
                logger.error("❌ Migration failed: %s: %s", name, e)
                raise

    return newly_applied
