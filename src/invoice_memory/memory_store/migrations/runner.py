"""
Forward-only schema migrations for the memory store.

Migration modules live next to this file as {version:03d}_{name}.py and
define VERSION (int), NAME (str) and upgrade(conn). Applied versions are
recorded in the `migrations` table; a migration and its record are
committed together.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ...schemas.timestamps import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class Migration:
    """A schema change discovered on disk."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """Migrations in this package, ordered by version."""
    migrations = []
    for path in Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py"):
        module = importlib.import_module(f"{__package__}.{path.stem}")
        migrations.append(Migration(module.VERSION, module.NAME, module.upgrade))

    versions = [m.version for m in migrations]
    if len(versions) != len(set(versions)):
        raise RuntimeError(f"Duplicate migration versions: {sorted(versions)}")

    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """Applies pending migrations to one connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_current_version(self) -> int:
        """Highest applied version, 0 on a fresh database."""
        row = self.conn.execute("SELECT MAX(version) FROM migrations").fetchone()
        return row[0] or 0

    def pending(self) -> list[Migration]:
        applied = {row[0] for row in self.conn.execute("SELECT version FROM migrations")}
        return [m for m in get_all_migrations() if m.version not in applied]

    def run_pending(self) -> list[int]:
        """
        Apply every pending migration in version order.

        A failing migration is rolled back and re-raised; later migrations
        are not attempted.

        Returns:
            Versions applied by this call
        """
        done = []
        for migration in self.pending():
            logger.info(f"Applying migration {migration.version:03d}_{migration.name}")
            try:
                migration.upgrade(self.conn)
                self.conn.execute(
                    "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                    (migration.version, migration.name, utc_now_iso()),
                )
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                logger.error(f"Migration {migration.version:03d}_{migration.name} failed")
                raise
            done.append(migration.version)

        if not done:
            logger.debug("Schema up to date")
        return done
