"""
Schema Migrations
=================

Ordered, versioned schema changes for the exploration store.

Each migration runs once, inside its own transaction, and records its version
in the `settings` table under `schema_version`. A failed migration rolls back
and raises MigrationError; the store must not serve queries afterwards.
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   migrations.py
#
# Connected modules (direct imports):
#   errors, normalization
#
# Notes:
#   - The connection is in autocommit mode (isolation_level=None); BEGIN and
#     COMMIT are explicit so DDL and DML share one transaction.
#   - Never use executescript() here: it commits implicitly.
# ============================================================================

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, List, Optional

from .errors import MigrationError, classify_db_error
from .normalization import normalize_planet_class, normalize_star_type


logger = logging.getLogger("galnetops.migrations")

SCHEMA_VERSION_KEY = "schema_version"


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


# ============================================================================
# HELPERS
# ============================================================================

def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {str(r["name"]) for r in rows}


def _safe_add_column(conn: sqlite3.Connection, table: str, name: str, coltype: str) -> None:
    if name in _table_columns(conn, table):
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {coltype}")


def _run_all(conn: sqlite3.Connection, statements: List[str]) -> None:
    for statement in statements:
        conn.execute(statement)


# ============================================================================
# MIGRATIONS
# ============================================================================

def _migration_001_initial(conn: sqlite3.Connection) -> None:
    _run_all(conn, [
        """
        CREATE TABLE IF NOT EXISTS systems (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          system_address INTEGER UNIQUE NOT NULL,
          name TEXT NOT NULL,
          star_pos_x REAL NOT NULL,
          star_pos_y REAL NOT NULL,
          star_pos_z REAL NOT NULL,
          first_visited DATETIME NOT NULL,
          last_visited DATETIME NOT NULL,
          body_count INTEGER,
          discovered_count INTEGER DEFAULT 0,
          mapped_count INTEGER DEFAULT 0,
          total_value INTEGER DEFAULT 0
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS bodies (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          system_id INTEGER NOT NULL,
          body_id INTEGER NOT NULL,
          name TEXT NOT NULL,
          body_type TEXT NOT NULL,
          sub_type TEXT,
          distance_ls REAL,
          mass REAL,
          radius REAL,
          gravity REAL,
          temperature REAL,
          atmosphere_type TEXT,
          volcanism TEXT,
          landable INTEGER DEFAULT 0,
          terraformable INTEGER DEFAULT 0,
          was_discovered INTEGER DEFAULT 0,
          was_mapped INTEGER DEFAULT 0,
          discovered_by_me INTEGER DEFAULT 0,
          mapped_by_me INTEGER DEFAULT 0,
          scan_type TEXT DEFAULT 'None',
          scan_value INTEGER DEFAULT 0,
          bio_signals INTEGER DEFAULT 0,
          geo_signals INTEGER DEFAULT 0,
          parent_id INTEGER,
          raw_json TEXT,
          FOREIGN KEY (system_id) REFERENCES systems(id),
          UNIQUE(system_id, body_id)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS biologicals (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          body_id INTEGER NOT NULL,
          genus TEXT NOT NULL,
          species TEXT NOT NULL,
          variant TEXT,
          value INTEGER DEFAULT 0,
          scanned INTEGER DEFAULT 0,
          scan_progress INTEGER DEFAULT 0,
          FOREIGN KEY (body_id) REFERENCES bodies(id)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS route_history (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          system_id INTEGER NOT NULL,
          timestamp DATETIME NOT NULL,
          jump_distance REAL,
          fuel_used REAL,
          session_id TEXT,
          FOREIGN KEY (system_id) REFERENCES systems(id)
        )
        """,
        "CREATE TABLE IF NOT EXISTS settings (key TEXT PRIMARY KEY, value TEXT)",
        "CREATE INDEX IF NOT EXISTS idx_systems_address ON systems(system_address)",
        "CREATE INDEX IF NOT EXISTS idx_bodies_system ON bodies(system_id)",
        "CREATE INDEX IF NOT EXISTS idx_route_timestamp ON route_history(timestamp)",
    ])


def _migration_002_all_bodies_found(conn: sqlite3.Connection) -> None:
    _safe_add_column(conn, "systems", "all_bodies_found", "INTEGER DEFAULT 0")


def _migration_003_indexes(conn: sqlite3.Connection) -> None:
    _run_all(conn, [
        "CREATE INDEX IF NOT EXISTS idx_bodies_sub_type ON bodies(sub_type)",
        "CREATE INDEX IF NOT EXISTS idx_route_session ON route_history(session_id)",
        "CREATE INDEX IF NOT EXISTS idx_bodies_system_distance ON bodies(system_id, distance_ls)",
        "CREATE INDEX IF NOT EXISTS idx_systems_last_visited ON systems(last_visited)",
    ])


def _migration_004_semi_major_axis(conn: sqlite3.Connection) -> None:
    _safe_add_column(conn, "bodies", "semi_major_axis", "REAL")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_bodies_parent ON bodies(system_id, parent_id)")


def _migration_005_upstream_cache(conn: sqlite3.Connection) -> None:
    _run_all(conn, [
        """
        CREATE TABLE IF NOT EXISTS edsm_cache (
          cache_key TEXT PRIMARY KEY,
          cache_type TEXT NOT NULL,
          data TEXT NOT NULL,
          created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
          expires_at DATETIME NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_edsm_cache_expires ON edsm_cache(expires_at)",
        "CREATE INDEX IF NOT EXISTS idx_edsm_cache_type ON edsm_cache(cache_type)",
    ])


def _migration_006_codex(conn: sqlite3.Connection) -> None:
    _run_all(conn, [
        """
        CREATE TABLE IF NOT EXISTS codex_entries (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          entry_id INTEGER NOT NULL,
          name TEXT NOT NULL,
          category TEXT NOT NULL,
          subcategory TEXT NOT NULL,
          region TEXT NOT NULL,
          system_name TEXT NOT NULL,
          system_address INTEGER NOT NULL,
          body_id INTEGER,
          is_new_entry INTEGER DEFAULT 0,
          new_traits_discovered INTEGER DEFAULT 0,
          voucher_amount INTEGER DEFAULT 0,
          timestamp DATETIME NOT NULL,
          UNIQUE(entry_id, region)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_codex_entry_id ON codex_entries(entry_id)",
        "CREATE INDEX IF NOT EXISTS idx_codex_category ON codex_entries(category, subcategory)",
        "CREATE INDEX IF NOT EXISTS idx_codex_region ON codex_entries(region)",
        "CREATE INDEX IF NOT EXISTS idx_codex_timestamp ON codex_entries(timestamp)",
    ])


def _migration_007_signal_columns(conn: sqlite3.Connection) -> None:
    _safe_add_column(conn, "bodies", "human_signals", "INTEGER DEFAULT 0")
    _safe_add_column(conn, "bodies", "thargoid_signals", "INTEGER DEFAULT 0")


def _migration_008_estimated_values(conn: sqlite3.Connection) -> None:
    _safe_add_column(conn, "systems", "estimated_fss_value", "INTEGER DEFAULT 0")
    _safe_add_column(conn, "systems", "estimated_dss_value", "INTEGER DEFAULT 0")


def _migration_009_canonical_sub_types(conn: sqlite3.Connection) -> None:
    rows = conn.execute(
        "SELECT id, body_type, sub_type FROM bodies WHERE sub_type IS NOT NULL AND sub_type != ''"
    ).fetchall()
    for row in rows:
        if row["body_type"] == "Star":
            canonical = normalize_star_type(row["sub_type"])
        else:
            canonical = normalize_planet_class(row["sub_type"])
        if canonical:
            conn.execute("UPDATE bodies SET sub_type = ? WHERE id = ?", (canonical, row["id"]))


def _migration_010_footfall(conn: sqlite3.Connection) -> None:
    _safe_add_column(conn, "bodies", "was_footfalled", "INTEGER DEFAULT 0")
    _safe_add_column(conn, "bodies", "footfalled_by_me", "INTEGER DEFAULT 0")


def _migration_011_unique_biologicals(conn: sqlite3.Connection) -> None:
    # Keep the furthest-progressed row per (body, genus, species)
    conn.execute("""
        DELETE FROM biologicals
        WHERE id NOT IN (
          SELECT id FROM (
            SELECT id, ROW_NUMBER() OVER (
              PARTITION BY body_id, genus, species
              ORDER BY scan_progress DESC, scanned DESC, id DESC
            ) AS rn
            FROM biologicals
          ) WHERE rn = 1
        )
    """)
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_biologicals_body_species "
        "ON biologicals(body_id, genus, species)"
    )


def _migration_012_unique_route_entries(conn: sqlite3.Connection) -> None:
    # One jump per (system, timestamp); re-replayed files insert nothing new
    conn.execute("""
        DELETE FROM route_history
        WHERE id NOT IN (
          SELECT MIN(id) FROM route_history GROUP BY system_id, timestamp
        )
    """)
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_route_system_timestamp "
        "ON route_history(system_id, timestamp)"
    )


MIGRATIONS: List[Migration] = [
    Migration(1, "Initial schema - systems, bodies, biologicals, route_history, settings", _migration_001_initial),
    Migration(2, "Add all_bodies_found to systems", _migration_002_all_bodies_found),
    Migration(3, "Add performance indexes for common queries", _migration_003_indexes),
    Migration(4, "Add semi_major_axis to bodies for orbital sorting", _migration_004_semi_major_axis),
    Migration(5, "Add edsm_cache table for persistent upstream responses", _migration_005_upstream_cache),
    Migration(6, "Add codex_entries table", _migration_006_codex),
    Migration(7, "Add human_signals and thargoid_signals to bodies", _migration_007_signal_columns),
    Migration(8, "Add estimated_fss_value and estimated_dss_value to systems", _migration_008_estimated_values),
    Migration(9, "Normalize bodies.sub_type to canonical keys", _migration_009_canonical_sub_types),
    Migration(10, "Add was_footfalled and footfalled_by_me to bodies", _migration_010_footfall),
    Migration(11, "Deduplicate biologicals and add unique index", _migration_011_unique_biologicals),
    Migration(12, "Deduplicate route_history and add unique index", _migration_012_unique_route_entries),
]


def latest_version() -> int:
    return max((m.version for m in MIGRATIONS), default=0)


def pending_migrations(current_version: int) -> List[Migration]:
    return sorted(
        (m for m in MIGRATIONS if m.version > current_version),
        key=lambda m: m.version,
    )


# ============================================================================
# RUNNER
# ============================================================================

def get_schema_version(conn: sqlite3.Connection) -> int:
    try:
        row = conn.execute(
            "SELECT value FROM settings WHERE key = ?", (SCHEMA_VERSION_KEY,)
        ).fetchone()
    except sqlite3.OperationalError:
        return 0
    return int(row["value"]) if row and row["value"] is not None else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        """
        INSERT INTO settings (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (SCHEMA_VERSION_KEY, str(version)),
    )


def run_migrations(conn: sqlite3.Connection, migrations: Optional[List[Migration]] = None) -> int:
    """
    Apply every pending migration in version order

    Args:
        conn: Connection in autocommit mode with sqlite3.Row rows
        migrations: Override list (tests); defaults to MIGRATIONS

    Returns:
        Schema version after the run

    Raises:
        MigrationError: A migration failed; its transaction was rolled back
    """
    conn.execute("CREATE TABLE IF NOT EXISTS settings (key TEXT PRIMARY KEY, value TEXT)")

    current = get_schema_version(conn)
    available = MIGRATIONS if migrations is None else migrations
    pending = sorted(
        (m for m in available if m.version > current), key=lambda m: m.version
    )

    if not pending:
        logger.info("Schema up to date (version %d)", current)
        return current

    logger.info(
        "Running %d migration(s) from version %d to %d",
        len(pending), current, pending[-1].version
    )

    for migration in pending:
        logger.info("Running migration %d: %s", migration.version, migration.description)
        try:
            conn.execute("BEGIN")
            migration.apply(conn)
            _set_schema_version(conn, migration.version)
            conn.execute("COMMIT")
        except Exception as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            info = classify_db_error(e)
            logger.error(
                "Migration %d failed [%s] %s", migration.version, info.kind, info.code,
                exc_info=True
            )
            raise MigrationError(
                f"Database migration {migration.version} failed: {info.message}",
                version=migration.version,
                code=info.code,
                context={"version": migration.version, "kind": info.kind},
            ) from e
        current = migration.version

    logger.info("Migrations complete. Schema version: %d", current)
    return current
