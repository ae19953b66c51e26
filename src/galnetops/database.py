"""
Exploration Database Module
===========================

SQLite persistence for systems, bodies, biologicals, codex entries, route
history and the persistent tier of the upstream cache.

Benefits:
- One dedicated worker thread owns the connection (no cross-thread sharing)
- Merge-on-conflict upserts: re-observing an entity never loses information
- System aggregates fully recomputed after every body mutation
- Engine errors classified into transient / constraint / corruption / config
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   database.py
#
# Connected modules (direct imports):
#   errors, events, exobiology, migrations, normalization, scan_values, signals
#
# Notes:
#   - The connection runs in autocommit mode; multi-statement writes use the
#     _transaction() helper (explicit BEGIN / COMMIT / ROLLBACK).
#   - RETURNING cursors are always drained with fetchall() before COMMIT.
#   - Rows are returned as plain dicts keyed by column name; flag columns are
#     converted to bool.
# ============================================================================

# ============================================================================
# IMPORTS
# ============================================================================

import json
import logging
import os
import queue
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Tuple, Iterable

from .errors import (
    ValidationError,
    classify_db_error,
    retry_on_error,
    wrap_db_error,
)
from .events import CodexEntry, Scan, determine_body_type, extract_parent_body_id
from .exobiology import FULLY_SCANNED_PROGRESS
from .migrations import run_migrations
from .normalization import normalize_sub_type
from .scan_values import (
    NO_SCAN_VALUE_BODY_TYPES,
    calculate_scan_value,
    estimate_dss_value,
    estimate_fss_value,
)
from .signals import SignalCounts


logger = logging.getLogger("galnetops.database")

REQUIRED_IMPORT_TABLES = ("systems", "bodies", "settings")

CACHE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_BOOL_COLUMNS = frozenset({
    "all_bodies_found",
    "landable",
    "terraformable",
    "was_discovered",
    "was_mapped",
    "was_footfalled",
    "discovered_by_me",
    "mapped_by_me",
    "footfalled_by_me",
    "scanned",
    "is_new_entry",
    "new_traits_discovered",
})


# ============================================================================
# INTERNAL TASK TYPES
# ============================================================================

@dataclass
class _DBTask:
    fn: Callable[[sqlite3.Connection], Any]
    reply_q: "queue.Queue[Tuple[bool, Any]]"


@dataclass(frozen=True)
class RouteFilter:
    """Route history filter; dates are YYYY-MM-DD (date_to is inclusive)"""
    search: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class ImportValidation:
    valid: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    system_count: Optional[int] = None
    body_count: Optional[int] = None


# ============================================================================
# HELPERS
# ============================================================================

def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    for key in _BOOL_COLUMNS.intersection(data):
        if data[key] is not None:
            data[key] = bool(data[key])
    return data


def _rows_to_dicts(rows: Iterable[sqlite3.Row]) -> List[Dict[str, Any]]:
    return [_row_to_dict(row) for row in rows]


def _returning_one(conn: sqlite3.Connection, sql: str, params: Tuple) -> Dict[str, Any]:
    # Drain the cursor so the statement is finished before COMMIT
    rows = conn.execute(sql, params).fetchall()
    return _row_to_dict(rows[0])


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so user input matches literally (ESCAPE '\\')"""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def utc_now_iso() -> str:
    """Journal-style UTC timestamp"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def carry_merged_keys(stored_json: Optional[str], raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Copy of a new Scan snapshot that keeps what signals events merged into
    the stored one: DSS `Genuses` and per-ring `Materials`

    Args:
        stored_json: Current `raw_json` of the body (None when new)
        raw: Decoded journal object of the incoming Scan

    Returns:
        The snapshot to store
    """
    snapshot = dict(raw)
    if not stored_json:
        return snapshot
    try:
        stored = json.loads(stored_json)
    except ValueError:
        logger.warning("Unreadable stored snapshot; merged keys not carried over")
        return snapshot
    if not isinstance(stored, dict):
        return snapshot

    if stored.get("Genuses") and not snapshot.get("Genuses"):
        snapshot["Genuses"] = stored["Genuses"]

    stored_materials = {
        ring.get("Name"): ring["Materials"]
        for ring in stored.get("Rings") or []
        if isinstance(ring, dict) and ring.get("Materials")
    }
    if stored_materials and isinstance(snapshot.get("Rings"), list):
        rings = []
        for ring in snapshot["Rings"]:
            if isinstance(ring, dict) and not ring.get("Materials") and ring.get("Name") in stored_materials:
                ring = dict(ring, Materials=stored_materials[ring["Name"]])
            rings.append(ring)
        snapshot["Rings"] = rings
    return snapshot


def _cache_time(now: Optional[datetime] = None) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


@contextmanager
def _transaction(conn: sqlite3.Connection):
    conn.execute("BEGIN")
    try:
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


# ============================================================================
# CLASSES
# ============================================================================

class ExplorationDatabase:
    """SQLite store backed by a single dedicated DB worker thread.

    Only ONE thread ever touches the SQLite connection. All reads/writes are
    funneled through a task queue, so the journal watcher, backfill and
    upstream cache can share one instance without locking.

    Migrations run before the constructor returns; a failed migration raises
    MigrationError and the instance is closed.
    """

    def __init__(self, db_path: Path, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_ms = busy_timeout_ms

        self._task_q: "queue.Queue[Optional[_DBTask]]" = queue.Queue()
        self._closed = False
        self.schema_version = 0

        self._worker = threading.Thread(
            target=self._worker_loop,
            name="ExplorationDBWorker",
            daemon=True
        )
        self._worker.start()

        try:
            self.schema_version = self._submit(run_migrations, "run migrations")
        except Exception:
            self.close()
            raise

    # ------------------------------------------------------------------------
    # Worker plumbing
    # ------------------------------------------------------------------------
    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute("PRAGMA journal_mode=WAL;")
        except sqlite3.OperationalError as e:
            # Some filesystems refuse WAL; the rollback journal still works
            logger.warning("WAL mode unavailable for %s: %s", self.db_path, e)
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)};")
        return conn

    def _worker_loop(self):
        conn: Optional[sqlite3.Connection] = None
        open_error: Optional[BaseException] = None
        try:
            conn = self._open_connection()
        except sqlite3.Error as e:
            logger.error("Failed to open database %s: %s", self.db_path, e)
            open_error = e

        while True:
            task = self._task_q.get()
            if task is None:
                break

            if open_error is not None:
                task.reply_q.put((False, open_error))
                continue

            try:
                result = task.fn(conn)
                task.reply_q.put((True, result))
            except Exception as e:
                task.reply_q.put((False, e))

        if conn is not None:
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning("Error closing database: %s", e)

    def _submit(self, fn: Callable[[sqlite3.Connection], Any], operation: str = "query") -> Any:
        if self._closed:
            raise RuntimeError("ExplorationDatabase is closed")

        reply_q: "queue.Queue[Tuple[bool, Any]]" = queue.Queue(maxsize=1)
        self._task_q.put(_DBTask(fn=fn, reply_q=reply_q))

        ok, payload = reply_q.get()
        if ok:
            return payload
        if isinstance(payload, sqlite3.Error):
            info = classify_db_error(payload)
            logger.error("%s failed [%s] %s", operation, info.kind, info.code)
            raise wrap_db_error(payload, operation) from payload
        raise payload

    @property
    def is_closed(self) -> bool:
        return self._closed

    # ========================================================================
    # SYSTEMS
    # ========================================================================

    def upsert_system(
        self,
        system_address: int,
        name: str,
        star_pos: Tuple[float, float, float],
        body_count: Optional[int] = None,
        timestamp: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create or revisit a system

        Position and name are never overwritten. first_visited/last_visited
        keep the earliest/latest observed timestamps, so replaying older
        journals does not move the visit window.

        Args:
            system_address: Game's unique system id
            name: Display name
            star_pos: (x, y, z) in light years
            body_count: Known body count (None keeps the stored one)
            timestamp: Event timestamp (defaults to now)

        Returns:
            The system row
        """
        seen = timestamp or utc_now_iso()

        def _task(conn: sqlite3.Connection):
            return _returning_one(conn, """
                INSERT INTO systems (
                    system_address, name, star_pos_x, star_pos_y, star_pos_z,
                    first_visited, last_visited, body_count
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(system_address) DO UPDATE SET
                    first_visited = MIN(first_visited, excluded.first_visited),
                    last_visited = MAX(last_visited, excluded.last_visited),
                    body_count = COALESCE(excluded.body_count, body_count)
                RETURNING *
            """, (
                system_address, name,
                star_pos[0], star_pos[1], star_pos[2],
                seen, seen, body_count,
            ))

        return self._submit(_task, "upsert_system")

    def get_current_system(self) -> Optional[Dict[str, Any]]:
        def _task(conn: sqlite3.Connection):
            return _row_to_dict(conn.execute(
                "SELECT * FROM systems ORDER BY last_visited DESC LIMIT 1"
            ).fetchone())

        return self._submit(_task, "get_current_system")

    def get_system_by_address(self, system_address: int) -> Optional[Dict[str, Any]]:
        def _task(conn: sqlite3.Connection):
            return _row_to_dict(conn.execute(
                "SELECT * FROM systems WHERE system_address = ?", (system_address,)
            ).fetchone())

        return self._submit(_task, "get_system_by_address")

    def get_system_by_id(self, system_id: int) -> Optional[Dict[str, Any]]:
        def _task(conn: sqlite3.Connection):
            return _row_to_dict(conn.execute(
                "SELECT * FROM systems WHERE id = ?", (system_id,)
            ).fetchone())

        return self._submit(_task, "get_system_by_id")

    def get_system_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        if not name or not name.strip():
            return None

        def _task(conn: sqlite3.Connection):
            return _row_to_dict(conn.execute(
                "SELECT * FROM systems WHERE LOWER(name) = LOWER(?)", (name.strip(),)
            ).fetchone())

        return self._submit(_task, "get_system_by_name")

    def search_systems(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Name search: exact match first, then prefix, then substring"""
        if not query or not query.strip():
            return []
        term = query.strip()

        def _task(conn: sqlite3.Connection):
            rows = conn.execute(r"""
                SELECT *,
                  CASE
                    WHEN LOWER(name) = LOWER(?) THEN 0
                    WHEN LOWER(name) LIKE LOWER(?) || '%' ESCAPE '\' THEN 1
                    ELSE 2
                  END AS relevance
                FROM systems
                WHERE LOWER(name) LIKE '%' || LOWER(?) || '%' ESCAPE '\'
                ORDER BY relevance, last_visited DESC
                LIMIT ?
            """, (term, escape_like(term), escape_like(term), limit)).fetchall()
            return _rows_to_dicts(rows)

        return self._submit(_task, "search_systems")

    def update_system_body_count(self, system_address: int, body_count: int) -> None:
        def _task(conn: sqlite3.Connection):
            conn.execute(
                "UPDATE systems SET body_count = ? WHERE system_address = ?",
                (body_count, system_address)
            )

        self._submit(_task, "update_system_body_count")

    def mark_system_all_bodies_found(self, system_address: int) -> None:
        def _task(conn: sqlite3.Connection):
            conn.execute(
                "UPDATE systems SET all_bodies_found = 1 WHERE system_address = ?",
                (system_address,)
            )

        self._submit(_task, "mark_system_all_bodies_found")

    def _update_system_totals(self, conn: sqlite3.Connection, system_id: int) -> None:
        """Recompute every aggregate of a system from its bodies"""
        total = conn.execute("""
            SELECT COALESCE(SUM(scan_value), 0) AS total
            FROM bodies
            WHERE system_id = ? AND body_type NOT IN ('Belt', 'Ring')
        """, (system_id,)).fetchone()["total"]

        estimated_fss = 0
        estimated_dss = 0
        for body in conn.execute(
            "SELECT body_type, sub_type, terraformable FROM bodies WHERE system_id = ?",
            (system_id,)
        ).fetchall():
            terraformable = bool(body["terraformable"])
            estimated_fss += estimate_fss_value(body["sub_type"] or "", terraformable, body["body_type"])
            estimated_dss += estimate_dss_value(body["sub_type"] or "", terraformable, body["body_type"])

        conn.execute("""
            UPDATE systems SET
              total_value = ?,
              estimated_fss_value = ?,
              estimated_dss_value = ?,
              discovered_count = (SELECT COUNT(*) FROM bodies WHERE system_id = ? AND scan_type != 'None'),
              mapped_count = (SELECT COUNT(*) FROM bodies WHERE system_id = ? AND scan_type = 'Mapped')
            WHERE id = ?
        """, (total, estimated_fss, estimated_dss, system_id, system_id, system_id))

    def update_system_totals(self, system_id: int) -> None:
        def _task(conn: sqlite3.Connection):
            with _transaction(conn):
                self._update_system_totals(conn, system_id)

        self._submit(_task, "update_system_totals")

    def recalculate_system_values(self, system_id: int) -> None:
        """Recompute each body's scan value from stored attributes, then the totals"""
        def _task(conn: sqlite3.Connection):
            with _transaction(conn):
                bodies = conn.execute("""
                    SELECT id, body_type, sub_type, terraformable, was_discovered,
                           was_mapped, scan_type
                    FROM bodies WHERE system_id = ?
                """, (system_id,)).fetchall()
                for body in bodies:
                    if body["body_type"] in NO_SCAN_VALUE_BODY_TYPES:
                        value = 0
                    else:
                        value = calculate_scan_value(
                            body["sub_type"] or "",
                            terraformable=bool(body["terraformable"]),
                            was_discovered=bool(body["was_discovered"]),
                            was_mapped=bool(body["was_mapped"]),
                            is_mapped=body["scan_type"] == "Mapped",
                        ).final_value
                    conn.execute("UPDATE bodies SET scan_value = ? WHERE id = ?", (value, body["id"]))
                self._update_system_totals(conn, system_id)

        self._submit(_task, "recalculate_system_values")

    # ========================================================================
    # BODIES
    # ========================================================================

    def upsert_body(self, system_id: int, scan: Scan) -> Dict[str, Any]:
        """
        Insert or merge a body from a Scan event

        Merge rules on conflict (system_id, body_id):
        - body_type replaced; sub_type replaced only by a non-empty value
        - descriptive attributes keep the stored value when the new one is NULL
        - flags only ever go up (MAX)
        - scan_type: Mapped > Detailed > Basic, never downgraded
        - scan_value: frozen once Mapped, otherwise the higher value wins
        - raw_json: kept once Mapped, or when Detailed and the new scan is not;
          a replacing snapshot keeps merged Genuses and ring Materials

        Args:
            system_id: Row id of the parent system
            scan: Parsed Scan event

        Returns:
            The merged body row
        """
        body_type = determine_body_type(scan)
        sub_type = normalize_sub_type(body_type, scan.raw_sub_type) if scan.raw_sub_type else ""
        if body_type in NO_SCAN_VALUE_BODY_TYPES:
            scan_value = 0
        else:
            scan_value = calculate_scan_value(
                scan.raw_sub_type,
                terraformable=scan.terraformable,
                was_discovered=scan.was_discovered,
                was_mapped=scan.was_mapped,
                is_mapped=False,
            ).final_value

        params = (
            system_id,
            scan.body_id,
            scan.body_name,
            body_type,
            sub_type,
            scan.distance_from_arrival_ls,
            scan.mass,
            scan.radius,
            scan.gravity_g,
            scan.temperature,
            scan.atmosphere_type,
            scan.volcanism,
            int(scan.landable),
            int(scan.terraformable),
            int(scan.was_discovered),
            int(scan.was_mapped),
            int(scan.was_footfalled),
            0 if scan.was_discovered else 1,
            "Detailed" if scan.is_detailed else "Basic",
            scan_value,
            extract_parent_body_id(scan),
            scan.semi_major_axis,
        )

        def _task(conn: sqlite3.Connection):
            with _transaction(conn):
                stored = conn.execute(
                    "SELECT raw_json FROM bodies WHERE system_id = ? AND body_id = ?",
                    (system_id, scan.body_id)
                ).fetchone()
                snapshot = carry_merged_keys(stored["raw_json"] if stored else None, scan.raw)
                body = _returning_one(conn, """
                    INSERT INTO bodies (
                      system_id, body_id, name, body_type, sub_type, distance_ls,
                      mass, radius, gravity, temperature, atmosphere_type, volcanism,
                      landable, terraformable, was_discovered, was_mapped, was_footfalled,
                      discovered_by_me, mapped_by_me, footfalled_by_me,
                      scan_type, scan_value, parent_id, semi_major_axis, raw_json
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?, ?, ?)
                    ON CONFLICT(system_id, body_id) DO UPDATE SET
                      body_type = excluded.body_type,
                      sub_type = CASE
                        WHEN excluded.sub_type IS NOT NULL AND excluded.sub_type != '' THEN excluded.sub_type
                        ELSE COALESCE(bodies.sub_type, excluded.sub_type)
                      END,
                      distance_ls = COALESCE(excluded.distance_ls, bodies.distance_ls),
                      mass = COALESCE(excluded.mass, bodies.mass),
                      radius = COALESCE(excluded.radius, bodies.radius),
                      gravity = COALESCE(excluded.gravity, bodies.gravity),
                      temperature = COALESCE(excluded.temperature, bodies.temperature),
                      atmosphere_type = COALESCE(excluded.atmosphere_type, bodies.atmosphere_type),
                      volcanism = COALESCE(excluded.volcanism, bodies.volcanism),
                      landable = MAX(bodies.landable, excluded.landable),
                      terraformable = MAX(bodies.terraformable, excluded.terraformable),
                      was_discovered = MAX(bodies.was_discovered, excluded.was_discovered),
                      was_mapped = MAX(bodies.was_mapped, excluded.was_mapped),
                      was_footfalled = MAX(bodies.was_footfalled, excluded.was_footfalled),
                      discovered_by_me = MAX(bodies.discovered_by_me, excluded.discovered_by_me),
                      mapped_by_me = MAX(bodies.mapped_by_me, excluded.mapped_by_me),
                      footfalled_by_me = MAX(bodies.footfalled_by_me, excluded.footfalled_by_me),
                      scan_type = CASE
                        WHEN bodies.scan_type = 'Mapped' THEN 'Mapped'
                        WHEN excluded.scan_type = 'Detailed' OR bodies.scan_type = 'Detailed' THEN 'Detailed'
                        ELSE excluded.scan_type
                      END,
                      scan_value = CASE
                        WHEN bodies.scan_type = 'Mapped' THEN bodies.scan_value
                        WHEN excluded.scan_value > bodies.scan_value THEN excluded.scan_value
                        ELSE bodies.scan_value
                      END,
                      parent_id = excluded.parent_id,
                      semi_major_axis = COALESCE(excluded.semi_major_axis, bodies.semi_major_axis),
                      raw_json = CASE
                        WHEN bodies.scan_type = 'Mapped' THEN bodies.raw_json
                        WHEN bodies.scan_type = 'Detailed' AND excluded.scan_type != 'Detailed' THEN bodies.raw_json
                        ELSE excluded.raw_json
                      END
                    RETURNING *
                """, params + (json.dumps(snapshot),))
                self._update_system_totals(conn, system_id)
            return body

        return self._submit(_task, "upsert_body")

    def get_system_bodies(self, system_id: int) -> List[Dict[str, Any]]:
        def _task(conn: sqlite3.Connection):
            return _rows_to_dicts(conn.execute(
                "SELECT * FROM bodies WHERE system_id = ? ORDER BY distance_ls", (system_id,)
            ).fetchall())

        return self._submit(_task, "get_system_bodies")

    def get_body_by_system_and_body_id(self, system_id: int, body_id: int) -> Optional[Dict[str, Any]]:
        def _task(conn: sqlite3.Connection):
            return _row_to_dict(conn.execute(
                "SELECT * FROM bodies WHERE system_id = ? AND body_id = ?", (system_id, body_id)
            ).fetchone())

        return self._submit(_task, "get_body_by_system_and_body_id")

    def get_body_by_name(self, system_id: int, name: str) -> Optional[Dict[str, Any]]:
        if not name or not name.strip():
            return None

        def _task(conn: sqlite3.Connection):
            return _row_to_dict(conn.execute(
                "SELECT * FROM bodies WHERE system_id = ? AND name = ?", (system_id, name.strip())
            ).fetchone())

        return self._submit(_task, "get_body_by_name")

    def update_body_mapped(self, system_id: int, body_id: int) -> bool:
        """
        Mark a body as mapped (DSS) and recompute its value

        Returns:
            False when the body is unknown
        """
        def _task(conn: sqlite3.Connection):
            with _transaction(conn):
                body = conn.execute("""
                    SELECT body_type, sub_type, terraformable, was_discovered, was_mapped
                    FROM bodies WHERE system_id = ? AND body_id = ?
                """, (system_id, body_id)).fetchone()
                if body is None:
                    return False

                if body["body_type"] in NO_SCAN_VALUE_BODY_TYPES:
                    value = 0
                else:
                    value = calculate_scan_value(
                        body["sub_type"] or "",
                        terraformable=bool(body["terraformable"]),
                        was_discovered=bool(body["was_discovered"]),
                        was_mapped=bool(body["was_mapped"]),
                        is_mapped=True,
                    ).final_value
                mapped_by_me = 0 if body["was_mapped"] else 1

                conn.execute("""
                    UPDATE bodies
                    SET scan_type = 'Mapped',
                        mapped_by_me = MAX(mapped_by_me, ?),
                        scan_value = ?
                    WHERE system_id = ? AND body_id = ?
                """, (mapped_by_me, value, system_id, body_id))
                self._update_system_totals(conn, system_id)
            return True

        return self._submit(_task, "update_body_mapped")

    def update_body_signals(self, system_id: int, body_id: int, counts: SignalCounts) -> bool:
        """
        Replace bio/geo counts; human/thargoid only when the event carried them

        Returns:
            False when the body row does not exist yet (caller buffers)
        """
        def _task(conn: sqlite3.Connection):
            cursor = conn.execute("""
                UPDATE bodies SET
                  bio_signals = ?,
                  geo_signals = ?,
                  human_signals = COALESCE(?, human_signals),
                  thargoid_signals = COALESCE(?, thargoid_signals)
                WHERE system_id = ? AND body_id = ?
            """, (counts.bio, counts.geo, counts.human, counts.thargoid, system_id, body_id))
            return cursor.rowcount > 0

        return self._submit(_task, "update_body_signals")

    def update_body_footfalled(self, system_id: int, body_id: int) -> bool:
        """Flag our first footfall; True only when nobody had landed before"""
        def _task(conn: sqlite3.Connection):
            row = conn.execute(
                "SELECT was_footfalled FROM bodies WHERE system_id = ? AND body_id = ?",
                (system_id, body_id)
            ).fetchone()
            if row is None or row["was_footfalled"]:
                return False
            conn.execute(
                "UPDATE bodies SET footfalled_by_me = 1 WHERE system_id = ? AND body_id = ?",
                (system_id, body_id)
            )
            return True

        return self._submit(_task, "update_body_footfalled")

    def merge_body_genuses(self, system_id: int, body_id: int, genuses: List[str]) -> bool:
        """Store DSS genus hints in the body's raw snapshot (`Genuses`)"""
        if not genuses:
            return False

        def _task(conn: sqlite3.Connection):
            row = conn.execute(
                "SELECT raw_json FROM bodies WHERE system_id = ? AND body_id = ?",
                (system_id, body_id)
            ).fetchone()
            if row is None or not row["raw_json"]:
                return False
            try:
                snapshot = json.loads(row["raw_json"])
            except ValueError as e:
                logger.warning("Unreadable snapshot for body %s/%s: %s", system_id, body_id, e)
                return False
            snapshot["Genuses"] = list(genuses)
            conn.execute(
                "UPDATE bodies SET raw_json = ? WHERE system_id = ? AND body_id = ?",
                (json.dumps(snapshot), system_id, body_id)
            )
            return True

        return self._submit(_task, "merge_body_genuses")

    def merge_ring_materials_into_parent(
        self,
        system_id: int,
        parent_name: str,
        ring_name: str,
        materials: Iterable[Dict[str, Any]],
    ) -> bool:
        """
        Write ring materials into the named ring of the parent's snapshot

        Returns:
            False when the parent, its Rings list or the ring is missing
        """
        materials = [dict(m) for m in materials or ()]
        if not parent_name or not ring_name or not materials:
            return False

        def _task(conn: sqlite3.Connection):
            parent = conn.execute(
                "SELECT body_id, raw_json FROM bodies WHERE system_id = ? AND name = ?",
                (system_id, parent_name)
            ).fetchone()
            if parent is None or not parent["raw_json"]:
                return False
            try:
                snapshot = json.loads(parent["raw_json"])
            except ValueError as e:
                logger.warning("Unreadable snapshot for %s: %s", parent_name, e)
                return False

            rings = snapshot.get("Rings") or snapshot.get("rings")
            if not isinstance(rings, list):
                return False
            ring = next(
                (r for r in rings if isinstance(r, dict) and (r.get("Name") or r.get("name")) == ring_name),
                None
            )
            if ring is None:
                return False

            ring["Materials"] = materials
            conn.execute(
                "UPDATE bodies SET raw_json = ? WHERE system_id = ? AND body_id = ?",
                (json.dumps(snapshot), system_id, parent["body_id"])
            )
            return True

        return self._submit(_task, "merge_ring_materials_into_parent")

    # ========================================================================
    # BIOLOGICALS
    # ========================================================================

    def upsert_biological(
        self,
        body_db_id: int,
        genus: str,
        species: str,
        variant: Optional[str],
        value: int,
        scan_progress: int,
    ) -> Dict[str, Any]:
        """Progress only moves forward; `scanned` flips at the Analyse tier"""
        scanned = 1 if scan_progress >= FULLY_SCANNED_PROGRESS else 0

        def _task(conn: sqlite3.Connection):
            return _returning_one(conn, """
                INSERT INTO biologicals (body_id, genus, species, variant, value, scan_progress, scanned)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(body_id, genus, species) DO UPDATE SET
                  variant = COALESCE(excluded.variant, variant),
                  value = CASE WHEN excluded.value > 0 THEN excluded.value ELSE value END,
                  scan_progress = MAX(scan_progress, excluded.scan_progress),
                  scanned = CASE WHEN excluded.scan_progress >= ? THEN 1 ELSE scanned END
                RETURNING *
            """, (body_db_id, genus, species, variant, value, scan_progress, scanned,
                  FULLY_SCANNED_PROGRESS))

        return self._submit(_task, "upsert_biological")

    def get_body_biologicals(self, body_db_id: int) -> List[Dict[str, Any]]:
        def _task(conn: sqlite3.Connection):
            return _rows_to_dicts(conn.execute(
                "SELECT * FROM biologicals WHERE body_id = ?", (body_db_id,)
            ).fetchall())

        return self._submit(_task, "get_body_biologicals")

    def get_all_biologicals(self) -> List[Dict[str, Any]]:
        """Every biological with its body and system names"""
        def _task(conn: sqlite3.Connection):
            return _rows_to_dicts(conn.execute("""
                SELECT bio.*, b.name AS body_name, s.name AS system_name
                FROM biologicals bio
                JOIN bodies b ON bio.body_id = b.id
                JOIN systems s ON b.system_id = s.id
                ORDER BY bio.genus, bio.species, bio.variant
            """).fetchall())

        return self._submit(_task, "get_all_biologicals")

    def get_biological_stats(self) -> Dict[str, Any]:
        def _task(conn: sqlite3.Connection):
            total = conn.execute("SELECT COUNT(*) AS c FROM biologicals").fetchone()["c"]
            completed = conn.execute(
                "SELECT COUNT(*) AS c FROM biologicals WHERE scanned = 1"
            ).fetchone()["c"]
            value = conn.execute(
                "SELECT COALESCE(SUM(value), 0) AS total FROM biologicals WHERE scanned = 1"
            ).fetchone()["total"]

            genus_counts = {}
            for row in conn.execute("""
                SELECT genus,
                  COUNT(*) AS total,
                  SUM(CASE WHEN scanned = 1 THEN 1 ELSE 0 END) AS scanned,
                  SUM(CASE WHEN scanned = 1 THEN value ELSE 0 END) AS value
                FROM biologicals
                GROUP BY genus
                ORDER BY genus
            """).fetchall():
                genus_counts[row["genus"]] = {
                    "total": row["total"],
                    "scanned": row["scanned"],
                    "value": row["value"],
                }

            return {
                "total_species": total,
                "completed_scans": completed,
                "total_value": value,
                "genus_counts": genus_counts,
            }

        return self._submit(_task, "get_biological_stats")

    # ========================================================================
    # CODEX
    # ========================================================================

    def upsert_codex_entry(self, entry: CodexEntry) -> Dict[str, Any]:
        """First sighting per (entry_id, region) wins; trait/voucher fields take MAX"""
        params = (
            entry.entry_id,
            entry.entry_name,
            entry.category or "",
            entry.sub_category or "",
            entry.region or "",
            entry.system or "",
            entry.system_address or 0,
            entry.body_id,
            int(entry.is_new_entry),
            int(entry.new_traits_discovered),
            entry.voucher_amount,
            entry.timestamp,
        )

        def _task(conn: sqlite3.Connection):
            return _returning_one(conn, """
                INSERT INTO codex_entries (
                  entry_id, name, category, subcategory, region, system_name, system_address,
                  body_id, is_new_entry, new_traits_discovered, voucher_amount, timestamp
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(entry_id, region) DO UPDATE SET
                  new_traits_discovered = MAX(new_traits_discovered, excluded.new_traits_discovered),
                  voucher_amount = MAX(voucher_amount, excluded.voucher_amount)
                RETURNING *
            """, params)

        return self._submit(_task, "upsert_codex_entry")

    def get_codex_entries(
        self,
        category: Optional[str] = None,
        subcategory: Optional[str] = None,
        region: Optional[str] = None,
        new_only: bool = False,
    ) -> List[Dict[str, Any]]:
        conditions: List[str] = []
        params: List[Any] = []
        if category:
            conditions.append("category = ?")
            params.append(category)
        if subcategory:
            conditions.append("subcategory = ?")
            params.append(subcategory)
        if region:
            conditions.append("region = ?")
            params.append(region)
        if new_only:
            conditions.append("is_new_entry = 1")
        where = ("WHERE " + " AND ".join(conditions)) if conditions else ""

        def _task(conn: sqlite3.Connection):
            return _rows_to_dicts(conn.execute(
                f"SELECT * FROM codex_entries {where} ORDER BY timestamp DESC", params
            ).fetchall())

        return self._submit(_task, "get_codex_entries")

    def get_codex_stats(self) -> Dict[str, Any]:
        def _task(conn: sqlite3.Connection):
            total = conn.execute(
                "SELECT COUNT(DISTINCT entry_id) AS c FROM codex_entries"
            ).fetchone()["c"]
            new_entries = conn.execute(
                "SELECT COUNT(*) AS c FROM codex_entries WHERE is_new_entry = 1"
            ).fetchone()["c"]
            vouchers = conn.execute(
                "SELECT COALESCE(SUM(voucher_amount), 0) AS total FROM codex_entries"
            ).fetchone()["total"]
            by_category = {
                row["category"]: row["c"] for row in conn.execute(
                    "SELECT category, COUNT(DISTINCT entry_id) AS c FROM codex_entries GROUP BY category"
                ).fetchall()
            }
            by_region = {
                row["region"]: row["c"] for row in conn.execute(
                    "SELECT region, COUNT(DISTINCT entry_id) AS c FROM codex_entries GROUP BY region"
                ).fetchall()
            }
            return {
                "total_entries": total,
                "new_entries": new_entries,
                "total_vouchers": vouchers,
                "by_category": by_category,
                "by_region": by_region,
            }

        return self._submit(_task, "get_codex_stats")

    # ========================================================================
    # ROUTE HISTORY
    # ========================================================================

    def add_route_entry(
        self,
        system_id: int,
        timestamp: str,
        jump_distance: Optional[float],
        fuel_used: Optional[float],
        session_id: Optional[str],
    ) -> bool:
        """Append a jump; a repeat of the same (system, timestamp) is ignored"""
        def _task(conn: sqlite3.Connection):
            cursor = conn.execute("""
                INSERT OR IGNORE INTO route_history (system_id, timestamp, jump_distance, fuel_used, session_id)
                VALUES (?, ?, ?, ?, ?)
            """, (system_id, timestamp, jump_distance, fuel_used, session_id))
            return cursor.rowcount > 0

        return self._submit(_task, "add_route_entry")

    @staticmethod
    def _route_where(route_filter: Optional[RouteFilter]) -> Tuple[str, List[Any]]:
        conditions: List[str] = []
        params: List[Any] = []
        if route_filter is not None:
            if route_filter.search:
                conditions.append("s.name LIKE ? ESCAPE '\\'")
                params.append(f"%{escape_like(route_filter.search)}%")
            if route_filter.date_from:
                conditions.append("r.timestamp >= ?")
                params.append(route_filter.date_from)
            if route_filter.date_to:
                conditions.append("r.timestamp < ?")
                params.append(route_filter.date_to + "T23:59:59.999Z")
            if route_filter.session_id:
                conditions.append("r.session_id = ?")
                params.append(route_filter.session_id)
        where = ("WHERE " + " AND ".join(conditions)) if conditions else ""
        return where, params

    def get_route_history(
        self,
        limit: int = 100,
        offset: int = 0,
        route_filter: Optional[RouteFilter] = None,
    ) -> List[Dict[str, Any]]:
        """Jumps newest first, with per-system highlights"""
        where, params = self._route_where(route_filter)

        def _task(conn: sqlite3.Connection):
            rows = conn.execute(f"""
                SELECT r.*, s.name AS system_name, s.system_address,
                  s.star_pos_x, s.star_pos_y, s.star_pos_z,
                  COALESCE(s.body_count, (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id)) AS body_count,
                  s.total_value,
                  s.estimated_fss_value,
                  s.estimated_dss_value,
                  (SELECT b.sub_type FROM bodies b WHERE b.system_id = r.system_id AND b.body_type = 'Star'
                     ORDER BY b.body_id ASC LIMIT 1) AS primary_star_type,
                  (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id AND b.discovered_by_me = 1) AS first_discovered,
                  (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id AND b.sub_type = 'earth_like_world') AS elw_count,
                  (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id AND b.sub_type = 'water_world') AS ww_count,
                  (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id AND b.sub_type = 'water_world'
                     AND b.terraformable = 1) AS tww_count,
                  (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id AND b.sub_type = 'ammonia_world') AS ammonia_count,
                  (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id
                     AND b.sub_type = 'high_metal_content_world') AS hmc_count,
                  (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id
                     AND b.sub_type = 'high_metal_content_world' AND b.terraformable = 1) AS thmc_count,
                  (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id AND b.sub_type = 'metal_rich_body') AS metal_rich_count,
                  (SELECT COUNT(*) FROM bodies b WHERE b.system_id = r.system_id AND b.sub_type = 'rocky_body'
                     AND b.terraformable = 1) AS trocky_count
                FROM route_history r
                JOIN systems s ON r.system_id = s.id
                {where}
                ORDER BY r.timestamp DESC
                LIMIT ? OFFSET ?
            """, (*params, limit, offset)).fetchall()
            return _rows_to_dicts(rows)

        return self._submit(_task, "get_route_history")

    def get_route_history_count(self, route_filter: Optional[RouteFilter] = None) -> int:
        where, params = self._route_where(route_filter)

        def _task(conn: sqlite3.Connection):
            return conn.execute(f"""
                SELECT COUNT(*) AS c
                FROM route_history r
                JOIN systems s ON r.system_id = s.id
                {where}
            """, params).fetchone()["c"]

        return self._submit(_task, "get_route_history_count")

    def get_route_history_totals(self, route_filter: Optional[RouteFilter] = None) -> Dict[str, float]:
        where, params = self._route_where(route_filter)

        def _task(conn: sqlite3.Connection):
            row = conn.execute(f"""
                SELECT
                  COALESCE(SUM(r.jump_distance), 0) AS total_distance,
                  COALESCE(SUM(r.fuel_used), 0) AS total_fuel
                FROM route_history r
                JOIN systems s ON r.system_id = s.id
                {where}
            """, params).fetchone()
            return {"total_distance": row["total_distance"], "total_fuel": row["total_fuel"]}

        return self._submit(_task, "get_route_history_totals")

    def get_route_sessions(self) -> List[Dict[str, Any]]:
        def _task(conn: sqlite3.Connection):
            return _rows_to_dicts(conn.execute("""
                SELECT session_id,
                  MIN(timestamp) AS start_time,
                  MAX(timestamp) AS end_time,
                  COUNT(*) AS jump_count
                FROM route_history
                GROUP BY session_id
                ORDER BY start_time DESC
            """).fetchall())

        return self._submit(_task, "get_route_sessions")

    # ========================================================================
    # UPSTREAM CACHE TIER
    # ========================================================================

    def get_cache_entry(self, key: str, now: Optional[datetime] = None) -> Optional[Any]:
        """Decoded payload for an unexpired key; unreadable payloads are dropped"""
        current = _cache_time(now).strftime(CACHE_TIME_FORMAT)

        def _task(conn: sqlite3.Connection):
            row = conn.execute(
                "SELECT data FROM edsm_cache WHERE cache_key = ? AND expires_at > ?",
                (key, current)
            ).fetchone()
            if row is None:
                return None
            try:
                return json.loads(row["data"])
            except ValueError:
                logger.warning("Dropping unreadable cache entry %s", key)
                conn.execute("DELETE FROM edsm_cache WHERE cache_key = ?", (key,))
                return None

        return self._submit(_task, "get_cache_entry")

    def set_cache_entry(
        self,
        key: str,
        kind: str,
        data: Any,
        expiry_hours: float = 24.0,
        now: Optional[datetime] = None,
    ) -> None:
        created = _cache_time(now)
        expires = created + timedelta(hours=expiry_hours)
        payload = json.dumps(data)

        def _task(conn: sqlite3.Connection):
            conn.execute("""
                INSERT INTO edsm_cache (cache_key, cache_type, data, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                  cache_type = excluded.cache_type,
                  data = excluded.data,
                  created_at = excluded.created_at,
                  expires_at = excluded.expires_at
            """, (
                key, kind, payload,
                created.strftime(CACHE_TIME_FORMAT),
                expires.strftime(CACHE_TIME_FORMAT),
            ))

        self._submit(_task, "set_cache_entry")

    def delete_cache_entry(self, key: str) -> None:
        def _task(conn: sqlite3.Connection):
            conn.execute("DELETE FROM edsm_cache WHERE cache_key = ?", (key,))

        self._submit(_task, "delete_cache_entry")

    def clear_cache_entries(self, kind: Optional[str] = None) -> int:
        def _task(conn: sqlite3.Connection):
            if kind:
                cursor = conn.execute("DELETE FROM edsm_cache WHERE cache_type = ?", (kind,))
            else:
                cursor = conn.execute("DELETE FROM edsm_cache")
            return cursor.rowcount

        return self._submit(_task, "clear_cache_entries")

    def cleanup_expired_cache(self, now: Optional[datetime] = None) -> int:
        current = _cache_time(now).strftime(CACHE_TIME_FORMAT)

        def _task(conn: sqlite3.Connection):
            return conn.execute(
                "DELETE FROM edsm_cache WHERE expires_at <= ?", (current,)
            ).rowcount

        return self._submit(_task, "cleanup_expired_cache")

    def get_cache_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        current = _cache_time(now).strftime(CACHE_TIME_FORMAT)

        def _task(conn: sqlite3.Connection):
            row = conn.execute("""
                SELECT
                  COUNT(*) AS total,
                  COALESCE(SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END), 0) AS valid,
                  COALESCE(SUM(CASE WHEN expires_at <= ? THEN 1 ELSE 0 END), 0) AS expired,
                  COALESCE(SUM(LENGTH(data)), 0) AS size
                FROM edsm_cache
            """, (current, current)).fetchone()
            by_type = {
                r["cache_type"]: r["c"] for r in conn.execute(
                    "SELECT cache_type, COUNT(*) AS c FROM edsm_cache GROUP BY cache_type"
                ).fetchall()
            }
            return {
                "total_entries": row["total"],
                "valid_entries": row["valid"],
                "expired_entries": row["expired"],
                "size_bytes": row["size"],
                "by_type": by_type,
            }

        return self._submit(_task, "get_cache_stats")

    # ========================================================================
    # STATISTICS
    # ========================================================================

    def get_statistics(self) -> Dict[str, Any]:
        def _task(conn: sqlite3.Connection):
            def count(sql: str) -> int:
                return conn.execute(sql).fetchone()[0]

            bodies_by_type = {
                row["sub_type"]: row["c"] for row in conn.execute(
                    "SELECT sub_type, COUNT(*) AS c FROM bodies GROUP BY sub_type"
                ).fetchall() if row["sub_type"]
            }
            return {
                "total_systems": count("SELECT COUNT(*) FROM systems"),
                "total_bodies": count("SELECT COUNT(*) FROM bodies"),
                "first_discoveries": count("SELECT COUNT(*) FROM bodies WHERE discovered_by_me = 1"),
                "first_mapped": count("SELECT COUNT(*) FROM bodies WHERE mapped_by_me = 1"),
                "total_value": count("SELECT COALESCE(SUM(scan_value), 0) FROM bodies"),
                "biologicals_scanned": count("SELECT COUNT(*) FROM biologicals WHERE scanned = 1"),
                "bodies_by_type": bodies_by_type,
            }

        return self._submit(_task, "get_statistics")

    def get_body_type_distribution(self) -> List[Dict[str, Any]]:
        def _task(conn: sqlite3.Connection):
            return [
                {"category": row["category"], "count": row["c"], "value": row["value"] or 0}
                for row in conn.execute("""
                    SELECT body_type AS category, COUNT(*) AS c, SUM(scan_value) AS value
                    FROM bodies
                    GROUP BY body_type
                    ORDER BY c DESC
                """).fetchall()
            ]

        return self._submit(_task, "get_body_type_distribution")

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def get_database_info(self) -> Dict[str, Any]:
        def _task(conn: sqlite3.Connection):
            return {
                "system_count": conn.execute("SELECT COUNT(*) FROM systems").fetchone()[0],
                "body_count": conn.execute("SELECT COUNT(*) FROM bodies").fetchone()[0],
            }

        info = self._submit(_task, "get_database_info")
        try:
            size = os.path.getsize(self.db_path)
        except OSError:
            size = 0
        return {"path": str(self.db_path), "size": size, "schema_version": self.schema_version, **info}

    @retry_on_error(max_attempts=3, delay_seconds=0.2)
    def clear_exploration_data(self) -> None:
        """Wipe systems, bodies, biologicals and route history.

        Settings (schema version), codex entries and the upstream cache are
        kept. Runs in one transaction, then VACUUMs.
        """
        def _task(conn: sqlite3.Connection):
            with _transaction(conn):
                conn.execute("DELETE FROM biologicals")
                conn.execute("DELETE FROM route_history")
                conn.execute("DELETE FROM bodies")
                conn.execute("DELETE FROM systems")
            conn.execute("VACUUM")

        self._submit(_task, "clear_exploration_data")
        logger.info("Exploration data cleared")

    @staticmethod
    def validate_import(import_path: Path) -> ImportValidation:
        """
        Check that a file is a readable exploration database

        Never raises; problems come back as ImportValidation(valid=False).
        """
        path = Path(import_path)
        if not path.exists():
            return ImportValidation(valid=False, error="File does not exist")

        try:
            conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            info = classify_db_error(e)
            logger.error("validate_import [%s] %s", info.kind, info.code)
            return ImportValidation(valid=False, error=info.user_message, error_code=info.code)

        try:
            tables = {
                row[0] for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table'"
                ).fetchall()
            }
            for table in REQUIRED_IMPORT_TABLES:
                if table not in tables:
                    return ImportValidation(valid=False, error=f"Missing required table: {table}")
            return ImportValidation(
                valid=True,
                system_count=conn.execute("SELECT COUNT(*) FROM systems").fetchone()[0],
                body_count=conn.execute("SELECT COUNT(*) FROM bodies").fetchone()[0],
            )
        except sqlite3.Error as e:
            info = classify_db_error(e)
            logger.error("validate_import [%s] %s", info.kind, info.code)
            return ImportValidation(valid=False, error=info.user_message, error_code=info.code)
        finally:
            conn.close()

    def import_database(self, import_path: Path) -> Path:
        """
        Replace the store's contents with another database file

        The current contents are backed up next to the store first, then the
        imported file is copied in page by page and migrated to the current
        schema.

        Returns:
            Path of the backup of the previous contents

        Raises:
            ValidationError: The file is not an exploration database
        """
        validation = self.validate_import(import_path)
        if not validation.valid:
            raise ValidationError(
                f"Cannot import {import_path}: {validation.error}",
                context={"path": str(import_path), "code": validation.error_code}
            )

        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        backup_path = self.db_path.with_name(f"{self.db_path.stem}.backup-{stamp}{self.db_path.suffix}")
        source_uri = f"{Path(import_path).resolve().as_uri()}?mode=ro"

        def _task(conn: sqlite3.Connection):
            self._copy_to(conn, backup_path)
            source = sqlite3.connect(source_uri, uri=True)
            try:
                source.backup(conn)
            finally:
                source.close()
            return run_migrations(conn)

        self.schema_version = self._submit(_task, "import_database")
        logger.info(
            "Imported %s (%s systems, %s bodies); previous data saved to %s",
            import_path, validation.system_count, validation.body_count, backup_path
        )
        return backup_path

    @staticmethod
    def _copy_to(conn: sqlite3.Connection, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        target = sqlite3.connect(str(destination))
        try:
            conn.backup(target)
        finally:
            target.close()

    @retry_on_error(max_attempts=3, delay_seconds=0.5)
    def backup_database(self, destination: Path) -> Path:
        """Consistent copy of the live store via the SQLite online backup API"""
        destination = Path(destination)
        self._submit(lambda conn: self._copy_to(conn, destination), "backup_database")
        logger.info("Database backed up to %s", destination)
        return destination

    def close(self):
        """Stop the worker thread and close the connection"""
        if self._closed:
            return
        self._closed = True
        self._task_q.put(None)
        if self._worker.is_alive() and self._worker is not threading.current_thread():
            self._worker.join(timeout=10)
