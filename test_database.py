"""
Unit Tests - Exploration Database
=================================

Tests cover:
- Schema migrations (ordering, rollback on failure)
- Systems, bodies and merge rules
- Signals, footfall, genus hints and ring materials
- Biologicals, codex entries and route history
- Persistent upstream cache tier
- Statistics, import validation, import and backup
"""

import shutil
import sqlite3
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Import components to test
import sys
sys.path.insert(0, str(Path(__file__).parent / "src"))

from galnetops.database import ExplorationDatabase, RouteFilter, escape_like
from galnetops.errors import CorruptionStoreError, MigrationError, ValidationError
from galnetops.events import parse_event
from galnetops.migrations import Migration, get_schema_version, latest_version, run_migrations
from galnetops.signals import SignalCounts


ADDRESS = 10477373803


def make_scan(**fields):
    raw = {
        "timestamp": "2025-01-01T12:00:00Z",
        "event": "Scan",
        "ScanType": "Detailed",
        "BodyName": "Sol 3",
        "BodyID": 3,
        "SystemAddress": ADDRESS,
        "StarSystem": "Sol",
        "PlanetClass": "Earthlike body",
        "DistanceFromArrivalLS": 499.0,
        "Parents": [{"Star": 0}],
        "WasDiscovered": False,
        "WasMapped": False,
    }
    raw.update(fields)
    return parse_event(raw)


def make_codex(**fields):
    raw = {
        "timestamp": "2025-01-01T12:00:00Z",
        "event": "CodexEntry",
        "EntryID": 2100401,
        "Name_Localised": "Bacterium Aurasus - Teal",
        "Category_Localised": "Biological and Geological",
        "SubCategory_Localised": "Organic structures",
        "Region_Localised": "Inner Orion Spur",
        "System": "Sol",
        "SystemAddress": ADDRESS,
        "IsNewEntry": True,
        "VoucherAmount": 2500,
    }
    raw.update(fields)
    return parse_event(raw)


class DatabaseTestCase(unittest.TestCase):
    """Fresh database per test"""

    def setUp(self):
        """Set up test fixtures"""
        self.tmp = Path(tempfile.mkdtemp())
        self.db = ExplorationDatabase(self.tmp / "test.db")
        self.system = self.db.upsert_system(ADDRESS, "Sol", (0.0, 0.0, 0.0), timestamp="2025-01-01T10:00:00Z")

    def tearDown(self):
        self.db.close()
        shutil.rmtree(self.tmp, ignore_errors=True)


# ============================================================================
# TEST MIGRATIONS
# ============================================================================

class TestMigrations(unittest.TestCase):
    """Test the migration runner"""

    def setUp(self):
        self.conn = sqlite3.connect(":memory:", isolation_level=None)
        self.conn.row_factory = sqlite3.Row

    def tearDown(self):
        self.conn.close()

    def test_full_schema(self):
        """Test every migration applies to an empty database"""
        version = run_migrations(self.conn)

        self.assertEqual(version, latest_version())
        self.assertEqual(get_schema_version(self.conn), 12)
        tables = {row[0] for row in self.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        for table in ("systems", "bodies", "biologicals", "route_history", "settings", "edsm_cache", "codex_entries"):
            self.assertIn(table, tables)

    def test_rerun_is_noop(self):
        """Test running again leaves the version alone"""
        run_migrations(self.conn)
        self.assertEqual(run_migrations(self.conn), 12)

    def test_failed_migration_rolls_back(self):
        """Test a failing migration keeps the previous version and no partial changes"""
        def create_first(conn):
            conn.execute("CREATE TABLE alpha (id INTEGER)")

        def half_done(conn):
            conn.execute("CREATE TABLE beta (id INTEGER)")
            conn.execute("INSERT INTO missing_table VALUES (1)")

        migrations = [
            Migration(1, "first", create_first),
            Migration(2, "broken", half_done),
        ]

        with self.assertRaises(MigrationError) as ctx:
            run_migrations(self.conn, migrations)

        self.assertEqual(ctx.exception.version, 2)
        self.assertEqual(get_schema_version(self.conn), 1)
        tables = {row[0] for row in self.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        self.assertIn("alpha", tables)
        self.assertNotIn("beta", tables)


class TestDatabaseLifecycle(unittest.TestCase):
    """Test opening and closing the store"""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_schema_version_after_open(self):
        """Test the constructor runs migrations"""
        db = ExplorationDatabase(self.tmp / "nested" / "store.db")
        try:
            self.assertEqual(db.schema_version, latest_version())
            self.assertFalse(db.is_closed)
        finally:
            db.close()
        self.assertTrue(db.is_closed)

    def test_corrupt_file(self):
        """Test a foreign file is reported as corruption"""
        path = self.tmp / "garbage.db"
        path.write_bytes(b"this is not a database file at all" * 200)

        with self.assertRaises(CorruptionStoreError):
            ExplorationDatabase(path)

    def test_closed_database_refuses_work(self):
        """Test operations after close raise"""
        db = ExplorationDatabase(self.tmp / "store.db")
        db.close()

        with self.assertRaises(RuntimeError):
            db.get_current_system()

    def test_concurrent_writers(self):
        """Test many threads can share one instance"""
        db = ExplorationDatabase(self.tmp / "store.db")
        errors = []

        def worker(offset):
            try:
                for i in range(20):
                    db.upsert_system(offset * 100 + i, f"System {offset}-{i}", (0.0, 0.0, 0.0))
            except Exception as e:
                errors.append(e)

        try:
            threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            self.assertEqual(errors, [])
            self.assertEqual(db.get_database_info()["system_count"], 100)
        finally:
            db.close()


# ============================================================================
# TEST SYSTEMS
# ============================================================================

class TestSystems(DatabaseTestCase):
    """Test system rows"""

    def test_upsert_returns_row(self):
        """Test upsert returns the stored row"""
        self.assertEqual(self.system["name"], "Sol")
        self.assertEqual(self.system["system_address"], ADDRESS)
        self.assertFalse(self.system["all_bodies_found"])

    def test_visit_window(self):
        """Test revisits keep the earliest first and the latest last visit"""
        self.db.upsert_system(ADDRESS, "Renamed", (9.0, 9.0, 9.0), timestamp="2025-01-03T10:00:00Z")
        row = self.db.upsert_system(ADDRESS, "Sol", (0.0, 0.0, 0.0), timestamp="2024-12-31T10:00:00Z")

        self.assertEqual(row["first_visited"], "2024-12-31T10:00:00Z")
        self.assertEqual(row["last_visited"], "2025-01-03T10:00:00Z")
        self.assertEqual(row["name"], "Sol")
        self.assertEqual(row["star_pos_x"], 0.0)

    def test_lookups(self):
        """Test lookup by address, id and case-insensitive name"""
        self.assertEqual(self.db.get_system_by_address(ADDRESS)["id"], self.system["id"])
        self.assertEqual(self.db.get_system_by_id(self.system["id"])["name"], "Sol")
        self.assertEqual(self.db.get_system_by_name("  sOL ")["id"], self.system["id"])
        self.assertIsNone(self.db.get_system_by_address(1))
        self.assertIsNone(self.db.get_system_by_name(""))

    def test_current_system(self):
        """Test the most recently visited system is current"""
        self.db.upsert_system(2, "Achenar", (67.5, -119.5, 24.8), timestamp="2025-01-02T10:00:00Z")
        self.assertEqual(self.db.get_current_system()["name"], "Achenar")

    def test_search_ranking(self):
        """Test exact, prefix and substring ordering"""
        self.db.upsert_system(2, "Alsol", (0.0, 0.0, 0.0))
        self.db.upsert_system(3, "Solati", (0.0, 0.0, 0.0))
        self.db.upsert_system(4, "Maia", (0.0, 0.0, 0.0))

        names = [row["name"] for row in self.db.search_systems("sol")]

        self.assertEqual(names, ["Sol", "Solati", "Alsol"])
        self.assertEqual(self.db.search_systems("   "), [])

    def test_search_escapes_wildcards(self):
        """Test LIKE wildcards match literally"""
        self.db.upsert_system(2, "Col 285 Sector", (0.0, 0.0, 0.0))

        self.assertEqual(self.db.search_systems("%"), [])
        self.assertEqual(escape_like("50%_off"), "50\\%\\_off")

    def test_body_count_and_all_bodies(self):
        """Test honk and all-bodies flags"""
        self.db.update_system_body_count(ADDRESS, 12)
        self.db.mark_system_all_bodies_found(ADDRESS)

        row = self.db.get_system_by_address(ADDRESS)
        self.assertEqual(row["body_count"], 12)
        self.assertTrue(row["all_bodies_found"])


# ============================================================================
# TEST BODIES
# ============================================================================

class TestBodies(DatabaseTestCase):
    """Test body merge rules"""

    def test_first_discovery(self):
        """Test a new ELW is stored with canonical sub-type and value"""
        body = self.db.upsert_body(self.system["id"], make_scan())

        self.assertEqual(body["body_type"], "Planet")
        self.assertEqual(body["sub_type"], "earth_like_world")
        self.assertEqual(body["scan_type"], "Detailed")
        self.assertEqual(body["scan_value"], 405000)
        self.assertTrue(body["discovered_by_me"])

        system = self.db.get_system_by_id(self.system["id"])
        self.assertEqual(system["total_value"], 405000)
        self.assertEqual(system["discovered_count"], 1)
        self.assertEqual(system["estimated_dss_value"], 2022975)

    def test_scan_type_never_downgrades(self):
        """Test a Basic rescan keeps Detailed and its snapshot"""
        self.db.upsert_body(self.system["id"], make_scan(Landable=False))
        body = self.db.upsert_body(self.system["id"], make_scan(ScanType="Basic", Extra="basic"))

        self.assertEqual(body["scan_type"], "Detailed")
        self.assertNotIn("basic", body["raw_json"])

    def test_flags_only_go_up(self):
        """Test a later scan cannot clear flags or our discovery"""
        self.db.upsert_body(self.system["id"], make_scan(Landable=True))
        body = self.db.upsert_body(self.system["id"], make_scan(Landable=False, WasDiscovered=True))

        self.assertTrue(body["landable"])
        self.assertTrue(body["discovered_by_me"])
        self.assertTrue(body["was_discovered"])

    def test_mapping(self):
        """Test mapping sets Mapped and recomputes the value"""
        self.db.upsert_body(self.system["id"], make_scan())

        self.assertTrue(self.db.update_body_mapped(self.system["id"], 3))

        body = self.db.get_body_by_system_and_body_id(self.system["id"], 3)
        self.assertEqual(body["scan_type"], "Mapped")
        self.assertTrue(body["mapped_by_me"])
        self.assertEqual(body["scan_value"], 2022975)
        self.assertEqual(self.db.get_system_by_id(self.system["id"])["mapped_count"], 1)

    def test_mapped_is_frozen(self):
        """Test a rescan after mapping keeps the mapped state and value"""
        self.db.upsert_body(self.system["id"], make_scan())
        self.db.update_body_mapped(self.system["id"], 3)

        body = self.db.upsert_body(self.system["id"], make_scan())

        self.assertEqual(body["scan_type"], "Mapped")
        self.assertEqual(body["scan_value"], 2022975)

    def test_mapping_unknown_body(self):
        """Test mapping a body we have no row for"""
        self.assertFalse(self.db.update_body_mapped(self.system["id"], 99))

    def test_ring_has_no_value(self):
        """Test rings carry no scan value"""
        body = self.db.upsert_body(self.system["id"], make_scan(
            BodyName="Sol 5 A Ring", BodyID=9, PlanetClass=None
        ))

        self.assertEqual(body["body_type"], "Ring")
        self.assertEqual(body["scan_value"], 0)

    def test_body_lookups(self):
        """Test lookups by id and name"""
        self.db.upsert_body(self.system["id"], make_scan())
        self.db.upsert_body(self.system["id"], make_scan(BodyName="Sol", BodyID=0, StarType="G",
                                                         PlanetClass=None, DistanceFromArrivalLS=0.0))

        bodies = self.db.get_system_bodies(self.system["id"])
        self.assertEqual([b["name"] for b in bodies], ["Sol", "Sol 3"])
        self.assertEqual(self.db.get_body_by_name(self.system["id"], "Sol 3")["body_id"], 3)
        self.assertIsNone(self.db.get_body_by_name(self.system["id"], "Sol 4"))

    def test_signals(self):
        """Test counts replace bio/geo and keep unknown human/thargoid"""
        self.assertFalse(self.db.update_body_signals(self.system["id"], 3, SignalCounts(bio=1)))

        self.db.upsert_body(self.system["id"], make_scan())
        self.db.update_body_signals(self.system["id"], 3, SignalCounts(bio=2, geo=1, human=4))
        self.assertTrue(self.db.update_body_signals(self.system["id"], 3, SignalCounts(bio=3)))

        body = self.db.get_body_by_system_and_body_id(self.system["id"], 3)
        self.assertEqual(body["bio_signals"], 3)
        self.assertEqual(body["geo_signals"], 0)
        self.assertEqual(body["human_signals"], 4)

    def test_footfall(self):
        """Test first footfall is recorded once and only on untouched bodies"""
        self.db.upsert_body(self.system["id"], make_scan())
        self.db.upsert_body(self.system["id"], make_scan(BodyName="Sol 4", BodyID=4, WasFootfalled=True))

        self.assertTrue(self.db.update_body_footfalled(self.system["id"], 3))
        self.assertFalse(self.db.update_body_footfalled(self.system["id"], 4))
        self.assertFalse(self.db.update_body_footfalled(self.system["id"], 42))
        self.assertTrue(self.db.get_body_by_system_and_body_id(self.system["id"], 3)["footfalled_by_me"])

    def test_genus_hints(self):
        """Test genus hints land in the snapshot"""
        self.db.upsert_body(self.system["id"], make_scan())

        self.assertTrue(self.db.merge_body_genuses(self.system["id"], 3, ["Bacterium", "Osseus"]))
        self.assertFalse(self.db.merge_body_genuses(self.system["id"], 3, []))

        body = self.db.get_body_by_system_and_body_id(self.system["id"], 3)
        self.assertIn('"Genuses": ["Bacterium", "Osseus"]', body["raw_json"])

    def test_ring_materials(self):
        """Test ring materials merge into the parent's ring entry"""
        self.db.upsert_body(self.system["id"], make_scan(
            BodyName="Sol 5", BodyID=5, PlanetClass="Sudarsky class I gas giant",
            Rings=[{"Name": "Sol 5 A Ring", "RingClass": "eRingClass_Metalic"}],
        ))

        merged = self.db.merge_ring_materials_into_parent(
            self.system["id"], "Sol 5", "Sol 5 A Ring", [{"Name": "Platinum", "Count": 4}]
        )
        missing = self.db.merge_ring_materials_into_parent(
            self.system["id"], "Sol 5", "Sol 5 B Ring", [{"Name": "Platinum", "Count": 4}]
        )

        self.assertTrue(merged)
        self.assertFalse(missing)
        body = self.db.get_body_by_name(self.system["id"], "Sol 5")
        self.assertIn("Platinum", body["raw_json"])

    def test_recalculate_values(self):
        """Test recalculation reproduces the stored values"""
        self.db.upsert_body(self.system["id"], make_scan())
        self.db.update_body_mapped(self.system["id"], 3)

        self.db.recalculate_system_values(self.system["id"])

        self.assertEqual(self.db.get_system_by_id(self.system["id"])["total_value"], 2022975)


# ============================================================================
# TEST BIOLOGICALS AND CODEX
# ============================================================================

class TestBiologicals(DatabaseTestCase):
    """Test exobiology rows"""

    def setUp(self):
        super().setUp()
        self.body = self.db.upsert_body(self.system["id"], make_scan())

    def test_progress_moves_forward(self):
        """Test progress keeps its maximum and flips scanned at Analyse"""
        self.db.upsert_biological(self.body["id"], "Aleoida", "Aleoida Arcus", None, 7252500, 1)
        row = self.db.upsert_biological(self.body["id"], "Aleoida", "Aleoida Arcus", "Teal", 7252500, 3)
        row_after = self.db.upsert_biological(self.body["id"], "Aleoida", "Aleoida Arcus", None, 7252500, 2)

        self.assertTrue(row["scanned"])
        self.assertEqual(row_after["scan_progress"], 3)
        self.assertTrue(row_after["scanned"])
        self.assertEqual(row_after["variant"], "Teal")
        self.assertEqual(len(self.db.get_body_biologicals(self.body["id"])), 1)

    def test_stats(self):
        """Test stats only count completed scans towards value"""
        self.db.upsert_biological(self.body["id"], "Aleoida", "Aleoida Arcus", None, 7252500, 3)
        self.db.upsert_biological(self.body["id"], "Bacterium", "Bacterium Vesicula", None, 1000000, 1)

        stats = self.db.get_biological_stats()

        self.assertEqual(stats["total_species"], 2)
        self.assertEqual(stats["completed_scans"], 1)
        self.assertEqual(stats["total_value"], 7252500)
        self.assertEqual(stats["genus_counts"]["Bacterium"]["scanned"], 0)

    def test_all_biologicals(self):
        """Test the joined listing carries names"""
        self.db.upsert_biological(self.body["id"], "Aleoida", "Aleoida Arcus", None, 7252500, 1)

        rows = self.db.get_all_biologicals()
        self.assertEqual(rows[0]["body_name"], "Sol 3")
        self.assertEqual(rows[0]["system_name"], "Sol")


class TestCodex(DatabaseTestCase):
    """Test codex entries"""

    def test_first_sighting_wins(self):
        """Test repeats merge into one row per entry and region"""
        self.db.upsert_codex_entry(make_codex())
        entry = self.db.upsert_codex_entry(make_codex(
            timestamp="2025-02-01T00:00:00Z", IsNewEntry=False, NewTraitsDiscovered=True, VoucherAmount=100
        ))

        self.assertEqual(entry["timestamp"], "2025-01-01T12:00:00Z")
        self.assertTrue(entry["is_new_entry"])
        self.assertTrue(entry["new_traits_discovered"])
        self.assertEqual(entry["voucher_amount"], 2500)
        self.assertEqual(len(self.db.get_codex_entries()), 1)

    def test_other_region_is_separate(self):
        """Test the same entry in another region is a new row"""
        self.db.upsert_codex_entry(make_codex())
        self.db.upsert_codex_entry(make_codex(Region_Localised="Outer Arm", IsNewEntry=False))

        self.assertEqual(len(self.db.get_codex_entries()), 2)
        self.assertEqual(len(self.db.get_codex_entries(new_only=True)), 1)
        self.assertEqual(len(self.db.get_codex_entries(region="Outer Arm")), 1)

        stats = self.db.get_codex_stats()
        self.assertEqual(stats["total_entries"], 1)
        self.assertEqual(stats["by_region"]["Outer Arm"], 1)


# ============================================================================
# TEST ROUTE HISTORY
# ============================================================================

class TestRouteHistory(DatabaseTestCase):
    """Test jump history"""

    def setUp(self):
        super().setUp()
        self.other = self.db.upsert_system(2, "Achenar", (67.5, -119.5, 24.8))
        self.db.add_route_entry(self.system["id"], "2025-01-01T10:00:00Z", 10.0, 1.0, "session_a")
        self.db.add_route_entry(self.other["id"], "2025-01-02T10:00:00Z", 20.0, 2.0, "session_b")

    def test_duplicates_ignored(self):
        """Test the same jump is stored once"""
        added = self.db.add_route_entry(self.system["id"], "2025-01-01T10:00:00Z", 10.0, 1.0, "session_c")

        self.assertFalse(added)
        self.assertEqual(self.db.get_route_history_count(), 2)

    def test_newest_first(self):
        """Test history ordering and joined fields"""
        history = self.db.get_route_history()

        self.assertEqual([row["system_name"] for row in history], ["Achenar", "Sol"])
        self.assertEqual(history[1]["system_address"], ADDRESS)

    def test_filters(self):
        """Test search, date and session filters"""
        self.assertEqual(self.db.get_route_history_count(RouteFilter(search="ache")), 1)
        self.assertEqual(self.db.get_route_history_count(RouteFilter(date_from="2025-01-02")), 1)
        self.assertEqual(self.db.get_route_history_count(RouteFilter(date_to="2025-01-01")), 1)
        self.assertEqual(self.db.get_route_history_count(RouteFilter(session_id="session_b")), 1)

    def test_totals_and_sessions(self):
        """Test distance/fuel totals and session grouping"""
        totals = self.db.get_route_history_totals()
        sessions = self.db.get_route_sessions()

        self.assertEqual(totals["total_distance"], 30.0)
        self.assertEqual(totals["total_fuel"], 3.0)
        self.assertEqual([s["session_id"] for s in sessions], ["session_b", "session_a"])

    def test_highlights(self):
        """Test per-system highlight counts"""
        self.db.upsert_body(self.system["id"], make_scan())

        row = self.db.get_route_history(route_filter=RouteFilter(search="Sol"))[0]
        self.assertEqual(row["elw_count"], 1)
        self.assertEqual(row["first_discovered"], 1)


# ============================================================================
# TEST CACHE TIER
# ============================================================================

class TestCacheTier(DatabaseTestCase):
    """Test the persistent upstream cache"""

    def setUp(self):
        super().setUp()
        self.t0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.db.set_cache_entry("system:sol", "system", {"name": "Sol"}, expiry_hours=1, now=self.t0)

    def test_hit_before_expiry(self):
        """Test an entry is served inside its lifetime"""
        data = self.db.get_cache_entry("system:sol", now=self.t0 + timedelta(minutes=30))
        self.assertEqual(data, {"name": "Sol"})

    def test_miss_after_expiry(self):
        """Test an expired entry is not served"""
        self.assertIsNone(self.db.get_cache_entry("system:sol", now=self.t0 + timedelta(hours=2)))

    def test_cleanup_and_stats(self):
        """Test sweeping expired entries and stats"""
        self.db.set_cache_entry("bodies:sol", "bodies", {"bodyCount": 9}, expiry_hours=24, now=self.t0)
        later = self.t0 + timedelta(hours=2)

        stats = self.db.get_cache_stats(now=later)
        self.assertEqual(stats["total_entries"], 2)
        self.assertEqual(stats["expired_entries"], 1)
        self.assertEqual(stats["by_type"], {"system": 1, "bodies": 1})

        self.assertEqual(self.db.cleanup_expired_cache(now=later), 1)
        self.assertEqual(self.db.get_cache_stats(now=later)["total_entries"], 1)

    def test_clear_by_kind(self):
        """Test clearing one kind and deleting one key"""
        self.db.set_cache_entry("value:sol", "value", {"estimatedValue": 1}, now=self.t0)

        self.assertEqual(self.db.clear_cache_entries("system"), 1)
        self.db.delete_cache_entry("value:sol")
        self.assertEqual(self.db.get_cache_stats()["total_entries"], 0)


# ============================================================================
# TEST STATISTICS AND FILES
# ============================================================================

class TestStatisticsAndFiles(DatabaseTestCase):
    """Test aggregates, clearing, import and backup"""

    def setUp(self):
        super().setUp()
        self.db.upsert_body(self.system["id"], make_scan())
        self.db.add_route_entry(self.system["id"], "2025-01-01T10:00:00Z", 5.0, 0.5, "s")
        self.db.upsert_codex_entry(make_codex())

    def test_statistics(self):
        """Test overall statistics"""
        stats = self.db.get_statistics()

        self.assertEqual(stats["total_systems"], 1)
        self.assertEqual(stats["total_bodies"], 1)
        self.assertEqual(stats["first_discoveries"], 1)
        self.assertEqual(stats["bodies_by_type"], {"earth_like_world": 1})
        self.assertEqual(self.db.get_body_type_distribution()[0]["category"], "Planet")

    def test_database_info(self):
        """Test file information"""
        info = self.db.get_database_info()

        self.assertEqual(info["schema_version"], 12)
        self.assertEqual(info["system_count"], 1)
        self.assertIn("size", info)

    def test_clear_keeps_codex(self):
        """Test clearing exploration data keeps codex entries"""
        self.db.clear_exploration_data()

        self.assertIsNone(self.db.get_system_by_address(ADDRESS))
        self.assertEqual(self.db.get_route_history_count(), 0)
        self.assertEqual(len(self.db.get_codex_entries()), 1)

    def test_validate_missing_file(self):
        """Test validation of a missing file"""
        result = ExplorationDatabase.validate_import(self.tmp / "absent.db")

        self.assertFalse(result.valid)
        self.assertEqual(result.error, "File does not exist")

    def test_validate_missing_table(self):
        """Test validation of a database without our tables"""
        path = self.tmp / "other.db"
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE systems (id INTEGER)")
        conn.commit()
        conn.close()

        result = ExplorationDatabase.validate_import(path)
        self.assertEqual(result.error, "Missing required table: bodies")

    def test_validate_garbage(self):
        """Test validation of a non-database file"""
        path = self.tmp / "garbage.db"
        path.write_bytes(b"garbage" * 1000)

        result = ExplorationDatabase.validate_import(path)
        self.assertFalse(result.valid)
        self.assertIsNotNone(result.error)

    def test_backup_and_import(self):
        """Test a backup validates and restores the data"""
        backup = self.db.backup_database(self.tmp / "backups" / "copy.db")

        validation = ExplorationDatabase.validate_import(backup)
        self.assertTrue(validation.valid)
        self.assertEqual(validation.system_count, 1)
        self.assertEqual(validation.body_count, 1)

        self.db.clear_exploration_data()
        previous = self.db.import_database(backup)

        self.assertTrue(previous.exists())
        self.assertEqual(ExplorationDatabase.validate_import(previous).system_count, 0)
        self.assertIsNotNone(self.db.get_system_by_address(ADDRESS))
        self.assertEqual(self.db.schema_version, 12)

    def test_import_rejects_invalid(self):
        """Test importing an invalid file raises"""
        with self.assertRaises(ValidationError):
            self.db.import_database(self.tmp / "absent.db")
        self.assertIsNotNone(self.db.get_system_by_address(ADDRESS))


# ============================================================================
# RUN TESTS
# ============================================================================

if __name__ == "__main__":
    unittest.main(verbosity=2)
