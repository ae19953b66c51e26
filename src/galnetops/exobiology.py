"""
Exobiology Values
=================

Vista Genomics payout per species, plus genus-level sample distances and
value ranges used before a species is known.
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   exobiology.py
#
# Connected modules (direct imports):
#   normalization
# ============================================================================

from typing import Optional, Tuple

from .normalization import normalize_species_name


# ============================================================================
# SPECIES VALUES (sample + analyse, CR)
# ============================================================================

_BIOLOGICAL_ENTRIES = (
    ("Aleoida Arcus", 7252500), ("Aleoida Coronamus", 6284600), ("Aleoida Gravis", 12934900),
    ("Aleoida Laminiae", 3385200), ("Aleoida Spica", 3385200),
    ("Bacterium Acies", 1000000), ("Bacterium Alcyoneum", 1658500), ("Bacterium Aurasus", 1000000),
    ("Bacterium Bullaris", 1152500), ("Bacterium Cerbrus", 1689800), ("Bacterium Informem", 8418000),
    ("Bacterium Nebulus", 5289900), ("Bacterium Omentum", 4638900), ("Bacterium Scopulum", 4934500),
    ("Bacterium Tela", 1949000), ("Bacterium Verrata", 3897000), ("Bacterium Vesicula", 1000000),
    ("Bacterium Volu", 7774700),
    ("Cactoida Cortexum", 3667600), ("Cactoida Lapis", 2483600), ("Cactoida Peperatis", 2483600),
    ("Cactoida Pullulanta", 3667600), ("Cactoida Vermis", 16202800),
    ("Clypeus Lacrimam", 8418000), ("Clypeus Margaritus", 11873200), ("Clypeus Speculumi", 16202800),
    ("Concha Aureolas", 7774700), ("Concha Biconcavis", 19010800), ("Concha Labiata", 2352400),
    ("Concha Renibus", 4572400),
    ("Electricae Pluma", 6284600), ("Electricae Radialem", 6284600),
    ("Fonticulua Campestris", 1000000), ("Fonticulua Digitos", 5988900), ("Fonticulua Fluctus", 20000000),
    ("Fonticulua Lapida", 3111000), ("Fonticulua Segmentatus", 19010800), ("Fonticulua Upupam", 5727600),
    ("Frutexa Acus", 7774700), ("Frutexa Collum", 1639800), ("Frutexa Fera", 1632500),
    ("Frutexa Flabellum", 1808900), ("Frutexa Flammasis", 10326000), ("Frutexa Metallicum", 1632500),
    ("Frutexa Sponsae", 5988900),
    ("Fumerola Aquatis", 6284600), ("Fumerola Carbosis", 6284600), ("Fumerola Extremus", 16202800),
    ("Fumerola Nitris", 7500900),
    ("Fungoida Bullarum", 3703200), ("Fungoida Gelata", 3330300), ("Fungoida Setisis", 1670100),
    ("Fungoida Stabitis", 2680300),
    ("Osseus Cornibus", 1483000), ("Osseus Discus", 12934900), ("Osseus Fractus", 4027800),
    ("Osseus Pellebantus", 9739000), ("Osseus Pumice", 3156300), ("Osseus Spiralis", 2404700),
    ("Recepta Conditivus", 14313700), ("Recepta Deltahedronix", 16202800), ("Recepta Umbrux", 12934900),
    ("Stratum Araneamus", 2448900), ("Stratum Cucumisis", 16202800), ("Stratum Excutitus", 2448900),
    ("Stratum Frigus", 2637500), ("Stratum Laminamus", 2788300), ("Stratum Limaxus", 1362000),
    ("Stratum Paleas", 1362000), ("Stratum Tectonicas", 19010800),
    ("Tubus Cavas", 11873200), ("Tubus Compagibus", 7774700), ("Tubus Conifer", 2415500),
    ("Tubus Rosarium", 2637500), ("Tubus Sororibus", 5727600),
    ("Tussock Albata", 3252500), ("Tussock Capillum", 7025800), ("Tussock Caputus", 3472400),
    ("Tussock Catena", 1766600), ("Tussock Cultro", 1766600), ("Tussock Divisa", 1766600),
    ("Tussock Ignis", 1849000), ("Tussock Pennata", 5853800), ("Tussock Pennatis", 1000000),
    ("Tussock Propagito", 1000000), ("Tussock Serrati", 4447100), ("Tussock Stigmasis", 19010800),
    ("Tussock Triticum", 7774700), ("Tussock Ventusa", 3227700), ("Tussock Virgam", 14313700),
)

BIOLOGICAL_VALUES = {
    normalize_species_name(name): value for name, value in _BIOLOGICAL_ENTRIES
}


def get_biological_value(species: Optional[str]) -> int:
    """Payout for a species name (any casing); 0 when unknown"""
    return BIOLOGICAL_VALUES.get(normalize_species_name(species), 0)


# ============================================================================
# GENUS DATA
# ============================================================================

# Minimum distance between samples, metres
GENUS_SAMPLE_DISTANCES = {
    "Aleoida": 150,
    "Amphora Plant": 100,
    "Anemone": 100,
    "Bacterium": 500,
    "Bark Mound": 100,
    "Brain Tree": 100,
    "Cactoida": 300,
    "Clypeus": 150,
    "Concha": 150,
    "Crystalline Shard": 100,
    "Electricae": 1000,
    "Fonticulua": 500,
    "Frutexa": 150,
    "Fumerola": 100,
    "Fungoida": 300,
    "Osseus": 800,
    "Recepta": 150,
    "Sinuous Tuber": 100,
    "Stratum": 500,
    "Tubus": 800,
    "Tussock": 200,
    "Thargoid": 100,
}

GENUS_VALUE_RANGES = {
    "Aleoida": (3_385_200, 12_934_900),
    "Amphora Plant": (3_626_400, 3_626_400),
    "Anemone": (1_499_900, 3_399_800),
    "Bacterium": (1_000_000, 9_116_600),
    "Bark Mound": (1_471_900, 1_471_900),
    "Brain Tree": (1_593_700, 3_565_100),
    "Cactoida": (2_483_600, 16_202_800),
    "Clypeus": (8_418_000, 16_202_800),
    "Concha": (2_352_400, 16_777_215),
    "Crystalline Shard": (3_626_400, 3_626_400),
    "Electricae": (6_284_600, 6_284_600),
    "Fonticulua": (1_000_000, 19_010_800),
    "Frutexa": (1_632_500, 10_326_000),
    "Fumerola": (6_284_600, 16_202_800),
    "Fungoida": (1_670_100, 3_703_200),
    "Osseus": (1_483_000, 12_934_900),
    "Recepta": (12_934_900, 16_202_800),
    "Sinuous Tuber": (1_514_500, 3_425_600),
    "Stratum": (1_362_000, 19_010_800),
    "Tubus": (2_415_500, 11_873_200),
    "Tussock": (1_000_000, 19_010_800),
    "Thargoid": (1_896_800, 2_313_500),
}


def _genus_lookup(table: dict, genus: Optional[str]):
    if not genus:
        return None
    wanted = genus.strip().lower()
    for key, value in table.items():
        if key.lower() == wanted:
            return value
    return None


def get_genus_sample_distance(genus: Optional[str]) -> Optional[int]:
    return _genus_lookup(GENUS_SAMPLE_DISTANCES, genus)


def get_genus_value_range(genus: Optional[str]) -> Optional[Tuple[int, int]]:
    return _genus_lookup(GENUS_VALUE_RANGES, genus)


SCAN_PROGRESS = {
    "Log": 1,
    "Sample": 2,
    "Analyse": 3,
}

FULLY_SCANNED_PROGRESS = 3


def scan_progress_for(scan_type: Optional[str]) -> int:
    """Numeric progress tier for a ScanOrganic ScanType (unknown -> 0)"""
    return SCAN_PROGRESS.get(scan_type or "", 0)
