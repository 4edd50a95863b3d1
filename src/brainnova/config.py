from __future__ import annotations

import os
from typing import Dict, List

# ---------------------------------------------------------------------------
# App identity
# ---------------------------------------------------------------------------

APP_NAME = "BRAINNOVA Economía Digital"
APP_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Supabase / PostgREST configuration
#
# The index lives in a hosted Postgres exposed through PostgREST:
#   {SUPABASE_URL}/rest/v1/<table>
#
# Only the public (anon) key is needed; every call is a read.
# ---------------------------------------------------------------------------

SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "").strip()

REST_PATH = "/rest/v1"

# Table names in the backend
DIMENSIONS_TABLE = "dimensiones"
SUBDIMENSIONS_TABLE = "subdimensiones"
INDICATORS_TABLE = "definicion_indicadores"
RESULTS_TABLE = "resultado_indicadores"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


HTTP_TIMEOUT_SECONDS = _env_int("BRAINNOVA_HTTP_TIMEOUT", 30)
MAX_WORKERS = max(1, _env_int("BRAINNOVA_MAX_WORKERS", 8))
CACHE_TTL_SECONDS = _env_int("BRAINNOVA_CACHE_TTL", 300)
CACHE_MAX_ENTRIES = max(1, _env_int("BRAINNOVA_CACHE_MAX_ENTRIES", 256))
LOG_LEVEL = os.getenv("BRAINNOVA_LOG_LEVEL", "INFO").strip().upper() or "INFO"

# ---------------------------------------------------------------------------
# Territory vocabulary
# ---------------------------------------------------------------------------

DEFAULT_TERRITORY = "Comunitat Valenciana"
DEFAULT_PERIOD = 2024

# National reference used for the "España" comparison column
NATIONAL_REFERENCE = "España"

# Peer countries averaged for the "UE" comparison column (exact period only)
EU_PEERS: List[str] = ["Alemania", "Francia", "Italia", "Países Bajos"]

# Results are loaded by several pipelines that do not agree on territory
# names; these are tried in order.
TERRITORY_VARIANTS: Dict[str, List[str]] = {
    "Comunitat Valenciana": ["Comunitat Valenciana", "Comunidad Valenciana", "Valencia", "CV"],
    "España": ["España", "Spain", "Esp"],
}

# Selector options shown in the UI
TERRITORY_OPTIONS = ["Comunitat Valenciana", "España"]
YEAR_OPTIONS = [2024, 2023, 2022]
REFERENCE_OPTIONS = ["Media UE", "España"]


def territory_variants(territory: str) -> List[str]:
    """Known spellings of a territory, the canonical name first."""
    return list(TERRITORY_VARIANTS.get(territory, [territory]))
