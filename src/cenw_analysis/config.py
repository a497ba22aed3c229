from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------

# Root of the project (repo root)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
OUTPUT_DIR = Path(os.getenv("CENW_OUTPUT_DIR", str(DATA_DIR / "coded"))).expanduser()

# Raw export of the combined Wave 1 + Wave 2 SPSS file
DEFAULT_INPUT_PATH = Path(
    os.getenv("CENW_INPUT_PATH", str(DATA_DIR / "DATA_WAVE1_WAVE2_CenW.sav"))
).expanduser()

# Optional CODEBOOK workbook replacing the built-in declarations
_codebook_env = os.getenv("CENW_CODEBOOK_PATH", "").strip()
CODEBOOK_PATH = Path(_codebook_env).expanduser() if _codebook_env else None

# ---------------------------------------------------------------------------
# App identity
# ---------------------------------------------------------------------------

APP_NAME = "Corona & Welzijn Data Preparation"
APP_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Study design
#
# Every participant row carries a unique id and two 0/1 indicators telling
# which wave(s) they completed.
# ---------------------------------------------------------------------------

ID_COL = "Nummer"
WAVE1_COL = "W1"
WAVE2_COL = "W2"
WAVE_PREFIXES = ("W1_", "W2_")

# Age is derived as REFERENCE_YEAR - birth year
REFERENCE_YEAR = int(os.getenv("CENW_REFERENCE_YEAR", "2024"))

# ---------------------------------------------------------------------------
# Scoring and stability thresholds
# ---------------------------------------------------------------------------

# A composite is only scored when at least ceil(ratio * n_items) items are present.
COMPOSITE_MIN_ITEMS_RATIO = float(os.getenv("CENW_COMPOSITE_MIN_ITEMS_RATIO", "0.5"))

# percent_identical == STABLE_THRESHOLD -> "should not change"
# percent_identical <  UNSTABLE_THRESHOLD -> "high instability"
STABLE_THRESHOLD = 100.0
UNSTABLE_THRESHOLD = 50.0

# ---------------------------------------------------------------------------
# Output naming
# ---------------------------------------------------------------------------

DATE_STAMP_FORMAT = "%Y-%m-%d"
CODED_DATASET_STEM = "covid_data_coded"
REPORT_STEM = "wave_consistency_report"
