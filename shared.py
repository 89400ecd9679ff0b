"""
Shared constants and utilities for the Production OEE Analyzer
===============================================================
Single source of truth for record column names, downtime reason buckets,
heuristic reason keywords, and the safe-parse helpers used across
day_metrics.py, fleet.py, downtime_reasons.py and production_ingest.py.
"""

import math
from datetime import date, datetime

import numpy as np
import pandas as pd

# ---------------------------------------------------------------------------
# Day budget
# ---------------------------------------------------------------------------
HOURS_PER_DAY = 24.0
DEFAULT_QUALITY = 0.70
TOLERANCE = 1e-9

# ---------------------------------------------------------------------------
# Canonical record columns
# ---------------------------------------------------------------------------
DAY_RECORD_COLUMNS = [
    "date", "machine", "material", "pounds",
    "machine_hours", "maint_downtime_hours",
]

REASON_RECORD_COLUMNS = ["date", "machine", "reason_text"]

# Summed per date by the fleet aggregator
SUMMED_METRIC_COLUMNS = [
    "pounds", "run_hours_used", "maint_hours_used", "prod_downtime_hours_used",
    "raw_capacity_lbs", "adjusted_capacity_lbs", "run_capacity_lbs",
    "under_performance_lbs", "missed_maintenance_lbs", "missed_production_lbs",
]

# ---------------------------------------------------------------------------
# Downtime reason buckets
# ---------------------------------------------------------------------------
OTHER = "OTHER"
DEFAULT_MATERIAL = "DEFAULT"

ALLOCATION_MODES = ("equal", "by_count")
ALLOCATION_KINDS = ("prod", "maint")

# Fixed heuristic cascade, tested in this order. Tokens are matched against
# normalized reason text (uppercase, alphanumerics separated by single spaces).
HEURISTIC_REASON_KEYWORDS = [
    ("STAFFING", [
        "EMPLOYEE", "OPERATOR", "NO CREW", "NO STAFF", "SHORT STAFF",
        "STAFFING", "CALL OUT", "CALLOUT",
    ]),
    ("MATERIAL", [
        "MATERIAL", "MATL", "RESIN", "SUPPLY", "REGRIND",
    ]),
    ("CHANGEOVER", [
        "CHANGEOVER", "CHANGE OVER", "COLOR", "COLOUR", "SETUP", "SET UP",
        "STARTUP", "START UP",
    ]),
    ("QUALITY", [
        "QUALITY", "CONTAM", "HOLD", "SCRAP", "REWORK",
    ]),
    ("UTILITY", [
        "POWER", "UTILITY", "UTILITIES", "OUTAGE",
    ]),
    ("MAINTENANCE", [
        "EXTRUDER", "SCREW", "BARREL", "HEATER", "MOTOR", "GEARBOX", "PUMP",
        "BLOWER", "CHILLER", "PELLETIZER", "CUTTER", "BEARING",
        "BREAKDOWN", "BROKE", "REPAIR", "LEAK", "JAM",
    ]),
]


# ---------------------------------------------------------------------------
# Safe-parse helpers
# ---------------------------------------------------------------------------
def safe_float(value, default=0.0):
    """Coerce operator-entered numbers to float; anything unusable becomes *default*.

    Accepts thousands separators ("1,250") and stray spaces. None, blank
    strings, NaN, infinities and garbage all map to *default*.
    """
    if value is None:
        return default
    if isinstance(value, str):
        value = value.replace(",", "").replace(" ", "").strip()
        if value == "":
            return default
    try:
        if pd.isna(value):
            return default
    except (TypeError, ValueError):
        return default
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(num):
        return default
    return num


def clamp(value, low, high):
    """Clamp *value* into [low, high]."""
    return max(low, min(high, value))


def safe_ratio(numerator, denominator):
    """Element-wise numerator / denominator, 0 where the denominator is not positive."""
    num = np.asarray(numerator, dtype=float)
    den = np.asarray(denominator, dtype=float)
    out = np.zeros_like(num, dtype=float)
    np.divide(num, den, out=out, where=den > 0)
    return out


def clean_text(value):
    """Stringify a possibly-missing cell and trim it. Missing values become ''."""
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).replace("\0", "").strip()


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------
def to_date_str(value):
    """Render a date-like cell as YYYY-MM-DD, or None when it cannot be parsed."""
    if value is None:
        return None
    if isinstance(value, (datetime, date)) and not pd.isna(value):
        return value.strftime("%Y-%m-%d")
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.strftime("%Y-%m-%d")


def weekday_mask(date_series):
    """Boolean mask selecting Monday-Friday rows of a date column."""
    days = pd.to_datetime(date_series, errors="coerce")
    return (days.dt.dayofweek < 5).fillna(False).astype(bool)
