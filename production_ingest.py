"""
Production export ingestion
===========================
Reads the shift-level production workbook (or a CSV export of it) and turns
it into the two record streams the core consumes:

  day records     one row per (date, machine, material); the core sums
                  them back into one 24h budget per machine-day
  reason records  one row per free-text downtime reason entry

Shift rows repeated for the same (date, machine, shift, lot, PO) keep the
first one seen. Exports without all three of shift, lot and PO only drop
rows that are identical in every column.

Usage from code:
  frames = load_production_file("production.xlsx")
  source = FrameSource(frames.day_records, frames.reason_records)
"""

from __future__ import annotations

import logging
import numbers
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pandas as pd

from shared import (
    DAY_RECORD_COLUMNS,
    REASON_RECORD_COLUMNS,
    clean_text,
    safe_float,
    to_date_str,
)

logger = logging.getLogger(__name__)

EXCEL_EPOCH = datetime(1899, 12, 30)

# Maps normalized header names found in the export to internal column names.
HEADER_TO_INTERNAL = {
    "date": "date",
    "srcdate": "date",
    "productiondate": "date",
    "machine": "machine",
    "line": "machine",
    "shift": "shift",
    "lotnumber": "lot_number",
    "sourcerefpo": "source_ref_po",
    "pounds": "pounds",
    "lbs": "pounds",
    "machinehours": "machine_hours",
    "runhours": "machine_hours",
    "downtime": "maint_downtime_hours",
    "downtimehours": "maint_downtime_hours",
    "maintenancehours": "maint_downtime_hours",
    "maintdowntimehours": "maint_downtime_hours",
    "reasonfordowntime": "reason_text",
    "reasondowntime": "reason_text",
    "downtimereason": "reason_text",
    "reason": "reason_text",
}

# First of these present becomes the material column.
MATERIAL_CANDIDATES = [
    "material", "resin", "materialfamily", "type", "resinfamily", "productmaterial",
]

NUMERIC_COLUMNS = {"pounds", "machine_hours", "maint_downtime_hours"}

REQUIRED_COLUMNS = ["date", "machine"]

_DEDUPE_KEYS = ["date", "machine", "shift", "lot_number", "source_ref_po"]

_REASON_SPLIT = re.compile(r"[;\n|]+")

# Serial numbers arrive as text when a CSV is read with dtype=object
_SERIAL_TEXT = re.compile(r"^\d{5}(\.\d+)?$")


def normalize_col(name):
    """Normalize a column header for fuzzy matching."""
    s = str(name).lower().strip()
    return re.sub(r"[^a-z0-9]+", "", s)


def excel_date_to_str(value):
    """Excel serial numbers, timestamps and date strings -> YYYY-MM-DD (or None)."""
    if isinstance(value, str) and _SERIAL_TEXT.match(value.strip()):
        value = float(value.strip())
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        if pd.isna(value):
            return None
        if 20000 < value < 80000:
            return (EXCEL_EPOCH + timedelta(days=float(value))).strftime("%Y-%m-%d")
    return to_date_str(value)


@dataclass
class ProductionFrames:
    day_records: pd.DataFrame
    reason_records: pd.DataFrame
    warnings: list[str] = field(default_factory=list)


def rename_columns(df: pd.DataFrame) -> tuple[pd.DataFrame, list[str]]:
    """Rename export headers to internal names and pick the material column."""
    warnings: list[str] = []
    header_map = {}
    claimed = set()
    for col in df.columns:
        internal = HEADER_TO_INTERNAL.get(normalize_col(col))
        if internal and internal not in claimed:
            header_map[col] = internal
            claimed.add(internal)

    if "material" not in claimed:
        normalized = {normalize_col(c): c for c in df.columns if c not in header_map}
        for cand in MATERIAL_CANDIDATES:
            if cand in normalized:
                header_map[normalized[cand]] = "material"
                claimed.add("material")
                break

    missing = [c for c in REQUIRED_COLUMNS if c not in claimed]
    if missing:
        raise ValueError(
            f"Cannot map columns: missing {', '.join(missing)}. "
            f"Got {len(df.columns)} columns ({', '.join(str(c) for c in df.columns[:8])}...)"
        )
    for col in ["pounds", "machine_hours", "maint_downtime_hours"]:
        if col not in claimed:
            warnings.append(f"Export has no `{col}` column; treated as 0.")
    if "material" not in claimed:
        warnings.append("Export has no material column; every row uses DEFAULT capacity.")

    out = df.rename(columns=header_map)
    return out[[c for c in out.columns if c in claimed]], warnings


def canonicalize_rows(raw: pd.DataFrame) -> tuple[pd.DataFrame, list[str]]:
    """Coerce a renamed export into clean shift rows."""
    df, warnings = rename_columns(raw)
    df = df.copy()
    has_shift_key = all(c in df.columns for c in _DEDUPE_KEYS)

    for col in NUMERIC_COLUMNS | {"material", "reason_text", "shift", "lot_number", "source_ref_po"}:
        if col not in df.columns:
            df[col] = 0.0 if col in NUMERIC_COLUMNS else ""

    # Header row repeated inside the table body
    header_like = df["date"].astype(str).str.strip().str.upper() == "DATE"
    df = df[~header_like].copy()

    df["date"] = df["date"].map(excel_date_to_str)
    df["machine"] = df["machine"].map(clean_text)
    for col in ["material", "reason_text", "shift", "lot_number", "source_ref_po"]:
        df[col] = df[col].map(clean_text)
    for col in NUMERIC_COLUMNS:
        df[col] = df[col].map(safe_float)

    bad = df["date"].isna() | (df["machine"] == "")
    if bad.any():
        warnings.append(f"Dropped {int(bad.sum())} row(s) with no usable date or machine.")
    df = df[~bad]

    before = len(df)
    if has_shift_key:
        df = df.drop_duplicates(subset=_DEDUPE_KEYS, keep="first").reset_index(drop=True)
        if len(df) < before:
            warnings.append(f"Dropped {before - len(df)} repeated shift row(s); first seen kept.")
    else:
        # Without shift / lot / PO only an identical row is a repeat
        df = df.drop_duplicates(keep="first").reset_index(drop=True)
        if len(df) < before:
            warnings.append(f"Dropped {before - len(df)} identical row(s); first seen kept.")
    return df, warnings


def day_records_from_rows(rows: pd.DataFrame) -> pd.DataFrame:
    """Sum shift rows into one RawDayRecord per (date, machine, material)."""
    if len(rows) == 0:
        return pd.DataFrame(columns=DAY_RECORD_COLUMNS)
    day = (
        rows.groupby(["date", "machine", "material"], sort=True)[
            ["pounds", "machine_hours", "maint_downtime_hours"]
        ]
        .sum()
        .reset_index()
    )
    return day[DAY_RECORD_COLUMNS]


def reason_records_from_rows(rows: pd.DataFrame) -> pd.DataFrame:
    """One DowntimeReasonRecord per reason entry; a cell may hold several separated by ; | or newlines."""
    out = []
    for date_str, machine, text in rows[["date", "machine", "reason_text"]].itertuples(index=False):
        for part in _REASON_SPLIT.split(text or ""):
            part = part.strip()
            if part:
                out.append({"date": date_str, "machine": machine, "reason_text": part})
    return pd.DataFrame(out, columns=REASON_RECORD_COLUMNS)


def frames_from_export(raw: pd.DataFrame) -> ProductionFrames:
    rows, warnings = canonicalize_rows(raw)
    return ProductionFrames(
        day_records=day_records_from_rows(rows),
        reason_records=reason_records_from_rows(rows),
        warnings=warnings,
    )


def load_production_file(filepath, sheet_name=0) -> ProductionFrames:
    """Read a production export (.xlsx / .xls / .csv) into record frames.

    Raises FileNotFoundError when the file is missing and ValueError when
    the required columns cannot be found.
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Production file not found: {filepath}")

    logger.info("Reading production data: %s", filepath)
    ext = os.path.splitext(str(filepath))[1].lower()
    if ext == ".csv":
        raw = pd.read_csv(filepath, dtype=object)
    else:
        raw = pd.read_excel(filepath, sheet_name=sheet_name, dtype=object)

    frames = frames_from_export(raw)
    for w in frames.warnings:
        logger.warning(w)
    logger.info(
        "  %d day records, %d reason entries, %d days",
        len(frames.day_records),
        len(frames.reason_records),
        frames.day_records["date"].nunique() if len(frames.day_records) else 0,
    )
    return frames


class FrameSource:
    """In-memory record source; serves date-range slices of loaded frames."""

    def __init__(self, day_records: pd.DataFrame, reason_records: pd.DataFrame | None = None):
        self._days = day_records.copy()
        self._days["date"] = self._days["date"].map(to_date_str)
        if reason_records is None:
            reason_records = pd.DataFrame(columns=REASON_RECORD_COLUMNS)
        self._reasons = reason_records.copy()
        self._reasons["date"] = self._reasons["date"].map(to_date_str)

    @staticmethod
    def _slice(df: pd.DataFrame, date_from: str, date_to: str) -> pd.DataFrame:
        dates = df["date"].fillna("")
        mask = (dates != "") & (dates >= date_from) & (dates <= date_to)
        return df[mask].reset_index(drop=True)

    def day_records(self, date_from: str, date_to: str) -> pd.DataFrame:
        return self._slice(self._days, date_from, date_to)

    def reason_records(self, date_from: str, date_to: str) -> pd.DataFrame:
        return self._slice(self._reasons, date_from, date_to)
