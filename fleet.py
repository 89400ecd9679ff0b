"""
Fleet Aggregator
================
Sums per-machine day metrics into one row per calendar date and derives
fleet efficiency ratios from the totals (never by averaging per-machine
ratios).

Fleet membership is every canonical line seen in the input plus every line
named in the capacity tables. A configured machine that reported nothing
still counts toward planned hours on every date in range.
"""

from __future__ import annotations

import logging

import pandas as pd

from day_metrics import derive_frame
from mapping_config import CapacityMappingConfig
from mapping_resolver import canon_line
from shared import DEFAULT_QUALITY, HOURS_PER_DAY, SUMMED_METRIC_COLUMNS, safe_ratio

logger = logging.getLogger(__name__)

DAILY_COLUMNS = (
    ["date"]
    + SUMMED_METRIC_COLUMNS
    + ["fleet_size", "planned_hours", "availability", "perf_raw", "perf_adj",
       "perf_run", "quality", "oee"]
)

LINE_COLUMNS = [
    "date", "machine", "pounds", "run_hours_used", "prod_downtime_hours_used",
    "maint_hours_used", "nameplate_lbs_hr", "availability", "perf_adj",
    "perf_run", "quality", "oee",
]


def fleet_members(records: pd.DataFrame, config: CapacityMappingConfig) -> set[str]:
    """Canonical lines observed in *records* plus every configured line."""
    members = set(config.known_lines())
    if records is not None and len(records) > 0 and "machine" in records.columns:
        members.update(canon_line(m, config) for m in records["machine"])
    members.discard("")
    return members


def _apply_ratios(df: pd.DataFrame, quality: float) -> pd.DataFrame:
    df["availability"] = safe_ratio(df["run_hours_used"], df["planned_hours"])
    df["perf_raw"] = safe_ratio(df["pounds"], df["raw_capacity_lbs"])
    df["perf_adj"] = safe_ratio(df["pounds"], df["adjusted_capacity_lbs"])
    df["perf_run"] = safe_ratio(df["pounds"], df["run_capacity_lbs"])
    df["quality"] = float(quality)
    df["oee"] = df["availability"] * df["perf_run"] * df["quality"]
    return df


def aggregate_by_date(
    records: pd.DataFrame,
    config: CapacityMappingConfig,
    quality: float = DEFAULT_QUALITY,
    fleet: set[str] | None = None,
) -> pd.DataFrame:
    """Daily fleet totals and efficiency ratios, ascending by date.

    Args:
        records: RawDayRecord frame (date, machine, material, pounds,
            machine_hours, maint_downtime_hours).
        config: Capacity mapping configuration.
        quality: Fixed acceptance-rate constant applied to every date.
        fleet: Override for fleet membership (e.g. a single filtered machine).

    Returns:
        One row per distinct input date with summed metrics, planned hours,
        availability, perf_raw / perf_adj / perf_run, quality and OEE.
    """
    derived = derive_frame(records, config)
    if len(derived) == 0:
        return pd.DataFrame(columns=DAILY_COLUMNS)

    members = fleet if fleet is not None else fleet_members(records, config)
    fleet_size = len(members)

    daily = (
        derived.groupby("date", sort=True)[SUMMED_METRIC_COLUMNS]
        .sum()
        .reset_index()
    )
    daily["fleet_size"] = fleet_size
    daily["planned_hours"] = HOURS_PER_DAY * fleet_size
    daily = _apply_ratios(daily, quality)

    logger.debug("Aggregated %d rows into %d dates (fleet of %d)", len(derived), len(daily), fleet_size)
    return daily[DAILY_COLUMNS].sort_values("date").reset_index(drop=True)


def daily_line_view(
    records: pd.DataFrame,
    config: CapacityMappingConfig,
    quality: float = DEFAULT_QUALITY,
) -> pd.DataFrame:
    """Per (date, canonical line) efficiency: each machine measured against its own 24h."""
    derived = derive_frame(records, config)
    if len(derived) == 0:
        return pd.DataFrame(columns=LINE_COLUMNS)

    derived["machine"] = derived["line"]
    by_line = (
        derived.groupby(["date", "machine"], sort=True)
        .agg(
            pounds=("pounds", "sum"),
            run_hours_used=("run_hours_used", "sum"),
            prod_downtime_hours_used=("prod_downtime_hours_used", "sum"),
            maint_hours_used=("maint_hours_used", "sum"),
            run_capacity_lbs=("run_capacity_lbs", "sum"),
            adjusted_capacity_lbs=("adjusted_capacity_lbs", "sum"),
            nameplate_lbs_hr=("capacity_lbs_hr", "max"),
        )
        .reset_index()
    )
    by_line["availability"] = safe_ratio(by_line["run_hours_used"], HOURS_PER_DAY)
    by_line["perf_adj"] = safe_ratio(by_line["pounds"], by_line["adjusted_capacity_lbs"])
    by_line["perf_run"] = safe_ratio(by_line["pounds"], by_line["run_capacity_lbs"])
    by_line["quality"] = float(quality)
    by_line["oee"] = by_line["availability"] * by_line["perf_run"] * by_line["quality"]
    return by_line[LINE_COLUMNS].sort_values(["date", "machine"]).reset_index(drop=True)


def range_totals(daily: pd.DataFrame) -> dict:
    """Roll the daily frame up over the whole range, recomputing ratios from sums."""
    if daily is None or len(daily) == 0:
        return {
            "n_days": 0, "pounds": 0.0, "planned_hours": 0.0, "run_hours_used": 0.0,
            "availability": 0.0, "perf_raw": 0.0, "perf_adj": 0.0, "perf_run": 0.0,
            "quality": DEFAULT_QUALITY, "oee": 0.0,
        }

    sums = daily[SUMMED_METRIC_COLUMNS + ["planned_hours"]].sum()
    quality = float(daily["quality"].iloc[0])
    availability = float(safe_ratio(sums["run_hours_used"], sums["planned_hours"]))
    perf_run = float(safe_ratio(sums["pounds"], sums["run_capacity_lbs"]))
    return {
        "n_days": int(daily["date"].nunique()),
        "date_from": str(daily["date"].min()),
        "date_to": str(daily["date"].max()),
        "pounds": float(sums["pounds"]),
        "planned_hours": float(sums["planned_hours"]),
        "run_hours_used": float(sums["run_hours_used"]),
        "maint_hours_used": float(sums["maint_hours_used"]),
        "prod_downtime_hours_used": float(sums["prod_downtime_hours_used"]),
        "availability": availability,
        "perf_raw": float(safe_ratio(sums["pounds"], sums["raw_capacity_lbs"])),
        "perf_adj": float(safe_ratio(sums["pounds"], sums["adjusted_capacity_lbs"])),
        "perf_run": perf_run,
        "quality": quality,
        "oee": availability * perf_run * quality,
    }
