"""
Day-Metrics Deriver
===================
Turns raw (pounds, run hours, maintenance hours) records into one
reconciled, capacity-priced metrics record per machine-day.

Operator-entered hours routinely add up to more than a day, so the reported
fields are reconciled into a strict 24h budget:

    run + maintenance + production downtime == 24

Run hours win when the reported total overflows; maintenance is trimmed.
Every input is safe-parsed, so the deriver never raises.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

import pandas as pd

from mapping_config import CapacityMappingConfig
from mapping_resolver import resolve_capacity
from shared import HOURS_PER_DAY, clamp, safe_float, to_date_str


@dataclass(frozen=True)
class DayMetrics:
    pounds: float
    run_hours_used: float
    maint_hours_used: float
    prod_downtime_hours_used: float
    capacity_lbs_hr: float
    raw_capacity_lbs: float
    adjusted_capacity_lbs: float
    run_capacity_lbs: float
    under_performance_lbs: float
    missed_maintenance_lbs: float
    missed_production_lbs: float
    # Audit trail
    run_hours_reported: float = 0.0
    maint_hours_reported: float = 0.0
    line: str = ""
    material: str = ""
    capacity_source: str = "unresolved"

    def to_dict(self) -> dict:
        return asdict(self)


def derive_day_metrics(
    pounds,
    maint_hours_reported,
    machine_hours_reported,
    line,
    material,
    config: CapacityMappingConfig,
    capacity=None,
    capacity_source=None,
) -> DayMetrics:
    """Reconcile one machine-day into the 24h budget and price it at rated capacity.

    Args:
        pounds: Pounds produced that day.
        maint_hours_reported: Operator-reported maintenance downtime hours.
        machine_hours_reported: Operator-reported run hours.
        line: Raw machine / line name.
        material: Raw material name (blank -> DEFAULT).
        config: Capacity mapping configuration.
        capacity: Pre-resolved lbs/hr (e.g. a blend over several materials);
            skips the mapping lookup when given.
        capacity_source: Label recorded with an explicit *capacity*.

    Returns:
        DayMetrics with used hours, resolved capacity and every lbs figure.
    """
    lbs = max(0.0, safe_float(pounds))
    maint_reported = safe_float(maint_hours_reported)
    run_reported = safe_float(machine_hours_reported)

    run_hours = clamp(run_reported, 0.0, HOURS_PER_DAY)
    maint_hours = clamp(maint_reported, 0.0, HOURS_PER_DAY)

    res = resolve_capacity(line, material, config)
    if capacity is None:
        capacity, source = res.capacity, res.source
    else:
        capacity, source = max(0.0, safe_float(capacity)), capacity_source or "blended"
    if capacity == 0 and run_hours > 0:
        # No mapping entry: fall back to the observed rate
        capacity = lbs / run_hours
        source = "inferred"

    maint_hours = clamp(maint_hours, 0.0, HOURS_PER_DAY - run_hours)
    prod_downtime = clamp(HOURS_PER_DAY - maint_hours - run_hours, 0.0, HOURS_PER_DAY)

    run_capacity = capacity * run_hours
    return DayMetrics(
        pounds=lbs,
        run_hours_used=run_hours,
        maint_hours_used=maint_hours,
        prod_downtime_hours_used=prod_downtime,
        capacity_lbs_hr=capacity,
        raw_capacity_lbs=capacity * HOURS_PER_DAY,
        adjusted_capacity_lbs=capacity * (HOURS_PER_DAY - maint_hours),
        run_capacity_lbs=run_capacity,
        under_performance_lbs=max(0.0, run_capacity - lbs),
        missed_maintenance_lbs=capacity * maint_hours,
        missed_production_lbs=capacity * prod_downtime,
        run_hours_reported=run_reported,
        maint_hours_reported=maint_reported,
        line=res.line,
        material=res.material,
        capacity_source=source,
    )


_METRIC_COLUMNS = list(DayMetrics.__dataclass_fields__)


def blend_capacity(parts) -> tuple[float, str]:
    """Run-hour-weighted capacity over (CapacityResolution, run_hours) parts.

    Unresolved parts carry no weight. Returns (0, "unresolved") when no part
    resolves, which lets the deriver infer a rate instead.
    """
    resolved = [(res, run) for res, run in parts if res.capacity > 0]
    if not resolved:
        return 0.0, "unresolved"
    distinct = {res.capacity for res, _ in resolved}
    if len(distinct) == 1:
        return resolved[0][0].capacity, resolved[0][0].source
    weight = sum(run for _, run in resolved)
    if weight > 0:
        return sum(res.capacity * run for res, run in resolved) / weight, "blended"
    return sum(res.capacity for res, _ in resolved) / len(resolved), "blended"


def _machine_days(records: pd.DataFrame, config: CapacityMappingConfig) -> dict:
    """Collect RawDayRecord rows under their (date, canonical line) key."""
    days: dict[tuple[str, str], dict] = {}
    for rec in records.to_dict("records"):
        date_str = to_date_str(rec.get("date"))
        if date_str is None:
            continue
        res = resolve_capacity(rec.get("machine"), rec.get("material"), config)
        run = safe_float(rec.get("machine_hours"))
        day = days.setdefault((date_str, res.line), {
            "pounds": 0.0, "run": 0.0, "maint": 0.0, "rows": [],
        })
        day["pounds"] += max(0.0, safe_float(rec.get("pounds")))
        day["run"] += run
        day["maint"] += safe_float(rec.get("maint_downtime_hours"))
        day["rows"].append((rec, res, max(0.0, run)))
    return days


def derive_frame(records: pd.DataFrame, config: CapacityMappingConfig) -> pd.DataFrame:
    """Derive one DayMetrics row per machine-day.

    Rows sharing a date and canonical line (shifts, several materials) are
    summed first, so the machine-day gets a single 24h budget. Several
    materials are priced at their run-hour-weighted capacity. Rows whose
    date cannot be parsed are dropped.
    """
    if records is None or len(records) == 0:
        return pd.DataFrame(columns=["date", "machine"] + _METRIC_COLUMNS)

    rows = []
    for (date_str, line), day in _machine_days(records, config).items():
        if len(day["rows"]) == 1:
            rec = day["rows"][0][0]
            metrics = derive_day_metrics(
                rec.get("pounds"),
                rec.get("maint_downtime_hours"),
                rec.get("machine_hours"),
                rec.get("machine"),
                rec.get("material"),
                config,
            )
        else:
            capacity, source = blend_capacity([(res, run) for _, res, run in day["rows"]])
            materials = sorted({res.material for _, res, _ in day["rows"]})
            metrics = derive_day_metrics(
                day["pounds"], day["maint"], day["run"], line, "+".join(materials), config,
                capacity=capacity, capacity_source=source,
            )
        row = {"date": date_str, "machine": line}
        row.update(metrics.to_dict())
        rows.append(row)

    return pd.DataFrame(rows, columns=["date", "machine"] + _METRIC_COLUMNS)


def diagnostics_frame(records: pd.DataFrame, config: CapacityMappingConfig) -> pd.DataFrame:
    """Per-(machine, date) audit rows: reported vs used hours, capacity and every lbs figure."""
    derived = derive_frame(records, config)
    ordered = [
        "date", "machine", "line", "material", "pounds",
        "run_hours_reported", "run_hours_used",
        "maint_hours_reported", "maint_hours_used",
        "prod_downtime_hours_used",
        "capacity_lbs_hr", "capacity_source",
        "raw_capacity_lbs", "adjusted_capacity_lbs", "run_capacity_lbs",
        "under_performance_lbs", "missed_maintenance_lbs", "missed_production_lbs",
    ]
    return derived[ordered].sort_values(["date", "machine"], kind="stable").reset_index(drop=True)
