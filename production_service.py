"""
Production service facade
=========================
Boundary between callers (CLI, web layer) and the pure core. Pulls record
streams from a source collaborator, applies query filters, runs the core,
and caches daily summaries for a short TTL.

A source is any object with:
  day_records(date_from, date_to)    -> RawDayRecord frame
  reason_records(date_from, date_to) -> DowntimeReasonRecord frame
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta

import pandas as pd

from day_metrics import diagnostics_frame
from downtime_reasons import ReasonSummary, summarize_reasons
from fleet import aggregate_by_date, daily_line_view, range_totals
from mapping_config import MappingStore
from mapping_resolver import canon_line, nameplate_assignments
from result_cache import TTLCache
from shared import ALLOCATION_KINDS, ALLOCATION_MODES, DEFAULT_QUALITY, to_date_str, weekday_mask

logger = logging.getLogger(__name__)

DEFAULT_FROM = "2000-01-01"
DEFAULT_TO = "2100-01-01"

TIMEFRAME_ALIASES = {
    "last30": "trailing30Days",
    "last30d": "trailing30Days",
    "last7": "trailing7Days",
}


def _month_start(d: date) -> date:
    return d.replace(day=1)


def resolve_timeframe(name: str | None, today: date | None = None) -> tuple[str, str]:
    """Named range preset -> (from, to) inclusive ISO dates. Unknown names give last month."""
    today = today or date.today()
    name = TIMEFRAME_ALIASES.get(name or "", name or "")

    week_start = today - timedelta(days=today.weekday())
    month_start = _month_start(today)
    next_month = _month_start(month_start + timedelta(days=32))
    prev_month_start = _month_start(month_start - timedelta(days=1))

    if name == "currentWeek":
        start, end = week_start, week_start + timedelta(days=6)
    elif name == "lastWeek":
        start, end = week_start - timedelta(days=7), week_start - timedelta(days=1)
    elif name == "currentMonth":
        start, end = month_start, next_month - timedelta(days=1)
    elif name == "currentYear":
        start, end = date(today.year, 1, 1), date(today.year, 12, 31)
    elif name == "lastYear":
        start, end = date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)
    elif name == "trailing7Days":
        start, end = today - timedelta(days=7), today
    elif name == "trailing30Days":
        start, end = today - timedelta(days=30), today
    elif name == "trailing12Months":
        start, end = (pd.Timestamp(today) - pd.DateOffset(months=12)).date(), today
    else:
        if name and name != "lastMonth":
            logger.warning("Unknown timeframe %r; using lastMonth", name)
        start, end = prev_month_start, month_start - timedelta(days=1)
    return start.isoformat(), end.isoformat()


def _truthy(value) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class ProductionQuery:
    date_from: str = DEFAULT_FROM
    date_to: str = DEFAULT_TO
    machine: str | None = None
    weekdays_only: bool = False
    kind: str = "prod"
    mode: str | None = None

    def __post_init__(self):
        for attr in ("date_from", "date_to"):
            parsed = to_date_str(getattr(self, attr))
            if parsed is None:
                raise ValueError(f"Invalid {attr}: {getattr(self, attr)!r}; expected YYYY-MM-DD")
            object.__setattr__(self, attr, parsed)
        if self.date_from > self.date_to:
            raise ValueError(f"date_from {self.date_from} is after date_to {self.date_to}")
        if self.kind not in ALLOCATION_KINDS:
            raise ValueError(f"Unknown kind {self.kind!r}; expected one of {', '.join(ALLOCATION_KINDS)}")
        if self.mode is not None and self.mode not in ALLOCATION_MODES:
            raise ValueError(f"Unknown mode {self.mode!r}; expected one of {', '.join(ALLOCATION_MODES)}")
        if self.machine is not None and not str(self.machine).strip():
            object.__setattr__(self, "machine", None)

    @classmethod
    def from_params(cls, params: dict, today: date | None = None) -> "ProductionQuery":
        """Build a query from request-style parameters (from, to, timeframe, machine, weekdaysOnly, kind, mode)."""
        date_from = params.get("from") or DEFAULT_FROM
        date_to = params.get("to") or DEFAULT_TO
        if params.get("timeframe") and not (params.get("from") or params.get("to")):
            date_from, date_to = resolve_timeframe(params["timeframe"], today)
        return cls(
            date_from=date_from,
            date_to=date_to,
            machine=params.get("machine") or None,
            weekdays_only=_truthy(params.get("weekdaysOnly", params.get("weekdays_only", False))),
            kind=params.get("kind") or "prod",
            mode=params.get("mode") or None,
        )


class ProductionService:
    """Runs queries against a record source with the current mapping config."""

    def __init__(self, source, store: MappingStore, cache: TTLCache | None = None,
                 quality: float = DEFAULT_QUALITY):
        self.source = source
        self.store = store
        self.cache = cache
        self.quality = quality

    # -- inputs ------------------------------------------------------------
    def _filter(self, df: pd.DataFrame, query: ProductionQuery, config) -> pd.DataFrame:
        if df is None or len(df) == 0:
            return df
        if query.machine:
            wanted = canon_line(query.machine, config)
            df = df[df["machine"].map(lambda m: canon_line(m, config)) == wanted]
        if query.weekdays_only:
            df = df[weekday_mask(df["date"])]
        return df.reset_index(drop=True)

    def _day_records(self, query: ProductionQuery, config) -> pd.DataFrame:
        return self._filter(self.source.day_records(query.date_from, query.date_to), query, config)

    def _reason_records(self, query: ProductionQuery, config) -> pd.DataFrame:
        return self._filter(self.source.reason_records(query.date_from, query.date_to), query, config)

    def _cached(self, view: str, query: ProductionQuery, compute):
        if self.cache is None:
            return compute()
        return self.cache.get_or_compute((view, query), compute)

    # -- views -------------------------------------------------------------
    def summary(self, query: ProductionQuery) -> pd.DataFrame:
        """Daily fleet aggregate, ascending by date."""
        def compute():
            config = self.store.config
            records = self._day_records(query, config)
            fleet = {canon_line(query.machine, config)} if query.machine else None
            return aggregate_by_date(records, config, quality=self.quality, fleet=fleet)
        return self._cached("summary", query, compute)

    def totals(self, query: ProductionQuery) -> dict:
        """Whole-range roll-up of :meth:`summary`."""
        return range_totals(self.summary(query))

    def by_line(self, query: ProductionQuery) -> pd.DataFrame:
        def compute():
            config = self.store.config
            return daily_line_view(self._day_records(query, config), config, quality=self.quality)
        return self._cached("by_line", query, compute)

    def diagnostics(self, query: ProductionQuery) -> pd.DataFrame:
        config = self.store.config
        return diagnostics_frame(self._day_records(query, config), config)

    def reasons(self, query: ProductionQuery) -> ReasonSummary:
        def compute():
            config = self.store.config
            return summarize_reasons(
                self._day_records(query, config),
                self._reason_records(query, config),
                config,
                date_from=query.date_from,
                date_to=query.date_to,
                kind=query.kind,
                weekdays_only=query.weekdays_only,
                mode=query.mode,
            )
        return self._cached("reasons", query, compute)

    def nameplates(self, query: ProductionQuery) -> pd.DataFrame:
        config = self.store.config
        return nameplate_assignments(self._day_records(replace(query, weekdays_only=False), config), config)

    def reload_mappings(self):
        """Re-read the mapping file and drop cached results computed with the old one."""
        config = self.store.reload()
        if self.cache is not None:
            self.cache.clear()
        logger.info("Mappings reloaded; result cache cleared")
        return config
