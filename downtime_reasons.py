"""
Downtime-Reason Allocator
=========================
Canonicalizes free-text downtime reasons into buckets and spreads each
machine-day's residual (unlabeled) downtime across the reasons recorded
that day.

Reason resolution is an ordered list of strategies, first match wins:
  1. exact alias        (downtime_reason_aliases)
  2. regex alias        (downtime_reason_alias_regex, list order)
  3. keyword bag        (downtime_reason_keywords, map order)
  4. fixed heuristics   (STAFFING -> MATERIAL -> CHANGEOVER -> QUALITY -> UTILITY -> MAINTENANCE)
  5. default            (OTHER)

Allocation modes:
  equal     split evenly across the distinct buckets seen that machine-day
  by_count  split in proportion to how often each bucket was recorded

Maintenance hours have no reason capture and always land in OTHER.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from collections import Counter
from dataclasses import dataclass, field
from typing import ClassVar

import pandas as pd

from day_metrics import derive_frame
from mapping_config import CapacityMappingConfig, ReasonRegex
from mapping_resolver import canon_line
from shared import (
    ALLOCATION_KINDS,
    ALLOCATION_MODES,
    HEURISTIC_REASON_KEYWORDS,
    OTHER,
    clean_text,
    to_date_str,
    weekday_mask,
)

logger = logging.getLogger(__name__)

ALLOCATION_COLUMNS = ["date", "machine", "reason", "hours"]

_NON_ALNUM = re.compile(r"[^A-Z0-9]+")


def normalize_reason(text) -> str:
    """Uppercase, strip diacritics, collapse non-alphanumeric runs to one space."""
    decomposed = unicodedata.normalize("NFKD", clean_text(text))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub(" ", stripped.upper()).strip()


# ---------------------------------------------------------------------------
# Resolver strategies
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ExactAliasStrategy:
    kind: ClassVar[str] = "exact"
    aliases: dict = field(default_factory=dict)

    def match(self, raw: str, normalized: str):
        if raw in self.aliases:
            return self.aliases[raw]
        return self.aliases.get(normalized)


@dataclass(frozen=True)
class RegexAliasStrategy:
    kind: ClassVar[str] = "regex"
    rules: tuple[ReasonRegex, ...] = ()

    def match(self, raw: str, normalized: str):
        for rule in self.rules:
            if rule.compiled.search(normalized):
                return rule.bucket
        return None


@dataclass(frozen=True)
class KeywordBagStrategy:
    kind: ClassVar[str] = "keyword"
    # (bucket, normalized substrings) in configured order
    bags: tuple[tuple[str, tuple[str, ...]], ...] = ()

    def match(self, raw: str, normalized: str):
        for bucket, words in self.bags:
            if any(w in normalized for w in words):
                return bucket
        return None


@dataclass(frozen=True)
class HeuristicStrategy:
    kind: ClassVar[str] = "heuristic"
    cascade: tuple = tuple((b, tuple(words)) for b, words in HEURISTIC_REASON_KEYWORDS)

    def match(self, raw: str, normalized: str):
        for bucket, tokens in self.cascade:
            if any(t in normalized for t in tokens):
                return bucket
        return None


@dataclass(frozen=True)
class DefaultStrategy:
    kind: ClassVar[str] = "default"
    bucket: str = OTHER

    def match(self, raw: str, normalized: str):
        return self.bucket


def build_reason_resolvers(config: CapacityMappingConfig) -> tuple:
    """Ordered resolver strategies for *config*; evaluate first-match-wins."""
    bags = []
    for bucket, words in config.downtime_reason_keywords.items():
        normalized = tuple(n for n in (normalize_reason(w) for w in words) if n)
        if normalized:
            bags.append((bucket, normalized))
    return (
        ExactAliasStrategy(aliases=dict(config.downtime_reason_aliases)),
        RegexAliasStrategy(rules=tuple(config.downtime_reason_alias_regex)),
        KeywordBagStrategy(bags=tuple(bags)),
        HeuristicStrategy(),
        DefaultStrategy(),
    )


def explain_reason(text, config: CapacityMappingConfig, resolvers=None) -> tuple[str, str]:
    """Return (bucket, strategy kind) for a raw reason text."""
    raw = clean_text(text)
    normalized = normalize_reason(raw)
    for strategy in resolvers or build_reason_resolvers(config):
        bucket = strategy.match(raw, normalized)
        if bucket:
            return bucket, strategy.kind
    return OTHER, DefaultStrategy.kind


def canon_reason(text, config: CapacityMappingConfig, resolvers=None) -> str:
    """Canonical bucket for a raw reason text."""
    return explain_reason(text, config, resolvers)[0]


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------
def split_residual(hours: float, counts: Counter, mode: str = "equal") -> dict[str, float]:
    """Split *hours* across the buckets in *counts*.

    No recorded reasons means everything goes to OTHER. The returned shares
    always sum to *hours*.
    """
    if mode not in ALLOCATION_MODES:
        raise ValueError(f"Unknown allocation mode {mode!r}; expected one of {', '.join(ALLOCATION_MODES)}")
    present = {b: c for b, c in counts.items() if c > 0}
    if not present:
        return {OTHER: float(hours)}

    if mode == "equal":
        share = float(hours) / len(present)
        return {b: share for b in sorted(present)}

    total = sum(present.values())
    return {b: float(hours) * present[b] / total for b in sorted(present)}


def _reason_frame(reasons: pd.DataFrame | None, config: CapacityMappingConfig) -> pd.DataFrame:
    """Reason rows with ISO date, canonical line and bucket; blank texts dropped."""
    if reasons is None or len(reasons) == 0:
        return pd.DataFrame(columns=["date", "machine", "reason"])

    resolvers = build_reason_resolvers(config)
    bucket_cache: dict[str, str] = {}
    rows = []
    for rec in reasons.to_dict("records"):
        text = clean_text(rec.get("reason_text"))
        date_str = to_date_str(rec.get("date"))
        if not text or date_str is None:
            continue
        if text not in bucket_cache:
            bucket_cache[text] = canon_reason(text, config, resolvers)
        rows.append({
            "date": date_str,
            "machine": canon_line(rec.get("machine"), config),
            "reason": bucket_cache[text],
        })
    return pd.DataFrame(rows, columns=["date", "machine", "reason"])


def reason_multisets(reasons: pd.DataFrame | None, config: CapacityMappingConfig) -> dict[tuple[str, str], Counter]:
    """Counter of buckets per (date, canonical line). Repeats are kept."""
    frame = _reason_frame(reasons, config)
    out: dict[tuple[str, str], Counter] = {}
    for date_str, machine, reason in frame.itertuples(index=False):
        out.setdefault((date_str, machine), Counter())[reason] += 1
    return out


def _in_range(series: pd.Series, date_from: str | None, date_to: str | None) -> pd.Series:
    mask = pd.Series(True, index=series.index)
    if date_from:
        mask &= series >= date_from
    if date_to:
        mask &= series <= date_to
    return mask


def allocate_machine_days(
    records: pd.DataFrame,
    reasons: pd.DataFrame | None,
    config: CapacityMappingConfig,
    kind: str = "prod",
    weekdays_only: bool = False,
    mode: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
) -> pd.DataFrame:
    """Allocate each machine-day's downtime hours to reason buckets.

    Args:
        records: RawDayRecord frame.
        reasons: DowntimeReasonRecord frame (date, machine, reason_text).
        config: Mapping configuration (aliases, keywords, default mode).
        kind: "prod" allocates production downtime across recorded reasons;
            "maint" puts all maintenance hours in OTHER.
        weekdays_only: Drop Saturday / Sunday from both streams first.
        mode: "equal" or "by_count"; defaults to the configured mode.
        date_from, date_to: Optional inclusive ISO date bounds.

    Returns:
        Frame of (date, machine, reason, hours), one row per machine-day bucket.
    """
    if kind not in ALLOCATION_KINDS:
        raise ValueError(f"Unknown allocation kind {kind!r}; expected one of {', '.join(ALLOCATION_KINDS)}")
    mode = mode or config.downtime_reason_allocation_mode

    derived = derive_frame(records, config)
    if len(derived) == 0:
        return pd.DataFrame(columns=ALLOCATION_COLUMNS)

    keep = _in_range(derived["date"], date_from, date_to)
    if weekdays_only:
        keep &= weekday_mask(derived["date"])
    derived = derived[keep]

    machine_days = (
        derived.assign(machine=derived["line"])
        .groupby(["date", "machine"], sort=True)[["prod_downtime_hours_used", "maint_hours_used"]]
        .sum()
    )

    if weekdays_only and reasons is not None and len(reasons) > 0:
        reasons = reasons[weekday_mask(reasons["date"])]
    counts = reason_multisets(reasons, config) if kind == "prod" else {}

    rows = []
    degenerate = 0
    for (date_str, machine), hours in machine_days.iterrows():
        if kind == "maint":
            if hours["maint_hours_used"] > 0:
                rows.append((date_str, machine, OTHER, float(hours["maint_hours_used"])))
            continue

        residual = float(hours["prod_downtime_hours_used"])
        if residual <= 0:
            continue
        day_counts = counts.get((date_str, machine), Counter())
        if not day_counts:
            degenerate += 1
        for bucket, share in split_residual(residual, day_counts, mode).items():
            rows.append((date_str, machine, bucket, share))

    if degenerate:
        logger.info("%d machine-day(s) had downtime with no reason text; allocated to %s", degenerate, OTHER)
    return pd.DataFrame(rows, columns=ALLOCATION_COLUMNS)


@dataclass
class ReasonSummary:
    date_from: str | None
    date_to: str | None
    kind: str
    mode: str
    weekdays_only: bool
    rows: list[dict]
    buckets: object = None

    @property
    def total_hours(self) -> float:
        return float(sum(r["hours"] for r in self.rows))

    def to_record(self) -> dict:
        return {
            "from": self.date_from,
            "to": self.date_to,
            "kind": self.kind,
            "mode": self.mode,
            "weekdays_only": self.weekdays_only,
            "total_hours": self.total_hours,
            "reasons": [dict(r) for r in self.rows],
            "buckets": self.buckets,
        }


def summarize_reasons(
    records: pd.DataFrame,
    reasons: pd.DataFrame | None,
    config: CapacityMappingConfig,
    date_from: str | None = None,
    date_to: str | None = None,
    kind: str = "prod",
    weekdays_only: bool = False,
    mode: str | None = None,
) -> ReasonSummary:
    """Total allocated hours per bucket across the range, largest first."""
    mode = mode or config.downtime_reason_allocation_mode
    alloc = allocate_machine_days(
        records, reasons, config,
        kind=kind, weekdays_only=weekdays_only, mode=mode,
        date_from=date_from, date_to=date_to,
    )
    if len(alloc) > 0:
        totals = alloc.groupby("reason")["hours"].sum().reset_index()
        totals = totals.sort_values(["hours", "reason"], ascending=[False, True])
        rows = [{"reason": r, "hours": float(h)} for r, h in totals.itertuples(index=False)]
    else:
        rows = []

    return ReasonSummary(
        date_from=date_from,
        date_to=date_to,
        kind=kind,
        mode=mode,
        weekdays_only=weekdays_only,
        rows=rows,
        buckets=config.downtime_reason_buckets,
    )
