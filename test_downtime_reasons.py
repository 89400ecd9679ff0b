"""
Unit tests for downtime reason canonicalization and residual allocation.

Run: python -m pytest test_downtime_reasons.py -v
"""

from collections import Counter

import pandas as pd
import pytest

from downtime_reasons import (
    allocate_machine_days,
    canon_reason,
    explain_reason,
    normalize_reason,
    reason_multisets,
    split_residual,
    summarize_reasons,
)
from mapping_config import config_from_dict


def _days(rows):
    df = pd.DataFrame(rows)
    for col, default in [("material", ""), ("pounds", 0.0),
                         ("machine_hours", 0.0), ("maint_downtime_hours", 0.0)]:
        if col not in df.columns:
            df[col] = default
    return df


def _reasons(rows):
    return pd.DataFrame(rows, columns=["date", "machine", "reason_text"])


def _by_reason(alloc):
    return dict(zip(alloc["reason"], alloc["hours"]))


# =====================================================================
# normalize_reason / resolver priority
# =====================================================================

class TestNormalize:
    def test_uppercase_and_collapse(self):
        assert normalize_reason("  no--operator!!  today ") == "NO OPERATOR TODAY"

    def test_diacritics_stripped(self):
        assert normalize_reason("Résine épuisée") == "RESINE EPUISEE"

    def test_missing(self):
        assert normalize_reason(None) == ""
        assert normalize_reason(float("nan")) == ""


class TestResolverPriority:
    @pytest.mark.parametrize("text, bucket, kind", [
        ("NO OP", "STAFFING", "exact"),
        ("no op", "STAFFING", "exact"),
        ("waiting on resin", "MATERIAL", "regex"),
        ("Die lip cleaning", "MAINTENANCE", "regex"),
        ("No orders this week", "SCHEDULING", "keyword"),
        ("operator found gels", "QUALITY", "keyword"),
        ("resin color change", "MATERIAL", "heuristic"),
        ("power outage", "UTILITY", "heuristic"),
        ("extruder motor tripped", "MAINTENANCE", "heuristic"),
        ("startup", "CHANGEOVER", "heuristic"),
        ("scrap", "QUALITY", "heuristic"),
        ("lunch", "OTHER", "default"),
    ])
    def test_explain(self, config, text, bucket, kind):
        assert explain_reason(text, config) == (bucket, kind)

    def test_heuristics_without_config(self, empty_config):
        assert canon_reason("NO OPERATOR", empty_config) == "STAFFING"
        assert canon_reason("RESIN SHORTAGE", empty_config) == "MATERIAL"
        assert canon_reason("operator waiting on resin", empty_config) == "STAFFING"

    def test_exact_alias_beats_heuristics(self):
        cfg = config_from_dict({"downtime_reason_aliases": {"RESIN SHORTAGE": "SCHEDULING"}})
        assert explain_reason("Resin shortage", cfg) == ("SCHEDULING", "exact")

    def test_regex_list_order(self):
        cfg = config_from_dict({"downtime_reason_alias_regex": [
            {"pattern": "JAM", "bucket": "FIRST"},
            {"pattern": "CUTTER", "bucket": "SECOND"},
        ]})
        assert canon_reason("cutter jam", cfg) == "FIRST"

    def test_total_on_garbage(self, config):
        assert canon_reason(None, config) == "OTHER"
        assert canon_reason("", config) == "OTHER"
        assert canon_reason("!!!", config) == "OTHER"


# =====================================================================
# split_residual
# =====================================================================

class TestSplitResidual:
    def test_equal(self):
        out = split_residual(6, Counter({"A": 5, "B": 1, "C": 1}), "equal")
        assert out == {"A": 2.0, "B": 2.0, "C": 2.0}

    def test_by_count(self):
        out = split_residual(6, Counter({"A": 4, "B": 2}), "by_count")
        assert out == pytest.approx({"A": 4.0, "B": 2.0})

    def test_empty_goes_to_other(self):
        assert split_residual(3.5, Counter(), "by_count") == {"OTHER": 3.5}

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            split_residual(1, Counter({"A": 1}), "weighted")


# =====================================================================
# allocate_machine_days
# =====================================================================

@pytest.fixture
def scenario_d():
    days = _days([{"date": "2025-03-03", "machine": "Extruder 1", "pounds": 1000,
                   "machine_hours": 20, "maint_downtime_hours": 0}])
    reasons = _reasons([
        ("2025-03-03", "Extruder 1", "NO OPERATOR"),
        ("2025-03-03", "Extruder 1", "RESIN SHORTAGE"),
    ])
    return days, reasons


class TestAllocation:
    def test_scenario_d_equal(self, scenario_d, empty_config):
        days, reasons = scenario_d
        alloc = allocate_machine_days(days, reasons, empty_config, mode="equal")
        assert _by_reason(alloc) == pytest.approx({"STAFFING": 2.0, "MATERIAL": 2.0})

    def test_scenario_e_by_count(self, scenario_d, empty_config):
        days, _ = scenario_d
        reasons = _reasons(
            [("2025-03-03", "Extruder 1", "NO OPERATOR")] * 3
            + [("2025-03-03", "Extruder 1", "RESIN SHORTAGE")]
        )
        alloc = allocate_machine_days(days, reasons, empty_config, mode="by_count")
        assert _by_reason(alloc) == pytest.approx({"STAFFING": 3.0, "MATERIAL": 1.0})

    def test_equal_ignores_repeats(self, scenario_d, empty_config):
        days, _ = scenario_d
        reasons = _reasons(
            [("2025-03-03", "Extruder 1", "NO OPERATOR")] * 3
            + [("2025-03-03", "Extruder 1", "RESIN SHORTAGE")]
        )
        alloc = allocate_machine_days(days, reasons, empty_config, mode="equal")
        assert _by_reason(alloc) == pytest.approx({"STAFFING": 2.0, "MATERIAL": 2.0})

    def test_configured_mode_is_default(self, scenario_d):
        days, reasons = scenario_d
        cfg = config_from_dict({"downtime_reason_allocation_mode": "by_count"})
        reasons = pd.concat([reasons, reasons.iloc[[0]]], ignore_index=True)
        alloc = allocate_machine_days(days, reasons, cfg)
        assert _by_reason(alloc) == pytest.approx({"STAFFING": 4 * 2 / 3, "MATERIAL": 4 / 3})

    def test_no_reasons_goes_to_other(self, scenario_d, empty_config):
        days, _ = scenario_d
        alloc = allocate_machine_days(days, None, empty_config)
        assert _by_reason(alloc) == {"OTHER": 4.0}

    def test_reasons_on_other_machine_do_not_leak(self, scenario_d, empty_config):
        days, _ = scenario_d
        reasons = _reasons([("2025-03-03", "Extruder 2", "NO OPERATOR")])
        alloc = allocate_machine_days(days, reasons, empty_config)
        assert _by_reason(alloc) == {"OTHER": 4.0}

    def test_maint_kind_all_other(self, empty_config):
        days = _days([{"date": "2025-03-03", "machine": "L1", "machine_hours": 18,
                       "maint_downtime_hours": 3}])
        reasons = _reasons([("2025-03-03", "L1", "NO OPERATOR")])
        alloc = allocate_machine_days(days, reasons, empty_config, kind="maint")
        assert _by_reason(alloc) == {"OTHER": 3.0}

    def test_bad_kind(self, scenario_d, empty_config):
        days, reasons = scenario_d
        with pytest.raises(ValueError):
            allocate_machine_days(days, reasons, empty_config, kind="quality")

    def test_weekday_filter(self, empty_config):
        days = _days([
            {"date": "2025-03-07", "machine": "L1", "machine_hours": 20},
            {"date": "2025-03-08", "machine": "L1", "machine_hours": 10},
        ])
        reasons = _reasons([
            ("2025-03-07", "L1", "NO OPERATOR"),
            ("2025-03-08", "L1", "RESIN SHORTAGE"),
        ])
        alloc = allocate_machine_days(days, reasons, empty_config, weekdays_only=True)
        assert set(alloc["date"]) == {"2025-03-07"}
        assert _by_reason(alloc) == {"STAFFING": 4.0}

        everything = allocate_machine_days(days, reasons, empty_config)
        assert set(everything["date"]) == {"2025-03-07", "2025-03-08"}

    def test_date_bounds(self, empty_config):
        days = _days([
            {"date": "2025-03-03", "machine": "L1", "machine_hours": 20},
            {"date": "2025-03-04", "machine": "L1", "machine_hours": 20},
        ])
        alloc = allocate_machine_days(days, None, empty_config, date_from="2025-03-04", date_to="2025-03-04")
        assert list(alloc["date"]) == ["2025-03-04"]

    def test_line_alias_links_streams(self, config):
        days = _days([{"date": "2025-03-03", "machine": "Extruder 1", "pounds": 1000,
                       "machine_hours": 20}])
        reasons = _reasons([("2025-03-03", "EXT1", "NO OP")])
        alloc = allocate_machine_days(days, reasons, config)
        assert list(alloc["machine"]) == ["Extruder 1"]
        assert _by_reason(alloc) == {"STAFFING": 4.0}

    def test_blank_reason_ignored(self, scenario_d, empty_config):
        days, _ = scenario_d
        reasons = _reasons([("2025-03-03", "Extruder 1", "   "), ("2025-03-03", "Extruder 1", None)])
        alloc = allocate_machine_days(days, reasons, empty_config)
        assert _by_reason(alloc) == {"OTHER": 4.0}

    def test_full_day_across_materials_leaves_nothing(self, empty_config):
        days = _days([
            {"date": "2025-03-03", "machine": "L1", "material": "PP", "machine_hours": 12},
            {"date": "2025-03-03", "machine": "L1", "material": "HDPE", "machine_hours": 12},
        ])
        reasons = _reasons([("2025-03-03", "L1", "NO OPERATOR")])
        alloc = allocate_machine_days(days, reasons, empty_config)
        assert len(alloc) == 0

    @pytest.mark.parametrize("mode", ["equal", "by_count"])
    def test_material_rows_share_one_residual(self, empty_config, mode):
        days = _days([
            {"date": "2025-03-03", "machine": "L1", "material": "PP", "machine_hours": 10,
             "maint_downtime_hours": 1},
            {"date": "2025-03-03", "machine": "L1", "material": "HDPE", "machine_hours": 8},
        ])
        reasons = _reasons([
            ("2025-03-03", "L1", "NO OPERATOR"),
            ("2025-03-03", "L1", "RESIN SHORTAGE"),
        ])
        alloc = allocate_machine_days(days, reasons, empty_config, mode=mode)
        assert set(alloc["machine"]) == {"L1"}
        assert alloc["hours"].sum() == pytest.approx(24 - 18 - 1)
        assert _by_reason(alloc) == pytest.approx({"STAFFING": 2.5, "MATERIAL": 2.5})

        maint = allocate_machine_days(days, reasons, empty_config, kind="maint")
        assert _by_reason(maint) == {"OTHER": 1.0}

    @pytest.mark.parametrize("mode", ["equal", "by_count"])
    def test_sum_invariance(self, config, mode):
        days = _days([
            {"date": "2025-03-03", "machine": "EXT1", "pounds": 900, "machine_hours": 17.5,
             "maint_downtime_hours": 1.25},
            {"date": "2025-03-03", "machine": "Extruder 2", "pounds": 600, "machine_hours": 9,
             "maint_downtime_hours": 5},
            {"date": "2025-03-04", "machine": "Comp A", "pounds": 2000, "machine_hours": 22},
            {"date": "2025-03-05", "machine": "Silent", "pounds": 0, "machine_hours": 0},
        ])
        reasons = _reasons([
            ("2025-03-03", "EXT1", "no op"),
            ("2025-03-03", "EXT1", "gels"),
            ("2025-03-03", "EXT1", "gels"),
            ("2025-03-03", "Extruder 2", "power outage"),
            ("2025-03-04", "Comp A", "lunch"),
        ])
        alloc = allocate_machine_days(days, reasons, config, mode=mode)
        per_day = alloc.groupby(["date", "machine"])["hours"].sum()
        assert per_day[("2025-03-03", "Extruder 1")] == pytest.approx(24 - 17.5 - 1.25)
        assert per_day[("2025-03-03", "Extruder 2")] == pytest.approx(24 - 9 - 5)
        assert per_day[("2025-03-04", "Compounder A")] == pytest.approx(2)
        assert per_day[("2025-03-05", "Silent")] == pytest.approx(24)


class TestReasonMultisets:
    def test_counts_per_machine_day(self, config):
        reasons = _reasons([
            ("2025-03-03", "EXT1", "no op"),
            ("2025-03-03", "Extruder 1", "NO OP"),
            ("2025-03-03", "EXT1", "gels"),
        ])
        counts = reason_multisets(reasons, config)
        assert counts[("2025-03-03", "Extruder 1")] == Counter({"STAFFING": 2, "QUALITY": 1})


# =====================================================================
# summarize_reasons
# =====================================================================

class TestSummary:
    def test_sorted_descending(self, empty_config):
        days = _days([
            {"date": "2025-03-03", "machine": "L1", "machine_hours": 20},
            {"date": "2025-03-04", "machine": "L1", "machine_hours": 14},
        ])
        reasons = _reasons([
            ("2025-03-03", "L1", "NO OPERATOR"),
            ("2025-03-04", "L1", "RESIN SHORTAGE"),
        ])
        summary = summarize_reasons(days, reasons, empty_config)
        assert [r["reason"] for r in summary.rows] == ["MATERIAL", "STAFFING"]
        assert summary.total_hours == pytest.approx(14)
        assert summary.mode == "equal"

    def test_ties_break_alphabetically(self, scenario_d, empty_config):
        days, reasons = scenario_d
        summary = summarize_reasons(days, reasons, empty_config)
        assert [r["reason"] for r in summary.rows] == ["MATERIAL", "STAFFING"]

    def test_record_shape(self, scenario_d, config):
        days, reasons = scenario_d
        rec = summarize_reasons(days, reasons, config, "2025-03-01", "2025-03-31").to_record()
        assert rec["from"] == "2025-03-01"
        assert rec["to"] == "2025-03-31"
        assert rec["kind"] == "prod"
        assert rec["buckets"] is not None
        assert rec["total_hours"] == pytest.approx(4)

    def test_empty(self, empty_config):
        summary = summarize_reasons(_days([]), None, empty_config)
        assert summary.rows == []
        assert summary.total_hours == 0
