"""
Mapping Resolver
================
Canonicalizes raw machine / material names and resolves rated capacity
(lbs/hr) for a (line, material) pair.

Resolution order for capacity (first hit wins):
  1. capacity_by_line_material[line][material]
  2. capacity_by_line_material[line]["DEFAULT"]
  3. capacity_by_line[line]
  4. 0  (capacity unknown; never an error)

Line matching is exact. "Line 1" and "line 1" are different lines unless an
alias says otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from mapping_config import CapacityMappingConfig
from shared import DEFAULT_MATERIAL, clean_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacityResolution:
    line: str
    material: str
    capacity: float
    source: str  # material | default | line | unresolved


def canon_line(raw, config: CapacityMappingConfig) -> str:
    """Map a raw machine name to the line key used by the capacity tables."""
    name = clean_text(raw)
    if name in config.capacity_by_line or name in config.capacity_by_line_material:
        return name
    return config.line_aliases.get(name, name)


def canon_material(raw, config: CapacityMappingConfig) -> str:
    """Uppercase + trim a material; blank means DEFAULT."""
    key = clean_text(raw).upper()
    if key == "":
        return DEFAULT_MATERIAL
    return config.material_aliases.get(key, key)


def resolve_capacity(line, material, config: CapacityMappingConfig) -> CapacityResolution:
    """Resolve rated capacity and report which table entry supplied it."""
    cline = canon_line(line, config)
    cmat = canon_material(material, config)

    by_material = config.capacity_by_line_material.get(cline)
    if by_material:
        if cmat in by_material:
            return CapacityResolution(cline, cmat, float(by_material[cmat]), "material")
        if DEFAULT_MATERIAL in by_material:
            return CapacityResolution(cline, cmat, float(by_material[DEFAULT_MATERIAL]), "default")

    if cline in config.capacity_by_line:
        return CapacityResolution(cline, cmat, float(config.capacity_by_line[cline]), "line")

    return CapacityResolution(cline, cmat, 0.0, "unresolved")


def capacity_for(line, material, config: CapacityMappingConfig) -> float:
    """Rated lbs/hr for a (line, material) pair; 0 means unknown."""
    return resolve_capacity(line, material, config).capacity


def nameplate_assignments(records: pd.DataFrame, config: CapacityMappingConfig) -> pd.DataFrame:
    """Nameplate capacity for every distinct (machine, material) pair in *records*.

    Pairs with no capacity entry are kept with nameplate 0 and source
    "unresolved" so gaps in the mapping file show up in the output.
    """
    columns = ["machine", "material", "line", "canonical_material", "nameplate_lbs_hr", "source"]
    if records is None or len(records) == 0:
        return pd.DataFrame(columns=columns)

    material = records["material"] if "material" in records.columns else pd.Series("", index=records.index)
    pairs = pd.DataFrame({
        "machine": records["machine"].map(clean_text),
        "material": material.map(clean_text),
    }).drop_duplicates().reset_index(drop=True)

    rows = []
    for machine, mat in pairs.itertuples(index=False):
        res = resolve_capacity(machine, mat, config)
        rows.append({
            "machine": machine,
            "material": mat,
            "line": res.line,
            "canonical_material": res.material,
            "nameplate_lbs_hr": res.capacity,
            "source": res.source,
        })

    out = pd.DataFrame(rows, columns=columns).sort_values(["machine", "material"]).reset_index(drop=True)
    gaps = out[out["source"] == "unresolved"]
    if len(gaps) > 0:
        logger.warning(
            "No capacity mapping for %d machine/material pair(s): %s",
            len(gaps),
            ", ".join(f"{m}/{mat or DEFAULT_MATERIAL}" for m, mat in zip(gaps["machine"], gaps["material"])),
        )
    return out
