"""Capacity / alias mapping configuration: immutable structure, loader, and reloadable store."""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from shared import ALLOCATION_MODES, safe_float

logger = logging.getLogger(__name__)


def _empty_map():
    return MappingProxyType({})


# JS-style flag letters accepted in the regex alias list
_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "g": 0,
    "u": 0,
}


@dataclass(frozen=True)
class ReasonRegex:
    pattern: str
    flags: str
    bucket: str
    compiled: re.Pattern = field(compare=False, repr=False)


@dataclass(frozen=True)
class CapacityMappingConfig:
    """Read-only capacity, alias and downtime-reason configuration.

    Loaded once by :func:`load_mapping_config` and never mutated; a reload
    builds a new instance.
    """

    capacity_by_line: Mapping[str, float] = field(default_factory=_empty_map)
    capacity_by_line_material: Mapping[str, Mapping[str, float]] = field(default_factory=_empty_map)
    line_aliases: Mapping[str, str] = field(default_factory=_empty_map)
    material_aliases: Mapping[str, str] = field(default_factory=_empty_map)
    downtime_reason_aliases: Mapping[str, str] = field(default_factory=_empty_map)
    downtime_reason_alias_regex: tuple[ReasonRegex, ...] = ()
    downtime_reason_keywords: Mapping[str, tuple[str, ...]] = field(default_factory=_empty_map)
    downtime_reason_allocation_mode: str = "equal"
    downtime_reason_buckets: object = None

    def known_lines(self) -> set[str]:
        """Every line named in either capacity table."""
        return set(self.capacity_by_line) | set(self.capacity_by_line_material)


def _capacity(value, where: str) -> float:
    num = safe_float(value, default=None)
    if num is None or num < 0:
        raise ValueError(f"Invalid capacity {value!r} at {where}; expected a number >= 0")
    return num


def _string_map(raw, key: str, upper: bool = False) -> Mapping[str, str]:
    if raw is None:
        return _empty_map()
    if not isinstance(raw, dict):
        raise ValueError(f"`{key}` must be an object, got {type(raw).__name__}")
    out = {}
    for k, v in raw.items():
        k = str(k).strip()
        v = str(v).strip()
        out[k.upper() if upper else k] = v.upper() if upper else v
    return MappingProxyType(out)


def _compile_regex(entry, index: int) -> ReasonRegex:
    if not isinstance(entry, dict) or "pattern" not in entry or "bucket" not in entry:
        raise ValueError(
            f"`downtime_reason_alias_regex[{index}]` must have `pattern` and `bucket`"
        )
    flags_text = str(entry.get("flags") or "")
    flags = 0
    for letter in flags_text:
        if letter not in _REGEX_FLAGS:
            raise ValueError(f"Unsupported regex flag {letter!r} in entry {index}")
        flags |= _REGEX_FLAGS[letter]
    try:
        compiled = re.compile(str(entry["pattern"]), flags)
    except re.error as e:
        raise ValueError(f"Bad regex in `downtime_reason_alias_regex[{index}]`: {e}") from e
    return ReasonRegex(
        pattern=str(entry["pattern"]),
        flags=flags_text,
        bucket=str(entry["bucket"]).strip(),
        compiled=compiled,
    )


def config_from_dict(data: dict) -> CapacityMappingConfig:
    """Validate a parsed mappings document and freeze it.

    Raises ValueError when capacities are not numeric, a regex does not
    compile, or the allocation mode is unknown.
    """
    if not isinstance(data, dict):
        raise ValueError("Mappings document must be a JSON object")

    caps = {}
    for line, value in (data.get("capacities_lbs_hr") or {}).items():
        caps[str(line).strip()] = _capacity(value, f"capacities_lbs_hr.{line}")

    by_material = {}
    for line, materials in (data.get("capacity_by_material_lbs_hr") or {}).items():
        if not isinstance(materials, dict):
            raise ValueError(f"`capacity_by_material_lbs_hr.{line}` must be an object")
        by_material[str(line).strip()] = MappingProxyType({
            str(mat).strip().upper(): _capacity(v, f"capacity_by_material_lbs_hr.{line}.{mat}")
            for mat, v in materials.items()
        })

    regexes = tuple(
        _compile_regex(entry, i)
        for i, entry in enumerate(data.get("downtime_reason_alias_regex") or [])
    )

    keywords = {}
    for bucket, words in (data.get("downtime_reason_keywords") or {}).items():
        if isinstance(words, str):
            words = [words]
        keywords[str(bucket).strip()] = tuple(str(w) for w in words if str(w).strip())

    mode = str(data.get("downtime_reason_allocation_mode") or "equal").strip().lower()
    if mode not in ALLOCATION_MODES:
        raise ValueError(
            f"Unknown downtime_reason_allocation_mode {mode!r}; "
            f"expected one of {', '.join(ALLOCATION_MODES)}"
        )

    return CapacityMappingConfig(
        capacity_by_line=MappingProxyType(caps),
        capacity_by_line_material=MappingProxyType(by_material),
        line_aliases=_string_map(data.get("capacity_aliases"), "capacity_aliases"),
        material_aliases=_string_map(data.get("material_aliases"), "material_aliases", upper=True),
        downtime_reason_aliases=_string_map(data.get("downtime_reason_aliases"), "downtime_reason_aliases"),
        downtime_reason_alias_regex=regexes,
        downtime_reason_keywords=MappingProxyType(keywords),
        downtime_reason_allocation_mode=mode,
        downtime_reason_buckets=data.get("downtime_reason_buckets"),
    )


def load_mapping_config(path) -> CapacityMappingConfig:
    """Read and validate a mappings JSON file.

    File and parse errors propagate to the caller.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    config = config_from_dict(data)
    logger.info(
        "Loaded mappings from %s: %d lines, %d material tables, %d regex aliases",
        path,
        len(config.capacity_by_line),
        len(config.capacity_by_line_material),
        len(config.downtime_reason_alias_regex),
    )
    return config


class MappingStore:
    """Holds the current mapping config; reload swaps the whole object."""

    def __init__(self, path=None, config: CapacityMappingConfig | None = None):
        if config is None and path is None:
            raise ValueError("MappingStore needs a path or an initial config")
        self.path = path
        self._lock = threading.Lock()
        self._config = config if config is not None else load_mapping_config(path)

    @property
    def config(self) -> CapacityMappingConfig:
        return self._config

    def reload(self) -> CapacityMappingConfig:
        """Re-read the mappings file. On failure the previous config stays active."""
        if self.path is None:
            return self._config
        with self._lock:
            fresh = load_mapping_config(self.path)
            self._config = fresh
        return fresh
