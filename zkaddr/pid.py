"""
ZKADDR Place Identifier (PID) Codec

A PID is the administrative path of a physical address, root first:

    country - admin1 - admin2 - locality - sublocality - block - building - unit

serialized as a hyphen-joined string (``JP-13-113-01``). Segments are short
alphanumeric tokens; the country segment is always present and is a
two-letter uppercase code. Present segments are contiguous from the root.

Per-country arity and token formats come from an external schema table
(`data/country_schemas.yaml` by default) keyed by country code and consumed
read-only.

All functions here are pure.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from zkaddr.errors import MalformedPID

SEGMENT_LEVELS: Tuple[str, ...] = (
    "country",
    "admin1",
    "admin2",
    "locality",
    "sublocality",
    "block",
    "building",
    "unit",
)
MAX_SEGMENTS = len(SEGMENT_LEVELS)
SEPARATOR = "-"

COUNTRY_PATTERN = re.compile(r"^[A-Z]{2}$")
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9]{1,16}$")

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent / "data" / "country_schemas.yaml"


# =============================================================================
# COMPONENTS
# =============================================================================

@dataclass(frozen=True)
class PIDComponents:
    """Decoded PID: one optional token per hierarchy level."""
    country: str
    admin1: Optional[str] = None
    admin2: Optional[str] = None
    locality: Optional[str] = None
    sublocality: Optional[str] = None
    block: Optional[str] = None
    building: Optional[str] = None
    unit: Optional[str] = None

    @property
    def vector(self) -> Tuple[Optional[str], ...]:
        """All eight levels in order, None for absent levels."""
        return tuple(getattr(self, level) for level in SEGMENT_LEVELS)

    @property
    def segments(self) -> Tuple[str, ...]:
        return tuple(s for s in self.vector if s is not None)

    @property
    def depth(self) -> int:
        return len(self.segments)

    @property
    def region(self) -> Optional[str]:
        return self.admin1

    def to_dict(self) -> Dict[str, str]:
        return {level: value for level, value in zip(SEGMENT_LEVELS, self.vector) if value is not None}

    def __str__(self) -> str:
        return SEPARATOR.join(self.segments)


ComponentsInput = Union[PIDComponents, Mapping[str, Optional[str]], Iterable[Tuple[str, str]]]


# =============================================================================
# COUNTRY SCHEMAS
# =============================================================================

@dataclass(frozen=True)
class CountrySchema:
    """Arity and per-level token formats for one country."""
    code: str
    name: str
    min_depth: int
    max_depth: int
    patterns: Tuple[Tuple[str, "re.Pattern[str]"], ...] = ()

    def pattern_for(self, level: str) -> Optional["re.Pattern[str]"]:
        for name, pattern in self.patterns:
            if name == level:
                return pattern
        return None

    def check(self, vector: Tuple[Optional[str], ...]) -> List[str]:
        """Return reasons the vector violates this schema (empty if valid)."""
        reasons: List[str] = []
        depth = sum(1 for s in vector if s is not None)
        if depth < self.min_depth:
            reasons.append(f"{self.code} requires at least {self.min_depth} segments, got {depth}")
        if depth > self.max_depth:
            reasons.append(f"{self.code} allows at most {self.max_depth} segments, got {depth}")
        for level, value in zip(SEGMENT_LEVELS[1:], vector[1:]):
            if value is None:
                continue
            pattern = self.pattern_for(level)
            if pattern is not None and not pattern.match(value):
                reasons.append(f"{level} {value!r} does not match the {self.code} format")
        return reasons


class CountrySchemaTable:
    """Read-only lookup table of country schemas keyed by country code."""

    def __init__(self, schemas: Mapping[str, CountrySchema]):
        self._schemas = dict(schemas)

    def get(self, code: str) -> Optional[CountrySchema]:
        return self._schemas.get(code)

    def __contains__(self, code: object) -> bool:
        return code in self._schemas

    def codes(self) -> List[str]:
        return sorted(self._schemas)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CountrySchemaTable":
        from zkaddr.schema import validate_document

        errors = validate_document(data, "country-schemas")
        if errors:
            raise ValueError(f"Invalid country schema table: {'; '.join(errors)}")

        schemas: Dict[str, CountrySchema] = {}
        for code, entry in data["countries"].items():
            if entry["min_depth"] > entry["max_depth"]:
                raise ValueError(f"{code}: min_depth exceeds max_depth")
            patterns = tuple(
                (level, re.compile(expr))
                for level, expr in sorted((entry.get("segments") or {}).items())
            )
            schemas[code] = CountrySchema(
                code=code,
                name=entry.get("name", code),
                min_depth=entry["min_depth"],
                max_depth=entry["max_depth"],
                patterns=patterns,
            )
        return cls(schemas)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "CountrySchemaTable":
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Country schema file must be a mapping: {path}")
        return cls.from_dict(data)


@lru_cache(maxsize=8)
def _load_table(path: str) -> CountrySchemaTable:
    return CountrySchemaTable.load(path)


def default_schema_table() -> CountrySchemaTable:
    """Schema table named by configuration, or the packaged one."""
    from zkaddr.config import get_config

    configured = get_config().pid.country_schema_path.get()
    return _load_table(configured or str(DEFAULT_SCHEMA_PATH))


# =============================================================================
# CODEC
# =============================================================================

@dataclass(frozen=True)
class PIDValidation:
    """Non-throwing validation verdict."""
    valid: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"valid": self.valid}
        if self.reason:
            out["reason"] = self.reason
        return out


class PIDCodec:
    """Encodes, decodes and validates PIDs against a country schema table."""

    def __init__(self, schemas: Optional[CountrySchemaTable] = None):
        self._schemas = schemas

    @property
    def schemas(self) -> CountrySchemaTable:
        return self._schemas if self._schemas is not None else default_schema_table()

    def encode(self, components: ComponentsInput) -> str:
        """Validate components and serialize them to a PID string."""
        vector = self._vector_from_input(components)
        self._check(vector)
        return SEPARATOR.join(s for s in vector if s is not None)

    def decode(self, pid: str) -> PIDComponents:
        """Parse a PID string into components."""
        if not isinstance(pid, str):
            raise MalformedPID(f"PID must be a string, got {type(pid).__name__}")
        if not pid:
            raise MalformedPID("PID is empty")
        parts = pid.split(SEPARATOR)
        if len(parts) > MAX_SEGMENTS:
            raise MalformedPID(f"PID has {len(parts)} segments, at most {MAX_SEGMENTS} allowed", pid=pid)
        for level, part in zip(SEGMENT_LEVELS, parts):
            if part == "":
                raise MalformedPID(f"Empty {level} segment", pid=pid)
        vector = tuple(parts) + (None,) * (MAX_SEGMENTS - len(parts))
        self._check(vector, pid=pid)
        return PIDComponents(*vector)

    def validate(self, pid: Union[str, ComponentsInput]) -> PIDValidation:
        """Boolean verdict with diagnostics; never raises."""
        try:
            if isinstance(pid, str):
                self.decode(pid)
            else:
                self.encode(pid)
        except MalformedPID as e:
            return PIDValidation(valid=False, reason=e.message)
        return PIDValidation(valid=True)

    def components(self, value: Union[str, ComponentsInput]) -> PIDComponents:
        """Normalize a PID string or component input to validated components."""
        if isinstance(value, str):
            return self.decode(value)
        vector = self._vector_from_input(value)
        self._check(vector)
        return PIDComponents(*vector)

    # -------------------------------------------------------------------------

    def _vector_from_input(self, components: ComponentsInput) -> Tuple[Optional[str], ...]:
        if isinstance(components, PIDComponents):
            return components.vector

        if isinstance(components, Mapping):
            pairs = list(components.items())
        else:
            try:
                pairs = [tuple(p) for p in components]
            except TypeError as e:
                raise MalformedPID("Components must be a mapping or (level, value) pairs") from e

        values: Dict[str, Optional[str]] = {}
        for pair in pairs:
            if len(pair) != 2:
                raise MalformedPID("Components must be (level, value) pairs")
            level, value = pair
            if level not in SEGMENT_LEVELS:
                raise MalformedPID(f"Unknown level {level!r}")
            if level in values:
                raise MalformedPID(f"Duplicate level {level!r}")
            if value is not None and not isinstance(value, str):
                raise MalformedPID(f"{level} must be a string")
            if value == "":
                raise MalformedPID(f"Empty {level} segment")
            values[level] = value
        return tuple(values.get(level) for level in SEGMENT_LEVELS)

    def _check(self, vector: Tuple[Optional[str], ...], pid: Optional[str] = None) -> None:
        country = vector[0]
        if country is None:
            raise MalformedPID("Country segment is required", pid=pid)
        if not COUNTRY_PATTERN.match(country):
            raise MalformedPID(f"Country {country!r} must be a 2-letter uppercase code", pid=pid)

        seen_gap = None
        for level, value in zip(SEGMENT_LEVELS, vector):
            if value is None:
                seen_gap = seen_gap or level
                continue
            if seen_gap is not None:
                raise MalformedPID(f"{level} present after missing {seen_gap}", pid=pid)
            if not TOKEN_PATTERN.match(value):
                raise MalformedPID(f"{level} {value!r} is not a short alphanumeric token", pid=pid)

        schema = self.schemas.get(country)
        if schema is None:
            raise MalformedPID(f"No schema for country {country}", pid=pid)
        reasons = schema.check(vector)
        if reasons:
            raise MalformedPID("; ".join(reasons), pid=pid)


_default_codec = PIDCodec()


def encode(components: ComponentsInput) -> str:
    return _default_codec.encode(components)


def decode(pid: str) -> PIDComponents:
    return _default_codec.decode(pid)


def validate(pid: Union[str, ComponentsInput]) -> PIDValidation:
    return _default_codec.validate(pid)
