"""
PII rule models and matching.

Two kinds of rules:
- KnownName: regexes tested against column names
- DataPattern: regexes tested against sampled column values, optionally
  tied to a country
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

# Types whose values are worth sampling for pattern matches
SAMPLE_TYPES = frozenset({
    "char", "varchar", "nchar", "nvarchar", "text", "ntext",
    "int", "bigint", "numeric", "decimal", "sysname",
})


@dataclass
class KnownName:
    """A named PII category recognised by column name."""
    name: str
    category: str
    patterns: list[str]
    masking_type: str | None = None
    masking_sub_type: str | None = None
    _compiled: list[re.Pattern] = field(default_factory=list, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._compiled = [re.compile(p, re.IGNORECASE) for p in self.patterns]

    def matches(self, column_name: str) -> bool:
        return any(regex.search(column_name) for regex in self._compiled)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KnownName":
        patterns = data.get("Pattern") or []
        if isinstance(patterns, str):
            patterns = [patterns]
        return cls(
            name=data["Name"],
            category=data.get("Category", "Personal"),
            patterns=list(patterns),
            masking_type=data.get("MaskingType"),
            masking_sub_type=data.get("MaskingSubType"),
        )


@dataclass
class DataPattern:
    """A value pattern, e.g. an e-mail address or a national ID number."""
    name: str
    category: str
    pattern: str
    country: str = "All"
    country_code: str = "All"
    masking_type: str | None = None
    masking_sub_type: str | None = None
    description: str | None = None
    _compiled: re.Pattern | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._compiled = re.compile(self.pattern, re.IGNORECASE)

    def matches(self, value: Any) -> bool:
        if value is None:
            return False
        text = str(value).strip()
        if not text:
            return False
        return self._compiled.search(text) is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DataPattern":
        return cls(
            name=data["Name"],
            category=data.get("Category", "Personal"),
            pattern=data["Pattern"],
            country=data.get("Country", "All"),
            country_code=data.get("CountryCode", "All"),
            masking_type=data.get("MaskingType"),
            masking_sub_type=data.get("MaskingSubType"),
            description=data.get("Description"),
        )


def filter_patterns(
    patterns: Iterable[DataPattern],
    countries: Iterable[str] | None = None,
    country_codes: Iterable[str] | None = None,
) -> list[DataPattern]:
    """
    Keep patterns valid for the requested countries.

    Patterns marked "All" always apply. Without filters every pattern applies.
    """
    countries = {c.lower() for c in countries or []}
    codes = {c.lower() for c in country_codes or []}
    patterns = list(patterns)
    if not countries and not codes:
        return patterns
    kept = []
    for pattern in patterns:
        if pattern.country.lower() == "all" or pattern.country_code.lower() == "all":
            kept.append(pattern)
        elif pattern.country.lower() in countries or pattern.country_code.lower() in codes:
            kept.append(pattern)
    return kept


def match_known_name(column_name: str, known_names: Iterable[KnownName]) -> KnownName | None:
    """First known name whose regexes match the column name."""
    for known in known_names:
        if known.matches(column_name):
            return known
    return None


def match_values(values: Iterable[Any], patterns: Iterable[DataPattern]) -> list[DataPattern]:
    """
    Patterns matched by at least one sampled value, in rule order.
    """
    patterns = list(patterns)
    hits: set[int] = set()
    for value in values:
        if len(hits) == len(patterns):
            break
        for index, pattern in enumerate(patterns):
            if index not in hits and pattern.matches(value):
                hits.add(index)
    return [p for i, p in enumerate(patterns) if i in hits]


def is_sampleable(type_name: str) -> bool:
    return type_name.lower() in SAMPLE_TYPES
