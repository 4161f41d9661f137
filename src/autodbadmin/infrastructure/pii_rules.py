"""
Loading of PII detection rules.

Default rule sets ship as package data; callers may add their own JSON
files with the same layout.
"""

import json
import logging
from importlib import resources
from pathlib import Path
from typing import List, Optional

from autodbadmin.domain.errors import ConfigurationError
from autodbadmin.domain.pii import DataPattern, KnownName

logger = logging.getLogger(__name__)

_PACKAGE = "autodbadmin.infrastructure.resources"


def _read_rules(path: Optional[Path], default_name: str) -> list:
    if path is None:
        text = resources.files(_PACKAGE).joinpath(default_name).read_text(encoding="utf-8")
        source = default_name
    else:
        if not path.exists():
            raise ConfigurationError(f"PII rule file not found: {path}")
        text = path.read_text(encoding="utf-8")
        source = str(path)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in PII rule file {source}: {e.msg}") from e
    if not isinstance(data, list):
        raise ConfigurationError(f"PII rule file {source} must contain a JSON array")
    logger.debug("Loaded %d PII rules from %s", len(data), source)
    return data


def load_known_names(extra_file: Optional[Path] = None, include_defaults: bool = True) -> List[KnownName]:
    """Default known-name rules followed by those from ``extra_file``."""
    rules: List[KnownName] = []
    try:
        if include_defaults:
            rules.extend(KnownName.from_dict(r) for r in _read_rules(None, "pii-knownnames.json"))
        if extra_file is not None:
            rules.extend(KnownName.from_dict(r) for r in _read_rules(extra_file, ""))
    except KeyError as e:
        raise ConfigurationError(f"Known-name rule is missing field {e}") from e
    return rules


def load_patterns(extra_file: Optional[Path] = None, include_defaults: bool = True) -> List[DataPattern]:
    """Default data patterns followed by those from ``extra_file``."""
    rules: List[DataPattern] = []
    try:
        if include_defaults:
            rules.extend(DataPattern.from_dict(r) for r in _read_rules(None, "pii-patterns.json"))
        if extra_file is not None:
            rules.extend(DataPattern.from_dict(r) for r in _read_rules(extra_file, ""))
    except KeyError as e:
        raise ConfigurationError(f"Data pattern rule is missing field {e}") from e
    return rules
