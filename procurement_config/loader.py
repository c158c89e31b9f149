"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the typed ``procurement_config.schema``
dataclasses: engine settings and the approver directory seed.

Architecture position
---------------------
**Config layer** -- infrastructure tooling above ``procurement_kernel``.
The kernel never imports from this package.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values (width, level, role, dates)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import (
    DEFAULT_SELF_AUTHORIZATION_COMMENT,
    DirectorySeed,
    DuplicateCheckSettings,
    EngineSettings,
)
from procurement_kernel.domain.requisition import ApproverEntry, ApproverRole

_VALID_LEVELS = frozenset(logging.getLevelNamesMapping()) - {"NOTSET"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    return value


def _bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false, got {value!r}")
    return value


def parse_duplicate_check(data: dict[str, Any]) -> DuplicateCheckSettings:
    """Parse the ``duplicate_check`` section."""
    grace = data.get("grace_period_end")
    return DuplicateCheckSettings(
        enabled=_bool(data.get("enabled", False), "duplicate_check.enabled"),
        window_days=_positive_int(data.get("window_days", 30), "duplicate_check.window_days"),
        grace_period_end=parse_date(grace) if grace else None,
    )


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse engine settings; ``database.url`` is required."""
    database = data["database"]
    codes = data.get("requisition_codes", {})
    approvals = data.get("approvals", {})
    logging_section = data.get("logging", {})

    level = str(logging_section.get("level", "INFO")).upper()
    if level not in _VALID_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_VALID_LEVELS)}, got {level!r}")

    prefix = str(codes.get("default_prefix", "REQ")).strip()
    if not prefix:
        raise ValueError("requisition_codes.default_prefix must not be empty")

    return EngineSettings(
        database_url=database["url"],
        echo=_bool(database.get("echo", False), "database.echo"),
        pool_size=_positive_int(database.get("pool_size", 20), "database.pool_size"),
        max_overflow=int(database.get("max_overflow", 10)),
        pool_timeout=_positive_int(database.get("pool_timeout", 30), "database.pool_timeout"),
        code_width=_positive_int(codes.get("width", 6), "requisition_codes.width"),
        default_code_prefix=prefix,
        self_authorization_comment=approvals.get(
            "self_authorization_comment", DEFAULT_SELF_AUTHORIZATION_COMMENT,
        ),
        log_level=level,
        duplicate_check=parse_duplicate_check(data.get("duplicate_check", {})),
        checksum=compute_checksum(data),
    )


def parse_approver(data: dict[str, Any]) -> ApproverEntry:
    """Parse one directory entry."""
    try:
        role = ApproverRole(data["role"])
    except ValueError:
        raise ValueError(
            f"approver {data.get('approver_id')!r}: unknown role {data['role']!r}"
        ) from None

    units = data.get("units", [])
    if not isinstance(units, list):
        raise ValueError(f"approver {data['approver_id']!r}: units must be a list")

    return ApproverEntry(
        approver_id=str(data["approver_id"]),
        display_name=data["display_name"],
        role=role,
        units=frozenset(str(unit) for unit in units),
        active=_bool(data.get("active", True), "active"),
    )


def parse_directory(data: dict[str, Any]) -> DirectorySeed:
    """Parse the ``approvers`` list of a directory seed."""
    entries = tuple(parse_approver(item) for item in data["approvers"])
    ids = [entry.approver_id for entry in entries]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ValueError(f"duplicate approver ids in directory seed: {duplicates}")
    return DirectorySeed(approvers=entries, checksum=compute_checksum(data))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
