"""
procurement_config -- runtime settings and approver directory seeds.

Responsibility:
    Provides ``get_active_settings()`` (the one way services and scripts
    obtain engine settings) and ``load_directory()`` (approver directory
    seed files).

Architecture position:
    Configuration -- sits above ``procurement_kernel`` and below
    ``procurement_services`` and ``scripts``.  The kernel MUST NEVER import
    from ``procurement_config``.

Invariants enforced:
    - Settings come from the YAML file named by ``PROCUREMENT_CONFIG`` (or an
      explicit path), otherwise from schema defaults.
    - ``PROCUREMENT_DATABASE_URL`` overrides the configured database URL.

Failure modes:
    - ``FileNotFoundError`` -- the named file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or malformed settings.

Audit relevance:
    Every successful ``get_active_settings()`` call emits a
    ``PROCUREMENT_CONFIG_TRACE`` log entry with the settings checksum.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from procurement_config.loader import load_yaml_file, parse_directory, parse_settings
from procurement_config.schema import DirectorySeed, DuplicateCheckSettings, EngineSettings

_logger = logging.getLogger("procurement_kernel.config")

CONFIG_ENV_VAR = "PROCUREMENT_CONFIG"
DATABASE_URL_ENV_VAR = "PROCUREMENT_DATABASE_URL"


def get_active_settings(path: str | Path | None = None) -> EngineSettings:
    """Load engine settings.

    Args:
        path: Settings file.  Defaults to ``$PROCUREMENT_CONFIG``; when
            neither is set the schema defaults are used.
    """
    source = path or os.environ.get(CONFIG_ENV_VAR)
    if source:
        settings = parse_settings(load_yaml_file(Path(source)))
    else:
        settings = EngineSettings()

    override = os.environ.get(DATABASE_URL_ENV_VAR)
    if override:
        settings = dataclasses.replace(settings, database_url=override)

    _logger.info(
        "PROCUREMENT_CONFIG_TRACE",
        extra={
            "trace_type": "PROCUREMENT_CONFIG_TRACE",
            "source": str(source) if source else "defaults",
            "checksum": settings.checksum,
            "database_url_overridden": bool(override),
            "duplicate_check_enabled": settings.duplicate_check.enabled,
        },
    )
    return settings


def load_directory(path: str | Path) -> DirectorySeed:
    """Parse an approver directory seed file."""
    return parse_directory(load_yaml_file(Path(path)))


__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "DirectorySeed",
    "DuplicateCheckSettings",
    "EngineSettings",
    "get_active_settings",
    "load_directory",
]
