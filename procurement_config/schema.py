"""
Engine settings schema.

Frozen dataclasses produced by ``procurement_config.loader`` from YAML and
consumed by the lifecycle coordinator and operator scripts.  Defaults here
are the development defaults; production deployments supply a YAML file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from procurement_kernel.domain.requisition import ApproverEntry

DEFAULT_DATABASE_URL = "sqlite:///procurement.db"
DEFAULT_SELF_AUTHORIZATION_COMMENT = "Self-authorized by submitter at submission"


@dataclass(frozen=True)
class DuplicateCheckSettings:
    """Same-item resubmission check applied at submission.

    While ``grace_period_end`` lies in the future, duplicates are only
    logged as warnings instead of blocking the submission.
    """

    enabled: bool = False
    window_days: int = 30
    grace_period_end: date | None = None


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings of the approval-and-fulfillment engine."""

    database_url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    code_width: int = 6
    default_code_prefix: str = "REQ"
    self_authorization_comment: str = DEFAULT_SELF_AUTHORIZATION_COMMENT
    log_level: str = "INFO"
    duplicate_check: DuplicateCheckSettings = field(default_factory=DuplicateCheckSettings)
    checksum: str | None = None


@dataclass(frozen=True)
class DirectorySeed:
    """Approver directory parsed from a seed file."""

    approvers: tuple[ApproverEntry, ...] = ()
    checksum: str | None = None
