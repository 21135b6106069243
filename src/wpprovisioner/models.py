"""Shared domain models for wpprovisioner."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class LifecycleState(str, Enum):
    ABSENT = "absent"
    CREATED = "created"
    STOPPED = "stopped"
    STARTING = "starting"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class AccountState(str, Enum):
    UNKNOWN = "unknown"
    EXISTS = "exists"
    ABSENT = "absent"
    RECONCILED = "reconciled"


@dataclass(frozen=True)
class SiteContext:
    """Per-run identifiers derived once from the site name and settings."""

    site_name: str
    site_path: str
    db_name: str
    base_url: str
    domain: str


@dataclass(frozen=True)
class Credential:
    user: str
    password: str
    scoped: bool = False


@dataclass(frozen=True)
class ContainerSpec:
    """Container hosting the database server when docker mode is enabled."""

    name: str
    image: str
    host_port: int
    root_password: str
    volume: str
    network: str


@dataclass(frozen=True)
class DatabaseTarget:
    host: str
    port: int
    credential: Credential
    charset: str
    collate: str
    table_prefix: str
    container: Optional[ContainerSpec] = None

    @property
    def containerized(self) -> bool:
        return self.container is not None


@dataclass(frozen=True)
class ReplacementRule:
    search: str
    replace: str
    case_sensitive: bool = False
    regex: bool = False
    dry_run: bool = False
    category: str = "custom"

    @property
    def is_noop(self) -> bool:
        return self.search == self.replace


@dataclass(frozen=True)
class AdminAccount:
    login: str
    email: str
    password: str = field(repr=False)


@dataclass
class StrategyResult:
    """Outcome of one search/replace strategy for one rule."""

    strategy: str
    succeeded: bool
    message: str = ""
    statements: int = 0
    tables: List[str] = field(default_factory=list)
    failed_tables: List[str] = field(default_factory=list)


@dataclass
class RuleOutcome:
    rule: ReplacementRule
    skipped: bool = False
    attempts: List[StrategyResult] = field(default_factory=list)

    @property
    def applied_by(self) -> Optional[str]:
        for attempt in self.attempts:
            if attempt.succeeded:
                return attempt.strategy
        return None


@dataclass
class MigrationResult:
    dump_path: str
    database: str
    imported: bool = False
    maintenance_warnings: List[str] = field(default_factory=list)
    outcomes: List[RuleOutcome] = field(default_factory=list)


@dataclass(frozen=True)
class ReconcileResult:
    login: str
    created: bool
    user_id: Optional[int]
    capabilities_granted: bool
    used_fallback_hash: bool
    state: AccountState = AccountState.RECONCILED


Rows = List[Tuple[str, ...]]
