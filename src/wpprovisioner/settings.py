"""Typed, immutable settings threaded through every provisioning stage."""

import copy
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from packaging import version

from .constants import (
    DEFAULT_PASSWORD_LENGTH,
    READINESS_DELAY_SECONDS,
    READINESS_MAX_ATTEMPTS,
    SALT_URL,
)
from .errors import ProvisionerError

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "path": "~/Server",
    },
    "database": {
        "host": "localhost",
        "port": 3306,
        "user": "root",
        "password": "",
        "charset": "utf8mb4",
        "collate": "utf8mb4_unicode_ci",
        "prefix": "wp_",
        "name_prefix": "wp_",
        "create_user": False,
        "user_prefix": "wp_",
        "user_host": None,
        "grant_privileges": [
            "SELECT",
            "INSERT",
            "UPDATE",
            "DELETE",
            "CREATE",
            "DROP",
            "INDEX",
            "ALTER",
        ],
        "password_length": DEFAULT_PASSWORD_LENGTH,
        "docker": {
            "enabled": False,
            "container_name": "mysql",
            "image": "mysql:8.0",
            "port": 3306,
            "root_password": "",
            "data_volume": "mysql_data",
            "network": "bridge",
            "readiness_attempts": READINESS_MAX_ATTEMPTS,
            "readiness_delay": READINESS_DELAY_SECONDS,
        },
    },
    "wordpress": {
        "version": "latest",
        "locale": "en_US",
        "admin_user": "admin",
        "admin_email": "admin@example.com",
        "admin_password": "admin123",
        "site_title": "Test Site",
        "memory_limit": "256M",
        "use_permalinks": True,
        "permalink_structure": "/%postname%/",
        "disable_comments": True,
        "disable_trackbacks": True,
        "disable_pingbacks": True,
        "timezone": "UTC",
        "date_format": "F j, Y",
        "time_format": "g:i a",
        "start_of_week": 1,
        "privacy": "public",
        "wp_cli": "wp",
    },
    "site": {
        "domain_suffix": ".test",
        "secure": False,
    },
    "sql": {
        "source": None,
        "old_url": "http://example.com",
        "old_domain": "example.com",
        "search_replace": {
            "enabled": True,
            "case_sensitive": False,
            "regex": False,
            "dry_run": False,
            "additional_replacements": [],
        },
        "optimize_after_import": True,
        "repair_after_import": True,
    },
    "development": {
        "enable_debug": True,
        "wp_debug_log": True,
        "wp_debug_display": False,
        "script_debug": True,
        "save_queries": True,
        "force_ssl_admin": False,
    },
    "security": {
        "disable_file_editing": True,
    },
    "custom": {
        "wp_config": [],
        "hooks": {
            "before_setup": [],
            "after_database_import": [],
            "after_search_replace": [],
            "after_setup": [],
        },
    },
    "advanced": {
        "skip_wordpress_download": False,
        "skip_database_creation": False,
        "skip_search_replace": False,
        "verbose": False,
        "salt_url": SALT_URL,
        "salt_timeout": 10.0,
    },
}


def merge_config(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if value is None and isinstance(merged.get(key), dict):
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def expand_path(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


@dataclass(frozen=True)
class DockerSettings:
    enabled: bool
    container_name: str
    image: str
    port: int
    root_password: str
    data_volume: str
    network: str
    readiness_attempts: int
    readiness_delay: float


@dataclass(frozen=True)
class DatabaseSettings:
    host: str
    port: int
    user: str
    password: str
    charset: str
    collate: str
    prefix: str
    name_prefix: str
    create_user: bool
    user_prefix: str
    user_host: Optional[str]
    grant_privileges: Tuple[str, ...]
    password_length: int
    docker: DockerSettings

    @property
    def grant_host(self) -> str:
        if self.user_host:
            return self.user_host
        return "%" if self.docker.enabled else self.host


@dataclass(frozen=True)
class WordPressSettings:
    version: str
    locale: str
    admin_user: str
    admin_email: str
    admin_password: Optional[str]
    site_title: str
    memory_limit: Optional[str]
    use_permalinks: bool
    permalink_structure: str
    disable_comments: bool
    disable_trackbacks: bool
    disable_pingbacks: bool
    timezone: Optional[str]
    date_format: Optional[str]
    time_format: Optional[str]
    start_of_week: Optional[int]
    privacy: Optional[str]
    wp_cli: str


@dataclass(frozen=True)
class SiteSettings:
    domain_suffix: str
    secure: bool

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"


@dataclass(frozen=True)
class SearchReplaceSettings:
    enabled: bool
    case_sensitive: bool
    regex: bool
    dry_run: bool
    additional_replacements: Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class SqlSettings:
    source: Optional[str]
    old_url: str
    old_domain: str
    search_replace: SearchReplaceSettings
    optimize_after_import: bool
    repair_after_import: bool


@dataclass(frozen=True)
class DevelopmentSettings:
    enable_debug: bool
    wp_debug_log: bool
    wp_debug_display: bool
    script_debug: bool
    save_queries: bool
    force_ssl_admin: bool


@dataclass(frozen=True)
class SecuritySettings:
    disable_file_editing: bool


@dataclass(frozen=True)
class HookSettings:
    before_setup: Tuple[str, ...]
    after_database_import: Tuple[str, ...]
    after_search_replace: Tuple[str, ...]
    after_setup: Tuple[str, ...]


@dataclass(frozen=True)
class CustomSettings:
    wp_config: Tuple[str, ...]
    hooks: HookSettings


@dataclass(frozen=True)
class AdvancedSettings:
    skip_wordpress_download: bool
    skip_database_creation: bool
    skip_search_replace: bool
    verbose: bool
    salt_url: str
    salt_timeout: float


@dataclass(frozen=True)
class Settings:
    server_path: str
    database: DatabaseSettings
    wordpress: WordPressSettings
    site: SiteSettings
    sql: SqlSettings
    development: DevelopmentSettings
    security: SecuritySettings
    custom: CustomSettings
    advanced: AdvancedSettings

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "Settings":
        """Builds settings from a (partial) config mapping merged over the defaults."""
        raw = merge_config(DEFAULT_CONFIG, values or {})

        try:
            database = raw["database"]
            docker = database["docker"]
            wordpress = raw["wordpress"]
            sql = raw["sql"]
            search_replace = sql["search_replace"]
            hooks = raw["custom"]["hooks"]

            settings = cls(
                server_path=expand_path(str(raw["server"]["path"])),
                database=DatabaseSettings(
                    host=str(database["host"]),
                    port=int(database["port"]),
                    user=str(database["user"]),
                    password=_text(database["password"]),
                    charset=str(database["charset"]),
                    collate=str(database["collate"]),
                    prefix=str(database["prefix"]),
                    name_prefix=_text(database["name_prefix"]),
                    create_user=bool(database["create_user"]),
                    user_prefix=_text(database["user_prefix"]),
                    user_host=database["user_host"],
                    grant_privileges=tuple(str(p).upper() for p in database["grant_privileges"]),
                    password_length=int(database["password_length"]),
                    docker=DockerSettings(
                        enabled=bool(docker["enabled"]),
                        container_name=str(docker["container_name"]),
                        image=str(docker["image"]),
                        port=int(docker["port"]),
                        root_password=_text(docker["root_password"]),
                        data_volume=str(docker["data_volume"]),
                        network=str(docker["network"]),
                        readiness_attempts=int(docker["readiness_attempts"]),
                        readiness_delay=float(docker["readiness_delay"]),
                    ),
                ),
                wordpress=WordPressSettings(
                    version=str(wordpress["version"]),
                    locale=str(wordpress["locale"]),
                    admin_user=str(wordpress["admin_user"]),
                    admin_email=str(wordpress["admin_email"]),
                    admin_password=wordpress["admin_password"],
                    site_title=str(wordpress["site_title"]),
                    memory_limit=wordpress["memory_limit"],
                    use_permalinks=bool(wordpress["use_permalinks"]),
                    permalink_structure=str(wordpress["permalink_structure"]),
                    disable_comments=bool(wordpress["disable_comments"]),
                    disable_trackbacks=bool(wordpress["disable_trackbacks"]),
                    disable_pingbacks=bool(wordpress["disable_pingbacks"]),
                    timezone=wordpress["timezone"],
                    date_format=wordpress["date_format"],
                    time_format=wordpress["time_format"],
                    start_of_week=wordpress["start_of_week"],
                    privacy=wordpress["privacy"],
                    wp_cli=str(wordpress["wp_cli"]),
                ),
                site=SiteSettings(
                    domain_suffix=_text(raw["site"]["domain_suffix"]),
                    secure=bool(raw["site"]["secure"]),
                ),
                sql=SqlSettings(
                    source=sql["source"],
                    old_url=_text(sql["old_url"]),
                    old_domain=_text(sql["old_domain"]),
                    search_replace=SearchReplaceSettings(
                        enabled=bool(search_replace["enabled"]),
                        case_sensitive=bool(search_replace["case_sensitive"]),
                        regex=bool(search_replace["regex"]),
                        dry_run=bool(search_replace["dry_run"]),
                        additional_replacements=_replacement_pairs(
                            search_replace["additional_replacements"]
                        ),
                    ),
                    optimize_after_import=bool(sql["optimize_after_import"]),
                    repair_after_import=bool(sql["repair_after_import"]),
                ),
                development=DevelopmentSettings(**_booleans(raw["development"])),
                security=SecuritySettings(**_booleans(raw["security"])),
                custom=CustomSettings(
                    wp_config=tuple(str(line) for line in raw["custom"]["wp_config"] or []),
                    hooks=HookSettings(
                        **{name: tuple(str(cmd) for cmd in cmds or []) for name, cmds in hooks.items()}
                    ),
                ),
                advanced=AdvancedSettings(
                    skip_wordpress_download=bool(raw["advanced"]["skip_wordpress_download"]),
                    skip_database_creation=bool(raw["advanced"]["skip_database_creation"]),
                    skip_search_replace=bool(raw["advanced"]["skip_search_replace"]),
                    verbose=bool(raw["advanced"]["verbose"]),
                    salt_url=str(raw["advanced"]["salt_url"]),
                    salt_timeout=float(raw["advanced"]["salt_timeout"]),
                ),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProvisionerError(f"Invalid configuration value: {exc}") from exc

        _validate_wordpress_version(settings.wordpress.version)
        return settings


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _booleans(section: Dict[str, Any]) -> Dict[str, bool]:
    return {key: bool(value) for key, value in section.items()}


def _replacement_pairs(entries: List[Any]) -> Tuple[Tuple[str, str], ...]:
    pairs = []
    for entry in entries or []:
        if not isinstance(entry, dict) or "search" not in entry or "replace" not in entry:
            raise ProvisionerError(
                "Each additional replacement must be a mapping with `search` and `replace`."
            )
        pairs.append((str(entry["search"]), str(entry["replace"])))
    return tuple(pairs)


def _validate_wordpress_version(value: str):
    if value == "latest":
        return
    try:
        version.Version(value)
    except version.InvalidVersion as exc:
        raise ProvisionerError(
            f"wordpress.version must be 'latest' or a release number, got '{value}'."
        ) from exc
