"""Idempotent wp-config.php patching.

``ConfigPatcher.patch`` is a pure text transformation: connection settings are
rewritten in place, everything else is inserted before the "stop editing"
marker only when its key is not already defined. Running it on its own output
with the same parameters returns the text unchanged.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from wpprovisioner.constants import SALT_KEYS, STOP_EDITING_MARKER
from wpprovisioner.services.salts import parse_secret_block

PhpValue = Union[str, bool, int]

_PHP_STRING = r"""(?:'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")"""
_MARKER_PATTERN = re.compile(r"/\*\s*That's all, stop editing!.*?\*/")
_PLACEHOLDER = "put your unique phrase here"

# Connection constants rewritten in place; keys missing from the input are skipped.
CONNECTION_KEYS: Tuple[str, ...] = (
    "DB_NAME",
    "DB_USER",
    "DB_PASSWORD",
    "DB_HOST",
    "DB_CHARSET",
    "DB_COLLATE",
)
TABLE_PREFIX_KEY = "$table_prefix"

DEBUG_KEYS: Tuple[str, ...] = (
    "WP_DEBUG",
    "WP_DEBUG_LOG",
    "WP_DEBUG_DISPLAY",
    "SCRIPT_DEBUG",
    "SAVEQUERIES",
)


def _define_present(key: str) -> Callable[[str], bool]:
    pattern = re.compile(rf"""define\(\s*['"]{re.escape(key)}['"]\s*,""")
    return lambda text: pattern.search(text) is not None


_BOOTSTRAP_PATTERN = re.compile(
    r"""require_once\s*\(?\s*ABSPATH\s*\.\s*['"]wp-settings\.php['"]\s*\)?\s*;"""
)
_ABSPATH_PATTERN = re.compile(r"""define\(\s*['"]ABSPATH['"]""")

# Additive keys tracked for idempotence: key -> "already present" check.
PRESENCE_CHECKS: Dict[str, Callable[[str], bool]] = {
    "SECRET_KEYS": _define_present("AUTH_KEY"),
    **{key: _define_present(key) for key in DEBUG_KEYS},
    "DISALLOW_FILE_EDIT": _define_present("DISALLOW_FILE_EDIT"),
    "FORCE_SSL_ADMIN": _define_present("FORCE_SSL_ADMIN"),
    "WP_MEMORY_LIMIT": _define_present("WP_MEMORY_LIMIT"),
    "ABSPATH": lambda text: _ABSPATH_PATTERN.search(text) is not None,
    "BOOTSTRAP": lambda text: _BOOTSTRAP_PATTERN.search(text) is not None,
}


def php_value(value: PhpValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def php_define(key: str, value: PhpValue) -> str:
    return f"define( '{key}', {php_value(value)} );"


@dataclass(frozen=True)
class ConnectionParams:
    db_name: str
    db_user: str
    db_password: str
    db_host: str
    charset: str
    collate: str
    table_prefix: str

    def by_key(self) -> Dict[str, str]:
        return {
            "DB_NAME": self.db_name,
            "DB_USER": self.db_user,
            "DB_PASSWORD": self.db_password,
            "DB_HOST": self.db_host,
            "DB_CHARSET": self.charset,
            "DB_COLLATE": self.collate,
            TABLE_PREFIX_KEY: self.table_prefix,
        }


@dataclass(frozen=True)
class PatchParams:
    connection: ConnectionParams
    secret_block: str = ""
    debug: Tuple[Tuple[str, bool], ...] = ()
    disable_file_edit: bool = False
    force_ssl_admin: bool = False
    memory_limit: Optional[str] = None
    custom_lines: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, settings, db_name: str, credential, db_host: str, secret_block: str):
        dev = settings.development
        debug: Tuple[Tuple[str, bool], ...] = ()
        if dev.enable_debug:
            debug = (
                ("WP_DEBUG", True),
                ("WP_DEBUG_LOG", dev.wp_debug_log),
                ("WP_DEBUG_DISPLAY", dev.wp_debug_display),
                ("SCRIPT_DEBUG", dev.script_debug),
                ("SAVEQUERIES", dev.save_queries),
            )
        return cls(
            connection=ConnectionParams(
                db_name=db_name,
                db_user=credential.user,
                db_password=credential.password,
                db_host=db_host,
                charset=settings.database.charset,
                collate=settings.database.collate,
                table_prefix=settings.database.prefix,
            ),
            secret_block=secret_block,
            debug=debug,
            disable_file_edit=settings.security.disable_file_editing,
            force_ssl_admin=dev.force_ssl_admin,
            memory_limit=settings.wordpress.memory_limit,
            custom_lines=settings.custom.wp_config,
        )


class ConfigPatcher:
    """Rewrites a generated wp-config.php without duplicating definitions."""

    def patch(self, raw_text: str, params: PatchParams) -> str:
        text = raw_text
        for key, value in params.connection.by_key().items():
            text = self._replace_assignment(text, key, value)

        text = self._ensure_marker(text)

        if params.secret_block:
            text = self._replace_placeholder_secrets(text, params.secret_block)
            if not PRESENCE_CHECKS["SECRET_KEYS"](text):
                text = self._insert_before_marker(text, [params.secret_block.strip()])

        debug_lines = [
            php_define(key, value) for key, value in params.debug if not PRESENCE_CHECKS[key](text)
        ]
        if debug_lines:
            text = self._insert_before_marker(text, ["// Development settings", *debug_lines])

        if params.disable_file_edit and not PRESENCE_CHECKS["DISALLOW_FILE_EDIT"](text):
            text = self._insert_before_marker(text, [php_define("DISALLOW_FILE_EDIT", True)])

        if params.force_ssl_admin and not PRESENCE_CHECKS["FORCE_SSL_ADMIN"](text):
            text = self._insert_before_marker(text, [php_define("FORCE_SSL_ADMIN", True)])

        if params.memory_limit and not PRESENCE_CHECKS["WP_MEMORY_LIMIT"](text):
            text = self._insert_before_marker(
                text, [php_define("WP_MEMORY_LIMIT", str(params.memory_limit))]
            )

        custom = [line for line in params.custom_lines if not self._custom_line_present(text, line)]
        if custom:
            text = self._insert_before_marker(text, custom)

        return self._ensure_bootstrap(text)

    @staticmethod
    def _replace_assignment(text: str, key: str, value: str) -> str:
        if key == TABLE_PREFIX_KEY:
            pattern = re.compile(rf"(\$table_prefix\s*=\s*){_PHP_STRING}(\s*;)")
        else:
            pattern = re.compile(
                rf"""(define\(\s*['"]{re.escape(key)}['"]\s*,\s*){_PHP_STRING}(\s*\))"""
            )
        rendered = php_value(value)
        return pattern.sub(lambda match: f"{match.group(1)}{rendered}{match.group(2)}", text, count=1)

    @staticmethod
    def _custom_line_present(text: str, line: str) -> bool:
        stripped = line.strip()
        if not stripped:
            return True
        if "\n" in stripped:
            return stripped in text
        return stripped in {existing.strip() for existing in text.splitlines()}

    @staticmethod
    def _replace_placeholder_secrets(text: str, secret_block: str) -> str:
        values = parse_secret_block(secret_block)
        for key in SALT_KEYS:
            if key not in values:
                continue
            pattern = re.compile(
                rf"""(define\(\s*['"]{key}['"]\s*,\s*)['"]{_PLACEHOLDER}['"](\s*\))"""
            )
            text = pattern.sub(
                lambda match: f"{match.group(1)}'{values[key]}'{match.group(2)}", text, count=1
            )
        return text

    @staticmethod
    def _ensure_marker(text: str) -> str:
        if _MARKER_PATTERN.search(text):
            return text
        separator = "" if text.endswith("\n") or not text else "\n"
        return f"{text}{separator}\n{STOP_EDITING_MARKER}\n"

    @staticmethod
    def _insert_before_marker(text: str, lines: List[str]) -> str:
        match = _MARKER_PATTERN.search(text)
        block = "\n".join(lines)
        return f"{text[:match.start()]}{block}\n\n{text[match.start():]}"

    @staticmethod
    def _ensure_bootstrap(text: str) -> str:
        if PRESENCE_CHECKS["BOOTSTRAP"](text):
            return text

        lines = []
        if not PRESENCE_CHECKS["ABSPATH"](text):
            lines.extend(
                [
                    "/** Absolute path to the WordPress directory. */",
                    "if ( ! defined( 'ABSPATH' ) ) {",
                    "\tdefine( 'ABSPATH', __DIR__ . '/' );",
                    "}",
                    "",
                ]
            )
        lines.extend(
            [
                "/** Sets up WordPress vars and included files. */",
                "require_once ABSPATH . 'wp-settings.php';",
            ]
        )
        separator = "" if text.endswith("\n") else "\n"
        return f"{text}{separator}\n" + "\n".join(lines) + "\n"
