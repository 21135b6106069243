"""Constants shared across wpprovisioner services."""

DIR_MODE = 0o755
FILE_MODE = 0o644
CONFIG_FILE_MODE = 0o640

DEFAULT_CONFIG_FILE = ".wpprovisioner.yml"

SITE_NAME_PATTERN = r"^[A-Za-z0-9_-]+$"

READINESS_MAX_ATTEMPTS = 30
READINESS_DELAY_SECONDS = 2.0

CONTAINER_MYSQL_PORT = 3306
CONTAINER_DATA_DIR = "/var/lib/mysql"

PASSWORD_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!@#$%^&*"
DEFAULT_PASSWORD_LENGTH = 16

SALT_URL = "https://api.wordpress.org/secret-key/1.1/salt/"
SALT_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!@#$%^&*()"
SALT_LENGTH = 64
SALT_KEYS = (
    "AUTH_KEY",
    "SECURE_AUTH_KEY",
    "LOGGED_IN_KEY",
    "NONCE_KEY",
    "AUTH_SALT",
    "SECURE_AUTH_SALT",
    "LOGGED_IN_SALT",
    "NONCE_SALT",
)

STOP_EDITING_MARKER = "/* That's all, stop editing! Happy publishing. */"

# Core tables, without the configured prefix.
CANONICAL_TABLES = (
    "posts",
    "postmeta",
    "options",
    "usermeta",
    "users",
    "terms",
    "term_taxonomy",
    "term_relationships",
    "termmeta",
    "comments",
    "commentmeta",
)

DEFAULT_REPLACE_COLUMN = "option_value"
FALLBACK_REPLACE_COLUMNS = (
    "post_content",
    "post_excerpt",
    "post_title",
    "comment_content",
    "meta_value",
)

ADMIN_CAPABILITIES = 'a:1:{s:13:"administrator";b:1;}'
ADMIN_USER_LEVEL = "10"
FALLBACK_HASH_PREFIX = "$P$B"
