"""Administrator account reconciliation against the users table."""

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from wpprovisioner.constants import ADMIN_CAPABILITIES, ADMIN_USER_LEVEL, FALLBACK_HASH_PREFIX
from wpprovisioner.errors import ReconciliationError, ToolInvocationError
from wpprovisioner.models import AccountState, AdminAccount, ReconcileResult
from wpprovisioner.services.database import quote_identifier, sql_literal


def fallback_hash(password: str) -> str:
    # Low-security marker hash, only used when WP-CLI cannot hash.
    return f"{FALLBACK_HASH_PREFIX}{hashlib.md5(password.encode('utf-8')).hexdigest()}"


def is_fallback_hash(hashed: str) -> bool:
    return hashed.startswith(FALLBACK_HASH_PREFIX) and len(hashed) == len(FALLBACK_HASH_PREFIX) + 32


class PasswordHasher:
    """Hashes with ``wp_hash_password`` and falls back to ``fallback_hash``."""

    def __init__(self, logger, wp_cli):
        self.logger = logger
        self.wp_cli = wp_cli

    def hash(self, password: str) -> Tuple[str, bool]:
        try:
            return self.wp_cli.hash_password(password), False
        except ToolInvocationError as exc:
            self.logger.warning(
                "WP-CLI could not hash the admin password (%s). Storing a low-security fallback "
                "hash; log in and change the password.",
                exc,
            )
            return fallback_hash(password), True

    def verify(self, password: str, hashed: str) -> bool:
        if is_fallback_hash(hashed):
            return hmac.compare_digest(fallback_hash(password), hashed)
        return bool(self.wp_cli.check_password(password, hashed))


class AdminIdentityReconciler:
    """Ensures exactly one administrator row exists for the configured login."""

    def __init__(self, logger, console, client, hasher, table_prefix: str = "wp_", clock: Optional[Callable] = None):
        self.logger = logger
        self.console = console
        self.client = client
        self.hasher = hasher
        self.table_prefix = table_prefix
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = AccountState.UNKNOWN

    @property
    def users_table(self) -> str:
        return quote_identifier(f"{self.table_prefix}users")

    @property
    def usermeta_table(self) -> str:
        return quote_identifier(f"{self.table_prefix}usermeta")

    def reconcile(self, account: AdminAccount) -> ReconcileResult:
        self.state = AccountState.UNKNOWN
        count = self.count_accounts(account.login)
        if count > 1:
            raise ReconciliationError(
                f"Found {count} accounts with login '{account.login}'; refusing to pick one."
            )
        self.state = AccountState.EXISTS if count == 1 else AccountState.ABSENT

        hashed, used_fallback = self.hasher.hash(account.password)
        try:
            if self.state == AccountState.EXISTS:
                self.console.print(f"[blue]Admin user '{account.login}' exists, updating password...[/blue]")
                result = self._update_password(account, hashed, used_fallback)
            else:
                self.console.print(f"[blue]Creating admin user '{account.login}'...[/blue]")
                result = self._create_account(account, hashed, used_fallback)
        except ToolInvocationError as exc:
            raise ReconciliationError(f"Could not reconcile admin user '{account.login}': {exc}") from exc

        self.state = AccountState.RECONCILED
        self.console.print("[green]Admin user reconciled.[/green]")
        return result

    def count_accounts(self, login: str) -> int:
        try:
            value = self.client.scalar(
                f"SELECT COUNT(*) FROM {self.users_table} WHERE user_login = {sql_literal(login)}"
            )
            return int(value or 0)
        except (ToolInvocationError, ValueError) as exc:
            self.logger.debug("Error checking admin user, treating it as absent: %s", exc)
            return 0

    def _update_password(self, account: AdminAccount, hashed: str, used_fallback: bool) -> ReconcileResult:
        self.client.execute(
            f"UPDATE {self.users_table} SET user_pass = {sql_literal(hashed)} "
            f"WHERE user_login = {sql_literal(account.login)}"
        )
        user_id = self._lookup_id(account.login)
        granted = self._grant_capabilities(account.login, user_id)
        return ReconcileResult(
            login=account.login,
            created=False,
            user_id=user_id,
            capabilities_granted=granted,
            used_fallback_hash=used_fallback,
        )

    def _create_account(self, account: AdminAccount, hashed: str, used_fallback: bool) -> ReconcileResult:
        registered = self.clock().astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        login = sql_literal(account.login)
        self.client.execute(
            f"INSERT INTO {self.users_table} (user_login, user_pass, user_nicename, user_email, "
            "user_url, user_registered, user_activation_key, user_status, display_name) "
            f"VALUES ({login}, {sql_literal(hashed)}, {login}, {sql_literal(account.email)}, "
            f"'', {sql_literal(registered)}, '', 0, {login})"
        )

        user_id = self._lookup_id(account.login)
        granted = self._grant_capabilities(account.login, user_id)
        return ReconcileResult(account.login, True, user_id, granted, used_fallback)

    def _grant_capabilities(self, login: str, user_id: Optional[int]) -> bool:
        """Sets the administrator capability and user level meta rows, replacing any existing ones."""
        if user_id is None:
            self.logger.warning(
                "The ID of admin user '%s' could not be read back; "
                "administrator capabilities were NOT granted.",
                login,
            )
            return False

        for meta_key, meta_value in (
            (f"{self.table_prefix}capabilities", ADMIN_CAPABILITIES),
            (f"{self.table_prefix}user_level", ADMIN_USER_LEVEL),
        ):
            where = f"user_id = {user_id} AND meta_key = {sql_literal(meta_key)}"
            existing = self.client.scalar(f"SELECT COUNT(*) FROM {self.usermeta_table} WHERE {where}")
            if str(existing or "0").strip() not in ("", "0"):
                self.client.execute(
                    f"UPDATE {self.usermeta_table} SET meta_value = {sql_literal(meta_value)} WHERE {where}"
                )
            else:
                self.client.execute(
                    f"INSERT INTO {self.usermeta_table} (user_id, meta_key, meta_value) "
                    f"VALUES ({user_id}, {sql_literal(meta_key)}, {sql_literal(meta_value)})"
                )
        return True

    def _lookup_id(self, login: str) -> Optional[int]:
        value = self.client.scalar(
            f"SELECT ID FROM {self.users_table} WHERE user_login = {sql_literal(login)} ORDER BY ID LIMIT 1"
        )
        if value is None or not str(value).strip().isdigit():
            return None
        return int(value)
