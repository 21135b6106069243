"""WP-CLI invocations as structured commands."""

import subprocess
from typing import Callable, List, Optional

from wpprovisioner.errors import ToolInvocationError
from wpprovisioner.models import ReplacementRule
from wpprovisioner.services.command_runner import CommandSpec

PASSWORD_ENV = "WPPROVISIONER_PLAIN_PASSWORD"
HASH_ENV = "WPPROVISIONER_PASSWORD_HASH"


class WpCli:
    """Runs ``wp`` against one WordPress root."""

    def __init__(self, logger, run_cmd: Callable, site_path: str, executable: str = "wp"):
        self.logger = logger
        self.run_cmd = run_cmd
        self.site_path = site_path
        self.executable = executable

    def command(self, *args: str) -> CommandSpec:
        return CommandSpec(self.executable, tuple(args) + (f"--path={self.site_path}",))

    def run(self, *args: str, check: bool = True, **kwargs) -> subprocess.CompletedProcess:
        return self.run_cmd(self.command(*args), check=check, capture_output=True, **kwargs)

    def core_download(self, version: str, locale: str):
        self.run("core", "download", f"--version={version}", f"--locale={locale}", "--force")

    def core_install(self, url: str, title: str, admin_user: str, admin_email: str, admin_password: str):
        self.run(
            "core",
            "install",
            f"--url={url}",
            f"--title={title}",
            f"--admin_user={admin_user}",
            f"--admin_email={admin_email}",
            "--skip-email",
            "--prompt=admin_password",
            input_text=f"{admin_password}\n",
        )

    def option_update(self, name: str, value):
        self.run("option", "update", name, str(value))

    def rewrite_structure(self, structure: str):
        self.run("rewrite", "structure", structure)

    def search_replace_command(self, rule: ReplacementRule) -> CommandSpec:
        args: List[str] = ["search-replace", rule.search, rule.replace, "--all-tables"]
        if rule.dry_run:
            args.append("--dry-run")
        if rule.regex:
            args.append("--regex")
            if not rule.case_sensitive:
                args.append("--regex-flags=i")
        return self.command(*args)

    def search_replace(self, rule: ReplacementRule) -> subprocess.CompletedProcess:
        return self.run_cmd(self.search_replace_command(rule), check=False, capture_output=True)

    def hash_password(self, password: str) -> str:
        result = self.run(
            "eval",
            f"echo wp_hash_password( getenv( '{PASSWORD_ENV}' ) );",
            env={PASSWORD_ENV: password},
        )
        hashed = (result.stdout or "").strip()
        if not hashed:
            raise ToolInvocationError("wp eval returned an empty password hash.")
        return hashed

    def check_password(self, password: str, hashed: str) -> Optional[bool]:
        result = self.run(
            "eval",
            f"echo wp_check_password( getenv( '{PASSWORD_ENV}' ), getenv( '{HASH_ENV}' ) ) ? 'yes' : 'no';",
            check=False,
            env={PASSWORD_ENV: password, HASH_ENV: hashed},
        )
        if result.returncode != 0:
            return None
        return (result.stdout or "").strip() == "yes"
