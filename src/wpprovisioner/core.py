import logging
import os
import re
import shlex
import subprocess
from typing import List, Optional

import requests
from rich.console import Console

from .constants import CONFIG_FILE_MODE, DIR_MODE, SITE_NAME_PATTERN
from .errors import ProvisionerError, ProvisioningError
from .errors_catalog import actionable_error
from .models import (
    AdminAccount,
    ContainerSpec,
    Credential,
    DatabaseTarget,
    LifecycleState,
    MigrationResult,
    SiteContext,
)
from .services.admin import AdminIdentityReconciler, PasswordHasher
from .services.command_runner import CommandRunner, CommandSpec
from .services.database import MySQLClient
from .services.docker_runtime import DatabaseLifecycleManager
from .services.filesystem import FileSystemService
from .services.migration import (
    ContentMigrationEngine,
    RawSqlReplaceStrategy,
    WpCliReplaceStrategy,
    build_replacement_rules,
)
from .services.provisioning import DatabaseProvisioner, generate_password
from .services.salts import SecretKeyService
from .services.wp_cli import WpCli
from .services.wp_config import ConfigPatcher, PatchParams
from .settings import Settings

console = Console()
logger = logging.getLogger("wpprovisioner")

HOOK_STAGES = ("before_setup", "after_database_import", "after_search_replace", "after_setup")


def build_site_context(settings: Settings, site_name: str) -> SiteContext:
    if not site_name or not re.match(SITE_NAME_PATTERN, site_name):
        raise ProvisionerError(actionable_error("invalid_site_name", name=site_name or ""))

    domain = f"{site_name}{settings.site.domain_suffix}"
    return SiteContext(
        site_name=site_name,
        site_path=os.path.join(settings.server_path, site_name),
        db_name=f"{settings.database.name_prefix}{site_name}",
        base_url=f"{settings.site.scheme}://{domain}",
        domain=domain,
    )


def build_database_target(settings: Settings, containerized: Optional[bool] = None) -> DatabaseTarget:
    db = settings.database
    docker = db.docker
    if containerized is None:
        containerized = docker.enabled

    container = None
    port = db.port
    password = db.password
    if containerized:
        root_password = docker.root_password or db.password
        container = ContainerSpec(
            name=docker.container_name,
            image=docker.image,
            host_port=docker.port,
            root_password=root_password,
            volume=docker.data_volume,
            network=docker.network,
        )
        port = docker.port
        password = db.password or root_password

    return DatabaseTarget(
        host=db.host,
        port=port,
        credential=Credential(user=db.user, password=password),
        charset=db.charset,
        collate=db.collate,
        table_prefix=db.prefix,
        container=container,
    )


class SiteProvisioner:
    def __init__(
        self,
        settings: Settings,
        site_name: str,
        force: bool = False,
        verbose: bool = False,
        admin_password: Optional[str] = None,
        requests_module=requests,
    ):
        self.settings = settings
        self.force = force
        self.verbose = verbose
        self.requests = requests_module

        self.context = build_site_context(settings, site_name)
        self.target = build_database_target(settings)
        self.admin_password = admin_password or settings.wordpress.admin_password or ""
        self.generated_admin_password = False
        if not self.admin_password:
            self.admin_password = generate_password(settings.database.password_length)
            self.generated_admin_password = True

        self.current_step_name: Optional[str] = None
        self.db_name = self.context.db_name
        self.credential = self.target.credential
        self.migration_result: Optional[MigrationResult] = None

        self.command_runner = CommandRunner(logger=logger)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.lifecycle_manager = DatabaseLifecycleManager(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            max_attempts=settings.database.docker.readiness_attempts,
            delay_seconds=settings.database.docker.readiness_delay,
        )
        self.database_provisioner = DatabaseProvisioner(logger=logger, console=console, settings=settings)
        self.secret_key_service = SecretKeyService(
            logger=logger,
            requests_module=self.requests,
            url=settings.advanced.salt_url,
            timeout=settings.advanced.salt_timeout,
        )
        self.config_patcher = ConfigPatcher()
        self.wp_cli = WpCli(
            logger=logger,
            run_cmd=self._run_cmd,
            site_path=self.context.site_path,
            executable=settings.wordpress.wp_cli,
        )
        self.root_client = MySQLClient(self.target, self._run_cmd)

    @property
    def site_client(self) -> MySQLClient:
        return self.root_client.with_credential(self.credential).for_database(self.db_name)

    @property
    def wp_db_host(self) -> str:
        host = self.target.host
        if self.target.containerized or self.target.port != 3306:
            # mysqli reads "localhost" as the Unix socket and drops the port
            if host == "localhost":
                host = "127.0.0.1"
            return f"{host}:{self.target.port}"
        return host

    def _run_step(self, name: str, callback, *args, **kwargs):
        self.current_step_name = name
        logger.debug("Starting stage: %s", name)
        result = callback(*args, **kwargs)
        self.current_step_name = None
        return result

    def _run_cmd(
        self,
        cmd,
        check: bool = True,
        capture_output: bool = False,
        **kwargs,
    ) -> subprocess.CompletedProcess:
        return self.command_runner.run(cmd, check=check, capture_output=capture_output, **kwargs)

    def build_hook_command(self, line: str) -> CommandSpec:
        try:
            parts = shlex.split(line)
        except ValueError as exc:
            raise ProvisionerError(f"Invalid hook command '{line}': {exc}") from exc
        if not parts:
            raise ProvisionerError("Hook commands must not be empty.")

        program, args = parts[0], parts[1:]
        if program in ("wp", self.settings.wordpress.wp_cli):
            return CommandSpec(
                self.settings.wordpress.wp_cli,
                (f"--path={self.context.site_path}", *args),
            )
        return CommandSpec(program, tuple(args))

    def run_hooks(self, stage: str):
        commands = getattr(self.settings.custom.hooks, stage)
        for line in commands:
            spec = self.build_hook_command(line)
            console.print(f"[blue]Running {stage} hook: {spec}[/blue]")
            self._run_cmd(spec, check=True, capture_output=not self.verbose)

    def prepare_site(self):
        logger.info("Preparing site directory %s", self.context.site_path)
        os.makedirs(self.settings.server_path, exist_ok=True)
        self.filesystem_service.ensure_site_dir(self.context.site_path, DIR_MODE, force=self.force)

    def download_wordpress(self):
        wordpress = self.settings.wordpress
        console.print(f"[blue]Downloading WordPress {wordpress.version} ({wordpress.locale})...[/blue]")
        self.wp_cli.core_download(wordpress.version, wordpress.locale)
        console.print("[green]WordPress downloaded.[/green]")

    def ensure_database(self) -> LifecycleState:
        return self.lifecycle_manager.ensure_ready(self.target, self.root_client)

    def provision_database(self):
        self.db_name, self.credential = self.database_provisioner.provision(self.context, self.root_client)

    def write_config(self):
        config_path = os.path.join(self.context.site_path, "wp-config.php")
        sample_path = os.path.join(self.context.site_path, "wp-config-sample.php")

        if not os.path.exists(config_path):
            if not os.path.exists(sample_path):
                raise ProvisioningError(
                    actionable_error("config_sample_missing", path=self.context.site_path)
                )
            self.filesystem_service.copy_file(sample_path, config_path, CONFIG_FILE_MODE)

        console.print("[blue]Updating wp-config.php...[/blue]")
        with open(config_path, "r", encoding="utf-8") as file_obj:
            original = file_obj.read()

        params = PatchParams.from_settings(
            self.settings,
            db_name=self.db_name,
            credential=self.credential,
            db_host=self.wp_db_host,
            secret_block=self.secret_key_service.fetch(),
        )
        patched = self.config_patcher.patch(original, params)
        if patched == original:
            logger.debug("wp-config.php already up to date.")
        else:
            with open(config_path, "w", encoding="utf-8") as file_obj:
                file_obj.write(patched)
        self.filesystem_service.set_permissions(config_path, CONFIG_FILE_MODE)
        console.print("[green]wp-config.php updated.[/green]")

    def build_migration_engine(self) -> ContentMigrationEngine:
        client = self.site_client
        return ContentMigrationEngine(
            logger=logger,
            console=console,
            client=client,
            primary=WpCliReplaceStrategy(self.wp_cli),
            fallback=RawSqlReplaceStrategy(logger, client),
            table_prefix=self.settings.database.prefix,
            optimize=self.settings.sql.optimize_after_import,
            repair=self.settings.sql.repair_after_import,
        )

    def import_database(self):
        engine = self.build_migration_engine()
        self.migration_result = engine.import_dump(self.settings.sql.source)
        self.migration_result.maintenance_warnings.extend(engine.run_maintenance())

    def search_replace(self):
        engine = self.build_migration_engine()
        outcomes = engine.apply_rules(build_replacement_rules(self.settings, self.context))
        if self.migration_result is not None:
            self.migration_result.outcomes.extend(outcomes)

        for outcome in outcomes:
            if not outcome.skipped and outcome.applied_by is None:
                failed_tables = outcome.attempts[-1].failed_tables if outcome.attempts else []
                failed = f" (failed on {', '.join(failed_tables)})" if failed_tables else ""
                console.print(
                    f"[yellow]Could not replace '{outcome.rule.search}'{failed}; "
                    "earlier tables may already be rewritten.[/yellow]"
                )
        summary = engine.summary(outcomes)
        if summary:
            console.print(f"[green]Search-replace finished: {summary}.[/green]")

    def reconcile_admin(self):
        wordpress = self.settings.wordpress
        reconciler = AdminIdentityReconciler(
            logger=logger,
            console=console,
            client=self.site_client,
            hasher=PasswordHasher(logger, self.wp_cli),
            table_prefix=self.settings.database.prefix,
        )
        result = reconciler.reconcile(
            AdminAccount(login=wordpress.admin_user, email=wordpress.admin_email, password=self.admin_password)
        )
        if result.used_fallback_hash:
            console.print(
                "[yellow]Admin password stored with a low-security fallback hash. "
                "Change it after logging in.[/yellow]"
            )
        return result

    def install_wordpress(self):
        wordpress = self.settings.wordpress
        console.print("[blue]Installing WordPress...[/blue]")
        self.wp_cli.core_install(
            url=self.context.base_url,
            title=wordpress.site_title,
            admin_user=wordpress.admin_user,
            admin_email=wordpress.admin_email,
            admin_password=self.admin_password,
        )
        for name, value in self.site_options():
            self.wp_cli.option_update(name, value)
        if wordpress.use_permalinks:
            self.wp_cli.rewrite_structure(wordpress.permalink_structure)
        console.print("[green]WordPress installed and configured.[/green]")

    def site_options(self) -> List[tuple]:
        wordpress = self.settings.wordpress
        options = []
        if wordpress.disable_comments:
            options.append(("default_comment_status", "closed"))
        if wordpress.disable_trackbacks:
            options.append(("default_ping_status", "closed"))
        if wordpress.disable_pingbacks:
            options.append(("default_pingback_flag", 0))
        if wordpress.timezone:
            options.append(("timezone_string", wordpress.timezone))
        if wordpress.date_format:
            options.append(("date_format", wordpress.date_format))
        if wordpress.time_format:
            options.append(("time_format", wordpress.time_format))
        if wordpress.start_of_week is not None:
            options.append(("start_of_week", wordpress.start_of_week))
        if wordpress.privacy:
            options.append(("blog_public", 1 if wordpress.privacy == "public" else 0))
        return options

    def print_summary(self):
        console.print("[bold green]WordPress setup completed successfully![/bold green]")
        console.print(f"Site URL: {self.context.base_url}")
        console.print(f"Files: {self.context.site_path}")
        console.print(f"Database: {self.db_name}")
        console.print(f"Admin user: {self.settings.wordpress.admin_user}")
        if self.generated_admin_password:
            console.print(f"Admin password: {self.admin_password}")

    def run(self) -> int:
        advanced = self.settings.advanced
        sql = self.settings.sql
        try:
            logger.info("Starting wpprovisioner for site '%s'...", self.context.site_name)
            console.print(f"[bold blue]Setting up website: {self.context.site_name}[/bold blue]")

            self._run_step("before_setup_hooks", self.run_hooks, "before_setup")
            self._run_step("prepare_site", self.prepare_site)
            if advanced.skip_wordpress_download:
                logger.info("Skipping WordPress download.")
            else:
                self._run_step("download_wordpress", self.download_wordpress)

            self._run_step("ensure_database", self.ensure_database)
            if advanced.skip_database_creation:
                logger.info("Skipping database creation; using %s as is.", self.db_name)
            else:
                self._run_step("provision_database", self.provision_database)
            self._run_step("write_config", self.write_config)

            if sql.source:
                self._run_step("import_database", self.import_database)
                self._run_step("after_database_import_hooks", self.run_hooks, "after_database_import")
                if sql.search_replace.enabled and not advanced.skip_search_replace:
                    self._run_step("search_replace", self.search_replace)
                    self._run_step("after_search_replace_hooks", self.run_hooks, "after_search_replace")
                else:
                    logger.info("Skipping search-replace.")
                self._run_step("reconcile_admin", self.reconcile_admin)
            else:
                self._run_step("install_wordpress", self.install_wordpress)

            self._run_step("after_setup_hooks", self.run_hooks, "after_setup")
            self.print_summary()
            return 0

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            return 1
        except ProvisionerError as exc:
            stage = self.current_step_name or "run"
            console.print(f"[bold red]Error in stage '{stage}':[/bold red] {exc}")
            logger.error("Error in stage '%s': %s", stage, exc)
            return 1
        except Exception as exc:
            stage = self.current_step_name or "run"
            console.print(f"[bold red]Unexpected error in stage '{stage}':[/bold red] {exc}")
            logger.exception("Unexpected error")
            return 1


def start_database_container(settings: Settings) -> int:
    """Brings up the configured database container and waits until it answers."""
    target = build_database_target(settings, containerized=True)
    runner = CommandRunner(logger=logger)
    manager = DatabaseLifecycleManager(
        logger=logger,
        console=console,
        run_cmd=runner.run,
        max_attempts=settings.database.docker.readiness_attempts,
        delay_seconds=settings.database.docker.readiness_delay,
    )
    try:
        manager.ensure_ready(target, MySQLClient(target, runner.run))
    except ProvisionerError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        logger.error(str(exc))
        return 1

    console.print(
        f"[green]MySQL container '{target.container.name}' is running on port {target.port}.[/green]"
    )
    return 0
