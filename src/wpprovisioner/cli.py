import logging
import os

import click
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE
from .core import ProvisionerError, SiteProvisioner, console, start_database_container
from .services.config_loader import ConfigLoader
from .services.filesystem import FileSystemService
from .settings import Settings

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _resolve_config_path(config):
    if config is not None:
        return config
    default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
    if os.path.exists(default_config_path):
        return default_config_path
    return None


def _load_config_values(config):
    try:
        return ConfigLoader().load(_resolve_config_path(config))
    except ProvisionerError as exc:
        raise click.ClickException(str(exc)) from exc


def _build_settings(config_values) -> Settings:
    try:
        return Settings.from_mapping(config_values)
    except ProvisionerError as exc:
        raise click.ClickException(str(exc)) from exc


def _load_settings(config) -> Settings:
    try:
        return ConfigLoader().load_settings(_resolve_config_path(config))
    except ProvisionerError as exc:
        raise click.ClickException(str(exc)) from exc


def _configure_logging(verbose: bool, log_file):
    logger = logging.getLogger("wpprovisioner")
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


@click.group()
def main():
    """Provision local WordPress sites backed by MySQL."""


@main.command()
@click.option("--site", "site_name", required=True, help="Site name (letters, numbers, - and _).")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--sql-file", required=False, type=click.Path(), help="SQL dump to import instead of a fresh install.")
@click.option("--admin-password", required=False, help="Admin password (overrides wordpress.admin_password).")
@click.option("--force", is_flag=True, default=False, help="Replace an existing site directory.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def setup(site_name, config, sql_file, admin_password, force, verbose, log_file):
    """Create a WordPress site, its database and its wp-config.php."""
    config_values = _load_config_values(config)
    if sql_file is not None:
        sql_section = config_values.get("sql") or {}
        config_values["sql"] = {**sql_section, "source": os.path.abspath(sql_file)}

    settings = _build_settings(config_values)
    verbose = bool(verbose if verbose is not None else settings.advanced.verbose)
    _configure_logging(verbose, log_file)

    try:
        provisioner = SiteProvisioner(
            settings=settings,
            site_name=site_name,
            force=force,
            verbose=verbose,
            admin_password=admin_password,
        )
    except ProvisionerError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(provisioner.run())


@main.command("docker-mysql")
@click.option("--config", required=False, type=click.Path(), help="Path to a YAML configuration file.")
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose logging")
def docker_mysql(config, verbose):
    """Create or start the MySQL container and wait until it accepts connections."""
    settings = _load_settings(config)
    _configure_logging(verbose, None)
    raise SystemExit(start_database_container(settings))


@main.command("init-config")
@click.option(
    "--path",
    "config_path",
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    type=click.Path(),
    help="Where to write the configuration file.",
)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file.")
def init_config(config_path, force):
    """Write the default configuration as YAML."""
    try:
        written = ConfigLoader().write_default(config_path, force=force)
    except ProvisionerError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Configuration written to {written}[/green]")


@main.command("list")
@click.option("--config", required=False, type=click.Path(), help="Path to a YAML configuration file.")
def list_sites(config):
    """List the sites under the configured server path."""
    settings = _load_settings(config)
    filesystem_service = FileSystemService(logger=logging.getLogger("wpprovisioner"), console=console)
    sites = filesystem_service.list_sites(settings.server_path)
    if not sites:
        console.print(f"[yellow]No sites found in {settings.server_path}[/yellow]")
        return
    for site in sites:
        console.print(site)


if __name__ == "__main__":
    main()
