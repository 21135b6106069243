"""Filesystem helpers for wpprovisioner."""

import logging
import os
import shutil
import sys
from typing import List

from rich.console import Console

from wpprovisioner.errors import ProvisioningError
from wpprovisioner.errors_catalog import actionable_error


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def cleanup_dir(self, path: str):
        if os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except OSError as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)

    def ensure_site_dir(self, path: str, mode: int, force: bool = False):
        """Creates the site root; an existing non-empty root is only replaced with ``force``."""
        if os.path.isdir(path) and os.listdir(path):
            if not force:
                raise ProvisioningError(actionable_error("site_exists", path=path))
            self.console.print(f"[yellow]Removing existing site directory {path}...[/yellow]")
            self.cleanup_dir(path)

        os.makedirs(path, exist_ok=True)
        self.set_permissions(path, mode)

    def copy_file(self, source: str, destination: str, mode: int):
        shutil.copyfile(source, destination)
        self.set_permissions(destination, mode)

    def list_sites(self, server_path: str) -> List[str]:
        if not os.path.isdir(server_path):
            return []
        return sorted(
            entry
            for entry in os.listdir(server_path)
            if not entry.startswith(".") and os.path.isdir(os.path.join(server_path, entry))
        )
