"""Database server lifecycle: container creation, start and readiness polling."""

import time
from typing import Callable, Optional

from wpprovisioner.constants import (
    CONTAINER_DATA_DIR,
    CONTAINER_MYSQL_PORT,
    READINESS_DELAY_SECONDS,
    READINESS_MAX_ATTEMPTS,
)
from wpprovisioner.errors import DatabaseTimeoutError, ToolInvocationError
from wpprovisioner.errors_catalog import actionable_error
from wpprovisioner.models import ContainerSpec, DatabaseTarget, LifecycleState
from wpprovisioner.services.command_runner import CommandSpec


class DatabaseLifecycleManager:
    """Brings the configured database server to a state that accepts connections."""

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        max_attempts: int = READINESS_MAX_ATTEMPTS,
        delay_seconds: float = READINESS_DELAY_SECONDS,
    ):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self.state: Optional[LifecycleState] = None
        self.attempts = 0

    def ensure_ready(self, target: DatabaseTarget, probe) -> LifecycleState:
        """Returns READY or raises DatabaseTimeoutError after leaving the state UNAVAILABLE.

        ``probe`` is any object with a ``ping() -> bool`` method, usually a
        MySQLClient bound to the root credential.
        """
        container = target.container
        if container is None:
            self.logger.debug("Container mode disabled; assuming an external database server.")
            self.state = LifecycleState.READY
            return self.state

        self.console.print(f"[blue]Checking database container '{container.name}'...[/blue]")
        self.state = self.inspect(container)

        if self.state == LifecycleState.ABSENT:
            self.console.print("[blue]Creating database container...[/blue]")
            self.create_volume(container)
            self.create_container(container)
            self.state = LifecycleState.CREATED
        elif self.state == LifecycleState.STOPPED:
            self.console.print("[blue]Starting database container...[/blue]")
            self.start_container(container)

        self.state = LifecycleState.STARTING
        return self.wait_until_ready(target, probe)

    def inspect(self, container: ContainerSpec) -> LifecycleState:
        result = self.run_cmd(
            CommandSpec(
                "docker",
                ("container", "inspect", "--format", "{{.State.Running}}", container.name),
            ),
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            return LifecycleState.ABSENT
        if (result.stdout or "").strip().lower() == "true":
            return LifecycleState.STARTING
        return LifecycleState.STOPPED

    def create_volume(self, container: ContainerSpec):
        result = self.run_cmd(
            CommandSpec("docker", ("volume", "create", container.volume)),
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            if "already exists" in stderr.lower():
                return
            raise ToolInvocationError(f"Could not create docker volume {container.volume}: {stderr}")

    def create_container(self, container: ContainerSpec):
        args = [
            "run",
            "-d",
            "--name",
            container.name,
            "-p",
            f"{container.host_port}:{CONTAINER_MYSQL_PORT}",
            "-v",
            f"{container.volume}:{CONTAINER_DATA_DIR}",
            "--network",
            container.network,
        ]
        env = None
        if container.root_password:
            args.extend(["-e", "MYSQL_ROOT_PASSWORD"])
            env = {"MYSQL_ROOT_PASSWORD": container.root_password}
        else:
            args.extend(["-e", "MYSQL_ALLOW_EMPTY_PASSWORD=yes"])
        args.append(container.image)

        result = self.run_cmd(CommandSpec("docker", tuple(args)), check=False, capture_output=True, env=env)
        if result.returncode == 0:
            return

        # A concurrent or half-finished earlier run may have left the container behind.
        self.logger.warning(
            "docker run failed for %s, trying to start an existing container: %s",
            container.name,
            (result.stderr or "").strip(),
        )
        self.start_container(container)

    def start_container(self, container: ContainerSpec):
        self.run_cmd(
            CommandSpec("docker", ("start", container.name)),
            check=True,
            capture_output=True,
        )

    def wait_until_ready(self, target: DatabaseTarget, probe) -> LifecycleState:
        self.console.print("[yellow]Waiting for database to be ready...[/yellow]")

        for attempt in range(1, self.max_attempts + 1):
            self.attempts = attempt
            if probe.ping():
                self.state = LifecycleState.READY
                self.console.print("[green]Database is ready.[/green]")
                return self.state
            self.logger.debug("Readiness probe %s/%s failed.", attempt, self.max_attempts)
            time.sleep(self.delay_seconds)

        self.state = LifecycleState.UNAVAILABLE
        container_name = target.container.name if target.container else target.host
        raise DatabaseTimeoutError(
            actionable_error(
                "database_not_ready",
                attempts=str(self.max_attempts),
                container=container_name,
            )
        )
