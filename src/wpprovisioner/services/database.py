"""MySQL client service: statements and dump imports through the mysql CLI."""

import re
from typing import Callable, List, Optional, Tuple

from wpprovisioner.constants import CONTAINER_MYSQL_PORT
from wpprovisioner.errors import DatabaseQueryError, ToolInvocationError
from wpprovisioner.models import Credential, DatabaseTarget, Rows
from wpprovisioner.services.command_runner import CommandSpec

_IDENTIFIER = re.compile(r"^[A-Za-z0-9_$-]+$")


def quote_identifier(name: str) -> str:
    if not name or not _IDENTIFIER.match(name):
        raise DatabaseQueryError(f"Refusing to use unsafe SQL identifier: {name!r}")
    return f"`{name}`"


def sql_literal(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "''")
    return f"'{escaped}'"


def like_contains(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return sql_literal(f"%{escaped}%")


class MySQLClient:
    """Executes statements against one server with one credential.

    In container mode the mysql binary inside the container is used, so the
    host does not need a client installed.
    """

    def __init__(
        self,
        target: DatabaseTarget,
        run_cmd: Callable,
        credential: Optional[Credential] = None,
        database: Optional[str] = None,
    ):
        self.target = target
        self.run_cmd = run_cmd
        self.credential = credential or target.credential
        self.database = database

    def for_database(self, database: Optional[str]) -> "MySQLClient":
        return MySQLClient(self.target, self.run_cmd, credential=self.credential, database=database)

    def with_credential(self, credential: Credential) -> "MySQLClient":
        return MySQLClient(self.target, self.run_cmd, credential=credential, database=self.database)

    def _env(self):
        if not self.credential.password:
            return None
        return {"MYSQL_PWD": self.credential.password}

    def build_command(self, *extra: str, interactive: bool = False) -> CommandSpec:
        mysql_args: List[str] = [
            "--batch",
            "--skip-column-names",
            f"--default-character-set={self.target.charset}",
            "-u",
            self.credential.user,
        ]

        container = self.target.container
        if container is not None:
            mysql_args[:0] = ["-h", "127.0.0.1", "-P", str(CONTAINER_MYSQL_PORT)]
            docker_args: List[str] = ["exec"]
            if interactive:
                docker_args.append("-i")
            if self.credential.password:
                # Forwarded from this process' environment, never written into argv.
                docker_args.extend(["-e", "MYSQL_PWD"])
            docker_args.extend([container.name, "mysql"])
            spec = CommandSpec("docker", tuple(docker_args + mysql_args))
        else:
            mysql_args[:0] = ["-h", self.target.host, "-P", str(self.target.port)]
            spec = CommandSpec("mysql", tuple(mysql_args))

        if self.database:
            spec = spec.with_args(self.database)
        return spec.with_args(*extra)

    def execute(self, statement: str) -> Rows:
        result = self.run_cmd(
            self.build_command(interactive=True),
            check=False,
            capture_output=True,
            env=self._env(),
            input_text=statement if statement.rstrip().endswith(";") else f"{statement};",
        )
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise DatabaseQueryError(
                f"SQL statement failed ({result.returncode}): {stderr or statement}",
                statement=statement,
                stderr=stderr,
            )
        return self._parse_rows(result.stdout or "")

    def scalar(self, statement: str) -> Optional[str]:
        rows = self.execute(statement)
        if not rows or not rows[0]:
            return None
        return rows[0][0]

    def ping(self) -> bool:
        try:
            self.execute("SELECT 1")
        except ToolInvocationError:
            return False
        return True

    def import_file(self, dump_path: str):
        result = self.run_cmd(
            self.build_command(interactive=True),
            check=False,
            capture_output=True,
            env=self._env(),
            input_file=dump_path,
        )
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise DatabaseQueryError(
                f"Import of {dump_path} failed ({result.returncode}): {stderr}",
                statement=f"< {dump_path}",
                stderr=stderr,
            )

    @staticmethod
    def _parse_rows(output: str) -> Rows:
        rows: List[Tuple[str, ...]] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            rows.append(tuple(line.split("\t")))
        return rows
