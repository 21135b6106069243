"""Subprocess execution service for wpprovisioner."""

import os
import subprocess
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from wpprovisioner.errors import ToolInvocationError
from wpprovisioner.errors_catalog import actionable_error


@dataclass(frozen=True)
class CommandSpec:
    """A program plus its argument list, validated before it is executed."""

    program: str
    args: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.program, str) or not self.program.strip():
            raise ToolInvocationError("Command program must be a non-empty string.")
        object.__setattr__(self, "args", tuple(self.args))
        for arg in (self.program,) + self.args:
            if not isinstance(arg, str):
                raise ToolInvocationError(
                    f"Command arguments must be strings, got {type(arg).__name__}: {arg!r}"
                )
            if "\x00" in arg:
                raise ToolInvocationError("Command arguments must not contain NUL bytes.")

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]

    def with_args(self, *extra: str) -> "CommandSpec":
        return CommandSpec(self.program, self.args + tuple(extra))

    def __str__(self) -> str:
        return " ".join(self.argv)


Command = Union[CommandSpec, Sequence[str]]


def as_argv(cmd: Command) -> List[str]:
    if isinstance(cmd, CommandSpec):
        return cmd.argv
    cmd = list(cmd)
    if not cmd:
        raise ToolInvocationError("Cannot execute an empty command.")
    return CommandSpec(cmd[0], tuple(cmd[1:])).argv


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout

    def run(
        self,
        cmd: Command,
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
        retry_on_returncodes: Optional[Iterable[int]] = None,
        env: Optional[Dict[str, str]] = None,
        input_file: Optional[str] = None,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        argv = as_argv(cmd)
        cmd_str = " ".join(argv)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        max_attempts = max(1, retry_count + 1)
        retry_codes = set(retry_on_returncodes or [])
        process_env = {**os.environ, **env} if env else None

        for attempt in range(1, max_attempts + 1):
            try:
                if input_file:
                    with open(input_file, "rb") as stdin_obj:
                        result = self._execute(
                            argv, capture_output, effective_timeout, process_env, stdin_obj, None
                        )
                else:
                    result = self._execute(
                        argv, capture_output, effective_timeout, process_env, None, input_text
                    )
            except FileNotFoundError as exc:
                if input_file and exc.filename == input_file:
                    raise ToolInvocationError(f"Input file not found: {input_file}") from exc
                raise ToolInvocationError(actionable_error("tool_not_found", program=argv[0])) from exc
            except subprocess.TimeoutExpired as exc:
                if attempt < max_attempts:
                    self.logger.warning(
                        "Command timed out on attempt %s/%s. Retrying in %.1fs: %s",
                        attempt,
                        max_attempts,
                        retry_backoff_seconds,
                        cmd_str,
                    )
                    time.sleep(retry_backoff_seconds)
                    continue
                raise ToolInvocationError(
                    f"Command timed out after {effective_timeout}s: {cmd_str}"
                ) from exc
            except OSError as exc:
                raise ToolInvocationError(f"Failed to execute command: {cmd_str}. {exc}") from exc

            if capture_output and result.stdout:
                self.logger.debug("Command output: %s", result.stdout.strip())

            if result.returncode == 0:
                return result

            stderr = (result.stderr or "").strip() if capture_output else ""
            message = f"Command failed ({result.returncode}): {cmd_str}"
            if stderr:
                message = f"{message}\n{stderr}"

            can_retry = attempt < max_attempts and (
                not retry_codes or result.returncode in retry_codes
            )
            if can_retry:
                self.logger.warning(
                    "Command failed on attempt %s/%s and will be retried in %.1fs.\n%s",
                    attempt,
                    max_attempts,
                    retry_backoff_seconds,
                    message,
                )
                time.sleep(retry_backoff_seconds)
                continue

            if check:
                raise ToolInvocationError(message)

            self.logger.debug(message)
            return result

        raise ToolInvocationError(f"Command failed after retries: {cmd_str}")

    @staticmethod
    def _execute(argv, capture_output, timeout, env, stdin, input_text):
        return subprocess.run(
            argv,
            input=input_text,
            text=True,
            capture_output=capture_output,
            timeout=timeout,
            env=env,
            stdin=stdin,
        )
