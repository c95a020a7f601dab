"""Single-shot execution of timew commands.

The gateway turns a command name and its arguments into exactly one
process invocation and classifies the outcome. It never retries: re-issuing
a command such as ``track`` could create a duplicate interval.
"""

import logging
import os
import shlex
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from timewarden.config import DATABASE_ENV, DEFAULT_COMMAND
from timewarden.errors import CommandError, TransportFault, ValidationError

logger = logging.getLogger(__name__)

COMMANDS = frozenset(
    {
        "--version",
        "get",
        "export",
        "track",
        "start",
        "stop",
        "cancel",
        "modify",
        "move",
        "split",
        "join",
        "continue",
        "tag",
        "untag",
        "annotate",
        "delete",
        "undo",
    }
)

Runner = Callable[
    [list[str], Mapping[str, str] | None], subprocess.CompletedProcess[str]
]


@dataclass(frozen=True)
class CommandOutput:
    """Decoded output of a successful command."""

    stdout: str
    stderr: str


def run_subprocess(
    argv: list[str], env: Mapping[str, str] | None
) -> subprocess.CompletedProcess[str]:
    """Default runner: execute argv and capture its output as UTF-8 text."""
    return subprocess.run(
        argv,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        encoding="utf-8",
        env=env,
        check=False,
    )


class CommandGateway:
    """Runs timew commands against one (optionally overridden) database."""

    def __init__(
        self,
        executable: str = DEFAULT_COMMAND,
        database: str | None = None,
        *,
        runner: Runner | None = None,
    ) -> None:
        """
        Args:
            executable: Name or path of the timew executable
            database: Database directory (None = timew's default)
            runner: Optional replacement for subprocess execution (for testing)
        """
        self.executable: str = executable
        self.database: str | None = database
        self._runner: Runner = runner if runner is not None else run_subprocess

    def __str__(self) -> str:
        return f"CommandGateway(executable='{self.executable}', database={self.database!r})"

    def _env(self) -> dict[str, str] | None:
        if self.database is None:
            return None
        return {**os.environ, DATABASE_ENV: self.database}

    def run(self, command: str, *args: str) -> CommandOutput:
        """Execute one command and return its output.

        Raises:
            ValidationError: If command is not part of the timew vocabulary
            TransportFault: If the process could not start or was killed by a signal
            CommandError: If the process exited with a nonzero status
        """
        if command not in COMMANDS:
            raise ValidationError(f"Unknown timew command {command!r}")

        argv = [self.executable, command, *args]
        logger.debug("Running %s", shlex.join(argv))

        try:
            result = self._runner(argv, self._env())
        except OSError as e:
            logger.error("Could not run %s: %s", self.executable, e)
            raise TransportFault(f"Could not run {self.executable!r}: {e}") from e

        if result.returncode < 0:
            logger.error(
                "%s was terminated by signal %d", shlex.join(argv), -result.returncode
            )
            raise TransportFault(
                f"{self.executable} {command} was terminated by signal "
                f"{-result.returncode}"
            )

        if result.returncode > 0:
            logger.debug(
                "%s exited with status %d: %s",
                shlex.join(argv),
                result.returncode,
                (result.stderr or "").strip(),
            )
            raise CommandError(
                command, tuple(args), result.returncode, result.stderr or ""
            )

        return CommandOutput(stdout=result.stdout or "", stderr=result.stderr or "")


__all__ = ["COMMANDS", "CommandGateway", "CommandOutput", "Runner", "run_subprocess"]
