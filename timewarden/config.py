"""Configuration for reaching the Timewarrior executable and database."""

import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_COMMAND = "timew"

# Environment variable names
COMMAND_ENV = "TIMEW_COMMAND"
DATABASE_ENV = "TIMEWARRIORDB"


@dataclass(frozen=True)
class TimewarriorConfig:
    """Where to find ``timew`` and which database it should use.

    Attributes:
        command: Name or path of the timew executable
        database: Database directory passed as TIMEWARRIORDB
            (None = timew's own default)
    """

    command: str = DEFAULT_COMMAND
    database: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TimewarriorConfig":
        """Load configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)
        """
        env = os.environ if environ is None else environ
        return cls(
            command=env.get(COMMAND_ENV) or DEFAULT_COMMAND,
            database=env.get(DATABASE_ENV) or None,
        )

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return bool(self.command)
