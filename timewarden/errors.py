"""Exceptions raised by timewarden.

Every error derives from TimewardenError so callers can catch the whole
family at once, but each class maps to a distinct recovery strategy:

- TransportFault: the ``timew`` process could not run or was killed. Fatal.
- CommandError: ``timew`` ran and exited nonzero. Expected; branch on it.
- SyncError: a cached Interval no longer matches the database. Re-resolve.
- ValidationError: a mutation is impossible, detected before any write.
- FormatError: a timestamp string could not be parsed.
- ConflictError: a requested time range is already occupied.
- IntegrityFault: the database returned something the model cannot explain.
"""


class TimewardenError(Exception):
    """Base class for all timewarden errors."""


class TransportFault(TimewardenError):
    """The external command could not be started or was terminated by a signal."""


class CommandError(TimewardenError):
    """The external command exited with a nonzero status.

    Attributes:
        command: Name of the command that failed (e.g. ``"stop"``)
        arguments: Arguments passed to the command
        returncode: Exit status of the process
        stderr: Diagnostic text printed by the command, verbatim
    """

    def __init__(
        self, command: str, args: tuple[str, ...], returncode: int, stderr: str
    ) -> None:
        self.command = command
        self.arguments = args
        self.returncode = returncode
        self.stderr = stderr
        message = stderr.strip() or f"exit status {returncode}"
        super().__init__(f"timew {command} failed: {message}")


class SyncError(TimewardenError):
    """The cached interval diverged from the database (or is no longer valid)."""


class ValidationError(TimewardenError, ValueError):
    """A requested mutation is structurally impossible."""


class FormatError(TimewardenError, ValueError):
    """A timestamp did not match the accepted date format."""


class ConflictError(TimewardenError):
    """A requested time range is not free."""


class IntegrityFault(TimewardenError):
    """The database returned data that violates an invariant the model relies on."""


__all__ = [
    "TimewardenError",
    "TransportFault",
    "CommandError",
    "SyncError",
    "ValidationError",
    "FormatError",
    "ConflictError",
    "IntegrityFault",
]
