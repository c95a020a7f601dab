from .config import TimewarriorConfig
from .dates import (
    dates_are_equal,
    format_timestamp,
    normalize_datestring,
    parse_date,
    serialize_timestamp,
    to_timestamp,
)
from .errors import (
    CommandError,
    ConflictError,
    FormatError,
    IntegrityFault,
    SyncError,
    TimewardenError,
    TransportFault,
    ValidationError,
)
from .gateway import CommandGateway, CommandOutput
from .interval import Interval, IntervalState
from .record import IntervalRecord
from .timewarrior import Timewarrior

__all__ = [
    "Timewarrior",
    "TimewarriorConfig",
    "Interval",
    "IntervalState",
    "IntervalRecord",
    "CommandGateway",
    "CommandOutput",
    "normalize_datestring",
    "parse_date",
    "to_timestamp",
    "format_timestamp",
    "serialize_timestamp",
    "dates_are_equal",
    "TimewardenError",
    "TransportFault",
    "CommandError",
    "SyncError",
    "ValidationError",
    "FormatError",
    "ConflictError",
    "IntegrityFault",
]
