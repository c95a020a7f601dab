"""Client for a Timewarrior database.

Timewarrior is the single source of truth: this class never keeps intervals
in memory. It issues commands through a CommandGateway and hands out
Interval proxies resolved by time range or positional id.
"""

import asyncio
import json
import logging
import math
from collections.abc import Callable
from time import time as current_time
from typing import Any

from timewarden.config import TimewarriorConfig
from timewarden.dates import (
    DateInput,
    DateRange,
    coerce_range,
    format_range,
    format_timestamp,
    to_timestamp,
)
from timewarden.errors import CommandError, IntegrityFault, ValidationError
from timewarden.gateway import CommandGateway, CommandOutput, Runner
from timewarden.interval import Interval, TagInput, tag_tuple
from timewarden.record import IntervalRecord

logger = logging.getLogger(__name__)

# Timewarrior rejects intervals shorter than this (seconds)
MIN_DURATION = 1


def _decode(stdout: str, what: str) -> Any:
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        logger.error("Could not decode %s: %r", what, stdout)
        raise IntegrityFault(f"timew returned malformed JSON for {what}: {e}") from e


def _parse_records(stdout: str) -> list[IntervalRecord]:
    if not stdout.strip():
        return []
    data = _decode(stdout, "export")
    if not isinstance(data, list):
        raise IntegrityFault(f"Expected a JSON array from export, got {data!r}")
    records = [IntervalRecord.from_json(item) for item in data]
    return sorted(records, key=lambda r: r.start)


class Timewarrior:
    """Access to one Timewarrior database through the ``timew`` executable."""

    def __init__(
        self,
        config: TimewarriorConfig | None = None,
        *,
        runner: Runner | None = None,
        clock: Callable[[], float] = current_time,
    ) -> None:
        """
        Args:
            config: Executable and database to use (defaults from the environment)
            runner: Optional replacement for subprocess execution (for testing)
            clock: Source of the current time in epoch seconds
        """
        self.config: TimewarriorConfig = (
            config if config is not None else TimewarriorConfig.from_env()
        )
        if not self.config.is_valid():
            raise ValidationError("No timew command configured")
        self.gateway: CommandGateway = CommandGateway(
            self.config.command, self.config.database, runner=runner
        )
        self.clock: Callable[[], float] = clock
        self.version: str = self.run("--version").stdout.strip()

    def __str__(self) -> str:
        return f"Timewarrior(version='{self.version}', database={self.config.database!r})"

    def run(self, command: str, *args: str) -> CommandOutput:
        return self.gateway.run(command, *args)

    def now(self) -> int:
        return math.floor(self.clock())

    def export(
        self, time_range: DateRange | None = None, tags: TagInput = ()
    ) -> list[IntervalRecord]:
        """Export intervals overlapping a range, oldest first.

        Args:
            time_range: ``(start,)`` or ``(start, end)``; None exports everything
            tags: Only export intervals carrying all of these tags
        """
        args = [] if time_range is None else format_range(coerce_range(time_range))
        output = self.run("export", *args, *tag_tuple(tags))
        return _parse_records(output.stdout)

    def __getitem__(self, item: slice) -> list[Interval]:
        """Intervals overlapping ``[start:end]`` as live objects.

        Bounds accept anything :func:`timewarden.dates.to_timestamp` does;
        an omitted start means the beginning of time.
        """
        if not isinstance(item, slice):
            raise TypeError(
                f"Timewarrior must be sliced by time, got {type(item).__name__}.\n"
                f"Examples:\n"
                f"  timewarrior[start:end]\n"
                f"  timewarrior[datetime(2025,1,1,tzinfo=timezone.utc):]"
            )
        if item.start is None and item.stop is None:
            records = self.export()
        else:
            start = 0 if item.start is None else item.start
            time_range = (start,) if item.stop is None else (start, item.stop)
            records = self.export(time_range)
        return [Interval(record, self) for record in records]

    def export_interval(self, time_range: DateRange) -> Interval:
        """Resolve the single interval in a range.

        Raises:
            IntegrityFault: If the range holds no interval or more than one
        """
        records = self.export(time_range)
        if len(records) != 1:
            bounds = " ".join(format_range(coerce_range(time_range)))
            logger.error("Expected one interval in %s, found %d", bounds, len(records))
            raise IntegrityFault(
                f"Expected exactly one interval in {bounds}, found {len(records)}"
            )
        return Interval(records[0], self)

    def get_tracked(self, interval_id: int) -> Interval:
        """Resolve an interval by positional id (1 = most recent)."""
        if (
            isinstance(interval_id, bool)
            or not isinstance(interval_id, int)
            or interval_id < 1
        ):
            raise ValidationError(f"Interval ids are positive integers, got {interval_id!r}")
        output = self.run("get", f"dom.tracked.{interval_id}.json")
        data = _decode(output.stdout, f"@{interval_id}")
        if isinstance(data, dict):
            data.setdefault("id", interval_id)
        return Interval.from_json(data, self)

    def active_interval(self) -> Interval | None:
        """The open interval, or None when nothing is being tracked."""
        if self.run("get", "dom.active").stdout.strip() != "1":
            return None
        data = _decode(self.run("get", "dom.active.json").stdout, "active interval")
        if isinstance(data, dict):
            data.setdefault("id", 1)
        interval = Interval.from_json(data, self)
        if not interval.is_open:
            raise IntegrityFault(f"Active interval {interval} has an end")
        return interval

    def track(
        self, start: DateInput, end: DateInput, tags: TagInput = ()
    ) -> Interval:
        """Record a closed interval and return it."""
        bounds = coerce_range((start, end))
        if bounds[-1] <= bounds[0]:
            raise ValidationError(
                f"Interval must end after it starts: {' '.join(format_range(bounds))}"
            )
        self.run("track", *format_range(bounds), *tag_tuple(tags))
        return self.export_interval(bounds)

    def start(self, tags: TagInput = (), at: DateInput | None = None) -> Interval:
        """Start tracking (now unless ``at`` is given) and return the open interval.

        Any interval open at that moment is stopped by timew.
        """
        ts = self.now() if at is None else to_timestamp(at)
        self.run("start", format_timestamp(ts), *tag_tuple(tags))
        interval = self.active_interval()
        if interval is None:
            logger.error("No active interval after start at %s", format_timestamp(ts))
            raise IntegrityFault("timew start did not leave an active interval")
        return interval

    async def stop(self, at: DateInput | None = None) -> bool:
        """Stop the active interval.

        Timewarrior refuses zero-length intervals, so when stopping "now"
        this waits until the interval is at least MIN_DURATION long.

        Returns:
            True if an interval was stopped, False if none was active
        """
        active = self.active_interval()
        if active is None:
            return False

        args: list[str] = []
        if at is None:
            elapsed = self.clock() - active.record.start
            if elapsed < MIN_DURATION:
                delay = min(MIN_DURATION, MIN_DURATION - elapsed)
                logger.debug("Waiting %.3fs before stopping %s", delay, active)
                await asyncio.sleep(delay)
        else:
            ts = to_timestamp(at)
            if ts <= active.record.start:
                raise ValidationError(
                    f"Cannot stop {active} at {format_timestamp(ts)}, "
                    f"before it started"
                )
            args.append(format_timestamp(ts))

        try:
            self.run("stop", *args)
        except CommandError:
            if self.active_interval() is None:
                logger.debug("Nothing left to stop")
                return False
            raise
        return True

    def cancel(self) -> bool:
        """Discard the active interval.

        Returns:
            True if an interval was removed, False if none was active
        """
        if self.active_interval() is None:
            return False
        try:
            self.run("cancel")
        except CommandError:
            if self.active_interval() is None:
                logger.debug("Nothing left to cancel")
                return False
            raise
        return True

    def undo(self) -> None:
        """Revert the last change made to the database."""
        self.run("undo")


__all__ = ["MIN_DURATION", "Timewarrior"]
