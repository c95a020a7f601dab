"""Live proxy objects for intervals stored in the Timewarrior database.

An Interval caches one IntervalRecord. Before every mutation it re-reads its
own time range from the database and compares the result with the cache
(ignoring the positional id, which legitimately drifts). Only when both agree
is the mutation command issued and the cache updated.

The read and the write are two separate commands, so a change made by
another process in between is not detected. There is no lock to take.
"""

import logging
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from typing_extensions import override

from timewarden.dates import (
    Bounds,
    DateInput,
    DateRange,
    DurationInput,
    coerce_range,
    format_range,
    format_timestamp,
    timestamp_to_datetime,
    to_duration,
    to_timestamp,
)
from timewarden.errors import ConflictError, SyncError, ValidationError
from timewarden.record import IntervalRecord, JsonInterval

if TYPE_CHECKING:
    from timewarden.timewarrior import Timewarrior

logger = logging.getLogger(__name__)

TagInput = str | Iterable[str]


class IntervalState(Enum):
    """Whether an Interval object may still be used.

    INVALID is terminal: resolve a new object by id or range instead.
    """

    LIVE = "live"
    SYNCING = "syncing"
    INVALID = "invalid"


def tag_tuple(tags: TagInput) -> tuple[str, ...]:
    """Normalize a single tag or an iterable of tags, dropping duplicates."""
    if isinstance(tags, str):
        return (tags,)
    return tuple(dict.fromkeys(tags))


class Interval:
    """A tracked time span backed by the Timewarrior database.

    Attributes read from the cache; setters and methods write through to the
    database after a sync. Start and end read back as UTC datetimes and
    accept anything :func:`timewarden.dates.to_timestamp` accepts.
    """

    def __init__(self, record: IntervalRecord, timewarrior: "Timewarrior") -> None:
        self._record: IntervalRecord = record
        self._timewarrior: "Timewarrior" = timewarrior
        self._state: IntervalState = IntervalState.LIVE

    @classmethod
    def from_json(cls, obj: Any, timewarrior: "Timewarrior") -> "Interval":
        return cls(IntervalRecord.from_json(obj), timewarrior)

    @override
    def __str__(self) -> str:
        return str(self._record).replace("IntervalRecord", "Interval", 1)

    @override
    def __repr__(self) -> str:
        return f"<{self} {self._state.value}>"

    @override
    def __eq__(self, other: object) -> bool:
        if isinstance(other, Interval):
            return self._record == other._record
        if isinstance(other, IntervalRecord):
            return self._record == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    @property
    def id(self) -> int:
        """Positional id as of the last sync (1 = most recent)."""
        return self._record.id

    @property
    def state(self) -> IntervalState:
        return self._state

    @property
    def record(self) -> IntervalRecord:
        """Snapshot of the cached fields."""
        return self._record

    @property
    def start(self) -> datetime:
        return timestamp_to_datetime(self._record.start)

    @start.setter
    def start(self, value: DateInput) -> None:
        ts = to_timestamp(value)
        self.sync()
        self._apply_boundary("start", ts)

    @property
    def end(self) -> datetime | None:
        if self._record.end is None:
            return None
        return timestamp_to_datetime(self._record.end)

    @end.setter
    def end(self, value: DateInput | None) -> None:
        if value is None:
            raise ValidationError(
                "Cannot re-open an interval by setting end to None; use continue_()"
            )
        ts = to_timestamp(value)
        self.sync()
        self._apply_boundary("end", ts)

    @property
    def is_open(self) -> bool:
        return self._record.is_open

    @property
    def duration(self) -> timedelta | None:
        """Length of a closed interval; None while the interval is open."""
        seconds = self._record.duration
        return None if seconds is None else timedelta(seconds=seconds)

    @duration.setter
    def duration(self, value: DurationInput) -> None:
        """Resize by moving the end; the start stays where it is."""
        self._ensure_live()
        if self._record.is_open:
            raise ValidationError("The open interval has no duration to set")
        seconds = to_duration(value)
        if seconds < 0:
            raise ValidationError(f"Duration must not be negative, got {seconds}s")
        self.sync()
        self._apply_boundary("end", self._record.start + seconds)

    @property
    def tags(self) -> set[str]:
        # Copy so callers can't modify the cache
        return set(self._record.tags)

    @tags.setter
    def tags(self, tags: TagInput) -> None:
        """Replace all tags.

        Timewarrior has no command to set tags, so this untags everything
        present and then tags everything requested. Nothing is written when
        the requested set equals the current one.
        """
        requested = frozenset(tag_tuple(tags))
        self.sync()
        if requested == self._record.tags:
            return
        if self._record.tags:
            self._apply_untag(tuple(sorted(self._record.tags)))
        if requested:
            self._apply_tag(tuple(sorted(requested)))

    @property
    def annotation(self) -> str:
        return self._record.annotation

    @annotation.setter
    def annotation(self, text: str) -> None:
        """Replace the annotation; an empty string removes it."""
        if not isinstance(text, str):
            raise TypeError(f"Annotation must be a string, got {type(text).__name__}")
        self.sync()
        self._apply_annotation(text)

    def has_tag(self, tag: str) -> bool:
        return tag in self._record.tags

    def to_json(self) -> JsonInterval:
        """Serialize in the same fashion as the ``export`` command."""
        return self._record.to_json()

    def sync(self) -> None:
        """Check the cache against the database and adopt the current id.

        Changes elsewhere shift positional ids without touching anything else
        about this interval, so the id is looked up by time range and
        repaired here.

        Raises:
            SyncError: If the interval was changed or removed in the database,
                or this object is no longer valid
        """
        self._ensure_live()
        self._state = IntervalState.SYNCING
        try:
            records = self._timewarrior.export(self._bounds())
        except Exception:
            self._state = IntervalState.LIVE
            raise

        if len(records) != 1 or records[0] != self._record:
            self._state = IntervalState.INVALID
            found = ", ".join(str(r) for r in records) or "nothing"
            logger.warning("%s diverged from the database, found %s", self, found)
            raise SyncError(f"Interval was modified in the database: {self}")

        if records[0].id != self._record.id:
            logger.debug("Repaired id of %s to @%d", self, records[0].id)
        self._record = replace(self._record, id=records[0].id)
        self._state = IntervalState.LIVE

    def tag(self, tags: TagInput) -> None:
        """Add tag(s)."""
        self._ensure_live()
        new_tags = tag_tuple(tags)
        if not new_tags:
            return
        self.sync()
        self._apply_tag(new_tags)

    def untag(self, tags: TagInput) -> None:
        """Remove tag(s)."""
        self._ensure_live()
        old_tags = tag_tuple(tags)
        if not old_tags:
            return
        self.sync()
        self._apply_untag(old_tags)

    def move(self, offset: DurationInput) -> None:
        """Shift start and end by the same offset, keeping the duration.

        Uses timew's ``move`` command, so both boundaries change in a single
        write or not at all.
        """
        seconds = to_duration(offset)
        self.sync()
        if seconds == 0:
            return
        start = self._record.start + seconds
        end = None if self._record.end is None else self._record.end + seconds
        updated = replace(self._record, start=start, end=end)
        self._run("move", self._ref(), format_timestamp(start))
        self._record = updated

    def delete(self) -> None:
        """Remove the interval. Every later id shifts down by one."""
        self.sync()
        self._run("delete", self._ref())
        self._state = IntervalState.INVALID

    def split(self) -> tuple["Interval", "Interval"]:
        """Split the interval in half.

        This object becomes invalid; both halves are resolved afresh.

        Returns:
            The two resulting intervals in their order of occurrence
        """
        self.sync()
        position = self._record.id
        self._run("split", self._ref())
        self._state = IntervalState.INVALID
        # The later half keeps the id, the earlier one is pushed behind it
        earlier = self._timewarrior.get_tracked(position + 1)
        later = self._timewarrior.get_tracked(position)
        return earlier, later

    def join(self, other: "Interval | int") -> "Interval":
        """Merge with another interval (object or positional id).

        The result spans from the earlier start to the later end and carries
        the union of both tag sets. The earlier interval's annotation wins;
        the later one's is used when the earlier has none. Both original
        objects become invalid.

        Cached ids may be stale, so two objects (or an object and an id) are
        only compared after both sides have been synced.

        Raises:
            ValidationError: If asked to join an interval with itself
            IntegrityFault: If the merged interval can't be found afterwards
        """
        if other is self:
            raise ValidationError("Cannot join an interval with itself")
        if not isinstance(other, Interval) and (
            isinstance(other, bool) or not isinstance(other, int)
        ):
            raise TypeError(f"Expected Interval or id, got {type(other).__name__}")

        self.sync()
        if isinstance(other, Interval):
            other.sync()
            partner = other
        else:
            if other == self._record.id:
                raise ValidationError("Cannot join an interval with itself")
            partner = self._timewarrior.get_tracked(other)
        if partner._record.id == self._record.id:
            raise ValidationError("Cannot join an interval with itself")

        earlier, later = sorted((self, partner), key=lambda i: i._record.start)
        ids = sorted((earlier._record.id, later._record.id))
        self._run("join", *(f"@{i}" for i in ids))
        self._state = IntervalState.INVALID
        partner._state = IntervalState.INVALID

        ends = (earlier._record.end, later._record.end)
        span: Bounds = (
            (earlier._record.start,)
            if None in ends
            else (earlier._record.start, max(e for e in ends if e is not None))
        )
        merged = self._timewarrior.export_interval(span)

        missing = (earlier._record.tags | later._record.tags) - merged._record.tags
        if missing:
            logger.warning("Join of %s dropped tags %s", merged, sorted(missing))
            merged.tag(sorted(missing))
        annotation = earlier._record.annotation or later._record.annotation
        if merged.annotation != annotation:
            logger.warning("Join of %s changed the annotation, restoring", merged)
            merged.annotation = annotation
        return merged

    def continue_(self, time_range: DateRange | None = None) -> "Interval":
        """Start a new interval with the tags and annotation of this one.

        Without a range the new interval starts now. With ``(start,)`` or
        ``(start, end)`` the range must be free. This interval is left as is.

        Raises:
            ConflictError: If the requested range overlaps existing intervals
            IntegrityFault: If the new interval can't be found afterwards
        """
        bounds = None if time_range is None else coerce_range(time_range)
        self.sync()

        if bounds is None:
            bounds = (self._timewarrior.now(),)
        else:
            occupied = self._timewarrior.export(bounds)
            if occupied:
                raise ConflictError(
                    f"Range {' '.join(format_range(bounds))} is not free: "
                    + ", ".join(str(r) for r in occupied)
                )

        self._run("continue", self._ref(), *format_range(bounds))
        interval = self._timewarrior.export_interval(bounds)

        missing = self._record.tags - interval._record.tags
        if missing:
            interval.tag(sorted(missing))
        if interval.annotation != self._record.annotation:
            interval.annotation = self._record.annotation
        return interval

    def _ensure_live(self) -> None:
        if self._state is IntervalState.INVALID:
            raise SyncError(
                f"{self} is no longer valid, resolve it again by id or range"
            )

    def _ref(self) -> str:
        return f"@{self._record.id}"

    def _bounds(self) -> Bounds:
        if self._record.end is None:
            return (self._record.start,)
        return (self._record.start, self._record.end)

    def _run(self, command: str, *args: str) -> None:
        self._timewarrior.run(command, *args)

    def _apply_boundary(self, boundary: Literal["start", "end"], ts: int) -> None:
        # replace() validates start <= end before anything is written
        updated = replace(self._record, **{boundary: ts})
        self._run("modify", boundary, self._ref(), format_timestamp(ts))
        self._record = updated

    def _apply_tag(self, tags: tuple[str, ...]) -> None:
        self._run("tag", self._ref(), *tags)
        self._record = replace(self._record, tags=self._record.tags | set(tags))

    def _apply_untag(self, tags: tuple[str, ...]) -> None:
        self._run("untag", self._ref(), *tags)
        self._record = replace(self._record, tags=self._record.tags - set(tags))

    def _apply_annotation(self, text: str) -> None:
        self._run("annotate", self._ref(), text)
        self._record = replace(self._record, annotation=text)


__all__ = ["Interval", "IntervalState", "TagInput", "tag_tuple"]
