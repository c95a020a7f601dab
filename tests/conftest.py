from __future__ import annotations

import copy
import json
import math
import re
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

import pytest

from timewarden import Timewarrior, TimewarriorConfig
from timewarden.dates import DATE_PATTERN, parse_date, serialize_timestamp

# 2000-02-01T00:00:00Z, well after every interval the tests track
NOW = 949363200

WRITE_COMMANDS = frozenset(
    {
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

_OVERLAP = (
    "You cannot overlap intervals. Correct the start/end time, "
    "or specify the :adjust hint."
)
_NOT_ACTIVE = "There is no active time tracking."


@dataclass
class _StubInterval:
    start: int
    end: int | None = None
    tags: list[str] = field(default_factory=list)
    annotation: str = ""


class _Failure(Exception):
    """Nonzero exit of the stub executable."""


def _ts(value: str) -> int:
    return int(parse_date(value).timestamp())


def _is_date(value: str) -> bool:
    return DATE_PATTERN.match(value) is not None


class StubTimew:
    """In-memory stand-in for the ``timew`` executable.

    Interprets the part of timew's grammar the client uses. Intervals are kept
    oldest first; positional id 1 is the most recent one.

    Like timew, ``continue`` copies tags but not the annotation, and ``join``
    keeps the later interval's annotation.
    """

    def __init__(
        self, clock: Callable[[], float] = lambda: NOW, version: str = "1.4.3"
    ) -> None:
        self.clock = clock
        self.version = version
        self.intervals: list[_StubInterval] = []
        self.calls: list[list[str]] = []
        self.envs: list[Mapping[str, str] | None] = []
        self.fail_with: Exception | None = None
        self.ignore_continue = False
        self._history: list[list[_StubInterval]] = []

    @property
    def now(self) -> int:
        return math.floor(self.clock())

    @property
    def writes(self) -> list[list[str]]:
        return [call for call in self.calls if call[0] in WRITE_COMMANDS]

    def add(
        self,
        start: int,
        end: int | None = None,
        tags: tuple[str, ...] = (),
        annotation: str = "",
    ) -> None:
        """Insert an interval behind the client's back."""
        self.intervals.append(_StubInterval(start, end, list(tags), annotation))
        self._sort()

    def __call__(
        self, argv: list[str], env: Mapping[str, str] | None
    ) -> subprocess.CompletedProcess[str]:
        self.calls.append(argv[1:])
        self.envs.append(env)
        if self.fail_with is not None:
            raise self.fail_with

        command, args = argv[1], argv[2:]
        handler = getattr(self, "_cmd_" + command.lstrip("-"))
        snapshot = copy.deepcopy(self.intervals)
        try:
            stdout = handler(args) or ""
        except _Failure as e:
            self.intervals = snapshot
            return subprocess.CompletedProcess(argv, 255, "", f"{e}\n")
        if command in WRITE_COMMANDS and command != "undo":
            self._history.append(snapshot)
        return subprocess.CompletedProcess(argv, 0, stdout, "")

    # Helpers

    def _sort(self) -> None:
        self.intervals.sort(key=lambda i: i.start)

    def _active(self) -> _StubInterval | None:
        if self.intervals and self.intervals[-1].end is None:
            return self.intervals[-1]
        return None

    def _lookup(self, ref: str) -> _StubInterval:
        match = re.fullmatch(r"@(\d+)", ref)
        if match is None:
            raise _Failure(f"'{ref}' is not a valid ID.")
        position = int(match.group(1))
        if not 1 <= position <= len(self.intervals):
            raise _Failure(f"ID '@{position}' does not correspond to any tracking.")
        return self.intervals[len(self.intervals) - position]

    def _id(self, interval: _StubInterval) -> int:
        index = next(n for n, i in enumerate(self.intervals) if i is interval)
        return len(self.intervals) - index

    def _json(self, interval: _StubInterval) -> dict[str, object]:
        obj: dict[str, object] = {
            "id": self._id(interval),
            "start": serialize_timestamp(interval.start),
        }
        if interval.end is not None:
            obj["end"] = serialize_timestamp(interval.end)
        if interval.tags:
            obj["tags"] = list(interval.tags)
        if interval.annotation:
            obj["annotation"] = interval.annotation
        return obj

    @staticmethod
    def _range(args: list[str]) -> tuple[int | None, int | None, list[str]]:
        if not args or not _is_date(args[0]):
            return None, None, args
        if len(args) >= 3 and args[1] == "-":
            return _ts(args[0]), _ts(args[2]), args[3:]
        return _ts(args[0]), None, args[1:]

    @staticmethod
    def _overlaps(
        interval: _StubInterval, start: int, end: int | None
    ) -> bool:
        interval_end = math.inf if interval.end is None else interval.end
        range_end = math.inf if end is None else end
        return interval.start < range_end and interval_end > start

    def _check_free(
        self, start: int, end: int | None, *ignore: _StubInterval
    ) -> None:
        for other in self.intervals:
            if any(other is i for i in ignore):
                continue
            if self._overlaps(other, start, end):
                raise _Failure(_OVERLAP)

    # Commands

    def _cmd_version(self, args: list[str]) -> str:
        return f"{self.version}\n"

    def _cmd_export(self, args: list[str]) -> str:
        start, end, tags = self._range(args)
        selected = [
            i
            for i in self.intervals
            if (start is None or self._overlaps(i, start, end))
            and all(t in i.tags for t in tags)
        ]
        return json.dumps([self._json(i) for i in selected])

    def _cmd_get(self, args: list[str]) -> str:
        (reference,) = args
        if reference == "dom.active":
            return "1\n" if self._active() else "0\n"
        if reference == "dom.active.json":
            active = self._active()
            if active is None:
                raise _Failure(f"DOM reference '{reference}' is not valid.")
            return json.dumps(self._json(active))
        match = re.fullmatch(r"dom\.tracked\.(\d+)\.json", reference)
        if match is None or not 1 <= int(match.group(1)) <= len(self.intervals):
            raise _Failure(f"DOM reference '{reference}' is not valid.")
        return json.dumps(self._json(self._lookup(f"@{match.group(1)}")))

    def _cmd_track(self, args: list[str]) -> None:
        start, end, tags = self._range(args)
        if start is None or end is None:
            raise _Failure("The track command requires a closed interval.")
        if end <= start:
            raise _Failure("The end of a date range must be after the start.")
        self._check_free(start, end)
        self.add(start, end, tuple(tags))

    def _cmd_start(self, args: list[str]) -> None:
        start, _, tags = self._range(args)
        start = self.now if start is None else start
        active = self._active()
        if active is not None:
            if start <= active.start:
                raise _Failure(_OVERLAP)
            active.end = start
        self._check_free(start, None)
        self.add(start, None, tuple(tags))

    def _cmd_stop(self, args: list[str]) -> None:
        active = self._active()
        if active is None:
            raise _Failure(_NOT_ACTIVE)
        end = _ts(args[0]) if args else self.now
        if end <= active.start:
            raise _Failure("The end of a date range must be after the start.")
        active.end = end

    def _cmd_cancel(self, args: list[str]) -> str:
        active = self._active()
        if active is None:
            return f"{_NOT_ACTIVE}\n"
        self.intervals.remove(active)
        return ""

    def _cmd_modify(self, args: list[str]) -> None:
        boundary, ref, value = args
        interval = self._lookup(ref)
        ts = _ts(value)
        if boundary == "end":
            if interval.end is None:
                raise _Failure("Cannot modify end of open interval.")
            start, end = interval.start, ts
        else:
            start, end = ts, interval.end
        if end is not None and end <= start:
            raise _Failure("The end of a date range must be after the start.")
        self._check_free(start, end, interval)
        interval.start, interval.end = start, end
        self._sort()

    def _cmd_move(self, args: list[str]) -> None:
        ref, value = args
        interval = self._lookup(ref)
        offset = _ts(value) - interval.start
        end = None if interval.end is None else interval.end + offset
        self._check_free(interval.start + offset, end, interval)
        interval.start += offset
        interval.end = end
        self._sort()

    def _cmd_split(self, args: list[str]) -> None:
        (ref,) = args
        interval = self._lookup(ref)
        end = self.now if interval.end is None else interval.end
        middle = interval.start + (end - interval.start) // 2
        second = _StubInterval(
            middle, interval.end, list(interval.tags), interval.annotation
        )
        interval.end = middle
        self.intervals.append(second)
        self._sort()

    def _cmd_join(self, args: list[str]) -> None:
        first, second = (self._lookup(ref) for ref in args)
        if first is second:
            raise _Failure("Cannot join an interval with itself.")
        earlier, later = sorted((first, second), key=lambda i: i.start)
        end = None if None in (earlier.end, later.end) else max(earlier.end, later.end)
        self._check_free(earlier.start, end, earlier, later)
        tags = list(dict.fromkeys(earlier.tags + later.tags))
        annotation = later.annotation or earlier.annotation
        self.intervals.remove(later)
        earlier.end, earlier.tags, earlier.annotation = end, tags, annotation

    def _cmd_continue(self, args: list[str]) -> None:
        source = self._lookup(args[0])
        if self.ignore_continue:
            return
        start, end, _ = self._range(args[1:])
        start = self.now if start is None else start
        active = self._active()
        if end is None and active is not None and active.start < start:
            active.end = start
        self._check_free(start, end)
        self.add(start, end, tuple(source.tags))

    def _cmd_tag(self, args: list[str]) -> None:
        interval = self._lookup(args[0])
        for tag in args[1:]:
            if tag not in interval.tags:
                interval.tags.append(tag)

    def _cmd_untag(self, args: list[str]) -> None:
        interval = self._lookup(args[0])
        interval.tags = [t for t in interval.tags if t not in args[1:]]

    def _cmd_annotate(self, args: list[str]) -> None:
        ref, text = args
        self._lookup(ref).annotation = text

    def _cmd_delete(self, args: list[str]) -> None:
        (ref,) = args
        self.intervals.remove(self._lookup(ref))

    def _cmd_undo(self, args: list[str]) -> None:
        if not self._history:
            raise _Failure("Nothing to undo.")
        self.intervals = self._history.pop()


@pytest.fixture
def store() -> StubTimew:
    return StubTimew()


@pytest.fixture
def tw(store: StubTimew) -> Timewarrior:
    config = TimewarriorConfig(command="timew", database="/tmp/timewarden-test")
    return Timewarrior(config, runner=store, clock=store.clock)


@pytest.fixture
def dates() -> list[datetime]:
    """Some dates in ascending order that can be used for ranges."""
    return [datetime(2000, 1, day, tzinfo=timezone.utc) for day in range(1, 8)]
