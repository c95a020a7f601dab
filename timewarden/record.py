from dataclasses import dataclass, field
from typing import Any

from timewarden.dates import parse_date, serialize_timestamp
from timewarden.errors import FormatError, IntegrityFault, ValidationError

JsonInterval = dict[str, Any]


@dataclass(frozen=True, kw_only=True)
class IntervalRecord:
    """One interval as reported by ``timew export``.

    ``id`` is positional (1 = most recent) and drifts whenever other
    intervals are added or removed, so it takes no part in equality.
    """

    id: int = field(compare=False)
    start: int
    end: int | None = None
    tags: frozenset[str] = frozenset()
    annotation: str = ""

    def __post_init__(self) -> None:
        if self.end is not None and self.start > self.end:
            raise ValidationError(
                f"Interval start ({self.start}) must be <= end ({self.end})"
            )

    def __str__(self) -> str:
        """Human-friendly string showing range and duration."""
        start_str = serialize_timestamp(self.start)
        if self.end is None:
            return f"IntervalRecord(@{self.id}, {start_str}→open)"
        end_str = serialize_timestamp(self.end)
        return f"IntervalRecord(@{self.id}, {start_str}→{end_str}, {self.duration}s)"

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def duration(self) -> int | None:
        return None if self.end is None else self.end - self.start

    @classmethod
    def from_json(cls, obj: Any) -> "IntervalRecord":
        """Build a record from one decoded JSON export object.

        Raises:
            IntegrityFault: If the object does not have the shape of an interval
        """
        if not isinstance(obj, dict):
            raise IntegrityFault(f"Expected a JSON object, got {obj!r}")

        interval_id = obj.get("id")
        if isinstance(interval_id, bool) or not isinstance(interval_id, int):
            raise IntegrityFault(f"Interval has no valid id: {obj!r}")
        if not isinstance(obj.get("start"), str):
            raise IntegrityFault(f"Interval has no valid start: {obj!r}")
        if not isinstance(obj.get("end", ""), str):
            raise IntegrityFault(f"Interval has no valid end: {obj!r}")
        tags = obj.get("tags", [])
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise IntegrityFault(f"Interval tags must be a list of strings: {obj!r}")
        if not isinstance(obj.get("annotation", ""), str):
            raise IntegrityFault(f"Interval annotation must be a string: {obj!r}")

        try:
            start = int(parse_date(obj["start"]).timestamp())
            end = int(parse_date(obj["end"]).timestamp()) if obj.get("end") else None
            return cls(
                id=interval_id,
                start=start,
                end=end,
                tags=frozenset(tags),
                annotation=obj.get("annotation", ""),
            )
        except (FormatError, ValidationError) as e:
            raise IntegrityFault(f"Malformed interval {obj!r}: {e}") from e

    def to_json(self) -> JsonInterval:
        """Serialize in the same fashion as the ``export`` command.

        ``end``, ``tags`` and ``annotation`` are omitted when not applicable.
        """
        json_interval: JsonInterval = {
            "id": self.id,
            "start": serialize_timestamp(self.start),
        }
        if self.end is not None:
            json_interval["end"] = serialize_timestamp(self.end)
        if self.tags:
            json_interval["tags"] = sorted(self.tags)
        if self.annotation:
            json_interval["annotation"] = self.annotation
        return json_interval


__all__ = ["IntervalRecord", "JsonInterval"]
