"""Timetable double-booking detection.

The detector works on immutable snapshots of periods and entries loaded by the
caller. Finding a conflict is a normal result; only malformed input (an
unknown resource kind, a bad ``HH:MM`` value, an empty interval) raises
``InvalidArgumentError``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from app.core.exceptions import InvalidArgumentError

DAY_VALUES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
DAY_ORDER = {day: index for index, day in enumerate(DAY_VALUES)}

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

REQUIRED_ENTRY_FIELDS = ("class_id", "subject_id", "teacher_id", "period_id")


def parse_time_to_minutes(value: str | int) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        if not 0 <= value < 24 * 60:
            raise InvalidArgumentError(f"Minutes since midnight out of range: {value}")
        return value
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise InvalidArgumentError("Time must be in HH:MM 24-hour format", details={"value": repr(value)})
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_minutes(value: int) -> str:
    return f"{value // 60:02d}:{value % 60:02d}"


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open [start, end) overlap: touching intervals do not overlap."""
    return start_a < end_b and start_b < end_a


class ResourceKind(str, Enum):
    school_class = "class"
    teacher = "teacher"
    room = "room"

    @classmethod
    def parse(cls, value: "ResourceKind | str") -> "ResourceKind":
        if isinstance(value, cls):
            return value
        normalized = RESOURCE_KIND_ALIASES.get(str(value).strip().lower())
        if normalized is None:
            raise InvalidArgumentError(
                f"Unknown timetable resource kind {value!r}",
                details={"allowed": [kind.value for kind in cls]},
            )
        return normalized

    @property
    def label(self) -> str:
        return {"class": "Class", "teacher": "Teacher", "room": "Room"}[self.value]

    @property
    def attribute(self) -> str:
        return f"{self.value}_id"


RESOURCE_KIND_ALIASES = {
    "class": ResourceKind.school_class,
    "classe": ResourceKind.school_class,
    "teacher": ResourceKind.teacher,
    "enseignant": ResourceKind.teacher,
    "room": ResourceKind.room,
    "salle": ResourceKind.room,
}


@dataclass(frozen=True)
class PeriodSlot:
    id: int
    establishment_id: int
    day_of_week: str
    start: int
    end: int
    name: str = ""
    rank: int = 0
    is_break: bool = False

    @classmethod
    def from_model(cls, period: Any) -> "PeriodSlot":
        return cls(
            id=period.id,
            establishment_id=period.establishment_id,
            day_of_week=period.day_of_week,
            start=parse_time_to_minutes(period.start_time),
            end=parse_time_to_minutes(period.end_time),
            name=period.name,
            rank=period.rank or 0,
            is_break=bool(period.is_break),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "day_of_week": self.day_of_week,
            "start_time": format_minutes(self.start),
            "end_time": format_minutes(self.end),
        }


@dataclass(frozen=True)
class EntrySlot:
    class_id: int
    subject_id: int
    teacher_id: int
    period_id: int
    room_id: int | None = None
    academic_year_id: int | None = None
    id: int | None = None

    @classmethod
    def from_model(cls, entry: Any) -> "EntrySlot":
        return cls(
            id=entry.id,
            class_id=entry.class_id,
            subject_id=entry.subject_id,
            teacher_id=entry.teacher_id,
            period_id=entry.period_id,
            room_id=entry.room_id,
            academic_year_id=entry.academic_year_id,
        )

    def resource_id(self, kind: ResourceKind) -> int | None:
        return getattr(self, kind.attribute)

    def merged(self, changes: Mapping[str, Any]) -> "EntrySlot":
        known = {name: value for name, value in changes.items() if name in ENTRY_FIELDS}
        return replace(self, **known)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "class_id": self.class_id,
            "subject_id": self.subject_id,
            "teacher_id": self.teacher_id,
            "period_id": self.period_id,
            "room_id": self.room_id,
            "academic_year_id": self.academic_year_id,
        }


ENTRY_FIELDS = frozenset(
    {"class_id", "subject_id", "teacher_id", "period_id", "room_id", "academic_year_id"}
)


@dataclass(frozen=True)
class ResourceConflict:
    kind: ResourceKind
    resource_id: int
    entry: EntrySlot

    @property
    def message(self) -> str:
        return f"{self.kind.label} already has an entry for this period"

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.kind.value,
            "resource_id": self.resource_id,
            "message": self.message,
            "entry": self.entry.to_dict(),
        }


@dataclass(frozen=True)
class ConflictReport:
    conflicts: tuple[ResourceConflict, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.conflicts

    @property
    def first(self) -> ResourceConflict | None:
        return self.conflicts[0] if self.conflicts else None

    @property
    def message(self) -> str | None:
        return self.first.message if self.first else None

    def kinds(self) -> set[ResourceKind]:
        return {conflict.kind for conflict in self.conflicts}


class BulkResultKind(str, Enum):
    success = "success"
    invalid = "invalid"
    not_found = "not_found"
    conflict = "conflict"


@dataclass(frozen=True)
class BulkEntryResult:
    index: int
    kind: BulkResultKind
    candidate: EntrySlot | None = None
    error: str | None = None
    conflict_with: EntrySlot | None = None
    conflicts: tuple[ResourceConflict, ...] = ()

    @property
    def success(self) -> bool:
        return self.kind == BulkResultKind.success


@dataclass(frozen=True)
class MissingReference:
    resource_type: str
    resource_id: int

    @property
    def message(self) -> str:
        return f"{self.resource_type} with id {self.resource_id} not found"


@dataclass(frozen=True)
class ReferenceIndex:
    """Known ids for referential checks, one set per referenced table."""

    class_ids: frozenset[int] = field(default_factory=frozenset)
    subject_ids: frozenset[int] = field(default_factory=frozenset)
    teacher_ids: frozenset[int] = field(default_factory=frozenset)
    period_ids: frozenset[int] = field(default_factory=frozenset)
    room_ids: frozenset[int] = field(default_factory=frozenset)

    def missing_reference(self, candidate: EntrySlot) -> MissingReference | None:
        """Describe the first unknown reference, checked as class, subject, teacher, period, room."""
        checks = (
            ("Class", candidate.class_id, self.class_ids),
            ("Subject", candidate.subject_id, self.subject_ids),
            ("Teacher", candidate.teacher_id, self.teacher_ids),
            ("Period", candidate.period_id, self.period_ids),
        )
        for label, value, known in checks:
            if value not in known:
                return MissingReference(label, value)
        if candidate.room_id is not None and candidate.room_id not in self.room_ids:
            return MissingReference("Room", candidate.room_id)
        return None


class TimetableConflictDetector:
    def __init__(self, periods: Iterable[PeriodSlot] = (), entries: Iterable[EntrySlot] = ()):
        self.periods: tuple[PeriodSlot, ...] = tuple(periods)
        self.entries: tuple[EntrySlot, ...] = tuple(entries)

    @classmethod
    def from_models(cls, periods: Iterable[Any] = (), entries: Iterable[Any] = ()) -> "TimetableConflictDetector":
        return cls(
            periods=[PeriodSlot.from_model(period) for period in periods],
            entries=[EntrySlot.from_model(entry) for entry in entries],
        )

    def find_overlapping_periods(
        self,
        establishment_id: int,
        day_of_week: str,
        start: str | int,
        end: str | int,
        exclude_period_id: int | None = None,
    ) -> list[PeriodSlot]:
        start_minutes = parse_time_to_minutes(start)
        end_minutes = parse_time_to_minutes(end)
        if end_minutes <= start_minutes:
            raise InvalidArgumentError(
                "End time must be after start time",
                details={"start": format_minutes(start_minutes), "end": format_minutes(end_minutes)},
            )
        return [
            period
            for period in self.periods
            if period.establishment_id == establishment_id
            and period.day_of_week == day_of_week
            and period.id != exclude_period_id
            and intervals_overlap(start_minutes, end_minutes, period.start, period.end)
        ]

    def find_overlapping_period(
        self,
        establishment_id: int,
        day_of_week: str,
        start: str | int,
        end: str | int,
        exclude_period_id: int | None = None,
    ) -> PeriodSlot | None:
        overlapping = self.find_overlapping_periods(
            establishment_id, day_of_week, start, end, exclude_period_id=exclude_period_id
        )
        return overlapping[0] if overlapping else None

    def find_timetable_conflict(
        self,
        resource_kind: ResourceKind | str,
        resource_id: int | None,
        period_id: int,
        exclude_entry_id: int | None = None,
        academic_year_id: int | None = None,
    ) -> EntrySlot | None:
        kind = ResourceKind.parse(resource_kind)
        if resource_id is None:
            return None
        for entry in self.entries:
            if exclude_entry_id is not None and entry.id == exclude_entry_id:
                continue
            if entry.period_id != period_id or entry.resource_id(kind) != resource_id:
                continue
            if academic_year_id is not None and entry.academic_year_id not in (None, academic_year_id):
                continue
            return entry
        return None

    def validate_entry_write(
        self,
        candidate: EntrySlot,
        exclude_entry_id: int | None = None,
        kinds: Iterable[ResourceKind] = tuple(ResourceKind),
    ) -> ConflictReport:
        """Check every resource of ``candidate`` and report all clashes, class first, then teacher, then room."""
        exclude = exclude_entry_id if exclude_entry_id is not None else candidate.id
        wanted = set(kinds)
        conflicts = []
        for kind in ResourceKind:
            if kind not in wanted:
                continue
            resource_id = candidate.resource_id(kind)
            clash = self.find_timetable_conflict(
                kind,
                resource_id,
                candidate.period_id,
                exclude_entry_id=exclude,
                academic_year_id=candidate.academic_year_id,
            )
            if clash is not None:
                conflicts.append(ResourceConflict(kind=kind, resource_id=resource_id, entry=clash))
        return ConflictReport(conflicts=tuple(conflicts))

    def validate_entry_update(self, existing: EntrySlot, changes: Mapping[str, Any]) -> ConflictReport:
        """Re-check only the resources whose value or period actually changes."""
        updated = existing.merged(changes)
        if (
            updated.period_id != existing.period_id
            or updated.academic_year_id != existing.academic_year_id
        ):
            kinds = set(ResourceKind)
        else:
            kinds = {kind for kind in ResourceKind if updated.resource_id(kind) != existing.resource_id(kind)}
        if not kinds:
            return ConflictReport()
        return self.validate_entry_write(updated, exclude_entry_id=existing.id, kinds=kinds)

    def bulk_validate(
        self,
        candidates: Sequence[Mapping[str, Any]],
        academic_year_id: int,
        references: ReferenceIndex,
    ) -> list[BulkEntryResult]:
        """Validate each candidate on its own against committed entries.

        Candidates are never compared with each other, and one failure does
        not stop the rest of the batch.
        """
        results = []
        for index, raw in enumerate(candidates):
            missing = [name for name in REQUIRED_ENTRY_FIELDS if raw.get(name) is None]
            if missing:
                results.append(
                    BulkEntryResult(
                        index=index,
                        kind=BulkResultKind.invalid,
                        error=f"Missing required fields: {', '.join(missing)}",
                    )
                )
                continue

            candidate = EntrySlot(
                class_id=raw["class_id"],
                subject_id=raw["subject_id"],
                teacher_id=raw["teacher_id"],
                period_id=raw["period_id"],
                room_id=raw.get("room_id"),
                academic_year_id=academic_year_id,
            )
            not_found = references.missing_reference(candidate)
            if not_found is not None:
                results.append(
                    BulkEntryResult(
                        index=index,
                        kind=BulkResultKind.not_found,
                        candidate=candidate,
                        error=not_found.message,
                    )
                )
                continue

            report = self.validate_entry_write(candidate)
            if not report.ok:
                results.append(
                    BulkEntryResult(
                        index=index,
                        kind=BulkResultKind.conflict,
                        candidate=candidate,
                        error=report.message,
                        conflict_with=report.first.entry,
                        conflicts=report.conflicts,
                    )
                )
                continue

            results.append(BulkEntryResult(index=index, kind=BulkResultKind.success, candidate=candidate))
        return results
