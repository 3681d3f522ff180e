"""
Pydantic models for timetable generation input and output.

Grid conventions:
- The slot grid is the cross product of ScheduleConfig.days (in order) and
  ScheduleConfig.slots (sorted by index).
- A cell is addressed either by (day name, slot index) or, internally, by an
  integer position: day_position * num_slots + slot_position.
- Times are 'HH:MM' strings.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# Constants and Enums
# =============================================================================

class RoomCategory(str, Enum):
    """Kind of room, matched against a subject's room requirement."""
    NORMAL = "normal"
    LAB = "lab"
    COMPUTER = "computer"


class RoomStatus(str, Enum):
    """Operational status of a room. Only AVAILABLE rooms are ever used."""
    AVAILABLE = "available"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


class EntityKind(str, Enum):
    """Entity a blocked slot applies to."""
    TEACHER = "teacher"
    CLASS = "class"
    ROOM = "room"


TimeOfDay = Annotated[str, Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$", description="Time as HH:MM")]


# =============================================================================
# Helper Functions
# =============================================================================

def time_to_minutes(time_str: str) -> int:
    """Convert HH:MM format to minutes from midnight."""
    h, m = map(int, time_str.split(":"))
    return h * 60 + m


def minutes_to_time(minutes: int) -> str:
    """Convert minutes from midnight to HH:MM format."""
    h, m = divmod(minutes, 60)
    return f"{h:02d}:{m:02d}"


# =============================================================================
# Core Entity Models
# =============================================================================

class Room(BaseModel):
    """Teaching room."""
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Unique identifier")
    code: str = Field(min_length=1, description="Unique room code (e.g., 'A101')")
    name: Optional[str] = Field(default=None, description="Display name")
    category: RoomCategory = Field(default=RoomCategory.NORMAL, description="Room category")
    status: RoomStatus = Field(default=RoomStatus.AVAILABLE, description="Operational status")

    @property
    def is_usable(self) -> bool:
        """Whether the room may receive placements."""
        return self.status == RoomStatus.AVAILABLE

    def __str__(self) -> str:
        return f"{self.code} ({self.category.value})"


class TimeSlot(BaseModel):
    """One teaching period within a day."""
    model_config = ConfigDict(extra="forbid")

    index: int = Field(ge=0, description="Position of the period within the day")
    start: TimeOfDay
    end: TimeOfDay

    @model_validator(mode="after")
    def validate_time_range(self) -> "TimeSlot":
        """Ensure start time is before end time."""
        if time_to_minutes(self.start) >= time_to_minutes(self.end):
            raise ValueError(f"slot {self.index}: start ({self.start}) must be before end ({self.end})")
        return self

    def __str__(self) -> str:
        return f"P{self.index} {self.start}-{self.end}"


class ScheduleConfig(BaseModel):
    """
    Shape of the slot grid for one school-year/semester scope.

    Slot indices must be unique and contiguous; the order of `days` is the
    order used for every grid position.
    """
    model_config = ConfigDict(extra="forbid")

    days: list[str] = Field(min_length=1, description="Working days, in order")
    slots: list[TimeSlot] = Field(min_length=1, description="Time-slot definitions")
    school_year: str = Field(min_length=1, description="School year, e.g. '2024-2025'")
    semester: str = Field(min_length=1, description="Semester, e.g. '1'")
    sessions: dict[str, list[int]] = Field(
        default_factory=dict,
        description="Named slot windows, e.g. {'main': [0, 1, 2, 3], 'extra': [4, 5]}",
    )

    _day_positions: dict[str, int] = {}
    _slot_positions: dict[int, int] = {}

    @field_validator("days")
    @classmethod
    def validate_days(cls, days: list[str]) -> list[str]:
        seen: set[str] = set()
        for day in days:
            if not day:
                raise ValueError("day names must be non-empty")
            if day in seen:
                raise ValueError(f"duplicate day '{day}'")
            seen.add(day)
        return days

    @field_validator("slots")
    @classmethod
    def validate_slots(cls, slots: list[TimeSlot]) -> list[TimeSlot]:
        """Slot indices are unique and contiguous; returned sorted by index."""
        indices = [s.index for s in slots]
        if len(set(indices)) != len(indices):
            raise ValueError(f"slot indices must be unique, got {indices}")
        ordered = sorted(slots, key=lambda s: s.index)
        first = ordered[0].index
        expected = list(range(first, first + len(ordered)))
        if [s.index for s in ordered] != expected:
            raise ValueError(f"slot indices must be contiguous, got {sorted(indices)}")
        return ordered

    @model_validator(mode="after")
    def validate_sessions(self) -> "ScheduleConfig":
        """Every session window is non-empty and names existing slot indices."""
        known = {s.index for s in self.slots}
        for name, indices in self.sessions.items():
            if not indices:
                raise ValueError(f"session '{name}' has no slots")
            unknown = sorted(set(indices) - known)
            if unknown:
                raise ValueError(f"session '{name}' references unknown slot indices {unknown}")
        return self

    def model_post_init(self, __context: Any) -> None:
        """Build position lookups after validation."""
        self._day_positions = {day: pos for pos, day in enumerate(self.days)}
        self._slot_positions = {slot.index: pos for pos, slot in enumerate(self.slots)}

    # -------------------------------------------------------------------------
    # Grid geometry
    # -------------------------------------------------------------------------

    @property
    def num_days(self) -> int:
        return len(self.days)

    @property
    def num_slots(self) -> int:
        return len(self.slots)

    @property
    def grid_size(self) -> int:
        return self.num_days * self.num_slots

    @property
    def slot_indices(self) -> list[int]:
        return [s.index for s in self.slots]

    def day_position(self, day: str) -> int:
        """Position of a day in the grid. Raises KeyError for unknown days."""
        return self._day_positions[day]

    def slot_position(self, slot_index: int) -> int:
        """Position of a slot index in the grid. Raises KeyError for unknown slots."""
        return self._slot_positions[slot_index]

    def has_cell(self, day: str, slot_index: int) -> bool:
        return day in self._day_positions and slot_index in self._slot_positions

    def cell(self, day: str, slot_index: int) -> int:
        """Integer grid position of (day, slot index)."""
        return self.day_position(day) * self.num_slots + self.slot_position(slot_index)

    def cell_to_day_slot(self, cell: int) -> tuple[str, int]:
        """Inverse of cell()."""
        day_pos, slot_pos = divmod(cell, self.num_slots)
        return self.days[day_pos], self.slots[slot_pos].index

    def get_slot(self, slot_index: int) -> Optional[TimeSlot]:
        pos = self._slot_positions.get(slot_index)
        return self.slots[pos] if pos is not None else None

    def session_positions(self, name: Optional[str]) -> list[int]:
        """Slot positions of a session window; every position when name is None."""
        if name is None:
            return list(range(self.num_slots))
        return sorted(self._slot_positions[i] for i in set(self.sessions[name]))


class Teacher(BaseModel):
    """
    Teacher with qualified subjects and a weekly availability matrix.

    `availability[d][s]` is True when the teacher can teach on the d-th day at
    the s-th slot of the grid. An empty matrix means available everywhere.
    """
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Unique identifier")
    name: Optional[str] = Field(default=None, description="Full name")
    subject_ids: list[str] = Field(default_factory=list, description="Subjects this teacher is qualified for")
    availability: list[list[bool]] = Field(default_factory=list, description="bool[days][slots]")

    def matches_grid(self, num_days: int, num_slots: int) -> bool:
        """Whether the availability matrix has the grid's shape (empty matches any grid)."""
        if not self.availability:
            return True
        return len(self.availability) == num_days and all(
            len(row) == num_slots for row in self.availability
        )

    def is_available(self, day_pos: int, slot_pos: int) -> bool:
        if not self.availability:
            return True
        return self.availability[day_pos][slot_pos]

    def is_qualified(self, subject_id: str) -> bool:
        """Teachers without a subject list are treated as unrestricted."""
        return not self.subject_ids or subject_id in self.subject_ids

    def __str__(self) -> str:
        return f"{self.name} ({self.id})" if self.name else self.id


class TeachingAssignment(BaseModel):
    """
    A teaching obligation: one teacher teaches one subject to one class.

    `double_sessions` of the weekly sessions are taught as double periods
    (two adjacent slots of one day, same room); the rest are single sessions.
    With `allow_consecutive=False` no two sessions may sit back to back.
    `session` restricts every session to a named window of ScheduleConfig.
    """
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Unique identifier")
    class_id: str = Field(min_length=1, description="Class identifier")
    subject_id: str = Field(min_length=1, description="Subject identifier")
    teacher_id: str = Field(min_length=1, description="Teacher identifier")
    school_year: str = Field(min_length=1)
    semester: str = Field(min_length=1)
    weekly_sessions: int = Field(ge=1, le=60, description="Required sessions per week")
    max_per_day: Optional[int] = Field(default=None, ge=1, description="Max sessions on a single day")
    double_sessions: int = Field(default=0, ge=0, description="Double periods among the weekly sessions")
    allow_consecutive: bool = Field(default=True, description="Whether sessions may be back to back")
    session: Optional[str] = Field(default=None, description="Named slot window (ScheduleConfig.sessions)")

    @model_validator(mode="after")
    def validate_double_sessions(self) -> "TeachingAssignment":
        if not self.double_sessions:
            return self
        if 2 * self.double_sessions > self.weekly_sessions:
            raise ValueError(
                f"{self.double_sessions} double period(s) need more than {self.weekly_sessions} weekly sessions"
            )
        if not self.allow_consecutive:
            raise ValueError("double periods require allow_consecutive")
        if self.max_per_day is not None and self.max_per_day < 2:
            raise ValueError("double periods require max_per_day of at least 2")
        return self

    @property
    def single_sessions(self) -> int:
        return self.weekly_sessions - 2 * self.double_sessions

    @property
    def obligation_key(self) -> tuple[str, str, str, str]:
        """(class, subject, school year, semester) must be unique across assignments."""
        return (self.class_id, self.subject_id, self.school_year, self.semester)

    def __str__(self) -> str:
        return f"{self.id}: {self.subject_id} for {self.class_id} by {self.teacher_id}"


class BlockedSlot(BaseModel):
    """
    A cell that is already taken for one entity before generation starts.

    Used for locked rest periods of a class and for teachers/rooms occupied by
    classes whose timetables are not being regenerated.
    """
    model_config = ConfigDict(extra="forbid")

    kind: EntityKind
    entity_id: str = Field(min_length=1)
    day: str = Field(min_length=1)
    slot_index: int = Field(ge=0)
    reason: Optional[str] = None


RoomRequirements = dict[str, list[RoomCategory]]


# =============================================================================
# Generation Request
# =============================================================================

class GenerationRequest(BaseModel):
    """
    Complete input snapshot for one generation run.

    Shape checks that need the whole snapshot (grid mismatch, unknown
    references) live in timetabler.service.check_request so that they can be
    reported together as a ConfigError.
    """
    model_config = ConfigDict(extra="forbid")

    config: ScheduleConfig
    teachers: list[Teacher] = Field(default_factory=list)
    rooms: list[Room] = Field(default_factory=list)
    assignments: list[TeachingAssignment] = Field(default_factory=list)
    room_requirements: RoomRequirements = Field(default_factory=dict)
    blocked: list[BlockedSlot] = Field(default_factory=list)
    classes: Optional[list[str]] = Field(default=None, description="Known class ids (optional)")
    subjects: Optional[list[str]] = Field(default=None, description="Known subject ids (optional)")

    _teacher_map: dict[str, Teacher] = {}
    _room_map: dict[str, Room] = {}
    _assignment_map: dict[str, TeachingAssignment] = {}

    def model_post_init(self, __context: Any) -> None:
        """Build lookup maps after model initialization."""
        self._teacher_map = {t.id: t for t in self.teachers}
        self._room_map = {r.id: r for r in self.rooms}
        self._assignment_map = {a.id: a for a in self.assignments}

    def get_teacher(self, teacher_id: str) -> Optional[Teacher]:
        return self._teacher_map.get(teacher_id)

    def get_room(self, room_id: str) -> Optional[Room]:
        return self._room_map.get(room_id)

    def get_assignment(self, assignment_id: str) -> Optional[TeachingAssignment]:
        return self._assignment_map.get(assignment_id)

    def acceptable_categories(self, subject_id: str) -> frozenset[RoomCategory]:
        return frozenset(self.room_requirements.get(subject_id, ()))

    @property
    def total_sessions(self) -> int:
        return sum(a.weekly_sessions for a in self.assignments)

    def summary(self) -> dict[str, Any]:
        return {
            "school_year": self.config.school_year,
            "semester": self.config.semester,
            "days": self.config.num_days,
            "slots_per_day": self.config.num_slots,
            "teachers": len(self.teachers),
            "rooms": len(self.rooms),
            "usable_rooms": sum(1 for r in self.rooms if r.is_usable),
            "classes": len({a.class_id for a in self.assignments}),
            "assignments": len(self.assignments),
            "total_sessions": self.total_sessions,
            "blocked_slots": len(self.blocked),
        }


# =============================================================================
# Output
# =============================================================================

class Placement(BaseModel):
    """One session of an assignment bound to a room at a (day, slot) cell."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    day: str
    slot_index: int
    assignment_id: str
    room_id: str

    @property
    def cell_key(self) -> tuple[str, int]:
        return (self.day, self.slot_index)


class Schedule(BaseModel):
    """
    Generated (or externally edited) timetable: a set of placements.

    Placements are stored as a flat tuple; cells() gives the
    (day, slot) -> placements mapping.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    placements: tuple[Placement, ...] = ()

    @classmethod
    def from_placements(cls, placements: list[Placement], config: ScheduleConfig) -> "Schedule":
        """Build a schedule with placements in grid order (day, slot, assignment, room)."""
        def sort_key(p: Placement) -> tuple:
            if config.has_cell(p.day, p.slot_index):
                return (0, config.cell(p.day, p.slot_index), p.assignment_id, p.room_id)
            return (1, 0, p.day, p.slot_index, p.assignment_id, p.room_id)

        return cls(placements=tuple(sorted(placements, key=sort_key)))

    def cells(self) -> dict[tuple[str, int], list[Placement]]:
        grouped: dict[tuple[str, int], list[Placement]] = {}
        for placement in self.placements:
            grouped.setdefault(placement.cell_key, []).append(placement)
        return grouped

    def for_assignment(self, assignment_id: str) -> list[Placement]:
        return [p for p in self.placements if p.assignment_id == assignment_id]

    def count_by_assignment(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for placement in self.placements:
            counts[placement.assignment_id] = counts.get(placement.assignment_id, 0) + 1
        return counts

    @property
    def session_count(self) -> int:
        return len(self.placements)
