"""
Error taxonomy for timetable generation.

- ConfigError: the caller's input has the wrong shape (grid mismatch, unknown
  references, missing room requirements). Never retried; the input must be fixed.
- ConstraintViolation: a schedule breaks a hard constraint. Raised by the
  constraint index when its bookkeeping would go out of sync, and by
  ensure_valid() for schedules edited outside the generator.

An unsatisfiable problem is not an error: it is reported as a partial result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .data.models import Placement


class ViolationKind(str, Enum):
    """Category of a hard-constraint breach."""
    TEACHER_CONFLICT = "teacher_conflict"
    CLASS_CONFLICT = "class_conflict"
    ROOM_CONFLICT = "room_conflict"
    TEACHER_UNAVAILABLE = "teacher_unavailable"
    BLOCKED_SLOT = "blocked_slot"
    ROOM_INCOMPATIBLE = "room_incompatible"
    ROOM_UNUSABLE = "room_unusable"
    DAILY_LIMIT = "daily_limit"
    OUTSIDE_SESSION = "outside_session"
    CONSECUTIVE = "consecutive"
    DOUBLE_PERIOD = "double_period"
    SESSION_COUNT = "session_count"
    UNKNOWN_REFERENCE = "unknown_reference"
    OUTSIDE_GRID = "outside_grid"


@dataclass(frozen=True)
class Violation:
    """A single hard-constraint breach, located at a (day, slot) cell when it has one."""
    kind: ViolationKind
    message: str
    day: Optional[str] = None
    slot_index: Optional[int] = None
    placements: tuple[Placement, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "day": self.day,
            "slotIndex": self.slot_index,
            "placements": [
                {"assignmentId": p.assignment_id, "roomId": p.room_id}
                for p in self.placements
            ],
        }

    def __str__(self) -> str:
        if self.day is not None and self.slot_index is not None:
            return f"[{self.kind.value}] {self.day} slot {self.slot_index}: {self.message}"
        return f"[{self.kind.value}] {self.message}"


class TimetablerError(Exception):
    """Base class for all timetabler errors."""


class ConfigError(TimetablerError, ValueError):
    """Raised when generation input is malformed or inconsistent."""

    def __init__(self, issues: list[str] | str):
        if isinstance(issues, str):
            issues = [issues]
        self.issues = list(issues)
        super().__init__(
            "Invalid generation input:\n" + "\n".join(f"  - {issue}" for issue in self.issues)
        )


class ConstraintViolation(TimetablerError):
    """Raised when a schedule (or the index backing it) breaks a hard constraint."""

    def __init__(self, violations: list[Violation] | Violation):
        if isinstance(violations, Violation):
            violations = [violations]
        self.violations = list(violations)
        super().__init__(
            f"{len(self.violations)} constraint violation(s):\n"
            + "\n".join(f"  - {v}" for v in self.violations)
        )
