"""School class-timetable generation: backtracking search with a CP-SAT alternative."""

from .data.models import (
    BlockedSlot,
    EntityKind,
    GenerationRequest,
    Placement,
    Room,
    RoomCategory,
    RoomStatus,
    Schedule,
    ScheduleConfig,
    Teacher,
    TeachingAssignment,
    TimeSlot,
)
from .errors import ConfigError, ConstraintViolation, TimetablerError, Violation, ViolationKind
from .search import SearchSettings, SearchStats, StopReason
from .service import (
    Engine,
    GenerationResult,
    GenerationStatus,
    UnplacedAssignment,
    check_request,
    generate,
    generate_request,
)
from .validator import ensure_valid, validate_schedule

__all__ = [
    # Models
    "BlockedSlot",
    "EntityKind",
    "GenerationRequest",
    "Placement",
    "Room",
    "RoomCategory",
    "RoomStatus",
    "Schedule",
    "ScheduleConfig",
    "Teacher",
    "TeachingAssignment",
    "TimeSlot",
    # Errors
    "ConfigError",
    "ConstraintViolation",
    "TimetablerError",
    "Violation",
    "ViolationKind",
    # Generation
    "Engine",
    "GenerationResult",
    "GenerationStatus",
    "UnplacedAssignment",
    "SearchSettings",
    "SearchStats",
    "StopReason",
    "check_request",
    "generate",
    "generate_request",
    # Validation
    "ensure_valid",
    "validate_schedule",
]
