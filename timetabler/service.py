"""
Generation service: the single entry point for producing a timetable.

    result = generate(config, teachers, rooms, assignments, room_requirements, deadline=30)
    if result.is_complete:
        save(result.schedule)
    elif result.status == GenerationStatus.PARTIAL:
        report(result.unplaced)
    else:
        show(result.issues)

Input-shape problems are collected before any search and returned as a
CONFIG_ERROR result. An unsatisfiable problem is not an error: the best
partial schedule is returned with per-assignment diagnostics.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Union

from pydantic import ValidationError

from .cpsat import CpSatEngine
from .data.loader import validation_issues
from .data.models import (
    BlockedSlot,
    EntityKind,
    GenerationRequest,
    Room,
    RoomRequirements,
    Schedule,
    ScheduleConfig,
    Teacher,
    TeachingAssignment,
)
from .errors import ConfigError, ConstraintViolation
from .index import ConstraintIndex
from .search import (
    Deadline,
    DeadlineLike,
    SearchEngine,
    SearchOutcome,
    SearchSettings,
    SearchStats,
    StopReason,
    UnplacedReason,
    find_unschedulable,
)
from .validator import validate_schedule

logger = logging.getLogger(__name__)


class Engine(str, Enum):
    BACKTRACKING = "backtracking"
    CP_SAT = "cp-sat"


class GenerationStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    CONFIG_ERROR = "config_error"


@dataclass
class UnplacedAssignment:
    """An assignment that received fewer sessions than required, and why."""
    assignment_id: str
    class_id: str
    subject_id: str
    teacher_id: str
    placed: int
    required: int
    reason: UnplacedReason
    message: str


@dataclass
class GenerationResult:
    status: GenerationStatus
    schedule: Optional[Schedule] = None
    unplaced: list[UnplacedAssignment] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    stats: Optional[SearchStats] = None

    @property
    def is_complete(self) -> bool:
        return self.status == GenerationStatus.COMPLETE

    @property
    def unplaced_ids(self) -> list[str]:
        return [u.assignment_id for u in self.unplaced]

    @property
    def reason(self) -> Optional[str]:
        """One-line summary for CONFIG_ERROR results."""
        if self.status != GenerationStatus.CONFIG_ERROR:
            return None
        return f"{len(self.issues)} input problem(s): {self.issues[0]}" if self.issues else "invalid input"


# =============================================================================
# Input Checks
# =============================================================================

def check_request(request: GenerationRequest) -> list[str]:
    """
    Collect every input-shape problem of a request.

    Returns an empty list when the request can be searched.
    """
    issues: list[str] = []
    config = request.config

    def check_duplicates(values: Iterable[str], name: str) -> None:
        seen: set[str] = set()
        for value in values:
            if value in seen:
                issues.append(f"Duplicate {name}: {value}")
            seen.add(value)

    check_duplicates((t.id for t in request.teachers), "teacher ID")
    check_duplicates((r.id for r in request.rooms), "room ID")
    check_duplicates((r.code for r in request.rooms), "room code")
    check_duplicates((a.id for a in request.assignments), "assignment ID")

    for teacher in request.teachers:
        if not teacher.matches_grid(config.num_days, config.num_slots):
            rows = len(teacher.availability)
            issues.append(
                f"Teacher {teacher.id} availability must be {config.num_days}x{config.num_slots} "
                f"(days x slots), got {rows} row(s)"
            )

    known_classes = set(request.classes) if request.classes is not None else None
    known_subjects = set(request.subjects) if request.subjects is not None else None
    missing_requirements: set[str] = set()
    obligations: dict[tuple[str, str, str, str], str] = {}

    for a in request.assignments:
        teacher = request.get_teacher(a.teacher_id)
        if teacher is None:
            issues.append(f"Assignment {a.id} references unknown teacher: {a.teacher_id}")
        elif not teacher.is_qualified(a.subject_id):
            issues.append(f"Teacher {a.teacher_id} is not qualified for subject {a.subject_id} (assignment {a.id})")

        if known_classes is not None and a.class_id not in known_classes:
            issues.append(f"Assignment {a.id} references unknown class: {a.class_id}")
        if known_subjects is not None and a.subject_id not in known_subjects:
            issues.append(f"Assignment {a.id} references unknown subject: {a.subject_id}")
        if a.session is not None and a.session not in config.sessions:
            issues.append(f"Assignment {a.id} references unknown session: {a.session}")

        if a.subject_id not in request.room_requirements and a.subject_id not in missing_requirements:
            missing_requirements.add(a.subject_id)
            issues.append(f"No room requirement for subject: {a.subject_id}")

        if (a.school_year, a.semester) != (config.school_year, config.semester):
            issues.append(
                f"Assignment {a.id} is for {a.school_year}/{a.semester}, "
                f"schedule is for {config.school_year}/{config.semester}"
            )

        previous = obligations.get(a.obligation_key)
        if previous is not None:
            issues.append(
                f"Assignments {previous} and {a.id} both cover class {a.class_id}, subject {a.subject_id}"
            )
        else:
            obligations[a.obligation_key] = a.id

    issues.extend(_check_blocked(request, known_classes))
    return issues


def _check_blocked(request: GenerationRequest, known_classes: Optional[set[str]]) -> list[str]:
    issues = []
    for slot in request.blocked:
        if not request.config.has_cell(slot.day, slot.slot_index):
            issues.append(f"Blocked slot for {slot.kind.value} {slot.entity_id} is outside the grid: "
                          f"({slot.day}, {slot.slot_index})")
        if slot.kind == EntityKind.TEACHER and request.get_teacher(slot.entity_id) is None:
            issues.append(f"Blocked slot references unknown teacher: {slot.entity_id}")
        elif slot.kind == EntityKind.ROOM and request.get_room(slot.entity_id) is None:
            issues.append(f"Blocked slot references unknown room: {slot.entity_id}")
        elif slot.kind == EntityKind.CLASS and known_classes is not None and slot.entity_id not in known_classes:
            issues.append(f"Blocked slot references unknown class: {slot.entity_id}")
    return issues


def _config_error(issues: list[str]) -> GenerationResult:
    logger.warning("Rejected generation input with %d issue(s)", len(issues))
    return GenerationResult(status=GenerationStatus.CONFIG_ERROR, issues=issues)


def ensure_request(request: GenerationRequest) -> None:
    """Raise ConfigError listing every input problem, if there are any."""
    issues = check_request(request)
    if issues:
        raise ConfigError(issues)


# =============================================================================
# Generation
# =============================================================================

def generate(
    config: ScheduleConfig,
    teachers: Iterable[Teacher],
    rooms: Iterable[Room],
    assignments: Iterable[TeachingAssignment],
    room_requirements: RoomRequirements,
    deadline: DeadlineLike = None,
    *,
    blocked: Iterable[BlockedSlot] = (),
    classes: Optional[Iterable[str]] = None,
    subjects: Optional[Iterable[str]] = None,
    settings: Optional[SearchSettings] = None,
    engine: Union[Engine, str] = Engine.BACKTRACKING,
    cancel: Optional[threading.Event] = None,
) -> GenerationResult:
    """
    Generate a timetable for one school-year/semester scope.

    Args:
        config: Slot grid and scope
        teachers: Teachers with availability matrices
        rooms: Rooms (only status 'available' rooms receive placements)
        assignments: Teaching obligations to place
        room_requirements: subject id -> acceptable room categories
        deadline: Seconds, timedelta or absolute datetime; None for no deadline
        blocked: Cells already taken for a teacher, class or room
        classes: Known class ids, enables the unknown-class check
        subjects: Known subject ids, enables the unknown-subject check
        settings: Search tunables (step limit, ordering weights, CP-SAT workers)
        engine: 'backtracking' (default) or 'cp-sat'
        cancel: Event that stops the run cooperatively when set

    Returns:
        GenerationResult tagged COMPLETE, PARTIAL or CONFIG_ERROR
    """
    try:
        request = GenerationRequest(
            config=config,
            teachers=list(teachers),
            rooms=list(rooms),
            assignments=list(assignments),
            room_requirements=room_requirements,
            blocked=list(blocked),
            classes=list(classes) if classes is not None else None,
            subjects=list(subjects) if subjects is not None else None,
        )
    except ValidationError as e:
        issues = validation_issues(e)
        logger.warning("Rejected generation input: %s", "; ".join(issues))
        return GenerationResult(status=GenerationStatus.CONFIG_ERROR, issues=issues)

    return generate_request(request, deadline, settings=settings, engine=engine, cancel=cancel)


def generate_request(
    request: GenerationRequest,
    deadline: DeadlineLike = None,
    *,
    settings: Optional[SearchSettings] = None,
    engine: Union[Engine, str] = Engine.BACKTRACKING,
    cancel: Optional[threading.Event] = None,
) -> GenerationResult:
    """Same as generate(), for an already assembled GenerationRequest."""
    try:
        engine = Engine(engine)
    except ValueError:
        expected = " or ".join(e.value for e in Engine)
        return _config_error([f"Unknown engine: {engine} (expected {expected})"])
    try:
        deadline = Deadline(deadline)
    except TypeError as e:
        return _config_error([f"Invalid deadline: {e}"])

    issues = check_request(request)
    if issues:
        return _config_error(issues)

    index = ConstraintIndex(
        request.config,
        request.teachers,
        request.rooms,
        request.assignments,
        request.room_requirements,
        request.blocked,
    )
    unschedulable = find_unschedulable(index)

    logger.info(
        "Generating %s/%s timetable with %s engine: %d assignments, %d sessions",
        request.config.school_year, request.config.semester, engine.value,
        len(request.assignments), request.total_sessions,
    )

    if engine == Engine.CP_SAT:
        runner = CpSatEngine(index, settings, deadline=deadline, cancel=cancel)
    else:
        runner = SearchEngine(index, settings, deadline=deadline, cancel=cancel)
    outcome = runner.run()

    schedule = Schedule.from_placements(outcome.placements, request.config)
    violations = validate_schedule(schedule, request)
    if violations:
        raise ConstraintViolation(violations)

    unplaced = diagnose(request, schedule, outcome, unschedulable)
    status = GenerationStatus.PARTIAL if unplaced else GenerationStatus.COMPLETE

    logger.info(
        "Generation %s: %d sessions placed, %d assignment(s) unplaced",
        status.value, schedule.session_count, len(unplaced),
    )
    return GenerationResult(status=status, schedule=schedule, unplaced=unplaced, stats=outcome.stats)


def diagnose(
    request: GenerationRequest,
    schedule: Schedule,
    outcome: SearchOutcome,
    unschedulable: dict[str, UnplacedReason],
) -> list[UnplacedAssignment]:
    """Explain every assignment that did not receive all of its sessions."""
    counts = schedule.count_by_assignment()
    stopped_early = outcome.stats.stop_reason in (
        StopReason.STEP_LIMIT, StopReason.DEADLINE, StopReason.CANCELLED,
    )

    unplaced = []
    for a in sorted(request.assignments, key=lambda a: a.id):
        placed = counts.get(a.id, 0)
        if placed >= a.weekly_sessions:
            continue

        if a.id in unschedulable:
            reason = unschedulable[a.id]
        elif stopped_early:
            reason = UnplacedReason.SEARCH_LIMIT
        else:
            reason = UnplacedReason.CONFLICTS

        unplaced.append(UnplacedAssignment(
            assignment_id=a.id,
            class_id=a.class_id,
            subject_id=a.subject_id,
            teacher_id=a.teacher_id,
            placed=placed,
            required=a.weekly_sessions,
            reason=reason,
            message=_explain(request, a, reason, outcome.stats),
        ))
    return unplaced


def _explain(
    request: GenerationRequest,
    assignment: TeachingAssignment,
    reason: UnplacedReason,
    stats: SearchStats,
) -> str:
    teacher = request.get_teacher(assignment.teacher_id)
    prefix = (
        f"Teacher {teacher.name or teacher.id} could not be scheduled for "
        f"Subject {assignment.subject_id} (class {assignment.class_id})"
    )
    if reason == UnplacedReason.NO_ROOM:
        categories = ", ".join(sorted(c.value for c in request.acceptable_categories(assignment.subject_id)))
        return f"{prefix}: no available room of category {categories or 'none'}"
    if reason == UnplacedReason.INSUFFICIENT_SLOTS:
        return f"{prefix}: insufficient free slots"
    if reason == UnplacedReason.SEARCH_LIMIT:
        return f"{prefix}: search stopped early ({stats.stop_reason.value})"
    return f"{prefix}: all free slots are taken by other assignments"
