"""
Schedule validation.

Recomputes teacher/class/room usage per cell from scratch and reports every
hard-constraint breach. Used as the final check of every generation run and
for schedules that were edited by hand.
"""

from __future__ import annotations

from collections import defaultdict

from .data.models import EntityKind, GenerationRequest, Placement, Schedule
from .errors import ConstraintViolation, Violation, ViolationKind


class ScheduleValidator:
    """
    Validates schedules against one GenerationRequest.

    Usage:
        validator = ScheduleValidator(request)
        violations = validator.validate(schedule, require_complete=True)
    """

    def __init__(self, request: GenerationRequest):
        self.request = request
        self.config = request.config
        self._blocked: dict[tuple[EntityKind, str], set[tuple[str, int]]] = defaultdict(set)
        for slot in request.blocked:
            self._blocked[(slot.kind, slot.entity_id)].add((slot.day, slot.slot_index))

    def validate(self, schedule: Schedule, require_complete: bool = False) -> list[Violation]:
        violations: list[Violation] = []
        located: list[Placement] = []

        for placement in schedule.placements:
            problems = self._check_placement(placement)
            violations.extend(problems)
            if self._resolvable(placement):
                located.append(placement)

        violations.extend(self._check_conflicts(located))
        violations.extend(self._check_daily_limits(located))
        violations.extend(self._check_consecutive(located))
        violations.extend(self._check_session_counts(schedule, require_complete))
        violations.extend(self._check_double_periods(schedule, located))
        return violations

    # -------------------------------------------------------------------------
    # Per-placement checks
    # -------------------------------------------------------------------------

    def _resolvable(self, placement: Placement) -> bool:
        assignment = self.request.get_assignment(placement.assignment_id)
        return (
            assignment is not None
            and self.request.get_room(placement.room_id) is not None
            and self.request.get_teacher(assignment.teacher_id) is not None
            and self.config.has_cell(placement.day, placement.slot_index)
        )

    def _check_placement(self, p: Placement) -> list[Violation]:
        def violation(kind: ViolationKind, message: str) -> Violation:
            return Violation(kind=kind, message=message, day=p.day, slot_index=p.slot_index, placements=(p,))

        problems = []
        assignment = self.request.get_assignment(p.assignment_id)
        room = self.request.get_room(p.room_id)
        if assignment is None:
            problems.append(violation(ViolationKind.UNKNOWN_REFERENCE, f"unknown assignment '{p.assignment_id}'"))
        if room is None:
            problems.append(violation(ViolationKind.UNKNOWN_REFERENCE, f"unknown room '{p.room_id}'"))
        if not self.config.has_cell(p.day, p.slot_index):
            problems.append(violation(
                ViolationKind.OUTSIDE_GRID,
                f"({p.day}, {p.slot_index}) is not part of the slot grid",
            ))
            return problems
        if assignment is None:
            return problems

        teacher = self.request.get_teacher(assignment.teacher_id)
        if teacher is None:
            problems.append(violation(
                ViolationKind.UNKNOWN_REFERENCE,
                f"assignment {assignment.id} references unknown teacher '{assignment.teacher_id}'",
            ))
        elif teacher.matches_grid(self.config.num_days, self.config.num_slots) and not teacher.is_available(
            self.config.day_position(p.day), self.config.slot_position(p.slot_index)
        ):
            problems.append(violation(
                ViolationKind.TEACHER_UNAVAILABLE,
                f"teacher {teacher.id} is not available",
            ))

        if assignment.session is not None and p.slot_index not in self.config.sessions.get(assignment.session, ()):
            problems.append(violation(
                ViolationKind.OUTSIDE_SESSION,
                f"assignment {assignment.id} is restricted to session '{assignment.session}'",
            ))

        cell = (p.day, p.slot_index)
        entities = [
            (EntityKind.TEACHER, assignment.teacher_id),
            (EntityKind.CLASS, assignment.class_id),
            (EntityKind.ROOM, p.room_id),
        ]
        for kind, entity_id in entities:
            if cell in self._blocked.get((kind, entity_id), ()):
                problems.append(violation(
                    ViolationKind.BLOCKED_SLOT,
                    f"{kind.value} {entity_id} is blocked",
                ))

        if room is not None:
            if not room.is_usable:
                problems.append(violation(ViolationKind.ROOM_UNUSABLE, f"room {room.id} is {room.status.value}"))
            if room.category not in self.request.acceptable_categories(assignment.subject_id):
                problems.append(violation(
                    ViolationKind.ROOM_INCOMPATIBLE,
                    f"room {room.id} ({room.category.value}) is not acceptable for subject {assignment.subject_id}",
                ))
        return problems

    # -------------------------------------------------------------------------
    # Aggregate checks
    # -------------------------------------------------------------------------

    def _check_conflicts(self, placements: list[Placement]) -> list[Violation]:
        """Teacher, class and room double-bookings, one violation per (cell, entity)."""
        usage: dict[tuple[int, ViolationKind, str], list[Placement]] = defaultdict(list)
        for p in placements:
            assignment = self.request.get_assignment(p.assignment_id)
            cell = self.config.cell(p.day, p.slot_index)
            usage[(cell, ViolationKind.TEACHER_CONFLICT, assignment.teacher_id)].append(p)
            usage[(cell, ViolationKind.CLASS_CONFLICT, assignment.class_id)].append(p)
            usage[(cell, ViolationKind.ROOM_CONFLICT, p.room_id)].append(p)

        labels = {
            ViolationKind.TEACHER_CONFLICT: "teacher",
            ViolationKind.CLASS_CONFLICT: "class",
            ViolationKind.ROOM_CONFLICT: "room",
        }
        violations = []
        for (cell, kind, entity_id), group in sorted(usage.items(), key=lambda item: (item[0][0], item[0][1].value, item[0][2])):
            if len(group) < 2:
                continue
            day, slot_index = self.config.cell_to_day_slot(cell)
            ids = ", ".join(p.assignment_id for p in group)
            violations.append(Violation(
                kind=kind,
                message=f"{labels[kind]} {entity_id} is double-booked ({ids})",
                day=day,
                slot_index=slot_index,
                placements=tuple(group),
            ))
        return violations

    def _check_daily_limits(self, placements: list[Placement]) -> list[Violation]:
        per_day: dict[tuple[str, str], list[Placement]] = defaultdict(list)
        for p in placements:
            per_day[(p.assignment_id, p.day)].append(p)

        violations = []
        for (aid, day), group in sorted(per_day.items(), key=lambda item: (item[0][0], self.config.day_position(item[0][1]))):
            limit = self.request.get_assignment(aid).max_per_day
            if limit is not None and len(group) > limit:
                violations.append(Violation(
                    kind=ViolationKind.DAILY_LIMIT,
                    message=f"assignment {aid} has {len(group)} sessions on {day} (max {limit})",
                    day=day,
                    placements=tuple(group),
                ))
        return violations

    def _positions_by_day(self, placements: list[Placement]) -> dict[tuple[str, str], list[Placement]]:
        """Placements grouped by (assignment, day), each group sorted by slot position."""
        grouped: dict[tuple[str, str], list[Placement]] = defaultdict(list)
        for p in placements:
            grouped[(p.assignment_id, p.day)].append(p)
        for group in grouped.values():
            group.sort(key=lambda p: (self.config.slot_position(p.slot_index), p.room_id))
        return grouped

    def _check_consecutive(self, placements: list[Placement]) -> list[Violation]:
        """One violation per adjacent pair of slots for assignments without back-to-back sessions."""
        banned = [p for p in placements if not self.request.get_assignment(p.assignment_id).allow_consecutive]
        grouped = self._positions_by_day(banned)

        violations = []
        for (aid, day), group in sorted(grouped.items(), key=lambda item: (item[0][0], self.config.day_position(item[0][1]))):
            for first, second in zip(group, group[1:]):
                gap = self.config.slot_position(second.slot_index) - self.config.slot_position(first.slot_index)
                if gap != 1:
                    continue
                violations.append(Violation(
                    kind=ViolationKind.CONSECUTIVE,
                    message=f"assignment {aid} has back-to-back sessions on {day}",
                    day=day,
                    slot_index=second.slot_index,
                    placements=(first, second),
                ))
        return violations

    def _pair_count(self, placements: list[Placement]) -> int:
        """Double periods formed by runs of adjacent slots in one room on one day."""
        runs: dict[tuple[str, str], list[int]] = defaultdict(list)
        for p in placements:
            runs[(p.day, p.room_id)].append(self.config.slot_position(p.slot_index))

        pairs = 0
        for positions in runs.values():
            positions.sort()
            length = 1
            for before, after in zip(positions, positions[1:]):
                if after - before == 1:
                    length += 1
                else:
                    pairs += length // 2
                    length = 1
            pairs += length // 2
        return pairs

    def _check_double_periods(self, schedule: Schedule, placements: list[Placement]) -> list[Violation]:
        """Only fully placed assignments are checked; partial ones already show up as missing sessions."""
        counts = schedule.count_by_assignment()
        by_assignment: dict[str, list[Placement]] = defaultdict(list)
        for p in placements:
            by_assignment[p.assignment_id].append(p)

        violations = []
        for assignment in sorted(self.request.assignments, key=lambda a: a.id):
            if not assignment.double_sessions or counts.get(assignment.id, 0) != assignment.weekly_sessions:
                continue
            pairs = self._pair_count(by_assignment[assignment.id])
            if pairs < assignment.double_sessions:
                violations.append(Violation(
                    kind=ViolationKind.DOUBLE_PERIOD,
                    message=f"assignment {assignment.id} has {pairs} of {assignment.double_sessions} double periods",
                    placements=tuple(by_assignment[assignment.id]),
                ))
        return violations

    def _check_session_counts(self, schedule: Schedule, require_complete: bool) -> list[Violation]:
        """Over-placement is always reported; missing sessions only when require_complete."""
        counts = schedule.count_by_assignment()
        violations = []
        for assignment in sorted(self.request.assignments, key=lambda a: a.id):
            placed = counts.get(assignment.id, 0)
            if placed > assignment.weekly_sessions or (require_complete and placed < assignment.weekly_sessions):
                violations.append(Violation(
                    kind=ViolationKind.SESSION_COUNT,
                    message=f"assignment {assignment.id} has {placed} of {assignment.weekly_sessions} weekly sessions",
                ))
        return violations


def validate_schedule(
    schedule: Schedule,
    request: GenerationRequest,
    *,
    require_complete: bool = False,
) -> list[Violation]:
    """Every hard-constraint violation in the schedule, in a deterministic order."""
    return ScheduleValidator(request).validate(schedule, require_complete=require_complete)


def ensure_valid(
    schedule: Schedule,
    request: GenerationRequest,
    *,
    require_complete: bool = False,
) -> None:
    """Raise ConstraintViolation listing every violation, if there are any."""
    violations = validate_schedule(schedule, request, require_complete=require_complete)
    if violations:
        raise ConstraintViolation(violations)
