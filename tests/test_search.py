"""Tests for the backtracking search engine."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

import pytest

from timetabler.data.models import Room, RoomCategory, RoomStatus, Schedule, Teacher
from timetabler.index import DOUBLE
from timetabler.search import (
    AssignmentState,
    Deadline,
    SearchEngine,
    SearchSettings,
    SearchStats,
    StopReason,
    UnplacedReason,
    daily_capacity,
    find_unschedulable,
    pair_capacity,
)
from timetabler.validator import validate_schedule


def run(index, **kwargs):
    deadline = kwargs.pop("deadline", None)
    cancel = kwargs.pop("cancel", None)
    return SearchEngine(index, SearchSettings(**kwargs), deadline=deadline, cancel=cancel).run()


class TestSmallScenarios:
    """Hand-checked instances on one-day grids."""

    def test_two_sessions_two_slots(self, make_request, make_index, make_assignment):
        request = make_request(assignments=[make_assignment("A1", weekly=2)])
        outcome = run(make_index(request))

        assert outcome.complete
        assert outcome.stats.stop_reason == StopReason.SOLVED
        assert [(p.day, p.slot_index, p.room_id) for p in outcome.placements] == [
            ("Monday", 0, "R1"),
            ("Monday", 1, "R1"),
        ]

    def test_unavailable_teacher_leaves_partial(self, make_request, make_index, make_assignment):
        request = make_request(
            teachers=[Teacher(id="T1", availability=[[True, False]])],
            assignments=[make_assignment("A1", weekly=2)],
        )
        outcome = run(make_index(request))

        assert not outcome.complete
        assert outcome.doomed == frozenset({"A1"})
        assert outcome.states["A1"] == AssignmentState.FAILED
        assert len(outcome.placements) == 1
        assert outcome.stats.stop_reason == StopReason.EXHAUSTED

    def test_class_clash_keeps_best_partial(self, make_request, make_index, make_assignment):
        request = make_request(
            num_slots=1,
            rooms=[Room(id="R1", code="101"), Room(id="R2", code="102")],
            assignments=[
                make_assignment("A1", class_id="C1", teacher_id="T1"),
                make_assignment("A2", class_id="C1", teacher_id="T2"),
            ],
        )
        outcome = run(make_index(request))

        assert outcome.stats.stop_reason == StopReason.EXHAUSTED
        assert [(p.assignment_id, p.room_id) for p in outcome.placements] == [("A1", "R1")]
        assert outcome.states == {"A1": AssignmentState.PLACED, "A2": AssignmentState.UNPLACED}
        assert outcome.stats.pruned == 2
        assert outcome.stats.backtracks == 1

    def test_only_lab_under_maintenance(self, make_request, make_index):
        request = make_request(
            rooms=[Room(id="L1", code="LAB1", category=RoomCategory.LAB, status=RoomStatus.MAINTENANCE)],
            room_requirements={"S1": [RoomCategory.LAB]},
        )
        outcome = run(make_index(request))

        assert outcome.placements == []
        assert outcome.doomed == frozenset({"A1"})

    def test_no_assignments(self, make_request, make_index):
        outcome = run(make_index(make_request(assignments=[], room_requirements={})))
        assert outcome.complete
        assert outcome.placements == []
        assert outcome.stats.stop_reason == StopReason.SOLVED


class TestTwoClasses:
    """Search over the shared-teacher fixture."""

    def test_solves_and_validates(self, two_class_request, make_index):
        outcome = run(make_index(two_class_request))

        assert outcome.complete
        assert len(outcome.placements) == two_class_request.total_sessions
        schedule = Schedule.from_placements(outcome.placements, two_class_request.config)
        assert validate_schedule(schedule, two_class_request, require_complete=True) == []

    def test_solves_without_forward_checking(self, two_class_request, make_index):
        outcome = run(make_index(two_class_request), forward_checking=False)
        assert outcome.complete
        assert outcome.stats.pruned == 0

    def test_deterministic(self, two_class_request, make_index):
        first = run(make_index(two_class_request))
        second = run(make_index(two_class_request))
        assert first.placements == second.placements
        assert first.stats.steps == second.stats.steps

    def test_physics_goes_to_lab(self, two_class_request, make_index):
        outcome = run(make_index(two_class_request))
        rooms = {p.room_id for p in outcome.placements if p.assignment_id == "A-C1-phys"}
        assert rooms == {"L1"}


class TestBudgets:
    """Step limit, deadline and cancellation."""

    def test_step_limit(self, two_class_request, make_index):
        outcome = run(make_index(two_class_request), max_steps=1)

        assert outcome.stats.stop_reason == StopReason.STEP_LIMIT
        assert outcome.stats.steps == 1
        assert len(outcome.placements) <= 1

    def test_more_steps_never_worse(self, two_class_request, make_index):
        placed = [
            run(make_index(two_class_request), max_steps=steps).stats.best_fully_placed
            for steps in (1, 2, 3, 5, 8, 10_000)
        ]
        assert placed == sorted(placed)
        assert placed[-1] == len(two_class_request.assignments)

    def test_zero_deadline(self, two_class_request, make_index):
        outcome = run(make_index(two_class_request), deadline=0)

        assert outcome.stats.stop_reason == StopReason.DEADLINE
        assert outcome.stats.steps == 0
        assert outcome.placements == []

    def test_cancel_before_start(self, two_class_request, make_index):
        cancel = threading.Event()
        cancel.set()
        outcome = run(make_index(two_class_request), cancel=cancel)

        assert outcome.stats.stop_reason == StopReason.CANCELLED
        assert outcome.placements == []

    def test_doomed_not_filled_after_cancel(self, make_request, make_index, make_assignment):
        request = make_request(
            teachers=[Teacher(id="T1", availability=[[True, False]])],
            assignments=[make_assignment("A1", weekly=2)],
        )
        cancel = threading.Event()
        cancel.set()
        outcome = run(make_index(request), cancel=cancel)
        assert outcome.placements == []


class TestDeadline:
    """Tests for Deadline normalisation."""

    def test_none(self):
        deadline = Deadline(None)
        assert not deadline.is_set
        assert not deadline.expired()
        assert deadline.remaining() is None

    def test_seconds_and_timedelta(self):
        assert 0 < Deadline(60).remaining() <= 60
        assert 0 < Deadline(timedelta(minutes=1)).remaining() <= 60

    def test_absolute_datetime(self):
        assert Deadline(datetime.now() - timedelta(seconds=1)).expired()
        assert not Deadline(datetime.now() + timedelta(hours=1)).expired()

    def test_copy(self):
        source = Deadline(30)
        assert Deadline(source).remaining() <= 30

    @pytest.mark.parametrize("value", [True, "10", [1]])
    def test_bad_types(self, value):
        with pytest.raises(TypeError):
            Deadline(value)


class TestStaticFeasibility:
    """Tests for find_unschedulable and daily_capacity."""

    def test_daily_capacity(self, make_request, make_index, make_assignment):
        request = make_request(num_days=2, num_slots=3, assignments=[make_assignment("A1", max_per_day=1)])
        index = make_index(request)
        assert daily_capacity(index, "A1", index.full_mask) == 2

    def test_daily_limit_makes_assignment_unschedulable(self, make_request, make_index, make_assignment):
        request = make_request(num_slots=3, assignments=[make_assignment("A1", weekly=2, max_per_day=1)])
        assert find_unschedulable(make_index(request)) == {"A1": UnplacedReason.INSUFFICIENT_SLOTS}

    def test_no_room(self, make_request, make_index):
        request = make_request(rooms=[Room(id="R1", code="101", status=RoomStatus.INACTIVE)])
        assert find_unschedulable(make_index(request)) == {"A1": UnplacedReason.NO_ROOM}

    def test_feasible_request(self, two_class_request, make_index):
        assert find_unschedulable(make_index(two_class_request)) == {}


class TestSessionRules:
    """Double periods, session windows and the back-to-back ban."""

    def test_double_periods_fill_the_day(self, make_request, make_index, make_assignment):
        request = make_request(num_slots=4, assignments=[make_assignment("A1", weekly=4, double_sessions=2)])
        outcome = run(make_index(request))

        assert outcome.complete
        assert [p.slot_index for p in outcome.placements] == [0, 1, 2, 3]
        schedule = Schedule.from_placements(outcome.placements, request.config)
        assert validate_schedule(schedule, request, require_complete=True) == []

    def test_double_leaves_room_for_other_class_session(self, make_request, make_index, make_assignment):
        request = make_request(
            num_slots=3,
            assignments=[
                make_assignment("A1", class_id="C1", teacher_id="T1", weekly=2, double_sessions=1),
                make_assignment("A2", class_id="C1", subject_id="S2", teacher_id="T2"),
            ],
        )
        outcome = run(make_index(request))

        assert outcome.complete
        schedule = Schedule.from_placements(outcome.placements, request.config)
        assert validate_schedule(schedule, request, require_complete=True) == []

    def test_no_back_to_back_spreads_sessions(self, make_request, make_index, make_assignment):
        request = make_request(num_slots=3, assignments=[make_assignment("A1", weekly=2, allow_consecutive=False)])
        outcome = run(make_index(request))

        assert outcome.complete
        assert [p.slot_index for p in outcome.placements] == [0, 2]

    def test_session_window_respected(self, make_request, make_index, make_assignment):
        request = make_request(
            num_days=2,
            sessions={"main": [0], "extra": [1]},
            assignments=[make_assignment("A1", weekly=2, session="extra")],
        )
        outcome = run(make_index(request))

        assert outcome.complete
        assert [(p.day, p.slot_index) for p in outcome.placements] == [("Monday", 1), ("Tuesday", 1)]

    def test_pair_capacity(self, make_request, make_index, make_assignment):
        request = make_request(num_days=2, num_slots=3, assignments=[make_assignment("A1", weekly=2, double_sessions=1)])
        index = make_index(request)
        starts = index.start_mask("A1", DOUBLE)
        assert pair_capacity(index, "A1", starts) == 2

    def test_no_adjacent_free_cells_for_double(self, make_request, make_index, make_assignment):
        request = make_request(
            num_slots=3,
            teachers=[Teacher(id="T1", availability=[[True, False, True]])],
            assignments=[make_assignment("A1", weekly=2, double_sessions=1)],
        )
        assert find_unschedulable(make_index(request)) == {"A1": UnplacedReason.INSUFFICIENT_SLOTS}

    def test_back_to_back_ban_halves_capacity(self, make_request, make_index, make_assignment):
        request = make_request(num_slots=3, assignments=[make_assignment("A1", weekly=1, allow_consecutive=False)])
        index = make_index(request)
        assert daily_capacity(index, "A1", index.full_mask) == 2


class TestSearchStats:
    def test_to_dict(self):
        stats = SearchStats(steps=3, stop_reason=StopReason.SOLVED)
        data = stats.to_dict()
        assert data["steps"] == 3
        assert data["stop_reason"] == "solved"
        assert data["engine"] == "backtracking"
