"""Tests for Pydantic models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from timetabler.data.models import (
    BlockedSlot,
    EntityKind,
    Placement,
    Room,
    RoomCategory,
    RoomStatus,
    Schedule,
    ScheduleConfig,
    Teacher,
    TeachingAssignment,
    TimeSlot,
    minutes_to_time,
    time_to_minutes,
)


class TestTimeHelpers:
    """Tests for time conversion helpers."""

    def test_minutes_to_time(self):
        assert minutes_to_time(0) == "00:00"
        assert minutes_to_time(420) == "07:00"
        assert minutes_to_time(750) == "12:30"

    def test_time_to_minutes(self):
        assert time_to_minutes("00:00") == 0
        assert time_to_minutes("07:45") == 465
        assert time_to_minutes("23:59") == 1439


class TestTimeSlot:
    """Tests for TimeSlot model."""

    def test_valid_slot(self):
        slot = TimeSlot(index=0, start="07:00", end="07:45")
        assert str(slot) == "P0 07:00-07:45"

    def test_start_must_precede_end(self):
        with pytest.raises(ValidationError, match="must be before"):
            TimeSlot(index=0, start="08:00", end="07:45")

    def test_bad_time_format(self):
        with pytest.raises(ValidationError):
            TimeSlot(index=0, start="7am", end="07:45")


class TestScheduleConfig:
    """Tests for ScheduleConfig grid geometry."""

    def test_slots_sorted_and_positions(self, make_config):
        config = ScheduleConfig(
            days=["Monday", "Tuesday"],
            slots=[
                TimeSlot(index=2, start="08:40", end="09:25"),
                TimeSlot(index=1, start="07:50", end="08:35"),
            ],
            school_year="2024-2025",
            semester="1",
        )
        assert config.slot_indices == [1, 2]
        assert config.grid_size == 4
        assert config.cell("Tuesday", 1) == 2
        assert config.cell_to_day_slot(3) == ("Tuesday", 2)

    def test_cell_round_trip_covers_grid(self, make_config):
        config = make_config(num_days=3, num_slots=4)
        cells = [config.cell(day, s) for day in config.days for s in config.slot_indices]
        assert cells == list(range(12))

    def test_non_contiguous_slots_rejected(self):
        with pytest.raises(ValidationError, match="contiguous"):
            ScheduleConfig(
                days=["Monday"],
                slots=[TimeSlot(index=0, start="07:00", end="07:45"), TimeSlot(index=2, start="08:40", end="09:25")],
                school_year="2024-2025",
                semester="1",
            )

    def test_duplicate_slots_rejected(self):
        with pytest.raises(ValidationError, match="unique"):
            ScheduleConfig(
                days=["Monday"],
                slots=[TimeSlot(index=0, start="07:00", end="07:45"), TimeSlot(index=0, start="08:40", end="09:25")],
                school_year="2024-2025",
                semester="1",
            )

    def test_duplicate_days_rejected(self):
        with pytest.raises(ValidationError, match="duplicate day"):
            ScheduleConfig(
                days=["Monday", "Monday"],
                slots=[TimeSlot(index=0, start="07:00", end="07:45")],
                school_year="2024-2025",
                semester="1",
            )

    def test_session_windows(self, make_config):
        config = make_config(1, 3, sessions={"main": [0, 1], "extra": [2]})
        assert config.session_positions("extra") == [2]
        assert config.session_positions(None) == [0, 1, 2]

    @pytest.mark.parametrize("sessions, message", [
        ({"main": []}, "has no slots"),
        ({"main": [0, 7]}, "unknown slot indices"),
    ])
    def test_bad_session_windows(self, make_config, sessions, message):
        with pytest.raises(ValidationError, match=message):
            make_config(1, 2, sessions=sessions)

    def test_unknown_cell(self, make_config):
        config = make_config(1, 2)
        assert not config.has_cell("Sunday", 0)
        assert not config.has_cell("Monday", 5)
        with pytest.raises(KeyError):
            config.cell("Sunday", 0)


class TestTeacher:
    """Tests for Teacher model."""

    def test_empty_availability_matches_any_grid(self):
        teacher = Teacher(id="T1")
        assert teacher.matches_grid(5, 6)
        assert teacher.is_available(4, 5)

    def test_availability_shape(self):
        teacher = Teacher(id="T1", availability=[[True, False]])
        assert teacher.matches_grid(1, 2)
        assert not teacher.matches_grid(1, 3)
        assert not teacher.is_available(0, 1)

    def test_qualification(self):
        assert Teacher(id="T1").is_qualified("math")
        assert Teacher(id="T1", subject_ids=["math"]).is_qualified("math")
        assert not Teacher(id="T1", subject_ids=["math"]).is_qualified("hist")


class TestRoom:
    """Tests for Room model."""

    def test_defaults(self):
        room = Room(id="R1", code="101")
        assert room.category == RoomCategory.NORMAL
        assert room.is_usable

    @pytest.mark.parametrize("status", [RoomStatus.MAINTENANCE, RoomStatus.INACTIVE])
    def test_not_usable(self, status):
        assert not Room(id="R1", code="101", status=status).is_usable

    def test_extra_fields_forbidden(self):
        with pytest.raises(ValidationError):
            Room(id="R1", code="101", capacity=30)


class TestTeachingAssignment:
    """Tests for TeachingAssignment model."""

    def test_weekly_sessions_must_be_positive(self, make_assignment):
        with pytest.raises(ValidationError):
            make_assignment("A1", weekly=0)

    def test_obligation_key(self, make_assignment):
        a = make_assignment("A1", class_id="C1", subject_id="math")
        assert a.obligation_key == ("C1", "math", "2024-2025", "1")

    def test_session_rule_defaults(self, make_assignment):
        a = make_assignment("A1", weekly=3)
        assert a.double_sessions == 0
        assert a.allow_consecutive
        assert a.session is None
        assert a.single_sessions == 3

    def test_single_sessions_exclude_doubles(self, make_assignment):
        assert make_assignment("A1", weekly=5, double_sessions=2).single_sessions == 1

    @pytest.mark.parametrize("kwargs, message", [
        ({"weekly": 3, "double_sessions": 2}, "need more than 3 weekly sessions"),
        ({"weekly": 2, "double_sessions": 1, "allow_consecutive": False}, "require allow_consecutive"),
        ({"weekly": 2, "double_sessions": 1, "max_per_day": 1}, "max_per_day of at least 2"),
    ])
    def test_bad_double_periods(self, make_assignment, kwargs, message):
        with pytest.raises(ValidationError, match=message):
            make_assignment("A1", **kwargs)

    def test_blocked_slot_kind(self):
        slot = BlockedSlot(kind="class", entity_id="C1", day="Monday", slot_index=0)
        assert slot.kind == EntityKind.CLASS


class TestSchedule:
    """Tests for Schedule output model."""

    def test_from_placements_sorts_by_grid(self, make_config):
        config = make_config(2, 2)
        placements = [
            Placement(day="Tuesday", slot_index=0, assignment_id="A1", room_id="R1"),
            Placement(day="Monday", slot_index=1, assignment_id="A2", room_id="R1"),
            Placement(day="Monday", slot_index=1, assignment_id="A1", room_id="R2"),
        ]
        schedule = Schedule.from_placements(placements, config)
        assert [(p.day, p.slot_index, p.assignment_id) for p in schedule.placements] == [
            ("Monday", 1, "A1"),
            ("Monday", 1, "A2"),
            ("Tuesday", 0, "A1"),
        ]

    def test_cells_and_counts(self):
        schedule = Schedule(placements=(
            Placement(day="Monday", slot_index=0, assignment_id="A1", room_id="R1"),
            Placement(day="Monday", slot_index=0, assignment_id="A2", room_id="R2"),
            Placement(day="Monday", slot_index=1, assignment_id="A1", room_id="R1"),
        ))
        assert len(schedule.cells()[("Monday", 0)]) == 2
        assert schedule.count_by_assignment() == {"A1": 2, "A2": 1}
        assert len(schedule.for_assignment("A1")) == 2
        assert schedule.session_count == 3

    def test_schedule_is_frozen(self):
        schedule = Schedule()
        with pytest.raises(ValidationError):
            schedule.placements = ()


class TestGenerationRequest:
    """Tests for GenerationRequest lookups."""

    def test_lookups(self, two_class_request):
        request = two_class_request
        assert request.get_teacher("T1").name == "Ann Lee"
        assert request.get_room("L1").category == RoomCategory.LAB
        assert request.get_assignment("missing") is None
        assert request.acceptable_categories("phys") == frozenset({RoomCategory.LAB})
        assert request.total_sessions == 7

    def test_summary(self, two_class_request):
        summary = two_class_request.summary()
        assert summary["classes"] == 2
        assert summary["assignments"] == 4
        assert summary["days"] == 2
        assert summary["slots_per_day"] == 3
