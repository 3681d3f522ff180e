"""Shared fixtures: small hand-built requests on tiny slot grids."""

from __future__ import annotations

from typing import Optional

import pytest

from timetabler.data.models import (
    BlockedSlot,
    GenerationRequest,
    Room,
    RoomCategory,
    ScheduleConfig,
    Teacher,
    TeachingAssignment,
    TimeSlot,
    minutes_to_time,
)
from timetabler.index import ConstraintIndex

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]


def build_config(num_days: int = 1, num_slots: int = 2, sessions: Optional[dict] = None) -> ScheduleConfig:
    slots = [
        TimeSlot(index=i, start=minutes_to_time(420 + 50 * i), end=minutes_to_time(465 + 50 * i))
        for i in range(num_slots)
    ]
    return ScheduleConfig(
        days=DAY_NAMES[:num_days], slots=slots, school_year="2024-2025", semester="1", sessions=sessions or {},
    )


def build_assignment(
    id: str,
    class_id: str = "C1",
    subject_id: str = "S1",
    teacher_id: str = "T1",
    weekly: int = 1,
    max_per_day: Optional[int] = None,
    **kwargs,
) -> TeachingAssignment:
    return TeachingAssignment(
        id=id,
        class_id=class_id,
        subject_id=subject_id,
        teacher_id=teacher_id,
        school_year="2024-2025",
        semester="1",
        weekly_sessions=weekly,
        max_per_day=max_per_day,
        **kwargs,
    )


def build_request(
    num_days: int = 1,
    num_slots: int = 2,
    teachers: Optional[list[Teacher]] = None,
    rooms: Optional[list[Room]] = None,
    assignments: Optional[list[TeachingAssignment]] = None,
    room_requirements: Optional[dict] = None,
    blocked: Optional[list[BlockedSlot]] = None,
    sessions: Optional[dict] = None,
    **kwargs,
) -> GenerationRequest:
    """Request with sensible defaults: one teacher, one normal room, subject S1 in normal rooms."""
    assignments = assignments if assignments is not None else [build_assignment("A1")]
    if teachers is None:
        teacher_ids = sorted({a.teacher_id for a in assignments}) or ["T1"]
        teachers = [Teacher(id=tid, name=f"Teacher {tid}") for tid in teacher_ids]
    if rooms is None:
        rooms = [Room(id="R1", code="101")]
    if room_requirements is None:
        subjects = sorted({a.subject_id for a in assignments}) or ["S1"]
        room_requirements = {s: [RoomCategory.NORMAL] for s in subjects}
    return GenerationRequest(
        config=build_config(num_days, num_slots, sessions),
        teachers=teachers,
        rooms=rooms,
        assignments=assignments,
        room_requirements=room_requirements,
        blocked=blocked or [],
        **kwargs,
    )


def build_index(request: GenerationRequest) -> ConstraintIndex:
    return ConstraintIndex(
        request.config,
        request.teachers,
        request.rooms,
        request.assignments,
        request.room_requirements,
        request.blocked,
    )


@pytest.fixture
def make_config():
    return build_config


@pytest.fixture
def make_assignment():
    return build_assignment


@pytest.fixture
def make_request():
    return build_request


@pytest.fixture
def make_index():
    return build_index


@pytest.fixture
def two_class_request() -> GenerationRequest:
    """
    Two classes sharing a math teacher on a 2 x 3 grid.

    C1: math x2 (T1), physics x1 (T2, lab); C2: math x2 (T1), history x2 (T3).
    """
    return build_request(
        num_days=2,
        num_slots=3,
        teachers=[
            Teacher(id="T1", name="Ann Lee", subject_ids=["math"]),
            Teacher(id="T2", name="Bob Tran", subject_ids=["phys"]),
            Teacher(id="T3", name="Cat Hall", subject_ids=["hist"]),
        ],
        rooms=[
            Room(id="R1", code="101"),
            Room(id="R2", code="102"),
            Room(id="L1", code="LAB1", category=RoomCategory.LAB),
        ],
        assignments=[
            build_assignment("A-C1-math", "C1", "math", "T1", weekly=2),
            build_assignment("A-C1-phys", "C1", "phys", "T2", weekly=1),
            build_assignment("A-C2-math", "C2", "math", "T1", weekly=2),
            build_assignment("A-C2-hist", "C2", "hist", "T3", weekly=2),
        ],
        room_requirements={
            "math": [RoomCategory.NORMAL],
            "phys": [RoomCategory.LAB],
            "hist": [RoomCategory.NORMAL],
        },
    )
