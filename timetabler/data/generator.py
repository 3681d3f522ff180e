"""
Sample data generator for the timetable generator.

This module generates realistic, solvable school inputs for tests and
demos: a Monday-Friday grid, one homeroom per class, shared lab and
computer rooms, and teachers who each cover one subject for a pair of
classes.

Usage:
    from timetabler.data.generator import generate_sample_request, generate_small_request

    # Generate with custom config
    request = generate_sample_request(GeneratorConfig(num_classes=6))

    # Quick test data
    small = generate_small_request(seed=42)
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Optional

from .models import (
    GenerationRequest,
    Room,
    RoomCategory,
    ScheduleConfig,
    Teacher,
    TeachingAssignment,
    TimeSlot,
    minutes_to_time,
)


# =============================================================================
# Name Data
# =============================================================================

FIRST_NAMES = [
    "James", "Sarah", "Robert", "Emily", "David", "Laura", "Thomas", "Grace",
    "Daniel", "Hannah", "Samuel", "Lucy", "Henry", "Chloe", "Marcus", "Zoe",
]

LAST_NAMES = [
    "Smith", "Nguyen", "Brown", "Garcia", "Wilson", "Tran", "Taylor", "Moore",
    "Clark", "Le", "Walker", "Hall", "Young", "Pham", "King", "Scott",
]


# =============================================================================
# Subject Definitions
# =============================================================================

SUBJECTS = [
    {"id": "math", "name": "Mathematics", "sessions": 4, "rooms": [RoomCategory.NORMAL]},
    {"id": "lit", "name": "Literature", "sessions": 4, "rooms": [RoomCategory.NORMAL]},
    {"id": "eng", "name": "English", "sessions": 3, "rooms": [RoomCategory.NORMAL]},
    {"id": "hist", "name": "History", "sessions": 2, "rooms": [RoomCategory.NORMAL]},
    {"id": "phys", "name": "Physics", "sessions": 2, "rooms": [RoomCategory.LAB]},
    {"id": "chem", "name": "Chemistry", "sessions": 2, "rooms": [RoomCategory.LAB]},
    {"id": "it", "name": "Computing", "sessions": 2, "rooms": [RoomCategory.COMPUTER]},
]


# =============================================================================
# Generator Configuration
# =============================================================================

@dataclass
class GeneratorConfig:
    """Configuration for data generation.

    The defaults give a solvable problem: each class needs 19 of 30 cells and
    no teacher covers more than classes_per_teacher classes of one subject.
    """
    num_classes: int = 4
    classes_per_teacher: int = 2
    num_labs: int = 2
    num_computer_rooms: int = 1

    # Grid
    days: list[str] = field(default_factory=lambda: ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"])
    slots_per_day: int = 6
    day_start_minutes: int = 420  # 07:00
    slot_duration: int = 45
    break_duration: int = 5

    school_year: str = "2024-2025"
    semester: str = "1"

    # Teacher settings
    max_unavailable_cells: int = 3
    max_per_day: Optional[int] = 2

    # Randomization
    seed: Optional[int] = None


# =============================================================================
# Generator Functions
# =============================================================================

def generate_sample_request(config: GeneratorConfig | None = None) -> GenerationRequest:
    """
    Generate a sample school generation request.

    Args:
        config: Generator configuration (uses defaults if None)

    Returns:
        GenerationRequest with generated data
    """
    if config is None:
        config = GeneratorConfig()
    rng = random.Random(config.seed)

    schedule_config = _generate_schedule_config(config)
    class_ids = _generate_class_ids(config)
    rooms = _generate_rooms(config)
    teachers, assignments = _generate_teachers_and_assignments(config, class_ids, rng)

    return GenerationRequest(
        config=schedule_config,
        teachers=teachers,
        rooms=rooms,
        assignments=assignments,
        room_requirements={s["id"]: list(s["rooms"]) for s in SUBJECTS},
        classes=class_ids,
        subjects=[s["id"] for s in SUBJECTS],
    )


def generate_small_request(seed: int | None = None) -> GenerationRequest:
    """
    Generate a small school for quick testing.

    - 4 classes, 14 teachers, 7 rooms
    - 76 sessions on a 5 x 6 grid

    Args:
        seed: Random seed for reproducibility
    """
    return generate_sample_request(GeneratorConfig(num_classes=4, seed=seed))


def _generate_schedule_config(config: GeneratorConfig) -> ScheduleConfig:
    slots = []
    start = config.day_start_minutes
    for index in range(config.slots_per_day):
        end = start + config.slot_duration
        slots.append(TimeSlot(index=index, start=minutes_to_time(start), end=minutes_to_time(end)))
        start = end + config.break_duration
    return ScheduleConfig(
        days=list(config.days),
        slots=slots,
        school_year=config.school_year,
        semester=config.semester,
    )


def _generate_class_ids(config: GeneratorConfig) -> list[str]:
    """Two parallel classes per grade: 10A, 10B, 11A, ..."""
    class_ids = []
    for i in range(config.num_classes):
        grade = 10 + i // 2
        class_ids.append(f"{grade}{'AB'[i % 2]}")
    return class_ids


def _generate_rooms(config: GeneratorConfig) -> list[Room]:
    rooms = []
    for i in range(config.num_classes):
        rooms.append(Room(id=f"R{101 + i}", code=f"A{101 + i}", name=f"Classroom A{101 + i}"))
    for i in range(config.num_labs):
        rooms.append(Room(id=f"LAB{i + 1}", code=f"B{201 + i}", name=f"Science Lab {i + 1}",
                          category=RoomCategory.LAB))
    for i in range(config.num_computer_rooms):
        rooms.append(Room(id=f"PC{i + 1}", code=f"C{301 + i}", name=f"Computer Room {i + 1}",
                          category=RoomCategory.COMPUTER))
    return rooms


def _generate_teachers_and_assignments(
    config: GeneratorConfig,
    class_ids: list[str],
    rng: random.Random,
) -> tuple[list[Teacher], list[TeachingAssignment]]:
    teachers: list[Teacher] = []
    assignments: list[TeachingAssignment] = []
    num_cells = len(config.days) * config.slots_per_day

    for subject in SUBJECTS:
        groups = [
            class_ids[i:i + config.classes_per_teacher]
            for i in range(0, len(class_ids), config.classes_per_teacher)
        ]
        for group_no, group in enumerate(groups, start=1):
            teacher_id = f"T-{subject['id']}-{group_no}"
            teachers.append(Teacher(
                id=teacher_id,
                name=f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}",
                subject_ids=[subject["id"]],
                availability=_generate_availability(config, num_cells, rng),
            ))
            for class_id in group:
                assignments.append(TeachingAssignment(
                    id=f"A-{class_id}-{subject['id']}",
                    class_id=class_id,
                    subject_id=subject["id"],
                    teacher_id=teacher_id,
                    school_year=config.school_year,
                    semester=config.semester,
                    weekly_sessions=subject["sessions"],
                    max_per_day=config.max_per_day,
                ))
    return teachers, assignments


def _generate_availability(config: GeneratorConfig, num_cells: int, rng: random.Random) -> list[list[bool]]:
    """Fully available except for up to max_unavailable_cells random cells."""
    blocked = set(rng.sample(range(num_cells), rng.randint(0, config.max_unavailable_cells)))
    return [
        [day_pos * config.slots_per_day + slot_pos not in blocked for slot_pos in range(config.slots_per_day)]
        for day_pos in range(len(config.days))
    ]
