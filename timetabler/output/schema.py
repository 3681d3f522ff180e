"""
Output schema for generated timetables.

This module defines the JSON-serializable output format for generation
results, including pre-computed per-class, per-teacher and per-room views.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from ..data.models import GenerationRequest, Placement, Schedule
from ..service import GenerationResult, GenerationStatus


# =============================================================================
# Placement Output
# =============================================================================

class PlacementOutput(BaseModel):
    """A single placed session in the output."""
    day: str
    slot_index: int = Field(alias="slotIndex")
    assignment_id: str = Field(alias="assignmentId")
    room_id: str = Field(alias="roomId")

    # Enriched data
    start_time: Optional[str] = Field(default=None, alias="startTime")  # 'HH:MM'
    end_time: Optional[str] = Field(default=None, alias="endTime")  # 'HH:MM'
    class_id: Optional[str] = Field(default=None, alias="classId")
    subject_id: Optional[str] = Field(default=None, alias="subjectId")
    teacher_id: Optional[str] = Field(default=None, alias="teacherId")
    teacher_name: Optional[str] = Field(default=None, alias="teacherName")
    room_code: Optional[str] = Field(default=None, alias="roomCode")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_placement(cls, placement: Placement, request: GenerationRequest) -> PlacementOutput:
        """Create from a Placement, filling in names and times from the request."""
        assignment = request.get_assignment(placement.assignment_id)
        teacher = request.get_teacher(assignment.teacher_id) if assignment else None
        room = request.get_room(placement.room_id)
        slot = request.config.get_slot(placement.slot_index)
        return cls(
            day=placement.day,
            slotIndex=placement.slot_index,
            assignmentId=placement.assignment_id,
            roomId=placement.room_id,
            startTime=slot.start if slot else None,
            endTime=slot.end if slot else None,
            classId=assignment.class_id if assignment else None,
            subjectId=assignment.subject_id if assignment else None,
            teacherId=assignment.teacher_id if assignment else None,
            teacherName=teacher.name if teacher else None,
            roomCode=room.code if room else None,
        )

    def to_placement(self) -> Placement:
        return Placement(
            day=self.day,
            slot_index=self.slot_index,
            assignment_id=self.assignment_id,
            room_id=self.room_id,
        )


class UnplacedOutput(BaseModel):
    """An assignment that did not receive all of its weekly sessions."""
    assignment_id: str = Field(alias="assignmentId")
    class_id: str = Field(alias="classId")
    subject_id: str = Field(alias="subjectId")
    teacher_id: str = Field(alias="teacherId")
    placed: int
    required: int
    reason: str
    message: str

    model_config = {"populate_by_name": True}


class StatsOutput(BaseModel):
    """Search statistics for the run."""
    engine: str
    steps: int = 0
    placements: int = 0
    backtracks: int = 0
    dead_ends: int = Field(default=0, alias="deadEnds")
    pruned: int = 0
    elapsed_seconds: float = Field(default=0.0, alias="elapsedSeconds")
    stop_reason: Optional[str] = Field(default=None, alias="stopReason")
    best_fully_placed: int = Field(default=0, alias="bestFullyPlaced")

    model_config = {"populate_by_name": True}


# =============================================================================
# Views
# =============================================================================

class EntityTimetable(BaseModel):
    """Timetable for an entity (class, teacher or room)."""
    id: str
    name: str
    placements: list[PlacementOutput]
    by_day: dict[str, list[PlacementOutput]] = Field(
        default_factory=dict,
        alias="byDay"
    )

    model_config = {"populate_by_name": True}


class TimetableViews(BaseModel):
    """Pre-computed views of the timetable for convenience."""
    by_class: dict[str, EntityTimetable] = Field(
        default_factory=dict,
        alias="byClass"
    )
    by_teacher: dict[str, EntityTimetable] = Field(
        default_factory=dict,
        alias="byTeacher"
    )
    by_room: dict[str, EntityTimetable] = Field(
        default_factory=dict,
        alias="byRoom"
    )

    model_config = {"populate_by_name": True}


# =============================================================================
# Complete Output
# =============================================================================

class GenerationOutput(BaseModel):
    """Complete output for a generation run."""
    status: GenerationStatus
    school_year: Optional[str] = Field(default=None, alias="schoolYear")
    semester: Optional[str] = None
    days: list[str] = Field(default_factory=list)
    slot_indices: list[int] = Field(default_factory=list, alias="slotIndices")
    placements: list[PlacementOutput] = Field(default_factory=list)
    unplaced: list[UnplacedOutput] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
    stats: Optional[StatsOutput] = None
    views: TimetableViews = Field(default_factory=TimetableViews)

    model_config = {"populate_by_name": True}

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(by_alias=True, indent=indent)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return self.model_dump(by_alias=True, mode="json")

    def to_schedule(self) -> Schedule:
        """The placements of this output as a Schedule, in stored order."""
        return Schedule(placements=tuple(p.to_placement() for p in self.placements))


# =============================================================================
# Conversion Functions
# =============================================================================

def create_generation_output(result: GenerationResult, request: GenerationRequest) -> GenerationOutput:
    """
    Create a GenerationOutput from a GenerationResult.

    Args:
        result: Result returned by generate()/generate_request()
        request: The request the result was generated for

    Returns:
        GenerationOutput with all views populated
    """
    placements = []
    if result.schedule is not None:
        placements = [PlacementOutput.from_placement(p, request) for p in result.schedule.placements]

    unplaced = [
        UnplacedOutput(
            assignmentId=u.assignment_id,
            classId=u.class_id,
            subjectId=u.subject_id,
            teacherId=u.teacher_id,
            placed=u.placed,
            required=u.required,
            reason=u.reason.value,
            message=u.message,
        )
        for u in result.unplaced
    ]

    stats = None
    if result.stats is not None:
        stats = StatsOutput(
            engine=result.stats.engine,
            steps=result.stats.steps,
            placements=result.stats.placements,
            backtracks=result.stats.backtracks,
            deadEnds=result.stats.dead_ends,
            pruned=result.stats.pruned,
            elapsedSeconds=round(result.stats.elapsed_seconds, 4),
            stopReason=result.stats.stop_reason.value if result.stats.stop_reason else None,
            bestFullyPlaced=result.stats.best_fully_placed,
        )

    return GenerationOutput(
        status=result.status,
        schoolYear=request.config.school_year,
        semester=request.config.semester,
        days=list(request.config.days),
        slotIndices=request.config.slot_indices,
        placements=placements,
        unplaced=unplaced,
        issues=list(result.issues),
        stats=stats,
        views=_create_views(placements, request),
    )


def _create_views(placements: list[PlacementOutput], request: GenerationRequest) -> TimetableViews:
    """Group placements by class, teacher and room."""
    by_class: dict[str, list[PlacementOutput]] = {}
    by_teacher: dict[str, list[PlacementOutput]] = {}
    by_room: dict[str, list[PlacementOutput]] = {}

    for p in placements:
        by_class.setdefault(p.class_id or "?", []).append(p)
        by_teacher.setdefault(p.teacher_id or "?", []).append(p)
        by_room.setdefault(p.room_id, []).append(p)

    def build(groups: dict[str, list[PlacementOutput]], names: dict[str, str]) -> dict[str, EntityTimetable]:
        views = {}
        for entity_id in sorted(groups):
            entity_placements = groups[entity_id]
            views[entity_id] = EntityTimetable(
                id=entity_id,
                name=names.get(entity_id) or entity_id,
                placements=entity_placements,
                byDay=_group_by_day(entity_placements, request.config.days),
            )
        return views

    teacher_names = {t.id: t.name for t in request.teachers if t.name}
    room_names = {r.id: r.name or r.code for r in request.rooms}

    return TimetableViews(
        byClass=build(by_class, {}),
        byTeacher=build(by_teacher, teacher_names),
        byRoom=build(by_room, room_names),
    )


def _group_by_day(placements: list[PlacementOutput], days: list[str]) -> dict[str, list[PlacementOutput]]:
    """Group placements by day, in grid day order."""
    by_day: dict[str, list[PlacementOutput]] = {day: [] for day in days}
    for p in placements:
        by_day.setdefault(p.day, []).append(p)
    return {day: items for day, items in by_day.items() if items}


def result_to_json(result: GenerationResult, request: GenerationRequest, indent: int = 2) -> str:
    """Convert a GenerationResult directly to a JSON string."""
    return create_generation_output(result, request).to_json(indent=indent)
