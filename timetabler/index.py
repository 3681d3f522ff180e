"""
Constraint index: incremental bookkeeping for one generation run.

Every teacher, class and room gets an integer bitset over the slot grid
(bit `cell` is set when the entity is busy in that cell), so freedom checks
are a shift and a mask. The index also keeps remaining-session counters per
assignment and per-(assignment, day) counters for daily limits.

Sessions are placed in units: a single session covers one cell, a double
period covers a cell and the next slot of the same day, in one room.

place_cell()/unplace_cell() are the only mutators. place_cell() validates
everything first and raises ConstraintViolation without touching any state
if the placement is not legal.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional

from .data.models import (
    BlockedSlot,
    EntityKind,
    Placement,
    Room,
    RoomCategory,
    RoomRequirements,
    ScheduleConfig,
    Teacher,
    TeachingAssignment,
)
from .errors import ConstraintViolation, Violation, ViolationKind

logger = logging.getLogger(__name__)

SINGLE = 1
DOUBLE = 2


# =============================================================================
# Bitset Helpers
# =============================================================================

def iter_cells(mask: int) -> Iterator[int]:
    """Yield the set bit positions of mask in ascending order."""
    while mask:
        low = mask & -mask
        yield low.bit_length() - 1
        mask ^= low


def popcount(mask: int) -> int:
    return mask.bit_count()


def unit_bits(cell: int, length: int) -> int:
    """Bits covered by a unit of `length` slots starting at cell."""
    return ((1 << length) - 1) << cell


# =============================================================================
# Constraint Index
# =============================================================================

class ConstraintIndex:
    """
    Queryable, mutable view of which cells are taken during a search.

    Usage:
        index = ConstraintIndex(config, teachers, rooms, assignments, requirements)
        if index.is_candidate("a1", cell, "r1"):
            index.place_cell("a1", cell, "r1")
        ...
        index.unplace_cell("a1", cell, "r1")
    """

    def __init__(
        self,
        config: ScheduleConfig,
        teachers: Iterable[Teacher],
        rooms: Iterable[Room],
        assignments: Iterable[TeachingAssignment],
        room_requirements: RoomRequirements,
        blocked: Iterable[BlockedSlot] = (),
    ):
        self.config = config
        self.num_days = config.num_days
        self.num_slots = config.num_slots
        self.grid_size = config.grid_size
        self.full_mask = (1 << self.grid_size) - 1
        self._day_masks = [
            ((1 << self.num_slots) - 1) << (day_pos * self.num_slots)
            for day_pos in range(self.num_days)
        ]
        self._slot_columns = [
            sum(1 << (day_pos * self.num_slots + slot_pos) for day_pos in range(self.num_days))
            for slot_pos in range(self.num_slots)
        ]
        self._first_slots = self._slot_columns[0]
        self._last_slots = self._slot_columns[-1]

        self._teachers: dict[str, Teacher] = {t.id: t for t in teachers}
        self._rooms: dict[str, Room] = {r.id: r for r in rooms}
        self._assignments: dict[str, TeachingAssignment] = {
            a.id: a for a in sorted(assignments, key=lambda a: a.id)
        }
        self.assignment_ids: list[str] = list(self._assignments)

        self._categories: dict[str, frozenset[RoomCategory]] = {
            subject_id: frozenset(categories)
            for subject_id, categories in room_requirements.items()
        }

        # Static data
        self._available: dict[str, int] = {
            t.id: self._availability_mask(t) for t in self._teachers.values()
        }
        self._window: dict[str, int] = {
            aid: self._window_mask(a) for aid, a in self._assignments.items()
        }
        self._rooms_for: dict[str, tuple[Room, ...]] = {
            aid: self._usable_rooms(a) for aid, a in self._assignments.items()
        }
        self._category_demand: dict[RoomCategory, int] = {c: 0 for c in RoomCategory}
        for a in self._assignments.values():
            for category in self._categories.get(a.subject_id, ()):
                self._category_demand[category] += a.weekly_sessions

        # Baseline occupancy (blocked slots), restored by reset()
        self._base_teacher_busy: dict[str, int] = {tid: 0 for tid in self._teachers}
        self._base_class_busy: dict[str, int] = {a.class_id: 0 for a in self._assignments.values()}
        self._base_room_busy: dict[str, int] = {rid: 0 for rid in self._rooms}
        for slot in blocked:
            self._apply_blocked(slot)

        self.reset()

    def _availability_mask(self, teacher: Teacher) -> int:
        if not teacher.availability:
            return self.full_mask
        mask = 0
        for day_pos, row in enumerate(teacher.availability):
            for slot_pos, available in enumerate(row):
                if available:
                    mask |= 1 << (day_pos * self.num_slots + slot_pos)
        return mask & self.full_mask

    def _window_mask(self, assignment: TeachingAssignment) -> int:
        """Cells inside the assignment's session window (unknown sessions allow nothing)."""
        if assignment.session is not None and assignment.session not in self.config.sessions:
            return 0
        mask = 0
        for slot_pos in self.config.session_positions(assignment.session):
            mask |= self._slot_columns[slot_pos]
        return mask

    def _usable_rooms(self, assignment: TeachingAssignment) -> tuple[Room, ...]:
        accepted = self._categories.get(assignment.subject_id, frozenset())
        rooms = [r for r in self._rooms.values() if r.is_usable and r.category in accepted]
        return tuple(sorted(rooms, key=lambda r: (r.code, r.id)))

    def _apply_blocked(self, slot: BlockedSlot) -> None:
        bit = 1 << self.config.cell(slot.day, slot.slot_index)
        target = {
            EntityKind.TEACHER: self._base_teacher_busy,
            EntityKind.CLASS: self._base_class_busy,
            EntityKind.ROOM: self._base_room_busy,
        }[slot.kind]
        target[slot.entity_id] = target.get(slot.entity_id, 0) | bit

    def reset(self) -> None:
        """Drop every placement and forbidden cell, back to the blocked-slot baseline."""
        self._teacher_busy = dict(self._base_teacher_busy)
        self._class_busy = dict(self._base_class_busy)
        self._room_busy = dict(self._base_room_busy)
        self._remaining = {aid: a.weekly_sessions for aid, a in self._assignments.items()}
        self._doubles_left = {aid: a.double_sessions for aid, a in self._assignments.items()}
        self._day_counts = {aid: [0] * self.num_days for aid in self._assignments}
        self._placed: dict[str, list[tuple[int, str, int]]] = {aid: [] for aid in self._assignments}
        self._placed_mask = {aid: 0 for aid in self._assignments}
        self._forbidden = {aid: 0 for aid in self._assignments}
        self._forbidden_starts = {aid: 0 for aid in self._assignments}
        self._teacher_remaining: dict[str, int] = {}
        for a in self._assignments.values():
            self._teacher_remaining[a.teacher_id] = (
                self._teacher_remaining.get(a.teacher_id, 0) + a.weekly_sessions
            )
        self._fully_placed = 0
        self._sessions_placed = 0

    # -------------------------------------------------------------------------
    # Grid helpers
    # -------------------------------------------------------------------------

    def cell_of(self, day: str, slot_index: int) -> int:
        return self.config.cell(day, slot_index)

    def day_slot_of(self, cell: int) -> tuple[str, int]:
        return self.config.cell_to_day_slot(cell)

    def day_of_cell(self, cell: int) -> int:
        return cell // self.num_slots

    def neighbours_mask(self, mask: int) -> int:
        """Cells directly before or after a cell of mask on the same day."""
        after = (mask << 1) & ~self._first_slots
        before = (mask >> 1) & ~self._last_slots
        return (after | before) & self.full_mask

    def _run_starts(self, mask: int, length: int) -> int:
        """Cells of mask that start `length` consecutive cells of mask within one day."""
        if length == SINGLE:
            return mask
        return mask & (mask >> 1) & ~self._last_slots

    # -------------------------------------------------------------------------
    # Freedom checks
    # -------------------------------------------------------------------------

    def is_teacher_free(self, teacher_id: str, day: str, slot_index: int) -> bool:
        return not (self._teacher_busy.get(teacher_id, 0) >> self.cell_of(day, slot_index)) & 1

    def is_class_free(self, class_id: str, day: str, slot_index: int) -> bool:
        return not (self._class_busy.get(class_id, 0) >> self.cell_of(day, slot_index)) & 1

    def is_room_free(self, room_id: str, day: str, slot_index: int) -> bool:
        return not (self._room_busy.get(room_id, 0) >> self.cell_of(day, slot_index)) & 1

    def is_teacher_available(self, teacher_id: str, day: str, slot_index: int) -> bool:
        """Availability-matrix check only, ignoring current placements."""
        mask = self._available.get(teacher_id, self.full_mask)
        return bool((mask >> self.cell_of(day, slot_index)) & 1)

    def room_busy_mask(self, room_id: str) -> int:
        return self._room_busy.get(room_id, 0)

    def room_free_starts(self, room_id: str, length: int = SINGLE) -> int:
        """Cells where the room is free for a unit of `length` slots."""
        return self._run_starts(~self._room_busy.get(room_id, 0) & self.full_mask, length)

    def teacher_open_mask(self, teacher_id: str) -> int:
        """Cells where the teacher is both available and not yet busy."""
        return self._available.get(teacher_id, self.full_mask) & ~self._teacher_busy.get(teacher_id, 0)

    def available_mask(self, teacher_id: str) -> int:
        return self._available.get(teacher_id, self.full_mask)

    def window_mask(self, assignment_id: str) -> int:
        return self._window[assignment_id]

    def _free_cells(self, assignment_id: str, length: int) -> int:
        """Cells free for the assignment's teacher and class, ignoring nogoods and rooms."""
        a = self._assignments[assignment_id]
        mask = (
            self._available.get(a.teacher_id, self.full_mask)
            & self._window[assignment_id]
            & ~self._teacher_busy.get(a.teacher_id, 0)
            & ~self._class_busy.get(a.class_id, 0)
        )
        if not a.allow_consecutive:
            mask &= ~self.neighbours_mask(self._placed_mask[assignment_id])
        if a.max_per_day is not None:
            for day_pos, count in enumerate(self._day_counts[assignment_id]):
                if count + length > a.max_per_day:
                    mask &= ~self._day_masks[day_pos]
        return mask & self.full_mask

    def open_cells_mask(self, assignment_id: str) -> int:
        """
        Cells where the assignment's teacher and class are free, the teacher is
        available, the cell is inside the session window, the daily limit is
        not reached, no back-to-back rule is broken and the cell is not
        forbidden. Room freedom is not considered.
        """
        return self._free_cells(assignment_id, SINGLE) & ~self._forbidden[assignment_id]

    def start_mask(self, assignment_id: str, length: int = SINGLE) -> int:
        """Cells where a unit of `length` slots can start, rooms not considered."""
        if length == SINGLE:
            return self.open_cells_mask(assignment_id)
        starts = self._run_starts(self._free_cells(assignment_id, length), length)
        return starts & ~self._forbidden_starts[assignment_id]

    def rooms_full_mask(self, assignment_id: str, length: int = SINGLE) -> int:
        """Cells where no usable room of the assignment is free for a unit of `length`."""
        mask = self.full_mask
        for room in self._rooms_for[assignment_id]:
            mask &= ~self.room_free_starts(room.id, length)
        return mask

    def next_length(self, assignment_id: str) -> int:
        """Length of the next unit to place: double periods go first."""
        return DOUBLE if self._doubles_left[assignment_id] > 0 else SINGLE

    def units_remaining(self, assignment_id: str, length: Optional[int] = None) -> int:
        """Units of `length` still to place (the next unit's length when omitted)."""
        if length is None:
            length = self.next_length(assignment_id)
        doubles = self._doubles_left[assignment_id]
        if length == DOUBLE:
            return doubles
        return self._remaining[assignment_id] - 2 * doubles

    def candidate_counts(self, assignment_id: str, length: Optional[int] = None) -> tuple[int, int]:
        """
        (number of free (cell, room) combinations, number of cells with at
        least one free room) for the assignment's next unit.
        """
        if length is None:
            length = self.next_length(assignment_id)
        starts = self.start_mask(assignment_id, length)
        rooms = self._rooms_for[assignment_id]
        if not starts or not rooms:
            return (0, 0)
        combos = 0
        for room in rooms:
            combos += popcount(starts & self.room_free_starts(room.id, length))
        cells = popcount(starts & ~self.rooms_full_mask(assignment_id, length))
        return (combos, cells)

    def is_candidate(self, assignment_id: str, cell: int, room_id: str, length: int = SINGLE) -> bool:
        """Fast legality check for a placement (includes forbidden cells)."""
        if self.units_remaining(assignment_id, length) <= 0:
            return False
        if not (self.start_mask(assignment_id, length) >> cell) & 1:
            return False
        return bool((self.room_free_starts(room_id, length) >> cell) & 1)

    # -------------------------------------------------------------------------
    # Assignment and room data
    # -------------------------------------------------------------------------

    def assignment(self, assignment_id: str) -> TeachingAssignment:
        return self._assignments[assignment_id]

    def assignments(self) -> list[TeachingAssignment]:
        return list(self._assignments.values())

    def rooms_for(self, assignment_id: str) -> tuple[Room, ...]:
        """Available rooms whose category suits the assignment's subject, by code."""
        return self._rooms_for[assignment_id]

    def category_demand(self, category: RoomCategory) -> int:
        """Total weekly sessions of subjects that accept rooms of this category."""
        return self._category_demand.get(category, 0)

    def remaining(self, assignment_id: str) -> int:
        return self._remaining[assignment_id]

    def placed_count(self, assignment_id: str) -> int:
        """Sessions of the assignment placed so far."""
        return self._assignments[assignment_id].weekly_sessions - self._remaining[assignment_id]

    def sessions_on_day(self, assignment_id: str, day_pos: int) -> int:
        return self._day_counts[assignment_id][day_pos]

    def teacher_pending(self, teacher_id: str) -> int:
        """Sessions of this teacher that still have to be placed."""
        return self._teacher_remaining.get(teacher_id, 0)

    def pending_teachers(self) -> list[str]:
        return sorted(tid for tid, n in self._teacher_remaining.items() if n > 0)

    @property
    def fully_placed_count(self) -> int:
        return self._fully_placed

    @property
    def sessions_placed(self) -> int:
        return self._sessions_placed

    @property
    def progress_key(self) -> tuple[int, int]:
        """Ordering key for comparing partial schedules: fully placed, then sessions."""
        return (self._fully_placed, self._sessions_placed)

    def is_complete(self) -> bool:
        return self._fully_placed == len(self._assignments)

    # -------------------------------------------------------------------------
    # Forbidden cells (search nogoods)
    # -------------------------------------------------------------------------

    def _nogoods(self, length: int) -> dict[str, int]:
        return self._forbidden_starts if length == DOUBLE else self._forbidden

    def forbid_cell(self, assignment_id: str, cell: int, length: int = SINGLE) -> bool:
        """Exclude a start cell for units of `length`. Returns False if it was already excluded."""
        nogoods = self._nogoods(length)
        bit = 1 << cell
        if nogoods[assignment_id] & bit:
            return False
        nogoods[assignment_id] |= bit
        return True

    def allow_cell(self, assignment_id: str, cell: int, length: int = SINGLE) -> None:
        self._nogoods(length)[assignment_id] &= ~(1 << cell)

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def place(self, assignment_id: str, day: str, slot_index: int, room_id: str, length: int = SINGLE) -> None:
        self.place_cell(assignment_id, self._checked_cell(day, slot_index), room_id, length)

    def unplace(self, assignment_id: str, day: str, slot_index: int, room_id: str, length: int = SINGLE) -> None:
        self.unplace_cell(assignment_id, self._checked_cell(day, slot_index), room_id, length)

    def _checked_cell(self, day: str, slot_index: int) -> int:
        if not self.config.has_cell(day, slot_index):
            raise ConstraintViolation(Violation(
                kind=ViolationKind.OUTSIDE_GRID,
                message=f"({day}, {slot_index}) is not part of the slot grid",
                day=day,
                slot_index=slot_index,
            ))
        return self.cell_of(day, slot_index)

    def place_cell(self, assignment_id: str, cell: int, room_id: str, length: int = SINGLE) -> None:
        """Record one unit. All-or-nothing: raises before any state changes."""
        problems = self._placement_problems(assignment_id, cell, room_id, length)
        if problems:
            raise ConstraintViolation(problems)

        a = self._assignments[assignment_id]
        bits = unit_bits(cell, length)
        self._teacher_busy[a.teacher_id] = self._teacher_busy.get(a.teacher_id, 0) | bits
        self._class_busy[a.class_id] = self._class_busy.get(a.class_id, 0) | bits
        self._room_busy[room_id] = self._room_busy.get(room_id, 0) | bits
        self._placed_mask[assignment_id] |= bits
        self._remaining[assignment_id] -= length
        if length == DOUBLE:
            self._doubles_left[assignment_id] -= 1
        self._teacher_remaining[a.teacher_id] -= length
        self._day_counts[assignment_id][self.day_of_cell(cell)] += length
        self._placed[assignment_id].append((cell, room_id, length))
        self._sessions_placed += length
        if self._remaining[assignment_id] == 0:
            self._fully_placed += 1

    def unplace_cell(self, assignment_id: str, cell: int, room_id: str, length: int = SINGLE) -> None:
        """Undo a placement made by place_cell()."""
        placed = self._placed.get(assignment_id)
        if placed is None or (cell, room_id, length) not in placed:
            day, slot_index = self.day_slot_of(cell)
            raise ConstraintViolation(Violation(
                kind=ViolationKind.UNKNOWN_REFERENCE,
                message=f"assignment {assignment_id} has no placement in room {room_id}",
                day=day,
                slot_index=slot_index,
            ))

        a = self._assignments[assignment_id]
        bits = unit_bits(cell, length)
        if self._remaining[assignment_id] == 0:
            self._fully_placed -= 1
        placed.remove((cell, room_id, length))
        self._teacher_busy[a.teacher_id] &= ~bits
        self._class_busy[a.class_id] &= ~bits
        self._room_busy[room_id] &= ~bits
        self._placed_mask[assignment_id] &= ~bits
        self._remaining[assignment_id] += length
        if length == DOUBLE:
            self._doubles_left[assignment_id] += 1
        self._teacher_remaining[a.teacher_id] += length
        self._day_counts[assignment_id][self.day_of_cell(cell)] -= length
        self._sessions_placed -= length

    def _placement_problems(self, assignment_id: str, cell: int, room_id: str, length: int) -> list[Violation]:
        if length not in (SINGLE, DOUBLE):
            raise ValueError(f"unit length must be 1 or 2, got {length}")
        a = self._assignments.get(assignment_id)
        room = self._rooms.get(room_id)
        if not 0 <= cell < self.grid_size:
            return [Violation(ViolationKind.OUTSIDE_GRID, f"cell {cell} is outside the slot grid")]

        day, slot_index = self.day_slot_of(cell)

        def violation(kind: ViolationKind, message: str, at: int = cell) -> Violation:
            at_day, at_slot = self.day_slot_of(at)
            return Violation(kind=kind, message=message, day=at_day, slot_index=at_slot)

        if length == DOUBLE and (self._last_slots >> cell) & 1:
            return [violation(ViolationKind.OUTSIDE_GRID, f"a double period cannot start in the last slot of {day}")]

        problems: list[Violation] = []
        if a is None:
            problems.append(violation(ViolationKind.UNKNOWN_REFERENCE, f"unknown assignment '{assignment_id}'"))
        if room is None:
            problems.append(violation(ViolationKind.UNKNOWN_REFERENCE, f"unknown room '{room_id}'"))
        if problems:
            return problems

        if self.units_remaining(assignment_id, length) <= 0:
            if length == DOUBLE:
                what = "double periods"
            else:
                what = "single sessions" if a.double_sessions else "sessions"
            problems.append(violation(
                ViolationKind.SESSION_COUNT,
                f"assignment {assignment_id} has no remaining {what}",
            ))

        for at in range(cell, cell + length):
            bit = 1 << at
            if not self._available.get(a.teacher_id, self.full_mask) & bit:
                problems.append(violation(
                    ViolationKind.TEACHER_UNAVAILABLE,
                    f"teacher {a.teacher_id} is not available",
                    at,
                ))
            if not self._window[assignment_id] & bit:
                problems.append(violation(
                    ViolationKind.OUTSIDE_SESSION,
                    f"assignment {assignment_id} is restricted to session '{a.session}'",
                    at,
                ))
            if self._teacher_busy.get(a.teacher_id, 0) & bit:
                problems.append(violation(ViolationKind.TEACHER_CONFLICT, f"teacher {a.teacher_id} is busy", at))
            if self._class_busy.get(a.class_id, 0) & bit:
                problems.append(violation(ViolationKind.CLASS_CONFLICT, f"class {a.class_id} is busy", at))
            if self._room_busy.get(room_id, 0) & bit:
                problems.append(violation(ViolationKind.ROOM_CONFLICT, f"room {room_id} is busy", at))

        if not a.allow_consecutive and self.neighbours_mask(self._placed_mask[assignment_id]) & unit_bits(cell, length):
            problems.append(violation(
                ViolationKind.CONSECUTIVE,
                f"assignment {assignment_id} may not have back-to-back sessions",
            ))
        if not room.is_usable:
            problems.append(violation(
                ViolationKind.ROOM_UNUSABLE,
                f"room {room_id} is {room.status.value}",
            ))
        if room.category not in self._categories.get(a.subject_id, frozenset()):
            problems.append(violation(
                ViolationKind.ROOM_INCOMPATIBLE,
                f"room {room_id} ({room.category.value}) is not acceptable for subject {a.subject_id}",
            ))
        if a.max_per_day is not None:
            if self._day_counts[assignment_id][self.day_of_cell(cell)] + length > a.max_per_day:
                problems.append(violation(
                    ViolationKind.DAILY_LIMIT,
                    f"assignment {assignment_id} would exceed {a.max_per_day} session(s) on {day}",
                ))
        return problems

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def placement_records(self) -> list[tuple[str, int, str, int]]:
        """Current placements as sorted (assignment id, start cell, room id, length) tuples."""
        records = [
            (aid, cell, room_id, length)
            for aid, placed in self._placed.items()
            for cell, room_id, length in placed
        ]
        records.sort(key=lambda r: (r[1], r[0], r[2], r[3]))
        return records

    def restore(self, records: Iterable[tuple[str, int, str, int]]) -> None:
        """Reset, then replay a snapshot taken with placement_records()."""
        self.reset()
        for aid, cell, room_id, length in records:
            self.place_cell(aid, cell, room_id, length)

    def to_placements(self) -> list[Placement]:
        """One Placement per occupied cell; a double period gives two."""
        placements = []
        for aid, start, room_id, length in self.placement_records():
            for cell in range(start, start + length):
                day, slot_index = self.day_slot_of(cell)
                placements.append(Placement(day=day, slot_index=slot_index, assignment_id=aid, room_id=room_id))
        return placements

    def statistics(self) -> dict[str, int]:
        return {
            "grid_size": self.grid_size,
            "assignments": len(self._assignments),
            "teachers": len(self._teachers),
            "rooms": len(self._rooms),
            "sessions_placed": self._sessions_placed,
            "fully_placed": self._fully_placed,
        }
