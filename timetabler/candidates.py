"""
Candidate generation for one teaching assignment.

CandidateGenerator.candidates() returns a CandidateSequence: a finite,
restartable, best-first sequence of (day, slot, room) choices for the
assignment's next unit (a double period while any are left, else a single
session). Cell order is fixed when the sequence is built; hard filters are
re-checked lazily against the constraint index every time a candidate is
about to be yielded, so a sequence stays correct while the search mutates
the index underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, NamedTuple, Optional

from .data.models import Room
from .index import SINGLE, ConstraintIndex, iter_cells, popcount, unit_bits


@dataclass
class CandidateOrdering:
    """
    Weights for the best-first cell score (lower score comes first).

    contention_weight: weight of the demand other pending teachers put on a cell
        (sum of 1 / open cells of each teacher that could use it).
    spread_weight: weight of sessions of the same assignment already on the
        cell's day.

    Remaining ties are broken by sessions on the day, then day order, then
    slot order.
    """
    contention_weight: float = 1.0
    spread_weight: float = 0.0


class Candidate(NamedTuple):
    cell: int
    day: str
    slot_index: int
    room_id: str
    length: int = SINGLE


class CandidateSequence:
    """Restartable candidate sequence; each iter() starts from the best cell again."""

    def __init__(
        self,
        index: ConstraintIndex,
        assignment_id: str,
        cells: list[int],
        rooms: tuple[Room, ...],
        length: int = SINGLE,
    ):
        self._index = index
        self.assignment_id = assignment_id
        self.cells = cells
        self.rooms = rooms
        self.length = length

    def __iter__(self) -> Iterator[Candidate]:
        for cell in self.cells:
            day, slot_index = self._index.day_slot_of(cell)
            for room in self.rooms:
                if self._index.is_candidate(self.assignment_id, cell, room.id, self.length):
                    yield Candidate(cell, day, slot_index, room.id, self.length)

    def first(self) -> Candidate | None:
        return next(iter(self), None)


class CandidateGenerator:
    """Builds ordered candidate sequences from the current state of a ConstraintIndex."""

    def __init__(self, index: ConstraintIndex, ordering: CandidateOrdering | None = None):
        self.index = index
        self.ordering = ordering or CandidateOrdering()
        self._room_order: dict[str, tuple[Room, ...]] = {}

    def candidates(self, assignment_id: str, length: Optional[int] = None) -> CandidateSequence:
        """
        Candidate sequence for an assignment's units of `length` slots (the
        next unit's length when omitted). Empty when nothing passes the filters.
        """
        if length is None:
            length = self.index.next_length(assignment_id)
        if self.index.units_remaining(assignment_id, length) <= 0:
            return CandidateSequence(self.index, assignment_id, [], (), length)
        cells = [cell for _, cell in self.rank_cells(assignment_id, length)]
        return CandidateSequence(self.index, assignment_id, cells, self.ordered_rooms(assignment_id), length)

    def ordered_rooms(self, assignment_id: str) -> tuple[Room, ...]:
        """Usable rooms by fewest competing demand for their category, then room code."""
        rooms = self._room_order.get(assignment_id)
        if rooms is None:
            rooms = tuple(sorted(
                self.index.rooms_for(assignment_id),
                key=lambda r: (self.index.category_demand(r.category), r.code, r.id),
            ))
            self._room_order[assignment_id] = rooms
        return rooms

    def rank_cells(self, assignment_id: str, length: int = SINGLE) -> list[tuple[tuple, int]]:
        """Start cells with at least one free room, as sorted (sort key, cell) pairs."""
        index = self.index
        mask = index.start_mask(assignment_id, length) & ~index.rooms_full_mask(assignment_id, length)
        if not mask or not index.rooms_for(assignment_id):
            return []

        own_teacher = index.assignment(assignment_id).teacher_id
        pressure: list[tuple[int, float]] = []
        for teacher_id in index.pending_teachers():
            if teacher_id == own_teacher:
                continue
            open_mask = index.teacher_open_mask(teacher_id)
            if open_mask:
                pressure.append((open_mask, 1.0 / popcount(open_mask)))

        ranked = []
        for cell in iter_cells(mask):
            covered = unit_bits(cell, length)
            contention = sum(weight * popcount(open_mask & covered) for open_mask, weight in pressure)
            same_day = index.sessions_on_day(assignment_id, index.day_of_cell(cell))
            score = (
                self.ordering.contention_weight * contention
                + self.ordering.spread_weight * same_day
            )
            ranked.append(((score, same_day, cell), cell))
        ranked.sort()
        return ranked
