"""
Backtracking search over teaching assignments.

The engine keeps an explicit stack of decision frames instead of recursing:

    select (MRV) -> push frame -> take next candidate -> place -> forward check
         ^                                                        |
         |------------- dead end / exhausted frame: backtrack <---|

- Selection picks the open assignment with the fewest free (cell, room)
  combinations for its next unit; ties go to fewer free cells, more
  remaining sessions, then the lexically smallest id. Double periods of an
  assignment are placed before its single sessions.
- Forward checking undoes a placement that leaves another open assignment
  with fewer free cells than remaining sessions, or fewer free double-period
  starts than remaining double periods.
- Units of one length of one assignment are interchangeable, so once a frame
  has fully explored a start cell it forbids that start for the assignment
  until the frame is popped.
- Every placement attempt is one step. The step limit, deadline and cancel
  event are checked before each attempt; when any of them trips, the best
  snapshot seen so far is returned.

Assignments that cannot be fully placed even on an empty grid are left out
of the search and filled greedily into the final snapshot.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterator, Optional, Union

from .candidates import Candidate, CandidateGenerator, CandidateOrdering
from .data.models import Placement
from .index import DOUBLE, SINGLE, ConstraintIndex, iter_cells, popcount

logger = logging.getLogger(__name__)


DEFAULT_MAX_STEPS = 200_000

DeadlineLike = Union[None, int, float, timedelta, datetime, "Deadline"]


# =============================================================================
# Enums and Settings
# =============================================================================

class StopReason(str, Enum):
    """Why a search run ended."""
    SOLVED = "solved"
    EXHAUSTED = "exhausted"
    STEP_LIMIT = "step_limit"
    DEADLINE = "deadline"
    CANCELLED = "cancelled"


class AssignmentState(str, Enum):
    """Per-assignment progress, reported for diagnostics."""
    UNPLACED = "unplaced"
    IN_PROGRESS = "in_progress"
    PLACED = "placed"
    FAILED = "failed"


class UnplacedReason(str, Enum):
    """Why an assignment ended up with fewer sessions than required."""
    NO_ROOM = "no_room"
    INSUFFICIENT_SLOTS = "insufficient_slots"
    SEARCH_LIMIT = "search_limit"
    CONFLICTS = "conflicts"


@dataclass
class SearchSettings:
    """Tunables for one generation run."""
    max_steps: int = DEFAULT_MAX_STEPS
    forward_checking: bool = True
    ordering: CandidateOrdering = field(default_factory=CandidateOrdering)
    cpsat_workers: int = 1
    cpsat_seed: int = 0


@dataclass
class SearchStats:
    """Counters collected during a run."""
    engine: str = "backtracking"
    steps: int = 0
    placements: int = 0
    backtracks: int = 0
    dead_ends: int = 0
    pruned: int = 0
    elapsed_seconds: float = 0.0
    stop_reason: Optional[StopReason] = None
    best_fully_placed: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["stop_reason"] = self.stop_reason.value if self.stop_reason else None
        return data


class Deadline:
    """
    Wall-clock bound for a run, measured on the monotonic clock.

    Accepts None (no deadline), seconds as int/float, a timedelta, or an
    absolute datetime (naive datetimes are compared with local time).
    """

    def __init__(self, deadline: DeadlineLike = None):
        if deadline is None:
            self._expires: Optional[float] = None
            return
        if isinstance(deadline, Deadline):
            self._expires = deadline._expires
            return
        if isinstance(deadline, timedelta):
            seconds = deadline.total_seconds()
        elif isinstance(deadline, datetime):
            seconds = (deadline - datetime.now(deadline.tzinfo)).total_seconds()
        elif isinstance(deadline, (int, float)) and not isinstance(deadline, bool):
            seconds = float(deadline)
        else:
            raise TypeError(f"unsupported deadline type: {type(deadline).__name__}")
        self._expires = time.monotonic() + seconds

    @property
    def is_set(self) -> bool:
        return self._expires is not None

    def expired(self) -> bool:
        return self._expires is not None and time.monotonic() >= self._expires

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when there is no deadline."""
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())


@dataclass
class SearchOutcome:
    """Best schedule found by an engine run."""
    placements: list[Placement]
    stats: SearchStats
    states: dict[str, AssignmentState]
    doomed: frozenset[str] = frozenset()

    @property
    def complete(self) -> bool:
        return all(state == AssignmentState.PLACED for state in self.states.values())


# =============================================================================
# Static Feasibility
# =============================================================================

def daily_capacity(index: ConstraintIndex, assignment_id: str, mask: int) -> int:
    """
    Sessions of an assignment that fit into mask once its daily limit and
    back-to-back rule are applied.
    """
    a = index.assignment(assignment_id)
    if a.max_per_day is None and a.allow_consecutive:
        return popcount(mask)
    per_day: dict[int, int] = {}
    previous = None
    run = 0
    for cell in iter_cells(mask):
        day_pos = index.day_of_cell(cell)
        run = run + 1 if previous == cell - 1 and index.day_of_cell(previous) == day_pos else 1
        previous = cell
        # Without back-to-back sessions only every other cell of a run counts
        if a.allow_consecutive or run % 2 == 1:
            per_day[day_pos] = per_day.get(day_pos, 0) + 1
    limit = a.max_per_day
    return sum(count if limit is None else min(count, limit) for count in per_day.values())


def pair_capacity(index: ConstraintIndex, assignment_id: str, starts: int) -> int:
    """Non-overlapping double periods that fit into the start mask, per daily limit."""
    limit = index.assignment(assignment_id).max_per_day
    per_day: dict[int, int] = {}
    taken = None
    for cell in iter_cells(starts):
        if taken is not None and cell <= taken + 1:
            continue
        taken = cell
        day_pos = index.day_of_cell(cell)
        per_day[day_pos] = per_day.get(day_pos, 0) + 1
    cap = None if limit is None else limit // 2
    return sum(count if cap is None else min(count, cap) for count in per_day.values())


def find_unschedulable(index: ConstraintIndex) -> dict[str, UnplacedReason]:
    """
    Assignments that cannot be fully placed given the index as it stands
    (normally right after a reset): no usable room, fewer usable cells than
    remaining sessions, or fewer usable double-period starts than remaining
    double periods.
    """
    found: dict[str, UnplacedReason] = {}
    for aid in index.assignment_ids:
        if not index.rooms_for(aid):
            found[aid] = UnplacedReason.NO_ROOM
            continue
        mask = index.open_cells_mask(aid) & ~index.rooms_full_mask(aid)
        if daily_capacity(index, aid, mask) < index.remaining(aid):
            found[aid] = UnplacedReason.INSUFFICIENT_SLOTS
            continue
        doubles = index.units_remaining(aid, DOUBLE)
        if doubles:
            starts = index.start_mask(aid, DOUBLE) & ~index.rooms_full_mask(aid, DOUBLE)
            if pair_capacity(index, aid, starts) < doubles:
                found[aid] = UnplacedReason.INSUFFICIENT_SLOTS
    return found


# =============================================================================
# Search Engine
# =============================================================================

@dataclass
class _Frame:
    assignment_id: str
    candidates: Iterator[Candidate]
    length: int = SINGLE
    current: Optional[Candidate] = None
    last_cell: Optional[int] = None
    forbidden: list[int] = field(default_factory=list)


class SearchEngine:
    """
    Iterative chronological backtracking over a ConstraintIndex.

    Usage:
        engine = SearchEngine(index, SearchSettings(max_steps=10_000), deadline=5.0)
        outcome = engine.run()
        if outcome.complete:
            ...
    """

    def __init__(
        self,
        index: ConstraintIndex,
        settings: Optional[SearchSettings] = None,
        deadline: DeadlineLike = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.index = index
        self.settings = settings or SearchSettings()
        self.deadline = Deadline(deadline)
        self.cancel = cancel
        self.generator = CandidateGenerator(index, self.settings.ordering)
        self.stats = SearchStats(engine="backtracking")
        self._doomed: frozenset[str] = frozenset()
        self._open: list[str] = []
        self._open_sessions = 0
        self._best_key: tuple[int, int] = (-1, -1)
        self._best_records: list[tuple[str, int, str, int]] = []

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run(self) -> SearchOutcome:
        start = time.perf_counter()
        index = self.index
        index.reset()

        self._doomed = frozenset(self.find_doomed())
        self._open = [aid for aid in index.assignment_ids if aid not in self._doomed]
        self._open_sessions = sum(index.remaining(aid) for aid in self._open)
        self._record_best()

        logger.info(
            "Starting search: %d assignments (%d unschedulable), %d sessions, max_steps=%d",
            len(index.assignment_ids), len(self._doomed), self._open_sessions,
            self.settings.max_steps,
        )

        reason = self._search()

        records = index.placement_records() if reason == StopReason.SOLVED else self._best_records
        index.restore(records)
        if reason != StopReason.CANCELLED:
            self._fill_greedily(sorted(self._doomed))
        if reason == StopReason.SOLVED and self._doomed:
            reason = StopReason.EXHAUSTED

        self.stats.stop_reason = reason
        self.stats.best_fully_placed = index.fully_placed_count
        self.stats.elapsed_seconds = time.perf_counter() - start

        logger.info(
            "Search finished (%s): %d/%d assignments fully placed, %d steps, %d backtracks, %.3fs",
            reason.value, index.fully_placed_count, len(index.assignment_ids),
            self.stats.steps, self.stats.backtracks, self.stats.elapsed_seconds,
        )

        return SearchOutcome(
            placements=index.to_placements(),
            stats=self.stats,
            states={aid: self.assignment_state(aid) for aid in index.assignment_ids},
            doomed=self._doomed,
        )

    def assignment_state(self, assignment_id: str) -> AssignmentState:
        if self.index.remaining(assignment_id) == 0:
            return AssignmentState.PLACED
        if assignment_id in self._doomed:
            return AssignmentState.FAILED
        if self.index.placed_count(assignment_id) > 0:
            return AssignmentState.IN_PROGRESS
        return AssignmentState.UNPLACED

    def find_doomed(self) -> list[str]:
        return sorted(find_unschedulable(self.index))

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def _search(self) -> StopReason:
        stack: list[_Frame] = []
        if self._all_placed():
            return StopReason.SOLVED
        if not self._push(stack):
            return StopReason.EXHAUSTED

        while True:
            frame = stack[-1]
            advanced, stop = self._advance(frame)
            if stop is not None:
                return stop

            if advanced:
                if self._all_placed():
                    return StopReason.SOLVED
                if not self._push(stack):
                    self.stats.dead_ends += 1
                continue

            stack.pop()
            for cell in frame.forbidden:
                self.index.allow_cell(frame.assignment_id, cell, frame.length)
            self.stats.backtracks += 1
            if not stack:
                return StopReason.EXHAUSTED

    def _push(self, stack: list[_Frame]) -> bool:
        """Select the next assignment and push a frame for it. False on a dead end."""
        selected = self._select()
        if selected is None:
            return False
        aid, combos, cells = selected
        length = self.index.next_length(aid)
        if combos == 0 or cells < self.index.units_remaining(aid, length):
            return False
        stack.append(_Frame(aid, iter(self.generator.candidates(aid, length)), length))
        return True

    def _select(self) -> Optional[tuple[str, int, int]]:
        best_key = None
        best = None
        for aid in self._open:
            remaining = self.index.remaining(aid)
            if remaining == 0:
                continue
            combos, cells = self.index.candidate_counts(aid)
            key = (combos, cells, -remaining, aid)
            if best_key is None or key < best_key:
                best_key = key
                best = (aid, combos, cells)
        return best

    def _advance(self, frame: _Frame) -> tuple[bool, Optional[StopReason]]:
        """
        Move a frame to its next viable candidate.

        Returns (True, None) after a successful placement, (False, None) when
        the frame is exhausted and (False, reason) when the budget ran out.
        """
        index = self.index
        aid = frame.assignment_id
        if frame.current is not None:
            index.unplace_cell(aid, frame.current.cell, frame.current.room_id, frame.current.length)
            frame.current = None

        for candidate in frame.candidates:
            if frame.last_cell is not None and candidate.cell != frame.last_cell:
                if index.forbid_cell(aid, frame.last_cell, frame.length):
                    frame.forbidden.append(frame.last_cell)
            frame.last_cell = candidate.cell

            stop = self._check_budget()
            if stop is not None:
                return False, stop

            self.stats.steps += 1
            index.place_cell(aid, candidate.cell, candidate.room_id, candidate.length)
            self._record_best()
            if self.settings.forward_checking and not self._forward_check():
                index.unplace_cell(aid, candidate.cell, candidate.room_id, candidate.length)
                self.stats.pruned += 1
                continue

            self.stats.placements += 1
            frame.current = candidate
            return True, None

        return False, None

    def _check_budget(self) -> Optional[StopReason]:
        if self.cancel is not None and self.cancel.is_set():
            return StopReason.CANCELLED
        if self.stats.steps >= self.settings.max_steps:
            return StopReason.STEP_LIMIT
        if self.deadline.expired():
            return StopReason.DEADLINE
        return None

    def _forward_check(self) -> bool:
        index = self.index
        for aid in self._open:
            remaining = index.remaining(aid)
            if remaining == 0:
                continue
            mask = index.open_cells_mask(aid) & ~index.rooms_full_mask(aid)
            if popcount(mask) < remaining:
                return False
            doubles = index.units_remaining(aid, DOUBLE)
            if doubles:
                starts = index.start_mask(aid, DOUBLE) & ~index.rooms_full_mask(aid, DOUBLE)
                if popcount(starts) < doubles:
                    return False
        return True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _all_placed(self) -> bool:
        return self.index.sessions_placed == self._open_sessions

    def _record_best(self) -> None:
        key = self.index.progress_key
        if key > self._best_key:
            self._best_key = key
            self._best_records = self.index.placement_records()

    def _fill_greedily(self, assignment_ids: list[str]) -> None:
        for aid in assignment_ids:
            for length in (DOUBLE, SINGLE):
                for candidate in self.generator.candidates(aid, length):
                    if self.index.units_remaining(aid, length) == 0:
                        break
                    self.index.place_cell(aid, candidate.cell, candidate.room_id, candidate.length)
            if self.index.placed_count(aid):
                logger.debug(
                    "Placed %d/%d sessions of unschedulable assignment %s",
                    self.index.placed_count(aid), self.index.assignment(aid).weekly_sessions, aid,
                )
