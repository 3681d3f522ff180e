"""
CP-SAT engine for the same placement problem the backtracking search solves.

Model:
- One boolean x[a, cell, room] per assignment with single sessions, open cell
  and compatible room (cells the teacher cannot use, cells outside the
  assignment's session window and blocked cells get no variable at all).
- One boolean y[a, start, room] per double period start: the unit covers
  start and the next slot of the same day in one room.
- sum_x(a) <= single_sessions(a), sum_y(a) <= double_sessions(a), and done[a]
  forces both to equality.
- At most one unit per teacher, class and room in each cell, counting a
  double period in both of its cells.
- sum_x(a, day) + 2 * sum_y(a, day) <= max_per_day(a) where a daily limit is set.
- No two adjacent cells of one day for assignments without back-to-back sessions.
- Maximize BIG * sum(done) + sum(x) + 2 * sum(y): fully placed assignments
  first, then placed sessions, matching the ordering used for partial results.

The solution is replayed into the ConstraintIndex, so every placement goes
through the same checks as the backtracking engine.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from ortools.sat.python import cp_model

from .errors import TimetablerError
from .index import DOUBLE, SINGLE, ConstraintIndex, iter_cells
from .search import (
    AssignmentState,
    Deadline,
    DeadlineLike,
    SearchOutcome,
    SearchSettings,
    SearchStats,
    StopReason,
)

logger = logging.getLogger(__name__)


DEFAULT_TIME_LIMIT_SECONDS = 60.0


class CancelCallback(cp_model.CpSolverSolutionCallback):
    """
    Stops the solver at the next solution once the cancel event is set.

    CP-SAT only hands control back at solutions, so a run that finds none
    keeps going until its time limit.
    """

    def __init__(self, cancel: Optional[threading.Event]):
        cp_model.CpSolverSolutionCallback.__init__(self)
        self._cancel = cancel
        self.solutions = 0
        self.stopped = False

    def on_solution_callback(self) -> None:
        self.solutions += 1
        if self._cancel is not None and self._cancel.is_set():
            self.stopped = True
            self.StopSearch()


class CpSatEngine:
    """
    Builds and solves a CP-SAT model over a ConstraintIndex.

    Usage:
        engine = CpSatEngine(index, SearchSettings(cpsat_workers=4), deadline=30)
        outcome = engine.run()
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
        self.model = cp_model.CpModel()
        self.callback = CancelCallback(cancel)

        # (assignment id, cell, room id) -> var
        self.x_vars: dict[tuple[str, int, str], cp_model.IntVar] = {}
        # (assignment id, start cell, room id) -> var
        self.y_vars: dict[tuple[str, int, str], cp_model.IntVar] = {}
        self.done_vars: dict[str, cp_model.IntVar] = {}
        self._built = False

    # -------------------------------------------------------------------------
    # Model Construction
    # -------------------------------------------------------------------------

    def build(self) -> None:
        if self._built:
            return
        self.index.reset()
        self._create_variables()
        self._add_session_constraints()
        self._add_no_overlap_constraints()
        self._add_daily_limit_constraints()
        self._add_consecutive_constraints()
        self._set_objective()
        self._built = True

    def _create_variables(self) -> None:
        index = self.index
        for aid in index.assignment_ids:
            a = index.assignment(aid)
            if a.single_sessions:
                for cell in iter_cells(index.start_mask(aid, SINGLE)):
                    for room in index.rooms_for(aid):
                        if index.room_free_starts(room.id, SINGLE) >> cell & 1:
                            self.x_vars[(aid, cell, room.id)] = self.model.NewBoolVar(f"x_{aid}_{cell}_{room.id}")
            if a.double_sessions:
                for cell in iter_cells(index.start_mask(aid, DOUBLE)):
                    for room in index.rooms_for(aid):
                        if index.room_free_starts(room.id, DOUBLE) >> cell & 1:
                            self.y_vars[(aid, cell, room.id)] = self.model.NewBoolVar(f"y_{aid}_{cell}_{room.id}")
            self.done_vars[aid] = self.model.NewBoolVar(f"done_{aid}")

    def _by_assignment(self, variables: dict[tuple[str, int, str], cp_model.IntVar]) -> dict[str, list]:
        grouped: dict[str, list[cp_model.IntVar]] = {aid: [] for aid in self.index.assignment_ids}
        for (aid, _, _), var in variables.items():
            grouped[aid].append(var)
        return grouped

    def _add_session_constraints(self) -> None:
        singles = self._by_assignment(self.x_vars)
        doubles = self._by_assignment(self.y_vars)

        for aid in self.index.assignment_ids:
            a = self.index.assignment(aid)
            done = self.done_vars[aid]
            for variables, required in ((singles[aid], a.single_sessions), (doubles[aid], a.double_sessions)):
                if len(variables) < required:
                    self.model.Add(done == 0)
                if not variables:
                    continue
                self.model.Add(sum(variables) <= required)
                self.model.Add(sum(variables) == required).OnlyEnforceIf(done)

    def _occupancy(self):
        """(assignment id, covered cell, room id, var) for every unit variable."""
        for (aid, cell, room_id), var in self.x_vars.items():
            yield aid, cell, room_id, var
        for (aid, start, room_id), var in self.y_vars.items():
            yield aid, start, room_id, var
            yield aid, start + 1, room_id, var

    def _add_no_overlap_constraints(self) -> None:
        """At most one unit per teacher, class and room in every cell."""
        groups: dict[tuple[str, str, int], list[cp_model.IntVar]] = {}
        for aid, cell, room_id, var in self._occupancy():
            a = self.index.assignment(aid)
            groups.setdefault(("teacher", a.teacher_id, cell), []).append(var)
            groups.setdefault(("class", a.class_id, cell), []).append(var)
            groups.setdefault(("room", room_id, cell), []).append(var)

        for variables in groups.values():
            if len(variables) > 1:
                self.model.AddAtMostOne(variables)

    def _add_daily_limit_constraints(self) -> None:
        per_day: dict[tuple[str, int], list] = {}
        for (aid, cell, _), var in self.x_vars.items():
            if self.index.assignment(aid).max_per_day is not None:
                per_day.setdefault((aid, self.index.day_of_cell(cell)), []).append(var)
        for (aid, start, _), var in self.y_vars.items():
            if self.index.assignment(aid).max_per_day is not None:
                per_day.setdefault((aid, self.index.day_of_cell(start)), []).append(2 * var)

        for (aid, _), terms in per_day.items():
            self.model.Add(sum(terms) <= self.index.assignment(aid).max_per_day)

    def _add_consecutive_constraints(self) -> None:
        by_cell: dict[tuple[str, int], list[cp_model.IntVar]] = {}
        for (aid, cell, _), var in self.x_vars.items():
            if not self.index.assignment(aid).allow_consecutive:
                by_cell.setdefault((aid, cell), []).append(var)

        for (aid, cell), variables in sorted(by_cell.items()):
            after = by_cell.get((aid, cell + 1))
            if after and self.index.day_of_cell(cell) == self.index.day_of_cell(cell + 1):
                self.model.AddAtMostOne(variables + after)

    def _set_objective(self) -> None:
        if not self.done_vars:
            return
        big = sum(a.weekly_sessions for a in self.index.assignments()) + 1
        self.model.Maximize(
            big * sum(self.done_vars.values())
            + sum(self.x_vars.values())
            + 2 * sum(self.y_vars.values())
        )

    # -------------------------------------------------------------------------
    # Solving
    # -------------------------------------------------------------------------

    def run(self) -> SearchOutcome:
        stats = SearchStats(engine="cp-sat")
        self.build()

        if self.cancel is not None and self.cancel.is_set():
            return self._outcome(stats, StopReason.CANCELLED, proved=False)
        remaining = self.deadline.remaining()
        if remaining is not None and remaining <= 0:
            return self._outcome(stats, StopReason.DEADLINE, proved=False)

        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = (
            remaining if remaining is not None else DEFAULT_TIME_LIMIT_SECONDS
        )
        solver.parameters.num_workers = max(1, self.settings.cpsat_workers)
        solver.parameters.random_seed = self.settings.cpsat_seed
        solver.parameters.log_search_progress = False

        logger.info(
            "Solving CP-SAT model: %d single and %d double placement variables, %d assignments, time limit %.1fs",
            len(self.x_vars), len(self.y_vars), len(self.done_vars), solver.parameters.max_time_in_seconds,
        )
        status_code = solver.Solve(self.model, self.callback)

        if status_code == cp_model.MODEL_INVALID:
            raise TimetablerError(f"CP-SAT model invalid: {self.model.Validate()}")

        if status_code in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            self._extract(solver)

        stats.steps = solver.NumBranches()
        stats.backtracks = solver.NumConflicts()
        stats.placements = self.index.sessions_placed
        stats.elapsed_seconds = solver.WallTime()

        proved = status_code == cp_model.OPTIMAL and not self.callback.stopped
        if self.index.is_complete():
            reason = StopReason.SOLVED
        elif proved:
            reason = StopReason.EXHAUSTED
        elif self.callback.stopped or (self.cancel is not None and self.cancel.is_set()):
            reason = StopReason.CANCELLED
        else:
            reason = StopReason.DEADLINE

        logger.info(
            "CP-SAT finished (%s, %s): %d/%d assignments fully placed in %.3fs",
            solver.StatusName(status_code), reason.value,
            self.index.fully_placed_count, len(self.index.assignment_ids), stats.elapsed_seconds,
        )
        return self._outcome(stats, reason, proved=proved)

    def _extract(self, solver: cp_model.CpSolver) -> None:
        self.index.reset()
        chosen = [(aid, cell, room_id, SINGLE) for (aid, cell, room_id), var in self.x_vars.items() if solver.Value(var)]
        chosen += [(aid, cell, room_id, DOUBLE) for (aid, cell, room_id), var in self.y_vars.items() if solver.Value(var)]
        for aid, cell, room_id, length in sorted(chosen):
            self.index.place_cell(aid, cell, room_id, length)

    def _outcome(self, stats: SearchStats, reason: StopReason, proved: bool) -> SearchOutcome:
        stats.stop_reason = reason
        stats.best_fully_placed = self.index.fully_placed_count
        states = {}
        for aid in self.index.assignment_ids:
            if self.index.remaining(aid) == 0:
                states[aid] = AssignmentState.PLACED
            elif proved:
                states[aid] = AssignmentState.FAILED
            elif self.index.placed_count(aid):
                states[aid] = AssignmentState.IN_PROGRESS
            else:
                states[aid] = AssignmentState.UNPLACED
        return SearchOutcome(
            placements=self.index.to_placements(),
            stats=stats,
            states=states,
        )

    def get_statistics(self) -> dict[str, Any]:
        """Get model statistics."""
        return {
            "num_assignments": len(self.done_vars),
            "num_placement_vars": len(self.x_vars),
            "num_double_vars": len(self.y_vars),
            "grid_size": self.index.grid_size,
            "built": self._built,
        }
