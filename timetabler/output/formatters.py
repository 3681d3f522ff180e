"""
Output formatters for generation results.

- Grid views: one rich table per class, teacher or room (slots x days)
- Summary: status, counts and search statistics
- JSON file writing
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .schema import EntityTimetable, GenerationOutput, PlacementOutput


class ViewKind(str, Enum):
    CLASS = "class"
    TEACHER = "teacher"
    ROOM = "room"


# =============================================================================
# Grid Formatter
# =============================================================================

class GridFormatter:
    """Formats one entity's timetable as a slots x days grid."""

    def __init__(self, kind: ViewKind, width: int = 120):
        self.kind = ViewKind(kind)
        self.width = width

    def entity(self, output: GenerationOutput, entity_id: str) -> EntityTimetable | None:
        views = {
            ViewKind.CLASS: output.views.by_class,
            ViewKind.TEACHER: output.views.by_teacher,
            ViewKind.ROOM: output.views.by_room,
        }[self.kind]
        return views.get(entity_id)

    def build_table(self, output: GenerationOutput, timetable: EntityTimetable) -> Table:
        table = Table(
            title=f"{self.kind.value.title()} {timetable.name}",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Slot", style="dim")
        days = output.days or list(timetable.by_day)
        for day in days:
            table.add_column(day[:3], justify="center")

        cells: dict[tuple[str, int], PlacementOutput] = {
            (p.day, p.slot_index): p for p in timetable.placements
        }
        slot_indices = output.slot_indices or sorted({p.slot_index for p in timetable.placements})
        times = {p.slot_index: p.start_time for p in output.placements if p.start_time}

        for slot_index in slot_indices:
            label = f"{slot_index}"
            if slot_index in times:
                label += f" {times[slot_index]}"
            row = [label]
            for day in days:
                placement = cells.get((day, slot_index))
                row.append(self._cell_text(placement) if placement else "[dim]-[/dim]")
            table.add_row(*row)
        return table

    def _cell_text(self, p: PlacementOutput) -> str:
        subject = f"[bold]{p.subject_id or p.assignment_id}[/bold]"
        room = p.room_code or p.room_id
        if self.kind == ViewKind.CLASS:
            return f"{subject}\n{p.teacher_name or p.teacher_id}\n{room}"
        if self.kind == ViewKind.TEACHER:
            return f"{subject}\n{p.class_id}\n{room}"
        return f"{subject}\n{p.class_id}"

    def format(self, output: GenerationOutput, entity_id: str) -> str:
        """Render the grid for one entity as text. Unknown ids give an empty string."""
        timetable = self.entity(output, entity_id)
        if timetable is None:
            return ""
        console = Console(record=True, width=self.width)
        console.print(self.build_table(output, timetable))
        return console.export_text()


def format_grid(output: GenerationOutput, kind: ViewKind | str, entity_id: str) -> str:
    return GridFormatter(ViewKind(kind)).format(output, entity_id)


# =============================================================================
# Summary
# =============================================================================

def build_summary_table(output: GenerationOutput) -> Table:
    table = Table(title="Summary", show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Status", output.status.value)
    table.add_row("Sessions Placed", str(len(output.placements)))
    table.add_row("Unplaced Assignments", str(len(output.unplaced)))
    table.add_row("Classes", str(len(output.views.by_class)))
    table.add_row("Teachers", str(len(output.views.by_teacher)))
    table.add_row("Rooms Used", str(len(output.views.by_room)))
    if output.stats is not None:
        table.add_row("Engine", output.stats.engine)
        table.add_row("Stop Reason", output.stats.stop_reason or "-")
        table.add_row("Steps", str(output.stats.steps))
        table.add_row("Backtracks", str(output.stats.backtracks))
        table.add_row("Elapsed", f"{output.stats.elapsed_seconds:.2f}s")
    return table


def build_unplaced_table(output: GenerationOutput) -> Table:
    table = Table(title="Unplaced Assignments", show_header=True, header_style="bold yellow")
    table.add_column("Assignment")
    table.add_column("Placed", justify="right")
    table.add_column("Reason")
    for u in output.unplaced:
        table.add_row(u.assignment_id, f"{u.placed}/{u.required}", u.message)
    return table


def format_summary(output: GenerationOutput, width: int = 120) -> str:
    console = Console(record=True, width=width)
    console.print(build_summary_table(output))
    if output.unplaced:
        console.print(build_unplaced_table(output))
    return console.export_text()


# =============================================================================
# File Writing Utilities
# =============================================================================

def save_json(output: GenerationOutput, filepath: str | Path, indent: int = 2) -> None:
    """
    Save output as JSON file.

    Args:
        output: GenerationOutput to save
        filepath: Path to save to
        indent: JSON indentation
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    filepath.write_text(output.to_json(indent=indent), encoding="utf-8")
