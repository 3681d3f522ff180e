"""Generation result output: JSON schema and console formatting."""

from .schema import (
    PlacementOutput,
    UnplacedOutput,
    StatsOutput,
    EntityTimetable,
    TimetableViews,
    GenerationOutput,
    create_generation_output,
    result_to_json,
)
from .formatters import (
    ViewKind,
    GridFormatter,
    format_grid,
    format_summary,
    build_summary_table,
    build_unplaced_table,
    save_json,
)

__all__ = [
    # Schema models
    "PlacementOutput",
    "UnplacedOutput",
    "StatsOutput",
    "EntityTimetable",
    "TimetableViews",
    "GenerationOutput",
    # Schema conversion functions
    "create_generation_output",
    "result_to_json",
    # Formatters
    "ViewKind",
    "GridFormatter",
    "format_grid",
    "format_summary",
    "build_summary_table",
    "build_unplaced_table",
    "save_json",
]
