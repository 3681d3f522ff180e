"""
Command-line interface for the timetable generator.

Usage:
    python -m timetabler generate input.json -o output.json --timeout 60
    python -m timetabler validate input.json
    python -m timetabler check output.json --input input.json
    python -m timetabler view output.json --class 10A
    python -m timetabler sample -o sample.json --seed 42
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from .data.generator import GeneratorConfig, generate_sample_request
from .data.loader import load_request, load_schedule, save_request
from .data.models import GenerationRequest
from .errors import ConfigError
from .output.formatters import (
    GridFormatter,
    ViewKind,
    build_summary_table,
    build_unplaced_table,
    save_json,
)
from .output.schema import GenerationOutput, create_generation_output
from .search import DEFAULT_MAX_STEPS, SearchSettings
from .service import Engine, GenerationStatus, check_request, generate_request
from .validator import validate_schedule

# Create Typer app
app = typer.Typer(
    name="timetabler",
    help="School class-timetable generator (backtracking search or CP-SAT).",
    add_completion=False,
)

# Rich console for pretty output
console = Console()

STATUS_COLORS = {
    GenerationStatus.COMPLETE: "green",
    GenerationStatus.PARTIAL: "yellow",
    GenerationStatus.CONFIG_ERROR: "red",
}


# =============================================================================
# Helper Functions
# =============================================================================

def setup_logging(verbose: bool) -> None:
    """Route library logging through rich when --verbose is given."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def load_input(input_path: Path) -> GenerationRequest:
    """Load and schema-validate input data."""
    if not input_path.exists():
        console.print(f"[red]Error:[/red] Input file not found: {input_path}")
        raise typer.Exit(code=1)

    try:
        return load_request(input_path)
    except ConfigError as e:
        print_issues("Error loading input", e.issues)
        raise typer.Exit(code=1)


def load_output(output_path: Path) -> GenerationOutput:
    """Load output JSON file."""
    if not output_path.exists():
        console.print(f"[red]Error:[/red] Output file not found: {output_path}")
        raise typer.Exit(code=1)

    try:
        with open(output_path) as f:
            data = json.load(f)
        return GenerationOutput.model_validate(data)
    except Exception as e:
        console.print(f"[red]Error loading output:[/red] {e}")
        raise typer.Exit(code=1)


def print_issues(title: str, issues: list[str]) -> None:
    console.print(f"[red]{title}:[/red]")
    for issue in issues:
        console.print(f"  - {issue}")


def print_summary(output: GenerationOutput) -> None:
    """Print generation summary to console."""
    color = STATUS_COLORS.get(output.status, "white")
    status_text = Text(output.status.value.upper(), style=f"bold {color}")
    subtitle = None
    if output.stats is not None:
        subtitle = f"{output.stats.engine} in {output.stats.elapsed_seconds:.2f}s"

    console.print(Panel(status_text, title="Generation Status", subtitle=subtitle))
    console.print(build_summary_table(output))
    if output.unplaced:
        console.print(build_unplaced_table(output))


# =============================================================================
# Commands
# =============================================================================

@app.command()
def generate(
    input_file: Path = typer.Argument(
        ...,
        help="Path to input JSON file with the generation request",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Path to write output JSON file",
    ),
    timeout: float = typer.Option(
        60.0,
        "--timeout", "-t",
        help="Wall-clock limit in seconds",
        min=0,
        max=3600,
    ),
    max_steps: int = typer.Option(
        DEFAULT_MAX_STEPS,
        "--max-steps",
        help="Placement attempts before the backtracking search gives up",
        min=1,
    ),
    engine: Engine = typer.Option(
        Engine.BACKTRACKING,
        "--engine", "-e",
        help="Search engine",
    ),
    workers: int = typer.Option(
        1,
        "--workers",
        help="CP-SAT worker threads",
        min=1,
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Exit with code 1 when the result is partial",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
) -> None:
    """
    Generate a timetable.

    Loads the request, runs the selected engine and writes the result.

    Example:
        python -m timetabler generate input.json -o output.json --timeout 60
    """
    setup_logging(verbose)
    console.print(f"\n[bold]Loading input from:[/bold] {input_file}")
    request = load_input(input_file)

    summary = request.summary()
    console.print(f"[green]Loaded:[/green] {summary['assignments']} assignments "
                  f"({summary['total_sessions']} sessions), {summary['teachers']} teachers, "
                  f"{summary['rooms']} rooms")

    settings = SearchSettings(max_steps=max_steps, cpsat_workers=workers)

    console.print(f"\n[bold]Generating ({engine.value}, timeout: {timeout:g}s)...[/bold]")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("Searching for a timetable...", total=None)
        result = generate_request(request, deadline=timeout, settings=settings, engine=engine)

    if result.status == GenerationStatus.CONFIG_ERROR:
        print_issues("Invalid input", result.issues)
        raise typer.Exit(code=1)

    generation_output = create_generation_output(result, request)
    console.print()
    print_summary(generation_output)

    if output:
        save_json(generation_output, output)
        console.print(f"\n[green]Timetable saved to:[/green] {output}")

    if strict and result.status != GenerationStatus.COMPLETE:
        console.print("\n[red]Timetable is incomplete.[/red]")
        raise typer.Exit(code=1)

    console.print()


@app.command()
def validate(
    input_file: Path = typer.Argument(
        ...,
        help="Path to input JSON file to validate",
    ),
) -> None:
    """
    Validate input data without generating.

    Checks for:
    - Valid JSON structure and schema compliance
    - Availability matrices matching the slot grid
    - Reference integrity (teachers, classes, subjects, room requirements)
    - Duplicate obligations and scope mismatches

    Example:
        python -m timetabler validate input.json
    """
    console.print(f"\n[bold]Validating:[/bold] {input_file}\n")
    request = load_input(input_file)
    console.print("[green]Schema validation passed[/green]")

    issues = check_request(request)
    if issues:
        print_issues("Input problems", issues)
        raise typer.Exit(code=1)
    console.print("[green]Reference checks passed[/green]")

    table = Table(title="Summary", show_header=False, box=None)
    table.add_column("Entity", style="cyan")
    table.add_column("Count", style="white")
    for key, value in request.summary().items():
        table.add_row(key.replace("_", " ").title(), str(value))
    console.print(table)

    console.print("\n[green]Validation complete.[/green]\n")


@app.command()
def check(
    schedule_file: Path = typer.Argument(
        ...,
        help="Path to a schedule or output JSON file",
    ),
    input_file: Path = typer.Option(
        ...,
        "--input", "-i",
        help="Input JSON file the schedule belongs to",
    ),
    complete: bool = typer.Option(
        False,
        "--complete",
        help="Also require every assignment to have all of its sessions",
    ),
) -> None:
    """
    Check a (possibly hand-edited) schedule against all hard constraints.

    Example:
        python -m timetabler check output.json --input input.json --complete
    """
    request = load_input(input_file)
    if not schedule_file.exists():
        console.print(f"[red]Error:[/red] Schedule file not found: {schedule_file}")
        raise typer.Exit(code=1)
    try:
        schedule = load_schedule(schedule_file)
    except ConfigError as e:
        print_issues("Error loading schedule", e.issues)
        raise typer.Exit(code=1)

    violations = validate_schedule(schedule, request, require_complete=complete)
    if not violations:
        console.print(f"[green]No violations[/green] in {schedule.session_count} placements")
        return

    table = Table(title="Violations", show_header=True, header_style="bold red")
    table.add_column("Kind")
    table.add_column("Day")
    table.add_column("Slot", justify="right")
    table.add_column("Message")
    for v in violations:
        table.add_row(
            v.kind.value,
            v.day or "-",
            str(v.slot_index) if v.slot_index is not None else "-",
            v.message,
        )
    console.print(table)
    console.print(f"\n[red]{len(violations)} violation(s) found[/red]")
    raise typer.Exit(code=1)


@app.command()
def view(
    output_file: Path = typer.Argument(
        ...,
        help="Path to output JSON file",
    ),
    class_id: Optional[str] = typer.Option(
        None,
        "--class", "-C",
        help="Show timetable for specific class ID",
    ),
    teacher: Optional[str] = typer.Option(
        None,
        "--teacher", "-T",
        help="Show timetable for specific teacher ID",
    ),
    room: Optional[str] = typer.Option(
        None,
        "--room", "-R",
        help="Show timetable for specific room ID",
    ),
) -> None:
    """
    Display timetable grids from an output file.

    Examples:
        python -m timetabler view output.json --class 10A
        python -m timetabler view output.json --teacher T-math-1
        python -m timetabler view output.json
    """
    output = load_output(output_file)

    if class_id:
        _show_entity(output, ViewKind.CLASS, class_id)
    elif teacher:
        _show_entity(output, ViewKind.TEACHER, teacher)
    elif room:
        _show_entity(output, ViewKind.ROOM, room)
    else:
        print_summary(output)
        for entity_id in output.views.by_class:
            _show_entity(output, ViewKind.CLASS, entity_id)


def _show_entity(output: GenerationOutput, kind: ViewKind, entity_id: str) -> None:
    formatter = GridFormatter(kind)
    timetable = formatter.entity(output, entity_id)
    if timetable is None:
        views = {
            ViewKind.CLASS: output.views.by_class,
            ViewKind.TEACHER: output.views.by_teacher,
            ViewKind.ROOM: output.views.by_room,
        }[kind]
        console.print(f"[red]Error:[/red] {kind.value.title()} '{entity_id}' not found")
        console.print(f"Available: {', '.join(views.keys()) or '-'}")
        raise typer.Exit(code=1)
    console.print(formatter.build_table(output, timetable))


@app.command()
def sample(
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Path to write the sample request (stdout if omitted)",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Random seed",
    ),
    classes: int = typer.Option(
        4,
        "--classes",
        help="Number of classes",
        min=1,
    ),
) -> None:
    """
    Write a generated, solvable sample request.

    Example:
        python -m timetabler sample -o sample.json --seed 7
    """
    request = generate_sample_request(GeneratorConfig(num_classes=classes, seed=seed))
    if output is None:
        typer.echo(request.model_dump_json(indent=2, exclude_none=True))
        return
    save_request(request, output)
    console.print(f"[green]Sample written to:[/green] {output} "
                  f"({len(request.assignments)} assignments, {request.total_sessions} sessions)")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
