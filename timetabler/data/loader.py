"""Load generation requests and schedules from JSON files."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Union

from pydantic import ValidationError

from ..errors import ConfigError
from .models import GenerationRequest, Placement, Schedule

# Keys whose mapping keys are ids, not field names
ID_KEYED_FIELDS = {"room_requirements", "sessions"}


def _to_snake_case(name: str) -> str:
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.lower()


def convert_keys_to_snake_case(obj: Any) -> Any:
    """Recursively convert dictionary keys from camelCase to snake_case."""
    if isinstance(obj, dict):
        converted = {}
        for key, value in obj.items():
            snake = _to_snake_case(key)
            if snake in ID_KEYED_FIELDS and isinstance(value, dict):
                converted[snake] = dict(value)
            else:
                converted[snake] = convert_keys_to_snake_case(value)
        return converted
    elif isinstance(obj, list):
        return [convert_keys_to_snake_case(item) for item in obj]
    else:
        return obj


def _read_json(path: Union[str, Path]) -> Any:
    path = Path(path)
    with open(path) as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path}: invalid JSON ({e})") from e


def validation_issues(error: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into readable issue strings."""
    issues = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"])
        issues.append(f"{location}: {err['msg']}" if location else err["msg"])
    return issues


def parse_request(data: dict) -> GenerationRequest:
    """
    Validate a request dictionary (camelCase or snake_case keys).

    Raises:
        ConfigError: If the data does not match the request schema
    """
    try:
        return GenerationRequest.model_validate(convert_keys_to_snake_case(data))
    except ValidationError as e:
        raise ConfigError(validation_issues(e)) from e


def load_request(path: Union[str, Path]) -> GenerationRequest:
    """
    Load a GenerationRequest from a JSON file.

    Args:
        path: Path to the JSON file

    Returns:
        Validated GenerationRequest

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the file isn't valid JSON or fails schema validation
    """
    data = _read_json(path)
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a JSON object at the top level")
    return parse_request(data)


def save_request(request: GenerationRequest, path: Union[str, Path], indent: int = 2) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(request.model_dump_json(indent=indent, exclude_none=True), encoding="utf-8")


def load_schedule(path: Union[str, Path]) -> Schedule:
    """
    Load a Schedule from a JSON file.

    Accepts generator output files and plain {"placements": [...]} documents;
    extra per-placement fields (times, names) are ignored.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the file has no usable placements list
    """
    data = convert_keys_to_snake_case(_read_json(path))
    if not isinstance(data, dict) or not isinstance(data.get("placements"), list):
        raise ConfigError(f"{path}: expected an object with a 'placements' list")

    placements = []
    try:
        for item in data["placements"]:
            placements.append(Placement(
                day=item.get("day"),
                slot_index=item.get("slot_index"),
                assignment_id=item.get("assignment_id"),
                room_id=item.get("room_id"),
            ))
    except (ValidationError, AttributeError) as e:
        raise ConfigError(f"{path}: invalid placement ({e})") from e
    return Schedule(placements=tuple(placements))
