"""Tests for data loading."""

from __future__ import annotations

import json

import pytest

from timetabler.data.loader import (
    convert_keys_to_snake_case,
    load_request,
    load_schedule,
    parse_request,
    save_request,
)
from timetabler.data.models import RoomCategory
from timetabler.errors import ConfigError


@pytest.fixture
def request_data() -> dict:
    """Minimal camelCase request document."""
    return {
        "config": {
            "days": ["Monday", "Tuesday"],
            "slots": [
                {"index": 0, "start": "07:00", "end": "07:45"},
                {"index": 1, "start": "07:50", "end": "08:35"},
            ],
            "schoolYear": "2024-2025",
            "semester": "1",
        },
        "teachers": [
            {"id": "T1", "name": "Ann Lee", "subjectIds": ["math"], "availability": [[True, True], [False, True]]},
        ],
        "rooms": [{"id": "R1", "code": "101"}],
        "assignments": [
            {
                "id": "A1", "classId": "10A", "subjectId": "math", "teacherId": "T1",
                "schoolYear": "2024-2025", "semester": "1", "weeklySessions": 2, "maxPerDay": 1,
            },
        ],
        "roomRequirements": {"math": ["normal"], "artHistory": ["normal"]},
        "blocked": [{"kind": "class", "entityId": "10A", "day": "Monday", "slotIndex": 0}],
    }


class TestKeyConversion:
    """Tests for camelCase -> snake_case conversion."""

    def test_nested_keys(self):
        data = {"outerKey": [{"innerKey": 1, "slotIndex": 2}]}
        assert convert_keys_to_snake_case(data) == {"outer_key": [{"inner_key": 1, "slot_index": 2}]}

    def test_room_requirement_keys_are_ids(self):
        data = {"roomRequirements": {"artHistory": ["lab"]}}
        assert convert_keys_to_snake_case(data) == {"room_requirements": {"artHistory": ["lab"]}}


class TestParseRequest:
    def test_camel_case_document(self, request_data):
        request = parse_request(request_data)

        assert request.config.school_year == "2024-2025"
        assert request.get_teacher("T1").subject_ids == ["math"]
        assert request.get_assignment("A1").max_per_day == 1
        assert request.acceptable_categories("artHistory") == frozenset({RoomCategory.NORMAL})
        assert request.blocked[0].slot_index == 0

    def test_session_rules(self, request_data):
        request_data["config"]["sessions"] = {"mainShift": [0], "extraShift": [1]}
        request_data["assignments"][0].update({
            "weeklySessions": 2, "maxPerDay": 2, "doubleSessions": 1, "allowConsecutive": True, "session": "mainShift",
        })
        request = parse_request(request_data)

        assert request.config.sessions == {"mainShift": [0], "extraShift": [1]}
        assignment = request.get_assignment("A1")
        assert assignment.double_sessions == 1
        assert assignment.allow_consecutive
        assert assignment.session == "mainShift"

    def test_schema_errors_collected(self, request_data):
        request_data["assignments"][0]["weeklySessions"] = 0
        request_data["rooms"][0]["category"] = "gym"
        with pytest.raises(ConfigError) as exc_info:
            parse_request(request_data)
        assert len(exc_info.value.issues) == 2

    def test_unknown_field_rejected(self, request_data):
        request_data["rooms"][0]["capacity"] = 30
        with pytest.raises(ConfigError, match="capacity"):
            parse_request(request_data)


class TestFiles:
    """Tests for reading and writing JSON files."""

    def test_load_and_save_round_trip(self, request_data, tmp_path):
        path = tmp_path / "input.json"
        path.write_text(json.dumps(request_data))
        request = load_request(path)

        saved = tmp_path / "saved" / "input.json"
        save_request(request, saved)
        assert load_request(saved) == request

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="invalid JSON"):
            load_request(path)

    def test_top_level_must_be_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[]")
        with pytest.raises(ConfigError, match="JSON object"):
            load_request(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_request(tmp_path / "missing.json")


class TestLoadSchedule:
    def test_extra_fields_ignored(self, tmp_path):
        path = tmp_path / "output.json"
        path.write_text(json.dumps({
            "status": "complete",
            "placements": [
                {"day": "Monday", "slotIndex": 1, "assignmentId": "A1", "roomId": "R1", "teacherName": "Ann"},
            ],
        }))
        schedule = load_schedule(path)
        assert schedule.session_count == 1
        assert schedule.placements[0].slot_index == 1

    def test_missing_placements(self, tmp_path):
        path = tmp_path / "output.json"
        path.write_text(json.dumps({"status": "complete"}))
        with pytest.raises(ConfigError, match="placements"):
            load_schedule(path)

    def test_invalid_placement(self, tmp_path):
        path = tmp_path / "output.json"
        path.write_text(json.dumps({"placements": [{"day": "Monday"}]}))
        with pytest.raises(ConfigError, match="invalid placement"):
            load_schedule(path)
