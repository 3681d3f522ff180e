"""Tests for sample data generator."""

from __future__ import annotations

from timetabler.data.generator import SUBJECTS, GeneratorConfig, generate_sample_request, generate_small_request
from timetabler.data.models import RoomCategory
from timetabler.service import check_request, generate_request
from timetabler.validator import validate_schedule


class TestGeneratorConfig:
    """Tests for GeneratorConfig."""

    def test_default_config(self):
        config = GeneratorConfig()
        assert config.num_classes == 4
        assert len(config.days) == 5
        assert config.slots_per_day == 6


class TestGenerateSampleRequest:
    """Tests for generate_sample_request."""

    def test_shape(self):
        request = generate_small_request(seed=42)

        assert request.config.grid_size == 30
        assert request.classes == ["10A", "10B", "11A", "11B"]
        assert len(request.assignments) == 4 * len(SUBJECTS)
        assert len(request.teachers) == 2 * len(SUBJECTS)
        assert request.total_sessions == 4 * sum(s["sessions"] for s in SUBJECTS)
        assert {r.category for r in request.rooms} == set(RoomCategory)

    def test_slot_times(self):
        request = generate_sample_request(GeneratorConfig(seed=1))
        first, second = request.config.slots[:2]
        assert (first.start, first.end) == ("07:00", "07:45")
        assert second.start == "07:50"

    def test_seed_makes_reproducible(self):
        first = generate_sample_request(GeneratorConfig(seed=7))
        second = generate_sample_request(GeneratorConfig(seed=7))
        assert first == second

    def test_availability_limits(self):
        config = GeneratorConfig(seed=3, max_unavailable_cells=2)
        request = generate_sample_request(config)
        for teacher in request.teachers:
            assert teacher.matches_grid(5, 6)
            blocked = sum(not available for row in teacher.availability for available in row)
            assert blocked <= 2

    def test_passes_input_checks(self):
        assert check_request(generate_small_request(seed=42)) == []

    def test_odd_class_count(self):
        request = generate_sample_request(GeneratorConfig(num_classes=3, seed=5))
        assert request.classes == ["10A", "10B", "11A"]
        assert check_request(request) == []


class TestSolvability:
    def test_small_request_solves_completely(self):
        request = generate_small_request(seed=42)
        result = generate_request(request, deadline=60)

        assert result.is_complete
        assert validate_schedule(result.schedule, request, require_complete=True) == []
