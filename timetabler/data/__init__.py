"""Input models, loading and sample data."""

from .loader import load_request, load_schedule, parse_request, save_request
from .generator import (
    GeneratorConfig,
    generate_sample_request,
    generate_small_request,
)

__all__ = [
    # Loader
    "load_request",
    "load_schedule",
    "parse_request",
    "save_request",
    # Generator
    "GeneratorConfig",
    "generate_sample_request",
    "generate_small_request",
]
