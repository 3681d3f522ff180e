"""
Entry point for running the generator as a module.

Usage:
    python -m timetabler generate input.json -o output.json
    python -m timetabler validate input.json
    python -m timetabler view output.json --class 10A
"""

from timetabler.cli import main

if __name__ == "__main__":
    main()
