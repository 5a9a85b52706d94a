"""scriptenv - run standalone Python scripts in isolated, cached environments.

This package reads inline script metadata, selects a matching interpreter,
builds (or reuses) a virtual environment holding the script's dependencies,
and runs the script inside it.
"""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "config",
    "environment",
    "lock",
    "metadata",
    "project",
    "python",
    "requirements",
    "runner",
]
