"""CLI package for switchboard.

Re-exports the click group used by the pyproject.toml entry point.
"""

from switchboard.cli.main import cli  # noqa: F401
