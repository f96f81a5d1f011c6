"""UI package exports for the CLI router and plain-text rendering."""

from siteplane.ui.cli import CLIError, build_parser, main, run_cli
from siteplane.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "main",
    "run_cli",
]
