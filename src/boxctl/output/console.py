"""Rich Console factory and theme for boxctl output.

Creates Console instances that render to a StringIO buffer, preserving
the ``format_result() -> str`` contract.  In non-TTY environments
(tests, pipes) Rich automatically disables color codes.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

BOX_THEME = Theme(
    {
        "box.ok": "bold green",
        "box.error": "bold red",
        "box.warning": "bold yellow",
        "box.op": "bold cyan",
        "box.key": "dim",
        "box.name": "bold blue",
        "box.path": "dim",
        "box.port": "magenta",
        "box.running": "green",
        "box.stopped": "red",
        "box.unknown": "dim",
    }
)


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer.

    Args:
        no_color: Disable ANSI escape codes (used in tests).
        width: Override terminal width (useful for consistent test output).
    """
    return Console(
        file=StringIO(),
        theme=BOX_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def style_for_state(running: bool | None) -> tuple[str, str]:
    """``(label, style)`` for a container's running state."""
    if running is None:
        return "unknown", "box.unknown"
    if running:
        return "running", "box.running"
    return "stopped", "box.stopped"
