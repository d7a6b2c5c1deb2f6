"""Shared console output utilities."""

from rich.console import Console

from ..config.settings import is_prompt_mode

# Shared console instance for all CLI output
# Uses force_terminal=True to ensure color output even when not connected to a terminal
console = Console(force_terminal=True, color_system="auto")

# Errors go to stderr so prompt-mode stdout stays clean
error_console = Console(stderr=True, force_terminal=True, color_system="auto")


def say(message: str, style: str | None = None) -> None:
    """Print a status line unless the swarm runs in non-interactive prompt mode."""
    if is_prompt_mode():
        return
    console.print(message, style=style)


def print_error(message: str) -> None:
    error_console.print(f"[red]{message}[/red]")

