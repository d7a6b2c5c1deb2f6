"""CLI utilities for error handling."""

import functools
import logging
from typing import Callable, TypeVar

import typer

from ..config.settings import is_debug
from ..exceptions import SwarmError
from .output import print_error

logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable)


def handle_cli_errors(action: str) -> Callable[[F], F]:
    """Decorator that catches exceptions and prints user-friendly errors.

    Swarm errors print their message as-is; anything else is reported as
    unexpected. Both exit with status 1.

    Args:
        action: Description of the action being performed (e.g., "starting swarm")

    Example:
        @handle_cli_errors("starting swarm")
        def start(config: str):
            ...
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except typer.Exit:
                raise
            except SwarmError as e:
                logger.error("Error %s: %s", action, e)
                print_error(str(e))
                raise typer.Exit(1) from e
            except Exception as e:
                logger.exception("Unexpected error %s", action)
                print_error(f"Unexpected error {action}: {e}")
                if is_debug():
                    raise
                raise typer.Exit(1) from e
        return wrapper  # type: ignore[return-value]
    return decorator
