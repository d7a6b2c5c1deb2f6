"""Configuration utilities for agentswarm."""

import os
from pathlib import Path
from typing import Optional, Tuple

from .constants import (
    DEFAULT_HOME,
    ENV_DEBUG,
    ENV_EXECUTABLE,
    ENV_HOME,
    ENV_PROMPT,
    ENV_VAR_DEFINITIONS,
)


def swarm_home() -> Path:
    """Get the agentswarm home directory, respecting AGENTSWARM_HOME.

    Tests point AGENTSWARM_HOME at a temp directory so they never touch
    the real ~/.agentswarm.
    """
    override = os.environ.get(ENV_HOME)
    if override:
        return Path(override).expanduser()
    return DEFAULT_HOME


def validate_env_var(name: str, value: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Validate a single environment variable value.

    Returns:
        Tuple of (is_valid, error_message).
    """
    if name not in ENV_VAR_DEFINITIONS or value is None:
        return True, None

    valid_values = ENV_VAR_DEFINITIONS[name].get("valid_values")
    if valid_values is None:
        return True, None

    if value.lower() not in [v.lower() for v in valid_values]:
        return False, f"Invalid value '{value}' for {name}. Valid values: {valid_values}"

    return True, None


def get_env_var(name: str, validate: bool = True) -> Optional[str]:
    """Get an environment variable with optional validation.

    Args:
        name: The environment variable name.
        validate: Whether to validate the value against known definitions.

    Returns:
        The environment variable value, or its declared default if not set.

    Raises:
        ValueError: If validate=True and the value is invalid.
    """
    value = os.environ.get(name)

    if validate and value is not None:
        is_valid, error = validate_env_var(name, value)
        if not is_valid:
            raise ValueError(error)

    if value is None and name in ENV_VAR_DEFINITIONS:
        return ENV_VAR_DEFINITIONS[name].get("default")

    return value


def is_prompt_mode() -> bool:
    """True when the swarm runs non-interactively and console output is suppressed."""
    return os.environ.get(ENV_PROMPT) == "1"


def is_debug() -> bool:
    return (os.environ.get(ENV_DEBUG) or "").lower() in ("1", "true")


def swarm_executable() -> str:
    """Command that generated manifests use to re-enter agentswarm."""
    return get_env_var(ENV_EXECUTABLE, validate=False) or "agentswarm"


def get_subprocess_env() -> dict:
    """Get a clean environment dict for spawning CLI subprocesses.

    Removes environment variables that prevent nested execution, such as
    CLAUDECODE which blocks Claude Code from running inside another session.
    """
    return {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}
