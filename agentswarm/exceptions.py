"""Custom exception hierarchy for agentswarm.

Exception Hierarchy:
    SwarmError (base)
    ├── ConfigError - malformed or invalid swarm declaration
    │   └── GraphError - dangling connection or cycle in the instance graph
    ├── WorktreeError - git worktree provisioning failed
    ├── ExecutionError - an executor backend call failed
    │   └── ParseError - backend output could not be parsed
    └── SessionError - a session directory is missing or unusable

Pre-flight errors (ConfigError, GraphError, WorktreeError) abort the whole
swarm before any process starts. Executor errors raised inside a serve
process are reported back to the calling instance as tool errors.

Usage:
    from agentswarm.exceptions import ConfigError

    raise ConfigError("Instance 'worker' missing required 'description' field")
"""

from typing import Any


class SwarmError(Exception):
    """Base exception for all agentswarm errors.

    Attributes:
        message: Human-readable error description
        context: Additional context about the error (e.g. paths, instance names)
    """

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ConfigError(SwarmError):
    """Invalid or malformed swarm configuration."""

    pass


class GraphError(ConfigError):
    """The instance graph has a dangling connection or a cycle."""

    pass


class WorktreeError(SwarmError):
    """A git worktree operation failed."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        stderr: str | None = None,
        **context: Any,
    ) -> None:
        if command:
            context["command"] = " ".join(command)
        if stderr:
            stderr = stderr.strip()
            context["stderr"] = stderr[:200] + "..." if len(stderr) > 200 else stderr
        super().__init__(message, **context)


class ExecutionError(SwarmError):
    """An executor backend invocation failed."""

    pass


class ParseError(ExecutionError):
    """Executor backend output could not be parsed."""

    pass


class SessionError(SwarmError):
    """A session could not be located or restored."""

    pass
