"""Factory for creating executor backends."""

from typing import Any, Union

from .base import ExecutorBackend, ExecutorKind
from .claude import ClaudeCodeExecutor
from .openai import OpenAIExecutor

# Registry of executor classes
_EXECUTORS: dict[ExecutorKind, type[ExecutorBackend]] = {
    ExecutorKind.CLAUDE: ClaudeCodeExecutor,
    ExecutorKind.OPENAI: OpenAIExecutor,
}


def create_executor(kind: Union[str, ExecutorKind], **kwargs: Any) -> ExecutorBackend:
    """Create the executor for a provider.

    Args:
        kind: "claude", "openai" or an ExecutorKind
        **kwargs: Constructor arguments for the selected backend

    Raises:
        ValueError: If kind is not recognized

    Examples:
        >>> executor = create_executor("claude", working_directory=".", model="sonnet")
    """
    if isinstance(kind, str):
        try:
            kind = ExecutorKind(kind.lower())
        except ValueError:
            valid = ", ".join(k.value for k in ExecutorKind)
            raise ValueError(f"Unknown executor: {kind}. Valid options: {valid}")

    executor_class = _EXECUTORS.get(kind)
    if executor_class is None:
        raise ValueError(f"No executor registered for: {kind}")
    return executor_class(**kwargs)

