"""Executor backends that run one instance's tasks."""

from .base import ExecuteOptions, ExecutionResult, ExecutorBackend, ExecutorKind
from .factory import create_executor

__all__ = [
    "ExecuteOptions",
    "ExecutionResult",
    "ExecutorBackend",
    "ExecutorKind",
    "create_executor",
]
