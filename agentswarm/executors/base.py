"""Base class for executor backends.

This module defines the abstract interface that the serve process uses to
run a task on an instance's language-model backend.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from ..session.event_log import SessionEventLog


class ExecutorKind(str, Enum):
    """Supported executor backends."""

    CLAUDE = "claude"
    OPENAI = "openai"


@dataclass
class ExecuteOptions:
    """Per-call options for ``ExecutorBackend.execute``."""

    new_session: bool = False
    system_prompt: Optional[str] = None
    allowed_tools: Optional[Sequence[str]] = None
    disallowed_tools: Optional[Sequence[str]] = None


@dataclass
class ExecutionResult:
    """Result of one executor call."""

    result: str
    cost_usd: float = 0.0
    duration_ms: int = 0
    session_id: Optional[str] = None
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ExecutorBackend(ABC):
    """Abstract base class for executor backends.

    Each backend (the Claude CLI, an OpenAI-compatible HTTP API) keeps its
    own conversation/session handle between calls until ``reset_session``.
    """

    def __init__(
        self,
        working_directory: Union[str, Path],
        model: str,
        mcp_config: Union[str, Path, None] = None,
        vibe: bool = False,
        event_log: Optional[SessionEventLog] = None,
        additional_directories: Sequence[str] = (),
        session_id: Optional[str] = None,
        instance_name: Optional[str] = None,
    ):
        self.working_directory = str(working_directory)
        self.model = model
        self.mcp_config = str(mcp_config) if mcp_config else None
        self.vibe = vibe
        self.event_log = event_log
        self.additional_directories = list(additional_directories)
        self.session_id = session_id
        self.instance_name = instance_name or "instance"
        self.logger = logging.getLogger(f"{type(self).__module__}.{self.instance_name}")

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this backend."""
        pass

    @abstractmethod
    def execute(self, prompt: str, options: Optional[ExecuteOptions] = None) -> ExecutionResult:
        """Run one task.

        Args:
            prompt: The task/prompt to execute
            options: Per-call options (new session, system prompt, tools)

        Returns:
            ExecutionResult with the final text and usage data

        Raises:
            ExecutionError: If the backend call failed
            ParseError: If the backend output could not be understood
        """
        pass

    @property
    def has_session(self) -> bool:
        return self.session_id is not None

    def reset_session(self) -> None:
        """Forget the backend session; the next call starts fresh."""
        self.session_id = None

    def log_event(self, event: dict[str, Any]) -> None:
        if self.event_log is not None:
            self.event_log.append(event)

    @staticmethod
    def extract_text_content(content: list[dict[str, Any]]) -> str:
        """Concatenate the text items of a message content array."""
        return "".join(
            item.get("text", "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        )
