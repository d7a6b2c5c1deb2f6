"""Provider-neutral model/tool loop for HTTP executors.

One model turn either answers with text or asks for tool calls. Tool calls
of a turn run concurrently and their outputs are fed into the next turn.
The loop is iterative and bounded by ``max_turns``.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from ..config.constants import MAX_TOOL_TURNS
from ..exceptions import ExecutionError

logger = logging.getLogger(__name__)

ToolInvoker = Callable[[str, dict[str, Any]], Awaitable[str]]
EventSink = Callable[[dict[str, Any]], None]


@dataclass
class ToolCall:
    """A tool call requested by the model."""

    call_id: str
    name: str
    arguments: Union[str, dict[str, Any], None] = None

    def parsed_arguments(self) -> dict[str, Any]:
        """Arguments as a mapping; providers send them as a JSON string."""
        if self.arguments is None or self.arguments == "":
            return {}
        if isinstance(self.arguments, dict):
            return self.arguments
        value = json.loads(self.arguments)
        if not isinstance(value, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(value).__name__}")
        return value


@dataclass
class ToolOutput:
    call_id: str
    name: str
    content: str
    is_error: bool = False


@dataclass
class Turn:
    """What the model produced in one round trip."""

    text: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)


async def _run_one(call: ToolCall, invoke: ToolInvoker, on_event: Optional[EventSink]) -> ToolOutput:
    try:
        arguments = call.parsed_arguments()
        logger.info("Executing tool: %s with args: %s", call.name, arguments)
        content = await invoke(call.name, arguments)
    except Exception as e:
        logger.error("Tool execution failed for %s: %s", call.name, e)
        if on_event:
            on_event(
                {
                    "type": "tool_error",
                    "tool_name": call.name,
                    "call_id": call.call_id,
                    "arguments": call.arguments,
                    "error": {"class": type(e).__name__, "message": str(e)},
                }
            )
        return ToolOutput(call.call_id, call.name, f"Error: {e}", is_error=True)

    if on_event:
        on_event(
            {
                "type": "tool_execution",
                "tool_name": call.name,
                "call_id": call.call_id,
                "arguments": call.arguments,
                "result": content,
            }
        )
    return ToolOutput(call.call_id, call.name, content)


async def execute_tool_calls(
    calls: Sequence[ToolCall],
    invoke: ToolInvoker,
    on_event: Optional[EventSink] = None,
) -> list[ToolOutput]:
    """Run every call of one turn concurrently.

    A failing call produces an error output instead of aborting its
    siblings. Outputs come back in request order, one per call.
    """
    if not calls:
        return []
    if on_event:
        on_event(
            {
                "type": "tool_calls",
                "tool_calls": [
                    {"call_id": c.call_id, "name": c.name, "arguments": c.arguments} for c in calls
                ],
            }
        )

    return list(await asyncio.gather(*(_run_one(call, invoke, on_event) for call in calls)))


async def run_tool_loop(
    request_turn: Callable[[list[ToolOutput]], Awaitable[Turn]],
    invoke: ToolInvoker,
    max_turns: int = MAX_TOOL_TURNS,
    on_event: Optional[EventSink] = None,
) -> str:
    """Drive model turns until one answers with text.

    Args:
        request_turn: Sends the previous turn's tool outputs (empty on the
            first turn) to the model and returns its next ``Turn``
        invoke: Executes one tool by name
        max_turns: Upper bound on model round trips
        on_event: Receives tool events for the session log

    Raises:
        ExecutionError: If the model is still calling tools after max_turns
    """
    outputs: list[ToolOutput] = []
    for depth in range(max_turns):
        turn = await request_turn(outputs)
        if not turn.tool_calls:
            return turn.text or ""
        logger.info("Turn %d requested %d tool call(s)", depth, len(turn.tool_calls))
        outputs = await execute_tool_calls(turn.tool_calls, invoke, on_event)

    raise ExecutionError("Maximum tool call depth exceeded", max_turns=max_turns)
