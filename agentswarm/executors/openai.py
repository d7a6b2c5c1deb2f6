"""OpenAI-compatible HTTP executor.

Talks to either the chat-completions or the responses API with
``requests``. Tools come from the instance's manifest via MCP stdio
clients, so an OpenAI instance can call its connections exactly like a
Claude instance.
"""

import asyncio
import os
import time
import uuid
from typing import Any, Optional

import requests

from ..config.constants import (
    API_VERSION_CHAT,
    API_VERSION_RESPONSES,
    DEFAULT_OPENAI_BASE_URL,
    DEFAULT_OPENAI_TEMPERATURE,
    DEFAULT_OPENAI_TOKEN_ENV,
    MAX_TOOL_TURNS,
    OPENAI_REQUEST_TIMEOUT_SECONDS,
)
from ..exceptions import ExecutionError, ParseError
from .base import ExecuteOptions, ExecutionResult, ExecutorBackend
from .mcp_tools import McpToolbox, load_manifest_servers
from .tool_loop import ToolCall, ToolOutput, Turn, run_tool_loop


class OpenAIExecutor(ExecutorBackend):
    """Executor for OpenAI-compatible HTTP APIs.

    Conversation state survives between calls until ``reset_session``:
    the message list for chat completions, the previous response id for
    the responses API. The latter doubles as the resumable session id.
    """

    def __init__(
        self,
        *args: Any,
        temperature: Optional[float] = DEFAULT_OPENAI_TEMPERATURE,
        api_version: Optional[str] = API_VERSION_CHAT,
        openai_token_env: Optional[str] = DEFAULT_OPENAI_TOKEN_ENV,
        base_url: Optional[str] = None,
        reasoning_effort: Optional[str] = None,
        http: Optional[requests.Session] = None,
        max_turns: int = MAX_TOOL_TURNS,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        openai_token_env = openai_token_env or DEFAULT_OPENAI_TOKEN_ENV
        api_key = os.environ.get(openai_token_env)
        if not api_key:
            raise ExecutionError(
                f"OpenAI API key not found in environment variable: {openai_token_env}"
            )
        self.api_key = api_key
        self.temperature = DEFAULT_OPENAI_TEMPERATURE if temperature is None else temperature
        self.api_version = api_version or API_VERSION_CHAT
        self.base_url = (base_url or DEFAULT_OPENAI_BASE_URL).rstrip("/")
        self.reasoning_effort = reasoning_effort
        self.http = http or requests.Session()
        self.max_turns = max_turns

        self.messages: list[dict[str, Any]] = []
        self.previous_response_id: Optional[str] = None
        if self.api_version == API_VERSION_RESPONSES and self.session_id:
            self.previous_response_id = self.session_id
        self.logger.info("Started OpenAI executor for instance: %s", self.instance_name)

    @property
    def name(self) -> str:
        return "OpenAI"

    def reset_session(self) -> None:
        super().reset_session()
        self.messages = []
        self.previous_response_id = None

    def execute(self, prompt: str, options: Optional[ExecuteOptions] = None) -> ExecutionResult:
        options = options or ExecuteOptions()
        if options.new_session:
            self.reset_session()

        start = time.monotonic()
        text = asyncio.run(self._execute_async(prompt, options))
        duration_ms = int((time.monotonic() - start) * 1000)

        if self.api_version == API_VERSION_RESPONSES:
            self.session_id = self.previous_response_id
        elif self.session_id is None:
            self.session_id = f"chat_{uuid.uuid4().hex}"

        # Counted as a call in the session hierarchy; no per-token cost data
        self.log_event({"type": "result", "result": text, "duration_ms": duration_ms})
        self.logger.info("(%dms) %s finished", duration_ms, self.instance_name)
        return ExecutionResult(result=text, duration_ms=duration_ms, session_id=self.session_id)

    async def _execute_async(self, prompt: str, options: ExecuteOptions) -> str:
        servers = load_manifest_servers(self.mcp_config)
        async with McpToolbox(servers) as toolbox:
            if self.api_version == API_VERSION_RESPONSES:
                request_turn = self._responses_turns(prompt, options, toolbox)
            else:
                request_turn = self._chat_turns(prompt, options, toolbox)
            return await run_tool_loop(
                request_turn,
                toolbox.call_tool,
                max_turns=self.max_turns,
                on_event=self.log_event,
            )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = self.http.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=OPENAI_REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            self.log_event({"type": "openai_error", "api": endpoint, "error": str(e)})
            raise ExecutionError(f"OpenAI request failed: {e}", url=url) from e

        if not response.ok:
            body = response.text[:500]
            self.log_event(
                {"type": "openai_error", "api": endpoint, "status": response.status_code, "body": body}
            )
            raise ExecutionError(
                f"OpenAI API returned {response.status_code}", url=url, body=body
            )
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from OpenAI API: {e}", url=url) from e

    def _sampling_params(self) -> dict[str, Any]:
        if self.reasoning_effort:
            if self.api_version == API_VERSION_RESPONSES:
                return {"reasoning": {"effort": self.reasoning_effort}}
            return {"reasoning_effort": self.reasoning_effort}
        if self.temperature is not None:
            return {"temperature": self.temperature}
        return {}

    # ------------------------------------------------------------------
    # Chat completions
    # ------------------------------------------------------------------

    def _chat_turns(self, prompt: str, options: ExecuteOptions, toolbox: McpToolbox):
        # History only grows once the exchange ends in a final assistant message
        pending: list[dict[str, Any]] = []
        if not self.messages and options.system_prompt:
            pending.append({"role": "system", "content": options.system_prompt})
        pending.append({"role": "user", "content": prompt})
        tools = toolbox.chat_tools()
        depth = 0

        async def request_turn(outputs: list[ToolOutput]) -> Turn:
            nonlocal depth
            for output in outputs:
                pending.append(
                    {
                        "role": "tool",
                        "tool_call_id": output.call_id,
                        "name": output.name,
                        "content": output.content,
                    }
                )

            payload: dict[str, Any] = {"model": self.model, "messages": self.messages + pending}
            payload.update(self._sampling_params())
            if tools:
                payload["tools"] = tools

            self.log_event({"type": "openai_request", "api": "chat", "depth": depth, "parameters": payload})
            response = await asyncio.to_thread(self._post, "chat/completions", payload)
            self.log_event({"type": "openai_response", "api": "chat", "depth": depth, "response": response})
            depth += 1

            try:
                message = response["choices"][0]["message"]
            except (KeyError, IndexError, TypeError) as e:
                raise ParseError("No message in OpenAI response") from e

            tool_calls = message.get("tool_calls") or []
            if tool_calls:
                pending.append({"role": "assistant", "content": None, "tool_calls": tool_calls})
                return Turn(
                    tool_calls=[
                        ToolCall(
                            call_id=call["id"],
                            name=call["function"]["name"],
                            arguments=call["function"].get("arguments"),
                        )
                        for call in tool_calls
                    ]
                )

            text = message.get("content") or ""
            pending.append({"role": "assistant", "content": text})
            self.messages.extend(pending)
            return Turn(text=text)

        return request_turn

    # ------------------------------------------------------------------
    # Responses API
    # ------------------------------------------------------------------

    def _responses_turns(self, prompt: str, options: ExecuteOptions, toolbox: McpToolbox):
        tools = toolbox.response_tools()
        if self.previous_response_id is None and options.system_prompt:
            first_input: Any = f"{options.system_prompt}\n\n{prompt}"
        else:
            first_input = prompt
        response_id = self.previous_response_id
        depth = 0

        async def request_turn(outputs: list[ToolOutput]) -> Turn:
            nonlocal depth, response_id
            payload: dict[str, Any] = {"model": self.model}
            if outputs:
                payload["input"] = [
                    {"type": "function_call_output", "call_id": o.call_id, "output": o.content}
                    for o in outputs
                ]
            else:
                payload["input"] = first_input
            if response_id:
                payload["previous_response_id"] = response_id
            payload.update(self._sampling_params())
            if tools:
                payload["tools"] = tools

            self.log_event({"type": "openai_request", "api": "responses", "depth": depth, "parameters": payload})
            response = await asyncio.to_thread(self._post, "responses", payload)
            self.log_event({"type": "openai_response", "api": "responses", "depth": depth, "response": response})
            depth += 1

            if response.get("id"):
                response_id = response["id"]

            output = response.get("output")
            if not isinstance(output, list):
                raise ParseError("No output in OpenAI response")

            calls = [item for item in output if item.get("type") == "function_call"]
            if calls:
                return Turn(
                    tool_calls=[
                        ToolCall(
                            call_id=item.get("call_id") or item.get("id"),
                            name=item["name"],
                            arguments=item.get("arguments"),
                        )
                        for item in calls
                    ]
                )
            # Only a finished exchange moves the chain forward
            self.previous_response_id = response_id
            return Turn(text=_response_text(output))

        return request_turn


def _response_text(output: list[dict[str, Any]]) -> str:
    for item in output:
        content = item.get("content")
        if isinstance(content, list):
            for part in content:
                if isinstance(part, dict) and part.get("text") is not None:
                    return part["text"]
    return ""
