"""Claude CLI configuration.

Flag names for the ``claude`` binary, shared by the orchestrator (which
launches the interactive root instance) and the Claude executor (which
runs child instances non-interactively).
"""

import os
from dataclasses import dataclass, replace
from enum import Enum

from .constants import ENV_CLAUDE_BINARY


class CliTool(str, Enum):
    """Supported CLI tools."""

    CLAUDE = "claude"


@dataclass
class CliConfig:
    """Configuration for a CLI tool."""

    # Command structure
    binary: list[str]  # e.g., ["claude"]
    prompt_flag: str  # "-p"
    print_flag: str  # "--print"

    # Output format
    output_format_flag: str  # "--output-format"
    default_output_format: str  # "stream-json"
    requires_verbose_for_stream: bool  # Claude needs --verbose for stream-json

    # Model configuration
    model_flag: str  # "--model"

    # Tool control
    allowed_tools_flag: str  # "--allowedTools"
    disallowed_tools_flag: str  # "--disallowedTools"
    skip_permissions_flag: str  # "--dangerously-skip-permissions"
    permission_prompt_tool_flag: str  # "--permission-prompt-tool"

    # Session and context
    mcp_config_flag: str  # "--mcp-config"
    resume_flag: str  # "--resume"
    system_prompt_flag: str  # "--system-prompt"
    append_system_prompt_flag: str  # "--append-system-prompt"
    add_dir_flag: str  # "--add-dir"


CLI_CONFIGS: dict[CliTool, CliConfig] = {
    CliTool.CLAUDE: CliConfig(
        binary=["claude"],
        prompt_flag="-p",
        print_flag="--print",
        output_format_flag="--output-format",
        default_output_format="stream-json",
        requires_verbose_for_stream=True,
        model_flag="--model",
        allowed_tools_flag="--allowedTools",
        disallowed_tools_flag="--disallowedTools",
        skip_permissions_flag="--dangerously-skip-permissions",
        permission_prompt_tool_flag="--permission-prompt-tool",
        mcp_config_flag="--mcp-config",
        resume_flag="--resume",
        system_prompt_flag="--system-prompt",
        append_system_prompt_flag="--append-system-prompt",
        add_dir_flag="--add-dir",
    ),
}


def get_cli_config(tool: CliTool = CliTool.CLAUDE) -> CliConfig:
    """Get the CLI configuration, honoring AGENTSWARM_CLAUDE_BINARY overrides."""
    config = CLI_CONFIGS[tool]
    override = os.environ.get(ENV_CLAUDE_BINARY)
    if override:
        return replace(config, binary=[override])
    return config
