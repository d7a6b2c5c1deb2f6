"""
Centralized constants for agentswarm.

Environment variable names, file names inside a session directory, and
the fixed vocabularies the configuration parser validates against.
"""

from pathlib import Path

# =============================================================================
# CONFIGURATION SCHEMA
# =============================================================================

SUPPORTED_VERSION = 1
DEFAULT_CONFIG_FILE = "agentswarm.yml"
DEFAULT_MODEL = "sonnet"
DEFAULT_DIRECTORY = "."

PROVIDER_CLAUDE = "claude"
PROVIDER_OPENAI = "openai"
VALID_PROVIDERS = (PROVIDER_CLAUDE, PROVIDER_OPENAI)

API_VERSION_CHAT = "chat_completion"
API_VERSION_RESPONSES = "responses"
VALID_API_VERSIONS = (API_VERSION_CHAT, API_VERSION_RESPONSES)

# Fields only meaningful for the openai provider
OPENAI_ONLY_FIELDS = (
    "temperature",
    "api_version",
    "openai_token_env",
    "base_url",
    "reasoning_effort",
)

DEFAULT_OPENAI_TEMPERATURE = 0.3
DEFAULT_OPENAI_TOKEN_ENV = "OPENAI_API_KEY"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENAI_REQUEST_TIMEOUT_SECONDS = 600
MAX_TOOL_TURNS = 100

MCP_TYPE_STDIO = "stdio"
MCP_TYPE_SSE = "sse"
VALID_MCP_TYPES = (MCP_TYPE_STDIO, MCP_TYPE_SSE)

# =============================================================================
# ENVIRONMENT
# =============================================================================

ENV_HOME = "AGENTSWARM_HOME"
ENV_SESSION_PATH = "AGENTSWARM_SESSION_PATH"
ENV_SESSION_ID = "AGENTSWARM_SESSION_ID"
ENV_START_DIR = "AGENTSWARM_START_DIR"
ENV_PROMPT = "AGENTSWARM_PROMPT"
ENV_DEBUG = "AGENTSWARM_DEBUG"
ENV_EXECUTABLE = "AGENTSWARM_EXECUTABLE"
ENV_CLAUDE_BINARY = "AGENTSWARM_CLAUDE_BINARY"

DEFAULT_HOME = Path.home() / ".agentswarm"
DEFAULT_EXECUTABLE = "agentswarm"

ENV_VAR_DEFINITIONS: dict[str, dict] = {
    ENV_HOME: {
        "description": "Root directory for sessions, run symlinks and worktrees",
        "default": None,
        "valid_values": None,
    },
    ENV_SESSION_PATH: {
        "description": "Directory of the active session (set by the orchestrator)",
        "default": None,
        "valid_values": None,
    },
    ENV_SESSION_ID: {
        "description": "Identifier of the active session",
        "default": None,
        "valid_values": None,
    },
    ENV_START_DIR: {
        "description": "Directory the swarm was started from",
        "default": None,
        "valid_values": None,
    },
    ENV_PROMPT: {
        "description": "Set to 1 when running non-interactively with --prompt",
        "default": None,
        "valid_values": ["0", "1"],
    },
    ENV_DEBUG: {
        "description": "Enable debug logging in spawned processes",
        "default": None,
        "valid_values": ["0", "1", "true", "false"],
    },
    ENV_EXECUTABLE: {
        "description": "Command used to re-enter agentswarm in generated manifests",
        "default": DEFAULT_EXECUTABLE,
        "valid_values": None,
    },
    ENV_CLAUDE_BINARY: {
        "description": "Path to the claude binary (defaults to claude on PATH)",
        "default": None,
        "valid_values": None,
    },
}

# =============================================================================
# SESSION LAYOUT
# =============================================================================

SESSIONS_DIR = "sessions"
RUN_DIR = "run"
WORKTREES_DIR = "worktrees"

SESSION_LOG = "session.log"
SESSION_EVENT_LOG = "session.log.json"
PIDS_DIR = "pids"
STATE_DIR = "state"
SESSION_METADATA = "session_metadata.json"
CONFIG_SNAPSHOT = "config.yml"
START_DIRECTORY_FILE = "start_directory"
MANIFEST_SUFFIX = ".mcp.json"
PERMISSIONS_FALLBACK_LOG = "permissions.log"

# =============================================================================
# PROCESS SUPERVISION
# =============================================================================

KILL_GRACE_PERIOD_SECONDS = 0.1
CHILD_STOP_TIMEOUT_SECONDS = 5
LOG_TAIL_POLL_INTERVAL_SECONDS = 0.1
DEFAULT_CLEAN_DAYS = 7
DEFAULT_WATCH_LINES = 100
DEFAULT_SESSION_LIST_LIMIT = 10

PERMISSION_TOOL_NAME = "mcp__permissions__check_permission"
READY_GREETING = "Now just say 'I am ready to start'"
