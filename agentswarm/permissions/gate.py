"""Pattern-based allow/deny decisions for tool invocations.

Patterns come in five kinds:

    Read(src/**/*.py)        file     glob on input["file_path"], absolute
    Bash(npm:*)              shell    literal text with * wildcards on input["command"]
    WebFetch(domain: *.io)   params   glob per input key, all must match
    mcp__github__*           wildcard anchored match on the tool name
    Edit                     exact    literal tool name

Deny rules are evaluated first and always win. An empty allow list allows
everything not denied; otherwise at least one allow rule must match.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Pattern, Union

logger = logging.getLogger(__name__)

FILE_TOOLS = ("Read", "Write", "Edit")
SHELL_TOOL = "Bash"

BEHAVIOR_ALLOW = "allow"
BEHAVIOR_DENY = "deny"

KIND_EXACT = "exact"
KIND_WILDCARD = "wildcard"
KIND_FILE = "file"
KIND_SHELL = "shell"
KIND_PARAMS = "params"

_SCOPED_RE = re.compile(r"^([A-Za-z_][\w\-]*)\((.*)\)$", re.DOTALL)


@dataclass(frozen=True)
class PermissionRule:
    """A compiled permission pattern."""

    text: str
    kind: str
    tool_name: str
    matcher: Union[Pattern[str], dict[str, Pattern[str]], None] = None
    name_regex: Optional[Pattern[str]] = None

    def matches(self, tool_name: str, tool_input: dict[str, Any]) -> bool:
        if self.kind == KIND_EXACT:
            return tool_name == self.tool_name
        if self.kind == KIND_WILDCARD:
            return bool(self.name_regex and self.name_regex.fullmatch(tool_name))
        if tool_name != self.tool_name:
            return False

        if self.kind == KIND_SHELL:
            command = tool_input.get("command")
            return isinstance(command, str) and bool(self.matcher.fullmatch(command))

        if self.kind == KIND_FILE:
            file_path = tool_input.get("file_path")
            if not isinstance(file_path, str) or not file_path:
                logger.info("file_path not found in input: %r", tool_input)
                return False
            expanded = os.path.abspath(os.path.expanduser(file_path))
            return bool(self.matcher.fullmatch(expanded))

        if self.kind == KIND_PARAMS:
            if not self.matcher:
                return False
            for key, regex in self.matcher.items():
                value = tool_input.get(key)
                if value is None or not regex.fullmatch(str(value)):
                    return False
            return True

        return False


@dataclass(frozen=True)
class PermissionDecision:
    """Outcome of a permission check. A deny is a value, not an error."""

    behavior: str
    updated_input: dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.behavior == BEHAVIOR_ALLOW

    def to_dict(self) -> dict[str, Any]:
        if self.allowed:
            return {"behavior": BEHAVIOR_ALLOW, "updatedInput": self.updated_input}
        return {"behavior": BEHAVIOR_DENY, "message": self.message}


def glob_to_regex(pattern: str) -> str:
    """Translate a parameter glob (``*`` and ``?`` only) to a regex body."""
    return re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")


def path_glob_to_regex(pattern: str) -> str:
    """Translate a filesystem glob with pathname semantics to a regex body.

    ``*`` and ``?`` never cross ``/``, ``**/`` spans zero or more
    directories, ``{a,b}`` lists alternatives and ``[...]`` is a character
    class. Leading dots need no special treatment.
    """
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**/", i):
                out.append("(?:[^/]*/)*")
                i += 3
                continue
            if pattern.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end + 1
                continue
        elif c == "{":
            end = _matching_brace(pattern, i)
            if end == -1:
                out.append(re.escape(c))
            else:
                options = _split_top_level(pattern[i + 1:end], ",")
                out.append("(?:" + "|".join(path_glob_to_regex(o) for o in options) + ")")
                i = end + 1
                continue
        elif c == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def _matching_brace(text: str, start: int) -> int:
    depth = 0
    for j in range(start, len(text)):
        if text[j] == "{":
            depth += 1
        elif text[j] == "}":
            depth -= 1
            if depth == 0:
                return j
    return -1


def _split_top_level(text: str, sep: str, open_chars: str = "{(", close_chars: str = "})") -> list[str]:
    parts, depth, current = [], 0, []
    for ch in text:
        if ch in open_chars:
            depth += 1
        elif ch in close_chars:
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts


def shell_pattern_to_regex(pattern: str) -> str:
    """Translate a ``Bash(...)`` pattern to a regex body.

    Colon form joins the segments with spaces; a trailing ``*`` segment
    matches any remainder including none, so ``npm:*`` accepts ``npm`` and
    ``npm install``. Everything else is literal text: ``*`` is the only
    wildcard and ``\\*`` a literal asterisk. Regex metacharacters such as
    ``$``, ``.`` or ``[`` match themselves, so ``Bash(echo $HOME)`` matches
    exactly that command.
    """
    if ":" in pattern:
        segments = pattern.split(":")
        if segments[-1] == "*":
            head = " ".join(segments[:-1])
            return _shell_wildcards(head) + "(?: .*)?"
        return _shell_wildcards(" ".join(segments))
    return _shell_wildcards(pattern)


def _shell_wildcards(text: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(text):
        if text.startswith("\\*", i):
            out.append(re.escape("*"))
            i += 2
            continue
        out.append(".*" if text[i] == "*" else re.escape(text[i]))
        i += 1
    return "".join(out)


def _parse_params(body: str) -> dict[str, Pattern[str]]:
    params: dict[str, Pattern[str]] = {}
    for part in _split_top_level(body, ","):
        if ":" not in part:
            continue
        key, value = part.split(":", 1)
        key, value = key.strip(), value.strip()
        if key:
            params[key] = re.compile(glob_to_regex(value), re.DOTALL)
    return params


def compile_pattern(text: str, base_dir: Optional[str] = None) -> PermissionRule:
    """Classify and compile one configured permission pattern.

    Args:
        text: Pattern as written in the configuration
        base_dir: Directory relative file globs resolve against (cwd if None)
    """
    text = text.strip()
    scoped = _SCOPED_RE.match(text)
    if scoped:
        tool_name, body = scoped.group(1), scoped.group(2).strip()
        if tool_name in FILE_TOOLS:
            expanded = os.path.expanduser(body)
            if not os.path.isabs(expanded):
                expanded = os.path.join(base_dir or os.getcwd(), expanded)
            expanded = os.path.normpath(expanded)
            if body.endswith("/") and not expanded.endswith("/"):
                expanded += "/"
            return PermissionRule(
                text=text,
                kind=KIND_FILE,
                tool_name=tool_name,
                matcher=re.compile(path_glob_to_regex(expanded)),
            )
        if tool_name == SHELL_TOOL:
            return PermissionRule(
                text=text,
                kind=KIND_SHELL,
                tool_name=tool_name,
                matcher=re.compile(shell_pattern_to_regex(body), re.DOTALL),
            )
        return PermissionRule(
            text=text, kind=KIND_PARAMS, tool_name=tool_name, matcher=_parse_params(body)
        )

    if "*" in text:
        return PermissionRule(
            text=text,
            kind=KIND_WILDCARD,
            tool_name=text,
            name_regex=re.compile(re.escape(text).replace(r"\*", ".*")),
        )
    return PermissionRule(text=text, kind=KIND_EXACT, tool_name=text)


def split_tool_list(value: Union[str, Iterable[str], None]) -> list[str]:
    """Split a comma-separated tool list, keeping parenthesized commas intact."""
    if value is None:
        return []
    if isinstance(value, str):
        items = _split_top_level(value, ",", "(", ")")
    else:
        items = list(value)
    return [item.strip() for item in items if item and item.strip()]


class PermissionGate:
    """Evaluate tool invocations against ordered allow and deny lists."""

    def __init__(
        self,
        allowed: Iterable[str] = (),
        disallowed: Iterable[str] = (),
        base_dir: Optional[str] = None,
    ):
        self.allowed_rules = [compile_pattern(p, base_dir) for p in allowed if p]
        self.disallowed_rules = [compile_pattern(p, base_dir) for p in disallowed if p]

    def _any_match(self, rules: list[PermissionRule], label: str, tool_name: str, tool_input: dict) -> bool:
        for rule in rules:
            matched = rule.matches(tool_name, tool_input)
            logger.debug("%s pattern '%s' (%s) vs '%s': %s", label, rule.text, rule.kind, tool_name, matched)
            if matched:
                return True
        return False

    def decide(self, tool_name: str, tool_input: Optional[dict[str, Any]] = None) -> PermissionDecision:
        """Decide whether ``tool_name`` may run with ``tool_input``."""
        tool_input = tool_input or {}
        logger.info("Permission check requested for tool: %s", tool_name)
        logger.info("Tool input: %r", tool_input)

        if self._any_match(self.disallowed_rules, "Disallowed", tool_name, tool_input):
            message = f"Tool '{tool_name}' is explicitly disallowed"
            logger.info("DENIED: %s", message)
            return PermissionDecision(behavior=BEHAVIOR_DENY, message=message)

        if not self.allowed_rules or self._any_match(self.allowed_rules, "Allowed", tool_name, tool_input):
            logger.info("ALLOWED: Tool '%s' matches configured patterns", tool_name)
            return PermissionDecision(behavior=BEHAVIOR_ALLOW, updated_input=tool_input)

        message = f"Tool '{tool_name}' is not allowed by configured patterns"
        logger.info("DENIED: %s", message)
        return PermissionDecision(behavior=BEHAVIOR_DENY, message=message)
