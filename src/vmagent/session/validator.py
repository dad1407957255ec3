"""Path and command validation for agent tool calls.

Pure functions, no I/O. Three questions are answered here:

- validate_path(): is this path acceptable, and is it inside the workspace?
- validate_command(): is this command acceptable, and is it allow-listed?
- check_tool_permission(): does a tool call need a human decision first?

Failures come back as a Violation rather than an exception so callers can
tell "never allowed" apart from "allowed once a human elevates it".
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from enum import Enum

from vmagent.session.tools import RunCommand, ToolRequest

MAX_COMMAND_LENGTH = 4096

# Build, test, VCS and read-only tools that may run without approval
ALLOWED_COMMANDS = frozenset(
    {
        "npm", "npx", "yarn", "pnpm",
        "pip", "pip3", "python", "python3",
        "go", "cargo", "make", "cmake",
        "cat", "head", "tail", "wc", "grep", "find", "ls", "pwd", "which", "echo", "test",
        "jest", "pytest", "mocha", "vitest",
        "tsc", "node", "eslint", "prettier", "biome",
        "git", "mkdir", "touch", "cp",
    }
)

# Rejected no matter who asks
BLOCKED_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"\brm\s+(?:-\S+\s+)*-[a-zA-Z]*[rRf][a-zA-Z]*\s+(?:-\S+\s+)*(?:/\*?|~/?|\$HOME/?|/[\w.-]+/?)(?:\s|$)"),
        "recursive delete of a filesystem root",
    ),
    (re.compile(r"--no-preserve-root"), "recursive forced delete"),
    (re.compile(r"\bmkfs(?:\.\w+)?\b"), "filesystem formatting"),
    (re.compile(r"\bdd\s+if="), "raw disk copy"),
    (re.compile(r">\s*/dev/(?:sd|hd|nvme|xvd|vd)"), "disk device write"),
    (re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"), "fork bomb"),
    (re.compile(r"\beval\s"), "eval"),
    (re.compile(r"\b(?:curl|wget)\b[^|]*\|\s*(?:sudo\s+)?(?:ba|z|da)?sh\b"), "remote script piped to shell"),
    (re.compile(r"\bch(?:mod|own|grp)\s+(?:-\S+\s+)*\S+\s+/(?:\s|$)"), "permission change on root"),
    (re.compile(r"\b(?:shutdown|reboot|halt|poweroff)\b"), "power state change"),
    (re.compile(r"\binit\s+[06]\b"), "power state change"),
)

# Separators between the simple commands of a compound command line
_COMMAND_SEPARATOR_RE = re.compile(r"\|\||&&|[;|\n]|(?<![<>&])&(?!>)")

_SUBSTITUTION_RE = re.compile(r"`|\$\(")

SHELL_METACHAR_RE = re.compile(r"[`$(){}|;&<>!\\]")

SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Starts a word or a camelCase part: "apiKey=" matches, "monkey" does not
    re.compile(
        r"(?:(?<![A-Za-z])|(?=[A-Z]))"
        r"(?i:KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL|API_KEY|ACCESS_KEY|PRIVATE)[=:\s]+\S+"
    ),
    re.compile(r"-----BEGIN[\s\S]*?-----END[^\n]+"),
    re.compile(r"(?:[A-Za-z0-9+/]{40,})={0,2}"),
)

REDACTED = "[REDACTED]"


class ViolationKind(Enum):
    INVALID = "invalid"  # Malformed input, never allowed
    BLOCKED = "blocked"  # Matches a destructive pattern, never allowed
    OUTSIDE_WORKSPACE = "outside_workspace"
    NOT_ALLOWED = "not_allowed"  # Executable outside the allow-list


@dataclass(frozen=True, slots=True)
class Violation:
    """Why a path or command was rejected."""

    kind: ViolationKind
    message: str

    @property
    def requires_elevation(self) -> bool:
        """True if elevated (system) access would lift this rejection."""
        return self.kind in (ViolationKind.OUTSIDE_WORKSPACE, ViolationKind.NOT_ALLOWED)

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class PermissionCheck:
    requires_permission: bool
    reason: str | None = None


def is_within(path: str, root: str) -> bool:
    """Check that normalized ``path`` equals ``root`` or lies beneath it."""
    root = posixpath.normpath(root)
    path = posixpath.normpath(path)
    if path == root:
        return True
    return path.startswith(root.rstrip("/") + "/")


def validate_path(path: str, workspace_root: str, elevated: bool = False) -> Violation | None:
    """Validate an absolute remote path.

    Empty, relative, NUL-containing and ``..``-containing paths are always
    rejected. Without elevation the path must also lie in the workspace.
    """
    if not path or not isinstance(path, str):
        return Violation(ViolationKind.INVALID, "Path is required")
    if "\0" in path:
        return Violation(ViolationKind.INVALID, "Path contains null bytes")
    if not path.startswith("/"):
        return Violation(ViolationKind.INVALID, f"Path must be absolute: {path}")
    if ".." in path.split("/"):
        return Violation(ViolationKind.INVALID, f"Path traversal is not allowed: {path}")

    if not elevated and not is_within(path, workspace_root):
        return Violation(
            ViolationKind.OUTSIDE_WORKSPACE,
            f"Path is outside the workspace ({workspace_root}): {path}",
        )
    return None


def split_command(command: str) -> list[str]:
    """Split a command line into its simple commands (pipes, lists, ...)."""
    return [part.strip() for part in _COMMAND_SEPARATOR_RE.split(command) if part.strip()]


def base_executable(command: str) -> str:
    """The executable name of a simple command, without its directory."""
    first = command.strip().split(maxsplit=1)[0] if command.strip() else ""
    return posixpath.basename(first)


def blocked_reason(command: str) -> str | None:
    """Return the matched destructive pattern's label, if any."""
    for pattern, label in BLOCKED_PATTERNS:
        if pattern.search(command):
            return label
    return None


def validate_command(
    command: str,
    elevated: bool = False,
    max_length: int = MAX_COMMAND_LENGTH,
) -> Violation | None:
    """Validate a shell command line.

    Destructive patterns are rejected even when elevated. Without
    elevation every simple command in the line must start with an
    allow-listed executable, and command substitution is refused.
    """
    if not command or not command.strip():
        return Violation(ViolationKind.INVALID, "Command is required")
    if len(command) > max_length:
        return Violation(
            ViolationKind.INVALID, f"Command exceeds {max_length} characters"
        )
    if "\0" in command:
        return Violation(ViolationKind.INVALID, "Command contains null bytes")

    label = blocked_reason(command)
    if label is not None:
        return Violation(ViolationKind.BLOCKED, f"Blocked dangerous command ({label}): {command}")

    if elevated:
        return None

    if _SUBSTITUTION_RE.search(command):
        return Violation(ViolationKind.NOT_ALLOWED, f"Command substitution requires system access: {command}")

    for part in split_command(command):
        name = base_executable(part)
        if name not in ALLOWED_COMMANDS:
            return Violation(
                ViolationKind.NOT_ALLOWED,
                f"Command '{name}' is not in the allowed list; system access required",
            )
    return None


def check_tool_permission(
    request: ToolRequest,
    workspace_root: str,
    auto_run_enabled: bool,
) -> PermissionCheck:
    """Decide whether a tool call must wait for a human decision.

    Calls that can never succeed (malformed, hard-denied) do not ask:
    the sandbox rejects them and the model sees the error.
    """
    if isinstance(request, RunCommand):
        violation = validate_command(request.command, elevated=False)
        if violation is not None and not violation.requires_elevation:
            return PermissionCheck(requires_permission=False)
        if not auto_run_enabled:
            return PermissionCheck(True, "Auto-run commands is disabled")
        if violation is not None:
            return PermissionCheck(True, f"System command: {request.command}")

    for path in request.paths():
        violation = validate_path(path, workspace_root, elevated=False)
        if violation is not None and violation.requires_elevation:
            return PermissionCheck(True, f"Accesses path outside workspace: {path}")

    return PermissionCheck(requires_permission=False)


def redact_secrets(text: str) -> str:
    """Replace secret-shaped substrings with ``[REDACTED]``."""
    for pattern in SECRET_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


def has_shell_metacharacters(text: str) -> bool:
    return SHELL_METACHAR_RE.search(text) is not None
