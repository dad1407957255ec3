"""Tool requests: one frozen dataclass per tool the model may call.

The model sends a tool name plus a JSON object; parse_tool_call() turns
that into exactly one of the request types below, validating field types
on the way. Everything downstream (permission checks, sandbox dispatch)
works on the typed request.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar, Union

from vmagent.errors import ToolArgumentError


@dataclass(frozen=True, slots=True)
class ListDir:
    name: ClassVar[str] = "list_dir"
    description: ClassVar[str] = "List files and directories at the given path"

    path: str

    def paths(self) -> tuple[str, ...]:
        return (self.path,)


@dataclass(frozen=True, slots=True)
class ReadFile:
    name: ClassVar[str] = "read_file"
    description: ClassVar[str] = "Read the contents of a file"

    path: str

    def paths(self) -> tuple[str, ...]:
        return (self.path,)


@dataclass(frozen=True, slots=True)
class WriteFile:
    name: ClassVar[str] = "write_file"
    description: ClassVar[str] = (
        "Write content to a file (creates or overwrites). Use this for all file modifications."
    )

    path: str
    content: str

    def paths(self) -> tuple[str, ...]:
        return (self.path,)


@dataclass(frozen=True, slots=True)
class CreateFile:
    name: ClassVar[str] = "create_file"
    description: ClassVar[str] = "Create a new file (fails if file already exists)"

    path: str
    content: str

    def paths(self) -> tuple[str, ...]:
        return (self.path,)


@dataclass(frozen=True, slots=True)
class DeleteFile:
    name: ClassVar[str] = "delete_file"
    description: ClassVar[str] = "Delete a file"

    path: str

    def paths(self) -> tuple[str, ...]:
        return (self.path,)


@dataclass(frozen=True, slots=True)
class RenameFile:
    name: ClassVar[str] = "rename_file"
    description: ClassVar[str] = "Rename or move a file"

    old_path: str
    new_path: str

    def paths(self) -> tuple[str, ...]:
        return (self.old_path, self.new_path)


@dataclass(frozen=True, slots=True)
class SearchFiles:
    name: ClassVar[str] = "search_files"
    description: ClassVar[str] = "Search for a text pattern in files under a directory (grep)"

    query: str
    path: str | None = None

    def paths(self) -> tuple[str, ...]:
        return (self.path,) if self.path else ()


@dataclass(frozen=True, slots=True)
class RunCommand:
    name: ClassVar[str] = "run_cmd"
    description: ClassVar[str] = (
        "Run a shell command. DO NOT run long-lived processes or servers "
        "(like npm run dev, python server.py) because they will block your "
        "execution loop until the timeout. Only run commands that exit."
    )

    command: str
    cwd: str | None = None

    def paths(self) -> tuple[str, ...]:
        return (self.cwd,) if self.cwd else ()


ToolRequest = Union[
    ListDir, ReadFile, WriteFile, CreateFile, DeleteFile, RenameFile, SearchFiles, RunCommand
]

TOOL_TYPES: dict[str, type] = {
    cls.name: cls
    for cls in (ListDir, ReadFile, WriteFile, CreateFile, DeleteFile, RenameFile, SearchFiles, RunCommand)
}

_FIELD_DESCRIPTIONS = {
    "path": "Absolute path",
    "content": "Full file content",
    "old_path": "Absolute path of the existing file",
    "new_path": "Absolute destination path",
    "query": "Text pattern to search for",
    "command": "Shell command to execute",
    "cwd": "Working directory (optional, defaults to workspace root)",
}


def _is_optional(f: Any) -> bool:
    return f.default is None


def parse_tool_call(tool_name: str, args: dict[str, Any] | None) -> ToolRequest:
    """Build the typed request for a model tool call.

    Raises:
        ToolArgumentError: Unknown tool, missing or non-string arguments.
    """
    cls = TOOL_TYPES.get(tool_name)
    if cls is None:
        raise ToolArgumentError(f"Unknown tool: {tool_name}")
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise ToolArgumentError(f"{tool_name}: arguments must be an object")

    values: dict[str, Any] = {}
    for f in fields(cls):
        value = args.get(f.name)
        if value is None or (value == "" and _is_optional(f)):
            if _is_optional(f):
                continue
            raise ToolArgumentError(f"{tool_name}: missing required argument '{f.name}'")
        if not isinstance(value, str):
            raise ToolArgumentError(f"{tool_name}: argument '{f.name}' must be a string")
        values[f.name] = value

    return cls(**values)


def tool_schemas() -> list[dict[str, Any]]:
    """Tool definitions in OpenAI function-calling format."""
    schemas: list[dict[str, Any]] = []
    for name, cls in TOOL_TYPES.items():
        properties = {
            f.name: {"type": "string", "description": _FIELD_DESCRIPTIONS.get(f.name, f.name)}
            for f in fields(cls)
        }
        required = [f.name for f in fields(cls) if not _is_optional(f)]
        schemas.append(
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": cls.description,
                    "parameters": {
                        "type": "object",
                        "properties": properties,
                        "required": required,
                    },
                },
            }
        )
    return schemas
