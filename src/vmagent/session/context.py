"""Turn an AgentContext into the context text sent with a prompt."""

from __future__ import annotations

from vmagent.logging import get_logger
from vmagent.remote.protocol import RemoteChannel
from vmagent.session.models import AgentContext

log = get_logger("session.context")

DEFAULT_FILE_LIMIT = 100_000


async def build_context_info(
    channel: RemoteChannel,
    context: AgentContext,
    *,
    file_limit: int = DEFAULT_FILE_LIMIT,
) -> str:
    """Describe the operator's current view: open file, selection, scope.

    The open file is included only if it exists and is smaller than
    ``file_limit`` bytes. Secrets are not redacted here; the loop does that.
    """
    parts: list[str] = []

    if context.current_file:
        stat = await channel.stat(context.current_file)
        if stat is not None and not stat.is_dir and stat.size < file_limit:
            try:
                data = await channel.read_file(context.current_file)
            except OSError as e:
                log.debug("Could not read %s for context: %s", context.current_file, e)
            else:
                text = data.decode("utf-8", errors="replace")
                parts.append(f"Current file ({context.current_file}):\n```\n{text}\n```")

    if context.selection:
        parts.append(f"Selected code:\n```\n{context.selection}\n```")

    if context.folder_path:
        parts.append(f"Selected folder: {context.folder_path}")

    if context.whole_repo:
        parts.append("Scope: the whole repository")

    parts.append(f"Workspace root: {context.workspace_root}")

    return "\n\n".join(parts)
