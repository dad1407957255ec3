"""Command-line interface: run the agent against a local workspace."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm

from vmagent.config import Config, load_config
from vmagent.core.llm import create_provider
from vmagent.errors import AgentError
from vmagent.logging import get_logger, setup_logging
from vmagent.remote import LocalChannel
from vmagent.session import (
    AgentContext,
    AgentEvent,
    AgentOptions,
    AgentOrchestrator,
    AgentState,
    EventKind,
)

log = get_logger("cli")

console = Console(stderr=True)

LOCAL_REF = "local"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="vmagent",
        description="Delegate code edits and shell commands to an AI agent",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase log verbosity (can be repeated)",
    )
    parser.add_argument(
        "--model",
        help="Model identifier (default from config)",
    )
    parser.add_argument(
        "-w", "--workspace",
        type=Path,
        default=Path.cwd(),
        help="Workspace root (default: current directory)",
    )
    parser.add_argument(
        "--file",
        help="File to include as context",
    )

    subparsers = parser.add_subparsers(dest="mode", help="Operating mode")

    run_parser = subparsers.add_parser("run", help="Run the agent on a task")
    run_parser.add_argument("prompt", help="What the agent should do")
    run_parser.add_argument(
        "--no-auto-run",
        action="store_true",
        help="Ask before running any command",
    )
    run_parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Grant every permission request without asking",
    )
    run_parser.add_argument(
        "--pro",
        action="store_true",
        help="Use the pro daily session limit",
    )

    plan_parser = subparsers.add_parser("plan", help="Describe a plan without changing anything")
    plan_parser.add_argument("prompt", help="What the agent should plan")

    return parser


def _print_event(event: AgentEvent) -> None:
    payload = event.payload
    match event.type:
        case EventKind.AGENT_TEXT:
            console.print(escape(payload["text"]))
        case EventKind.TOOL_START:
            console.print(f"[cyan]> {payload['tool']}[/cyan] [dim]{escape(str(payload['args']))}[/dim]")
        case EventKind.TOOL_ERROR:
            console.print(f"[red]x {payload['tool']}: {escape(payload['error'])}[/red]")
        case EventKind.CMD_COMPLETE:
            console.print(f"[dim]exit {payload['exit_code']} ({payload['duration_ms']:.0f} ms)[/dim]")
        case EventKind.FILE_CREATED | EventKind.FILE_DELETED | EventKind.EDIT_DELTA:
            console.print(f"[green]~ {event.type.value}: {escape(payload['path'])}[/green]")
        case EventKind.ERROR:
            console.print(f"[bold red]Error:[/bold red] {escape(payload['error'])}")
        case _:
            log.debug("event %s %s", event.type.value, payload)


async def _run_agent(config: Config, args: argparse.Namespace) -> int:
    workspace = str(args.workspace.resolve())
    orchestrator = AgentOrchestrator(
        {LOCAL_REF: LocalChannel()},
        create_provider(config.llm.model, api_base=config.llm.api_base, timeout=config.llm.timeout),
        config=config,
    )
    events: asyncio.Queue[AgentEvent] = asyncio.Queue()

    handle = await orchestrator.start_session(
        LOCAL_REF,
        args.prompt,
        AgentContext(workspace_root=workspace, current_file=args.file),
        AgentOptions(auto_run_commands=not args.no_auto_run, is_pro=args.pro),
        emit=events.put_nowait,
    )

    while True:
        event = await events.get()
        _print_event(event)

        if event.type is EventKind.PERMISSION_REQUIRED:
            console.print(f"[yellow]Permission required:[/yellow] {escape(event.payload['reason'])}")
            granted = args.yes or await asyncio.to_thread(Confirm.ask, "Allow?", console=console)
            if granted:
                orchestrator.grant_permission(handle.id)
            else:
                orchestrator.deny_permission(handle.id)
        elif event.type is EventKind.DONE:
            style = "green" if event.payload["success"] else "red"
            console.print(f"[{style}]{escape(event.payload['summary'])}[/{style}]")
            break
        elif event.type is EventKind.ERROR and event.payload.get("fatal"):
            break
        elif event.type is EventKind.STATE_CHANGE and event.payload["state"] == AgentState.STOPPED.value:
            break

    session = await handle.wait()

    if session.file_changes and session.state is not AgentState.DONE:
        prompt = f"Roll back {len(session.file_changes)} file change(s)?"
        if await asyncio.to_thread(Confirm.ask, prompt, console=console):
            restored = await orchestrator.rollback_session(session.id)
            console.print(f"Restored {len(restored)} file(s)")

    await orchestrator.close()
    return 0 if session.state is AgentState.DONE else 1


async def _run_plan(config: Config, args: argparse.Namespace) -> int:
    orchestrator = AgentOrchestrator(
        {LOCAL_REF: LocalChannel()},
        create_provider(config.llm.model, api_base=config.llm.api_base, timeout=config.llm.timeout),
        config=config,
    )
    plan = await orchestrator.plan_only(
        LOCAL_REF,
        args.prompt,
        AgentContext(workspace_root=str(args.workspace.resolve()), current_file=args.file),
    )
    console.print(escape(plan))
    return 0


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.mode is None:
        parser.print_help()
        return 1

    config = load_config(workspace_root=str(parsed.workspace))
    if parsed.verbose is not None:
        config.logging.verbose = parsed.verbose
    if parsed.model:
        config.llm.model = parsed.model
    setup_logging(config.logging)

    try:
        if parsed.mode == "run":
            return asyncio.run(_run_agent(config, parsed))
        elif parsed.mode == "plan":
            return asyncio.run(_run_plan(config, parsed))
        else:
            parser.print_help()
            return 1
    except AgentError as e:
        console.print(f"[bold red]{escape(str(e))}[/bold red]")
        return 1
