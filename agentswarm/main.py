#!/usr/bin/env python3
"""
Main CLI entry point for agentswarm
"""

import sys
from typing import Optional

import typer

from agentswarm import __version__
from agentswarm.commands import clean, init, ps, sessions, show, swarm


def version():
    """Show agentswarm version"""
    typer.echo(f"agentswarm version {__version__}")


def create_app() -> typer.Typer:
    """Create and configure the main CLI application"""
    app = typer.Typer(
        name="agentswarm",
        help="Orchestrate a tree of cooperating Claude Code instances over MCP.",
        no_args_is_help=True,
        rich_markup_mode="rich",
    )

    app.command(name="start")(swarm.start)
    app.command(name="serve", hidden=True)(swarm.serve)
    app.command(name="permissions", hidden=True)(swarm.permissions)
    app.command(name="init")(init.init)
    app.command(name="ps")(ps.ps)
    app.command(name="show")(show.show)
    app.command(name="list-sessions")(sessions.list_sessions)
    app.command(name="watch")(sessions.watch)
    app.command(name="clean")(clean.clean)
    app.command(name="version")(version)

    return app


# Create the app instance
app = create_app()

WORKTREE_FLAGS = ("--worktree", "-w")


def normalize_worktree_flag(argv: list[str], command: Optional[str] = "start") -> list[str]:
    """Let ``--worktree`` be given without a name.

    A bare flag (last argument, or followed by another option) becomes
    ``--worktree ""``, which selects the session-derived worktree name.
    """
    if command not in argv:
        return list(argv)
    result: list[str] = []
    for index, arg in enumerate(argv):
        result.append(arg)
        if arg in WORKTREE_FLAGS:
            following = argv[index + 1] if index + 1 < len(argv) else None
            if following is None or following.startswith("-"):
                result.append("")
    return result


def run():
    """Entry point for the CLI"""
    app(args=normalize_worktree_flag(sys.argv[1:]))


if __name__ == "__main__":
    run()
