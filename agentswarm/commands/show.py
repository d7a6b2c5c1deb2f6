"""Show one session: runtime, cost and the instance call hierarchy."""

from typing import Optional

import typer
from rich.tree import Tree

from ..config.constants import SESSION_EVENT_LOG, START_DIRECTORY_FILE
from ..session.costs import InstanceUsage, format_cost, parse_instance_hierarchy
from ..utils.output import console
from ._helpers import read_snapshot, require_session, runtime_info


def _instance_label(usage: InstanceUsage, main: Optional[str]) -> str:
    name = f"[bold]{usage.name}[/bold]"
    if usage.name == main:
        name += " [cyan]\\[main][/cyan]"
    if usage.name == main and not usage.has_cost_data:
        cost = "n/a (interactive)"
    else:
        cost = format_cost(usage.cost)
    return f"{name} ({usage.id})\nCost: {cost} | Calls: {usage.calls}"


def build_hierarchy_tree(
    instances: dict[str, InstanceUsage],
    main: Optional[str],
) -> Tree:
    """Render the caller/callee relation, starting at instances nobody called."""
    tree = Tree("Instance Hierarchy")
    shown: set[str] = set()

    def add(node: Tree, usage: InstanceUsage) -> None:
        branch = node.add(_instance_label(usage, main))
        if usage.name in shown:
            return
        shown.add(usage.name)
        for child_name in sorted(usage.calls_to):
            child = instances.get(child_name)
            if child is not None and child_name not in shown:
                add(branch, child)

    for usage in instances.values():
        if not usage.called_by:
            add(tree, usage)
    return tree


def show(session_id: str = typer.Argument(..., help="Session id or path")) -> None:
    """Show cost, runtime and instance hierarchy of a session."""
    session_path = require_session(session_id)
    snapshot = read_snapshot(session_path)
    swarm = snapshot.get("swarm") or {}
    main = swarm.get("main")

    instances = parse_instance_hierarchy(session_path / SESSION_EVENT_LOG)
    total = sum(usage.cost for usage in instances.values())
    main_usage = instances.get(main)
    cost_display = format_cost(total)
    if not (main_usage and main_usage.has_cost_data):
        cost_display += " (excluding main instance)"

    console.print(f"[bold]Session:[/bold] {session_path.name}")
    console.print(f"[bold]Swarm:[/bold] {swarm.get('name', 'Unknown')}")
    runtime = runtime_info(session_path)
    if runtime:
        console.print(f"[bold]Runtime:[/bold] {runtime}")
    console.print(f"[bold]Total Cost:[/bold] {cost_display}")

    start_dir = session_path / START_DIRECTORY_FILE
    if start_dir.is_file():
        console.print(f"[bold]Start Directory:[/bold] {start_dir.read_text().strip()}")

    console.print()
    console.print(build_hierarchy_tree(instances, main))

    if not (main_usage and main_usage.has_cost_data):
        console.print()
        console.print(
            f"[dim]Note: Main instance ({main}) cost is not tracked in interactive mode.[/dim]"
        )
