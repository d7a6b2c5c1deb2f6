"""Cost and call-hierarchy reconstruction from a session event log."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .event_log import read_events


@dataclass
class InstanceUsage:
    """Accumulated usage of one instance across a session."""

    name: str
    id: Optional[str] = None
    cost: float = 0.0
    calls: int = 0
    called_by: set[str] = field(default_factory=set)
    calls_to: set[str] = field(default_factory=set)
    has_cost_data: bool = False


@dataclass
class CostSummary:
    total_cost: float = 0.0
    instances_with_cost: set[str] = field(default_factory=set)


def _iter_entries(log_path: Path):
    return (data for data in read_events(log_path) if isinstance(data, dict))


def _result_cost(data: dict) -> Optional[float]:
    event = data.get("event")
    if not isinstance(event, dict) or event.get("type") != "result":
        return None
    cost = event.get("total_cost_usd")
    return float(cost) if isinstance(cost, (int, float)) else None


def _is_result(data: dict) -> bool:
    event = data.get("event")
    return isinstance(event, dict) and event.get("type") == "result"


def calculate_total_cost(log_path: Union[str, Path]) -> CostSummary:
    """Sum ``total_cost_usd`` over every ``result`` event in the log."""
    summary = CostSummary()
    path = Path(log_path)
    if not path.exists():
        return summary

    for data in _iter_entries(path):
        cost = _result_cost(data)
        if cost is not None:
            summary.total_cost += cost
            summary.instances_with_cost.add(data.get("instance"))
    return summary


def parse_instance_hierarchy(log_path: Union[str, Path]) -> dict[str, InstanceUsage]:
    """Replay the log once and accumulate per-instance cost, calls and edges.

    Returns:
        Mapping of instance name to its usage, in first-seen order
    """
    instances: dict[str, InstanceUsage] = {}
    path = Path(log_path)
    if not path.exists():
        return instances

    for data in _iter_entries(path):
        name = data.get("instance")
        if name is None:
            continue
        usage = instances.setdefault(name, InstanceUsage(name=name, id=data.get("instance_id")))

        caller = data.get("calling_instance")
        if caller and caller != name:
            usage.called_by.add(caller)
            parent = instances.setdefault(
                caller, InstanceUsage(name=caller, id=data.get("calling_instance_id"))
            )
            parent.calls_to.add(name)

        if _is_result(data):
            usage.calls += 1
            cost = _result_cost(data)
            if cost is not None:
                usage.cost += cost
                usage.has_cost_data = True

    return instances


def format_cost(cost: float) -> str:
    return f"${cost:.4f}"
