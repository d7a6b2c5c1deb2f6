"""Per-instance state files under ``state/<instance_id>.json``.

A serve process records the backend session id of its instance so a
restored swarm can resume every conversation where it left off.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from ..config.constants import STATE_DIR

logger = logging.getLogger(__name__)


def state_dir(session_path: Union[str, Path]) -> Path:
    return Path(session_path) / STATE_DIR


def save_instance_state(
    session_path: Union[str, Path],
    instance_name: str,
    instance_id: str,
    backend_session_id: Optional[str],
) -> Path:
    """Write the instance's state file, replacing any previous one atomically."""
    directory = state_dir(session_path)
    directory.mkdir(parents=True, exist_ok=True)

    path = directory / f"{instance_id}.json"
    payload = {
        "instance_name": instance_name,
        "instance_id": instance_id,
        "claude_session_id": backend_session_id,
        "status": "active",
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(payload, indent=2))
    tmp.replace(path)
    return path


def load_instance_states(session_path: Union[str, Path]) -> dict[str, dict[str, Any]]:
    """Load every state file, keyed by instance name.

    Unreadable files are skipped with a warning.
    """
    states: dict[str, dict[str, Any]] = {}
    directory = state_dir(session_path)
    if not directory.is_dir():
        return states

    for path in sorted(directory.glob("*.json")):
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Skipping unreadable state file %s: %s", path, e)
            continue
        name = data.get("instance_name")
        if name:
            states[name] = data
    return states
