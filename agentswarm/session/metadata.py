"""Read and update ``session_metadata.json``."""

import json
import logging
from pathlib import Path
from typing import Any, Union

from ..config.constants import SESSION_METADATA

logger = logging.getLogger(__name__)


def metadata_path(session_path: Union[str, Path]) -> Path:
    return Path(session_path) / SESSION_METADATA


def read_metadata(session_path: Union[str, Path]) -> dict[str, Any]:
    path = metadata_path(session_path)
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read session metadata %s: %s", path, e)
        return {}


def write_metadata(session_path: Union[str, Path], data: dict[str, Any]) -> None:
    path = metadata_path(session_path)
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(data, indent=2, default=str))
    tmp.replace(path)


def update_metadata(session_path: Union[str, Path], **fields: Any) -> dict[str, Any]:
    """Merge fields into the metadata file and return the result."""
    data = read_metadata(session_path)
    data.update(fields)
    write_metadata(session_path, data)
    return data
