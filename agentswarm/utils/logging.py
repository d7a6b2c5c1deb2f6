"""Session log configuration.

Every process in a swarm writes human-readable lines to the shared
``session.log`` of its session directory.
"""

import logging
from pathlib import Path
from typing import Union

from ..config.constants import SESSION_LOG

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"

_handler_marker = "_agentswarm_session_handler"


def configure_session_logging(
    session_path: Union[str, Path],
    name: str = "agentswarm",
    debug: bool = False,
    filename: str = SESSION_LOG,
) -> logging.Logger:
    """Attach a file handler for ``session.log`` to the package logger.

    Calling it again for the same process replaces the previous handler.

    Args:
        session_path: Session directory holding the log
        name: Logger to attach to (child loggers propagate to it)
        debug: Log at DEBUG instead of INFO
        filename: Log file name inside ``session_path``

    Returns:
        The configured logger
    """
    path = Path(session_path)
    path.mkdir(parents=True, exist_ok=True)

    target = logging.getLogger(name)
    for handler in list(target.handlers):
        if getattr(handler, _handler_marker, False):
            target.removeHandler(handler)
            handler.close()

    handler = logging.FileHandler(path / filename, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    setattr(handler, _handler_marker, True)

    target.addHandler(handler)
    target.setLevel(logging.DEBUG if debug else logging.INFO)
    return target
