"""Logging setup shared by the API service and the command-line tool."""

import logging

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Install a single stream handler on the ``tileserver`` logger.

    Calling this more than once replaces the level but never stacks
    handlers.

    Args:
        level: Log level name or number (e.g. "DEBUG", logging.INFO).
    """
    root = logging.getLogger("tileserver")
    if isinstance(level, str):
        level = level.upper()
    root.setLevel(level)
    if not any(getattr(h, "_tileserver", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._tileserver = True  # type: ignore[attr-defined]
        root.addHandler(handler)
