"""
Logging helpers shared by every module.

Usage:
    from gatekeeper.utils import get_logger

    log = get_logger(__name__)
"""
import logging
import os


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_root = logging.getLogger("gatekeeper")


def _configure_root() -> None:
    if _root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _root.addHandler(handler)
    _root.setLevel(os.environ.get("GATEKEEPER_LOG_LEVEL", "WARNING").upper())


def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the package logger."""
    _configure_root()
    if not name.startswith("gatekeeper"):
        name = f"gatekeeper.{name}"
    return logging.getLogger(name)
