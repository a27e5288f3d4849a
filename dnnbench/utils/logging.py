"""Console logging for the dnnbench CLI and library.

Library modules log through ``logging.getLogger(__name__)``; everything under
``dnnbench`` propagates into the single handler installed here.
"""
from __future__ import annotations

import logging
from typing import Optional, Union

try:
    import coloredlogs  # type: ignore
except Exception:  # pragma: no cover
    coloredlogs = None  # type: ignore

from .. import config as _cfg

ROOT_LOGGER = "dnnbench"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_LOGGER_CREATED: dict[str, logging.Logger] = {}


def _resolve_level(level_name: Optional[Union[str, int]]) -> int:
    if isinstance(level_name, int):
        return level_name
    if not level_name:
        return logging.INFO
    name = str(level_name).upper()
    return getattr(logging, name, logging.INFO)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Return a console logger configured from DNNBENCH_LOG_LEVEL."""
    if name in _LOGGER_CREATED:
        return _LOGGER_CREATED[name]
    logger = logging.getLogger(name)
    if not logger.handlers:
        level = _resolve_level(_cfg.get("DNNBENCH_LOG_LEVEL"))
        logger.setLevel(level)
        if coloredlogs is not None:
            coloredlogs.install(level=level, logger=logger, fmt=LOG_FORMAT)  # type: ignore
        else:
            handler = logging.StreamHandler()
            handler.setLevel(level)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)
        logger.propagate = False
    _LOGGER_CREATED[name] = logger
    return logger


def set_level(level: Union[str, int], name: str = ROOT_LOGGER) -> logging.Logger:
    """Change verbosity at runtime and record it as a DNNBENCH_LOG_LEVEL override.

    Both the logger and its installed handler take the new level.
    """
    resolved = _resolve_level(level)
    _cfg.set("DNNBENCH_LOG_LEVEL", logging.getLevelName(resolved))
    logger = get_logger(name)
    logger.setLevel(resolved)
    for handler in logger.handlers:
        handler.setLevel(resolved)
    return logger
