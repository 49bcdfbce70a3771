from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path


LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
ROOT_LOGGER = "sitepipe"

_configured = False


def _ensure_base_logger() -> None:
    global _configured
    if _configured:
        return
    level = getattr(logging, os.getenv("SITEPIPE_LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(format=LOG_FORMAT)
    # the level lives on our own logger so a pre-configured root does not mute it
    logging.getLogger(ROOT_LOGGER).setLevel(level)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``sitepipe`` hierarchy (``core`` -> ``sitepipe.core``)."""
    _ensure_base_logger()
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def attach_log_file(path: Path, max_bytes: int = 1_000_000, backups: int = 3) -> RotatingFileHandler:
    """Also write every sitepipe record to a rotating file at ``path``.

    Attaching the same file twice returns the existing handler.
    """
    logger = get_logger(ROOT_LOGGER)
    target = os.path.abspath(path)
    for h in logger.handlers:
        if isinstance(h, RotatingFileHandler) and h.baseFilename == target:
            return h
    Path(target).parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(target, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return handler
