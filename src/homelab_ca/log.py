from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"
LOG_FILE_NAME = "homelab-ca.log"

_installed: list[logging.Handler] = []


def configure_logging(verbosity: int = 0, log_dir: Path | None = None,
                      default_level: str = "WARNING") -> None:
    """
    Configure the root logger for CLI use.

    Args:
        verbosity (int): Count of -v flags; 1 -> INFO, 2+ -> DEBUG.
        log_dir (Path | None): When given and existing, also append to
            <log_dir>/homelab-ca.log at INFO level.
        default_level (str): Level used when verbosity is 0.
    """
    level = getattr(logging, default_level.upper(), logging.WARNING)
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO

    root = logging.getLogger()
    while _installed:   # Reconfiguring replaces handlers installed here earlier
        h = _installed.pop()
        root.removeHandler(h)
        h.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)
    _installed.append(console)

    if log_dir is not None and log_dir.is_dir():
        fh = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
        fh.setLevel(logging.INFO)
        fh.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(fh)
        _installed.append(fh)
        level = min(level, logging.INFO)

    root.setLevel(level)
