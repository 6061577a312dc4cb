"""
Runtime settings for homelab-ca.

The only external configuration input is the base directory. It is read from
the environment (optionally seeded from a .env file) and may be overridden on
the command line.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

LOGGER = logging.getLogger(__name__)

ENV_HOME = "HOMELAB_CA_HOME"
ENV_TEMPLATES = "HOMELAB_CA_TEMPLATES"
ENV_UNIQUE_SUBJECT = "HOMELAB_CA_UNIQUE_SUBJECT"
ENV_LOG_LEVEL = "HOMELAB_CA_LOG_LEVEL"

PACKAGE_TEMPLATES = Path(__file__).resolve().parent / "templates"


def parse_yes_no(value: str | bool) -> bool:
    """
    Interpret the yes/no spelling used by index.txt.attr.

    Args:
        value (str | bool): "yes"/"no" (case-insensitive), or a bool.

    Returns:
        bool: True for "yes".

    Raises:
        ValueError: If the value is neither yes nor no.
    """
    if isinstance(value, bool):
        return value
    v = value.strip().lower()
    if v in ("yes", "y", "true", "1"):
        return True
    if v in ("no", "n", "false", "0"):
        return False
    raise ValueError(f"Expected yes or no, got {value!r}")


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    template_dir: Path
    unique_subject_default: bool = True
    log_level: str = "WARNING"


def load_settings(home: str | None = None, *, use_dotenv: bool = True) -> Settings:
    """
    Resolve settings from the environment.

    Args:
        home (str | None): Explicit base directory; takes precedence over
            HOMELAB_CA_HOME.
        use_dotenv (bool): Load a .env file from the working directory first.

    Returns:
        Settings: The resolved settings.
    """
    if use_dotenv:
        load_dotenv(find_dotenv(usecwd=True))   # Does not override variables that are already set

    base = home or os.getenv(ENV_HOME) or str(Path.home() / "ssl")
    templates = os.getenv(ENV_TEMPLATES) or str(PACKAGE_TEMPLATES)
    unique = parse_yes_no(os.getenv(ENV_UNIQUE_SUBJECT, "yes"))
    level = os.getenv(ENV_LOG_LEVEL, "WARNING").upper()

    settings = Settings(
        base_dir=Path(base).expanduser(),
        template_dir=Path(templates).expanduser(),
        unique_subject_default=unique,
        log_level=level,
    )
    LOGGER.debug("Settings resolved: %s", settings)
    return settings
