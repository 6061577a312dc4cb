"""
Directory/State initializer.

Creates the directory layout and database files used by every issuer. Running
it again against an existing base path is a no-op for anything that already
exists: certificates, keys, the index and the uniqueness policy are preserved.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .config import PACKAGE_TEMPLATES
from .database import SerialDatabase
from .files import ensure_dir
from .layout import LAYOUT_DIRS, Layout
from .profiles import PROFILE_FILES

LOGGER = logging.getLogger(__name__)


def _copy_templates(template_dir: Path, config_dir: Path) -> list[Path]:
    """
    Copy role profile templates into the config directory.

    Existing profiles are never overwritten, so an operator's edits survive
    re-initialization.

    Args:
        template_dir (Path): Source directory holding the *.yml templates.
        config_dir (Path): Destination config directory.

    Returns:
        list[Path]: Profiles that were copied on this run.
    """
    if not template_dir.is_dir():
        LOGGER.warning("Profile template directory not found at %s; skipping profile copy.", template_dir)
        return []

    copied = []
    for filename in PROFILE_FILES.values():
        src = template_dir / filename
        dest = config_dir / filename
        if dest.exists():
            continue
        if not src.is_file():
            LOGGER.warning("Profile template %s missing from %s", filename, template_dir)
            continue
        shutil.copyfile(src, dest)
        copied.append(dest)
        LOGGER.info("Copied profile %s", dest)
    return copied


def initialize_layout(
    base_dir: str | Path,
    *,
    unique_subject: bool = True,
    template_dir: str | Path | None = None,
) -> Layout:
    """
    Initialize (or re-check) the CA directory structure and databases.

    Args:
        base_dir (str | Path): Base directory, e.g. ~/ssl.
        unique_subject (bool, optional): Uniqueness policy written to a *new*
            index.txt.attr. An existing attribute file is left alone.
            Defaults to True.
        template_dir (str | Path | None, optional): Directory with role
            profile templates. Defaults to the templates shipped with the
            package.

    Returns:
        Layout: Path resolver for the initialized base directory.
    """
    layout = Layout(Path(base_dir).expanduser())

    # ------------------- Create Required Directory Tree -------------------
    for rel in LAYOUT_DIRS:
        ensure_dir(layout.base / rel)

    # ------------------- Databases (shared db and TSA db) -------------------
    for db_dir in layout.db_dirs():
        SerialDatabase(db_dir, newcerts_dir=layout.newcerts_dir).initialize(unique_subject)

    # ------------------- Role Profiles -------------------
    source = Path(template_dir).expanduser() if template_dir else PACKAGE_TEMPLATES
    _copy_templates(source, layout.config_dir)

    LOGGER.info("Initialized CA layout at %s", layout.base.resolve())
    return layout
