"""
Tests validating that initialize_layout() creates the expected directory
hierarchy and database files, and that running it again changes nothing.
"""

import logging
import tempfile
from pathlib import Path

from homelab_ca.database import SerialDatabase
from homelab_ca.initialize import initialize_layout
from homelab_ca.layout import LAYOUT_DIRS


def _snapshot(base: Path) -> dict:
    """Map every file under base to its bytes."""
    return {p.relative_to(base): p.read_bytes() for p in base.rglob("*") if p.is_file()}


def test_initialize_creates_required_structure():
    """Test that initialize_layout creates the directories and db files.

    Expected behavior:
        - Every layout directory exists.
        - index.txt is empty, index.txt.attr holds the policy,
          serial/crlnumber hold 16-byte hex values.
        - The four role profiles are copied into config/.
    """
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp) / "ssl"

        layout = initialize_layout(root, unique_subject=True)

        # --- Check required directories exist ---
        for rel in LAYOUT_DIRS:
            assert (root / rel).is_dir(), rel

        db = layout.db_dir
        assert (db / "index.txt").read_text() == ""
        assert (db / "index.txt.attr").read_text() == "unique_subject = yes\n"
        assert len((db / "serial").read_text().strip()) == 32
        assert len((db / "crlnumber").read_text().strip()) == 32
        assert (db / "registry.sqlite").is_file()
        assert (layout.tsa_db_dir / "index.txt.attr").is_file()

        for name in ("trusted_id.yml", "root_ca.yml", "ca.yml", "cert.yml"):
            assert (layout.config_dir / name).is_file()


def test_initialize_is_idempotent(hierarchy):
    """Running the initializer again must not change any existing file."""
    before = _snapshot(hierarchy.base)

    initialize_layout(hierarchy.base, unique_subject=False)

    assert _snapshot(hierarchy.base) == before
    # The existing policy wins over the argument
    assert SerialDatabase(hierarchy.db_dir).unique_subject is True


def test_initialize_keeps_edited_profiles(layout):
    """Operator edits to a profile survive re-initialization."""
    profile = layout.config_dir / "cert.yml"
    profile.write_text("subject:\n  organization: Edited\ndays: 30\n")

    initialize_layout(layout.base)

    assert "Edited" in profile.read_text()


def test_missing_template_dir_is_a_warning(tmp_path, caplog):
    """A missing template directory is reported but does not fail."""
    with caplog.at_level(logging.WARNING):
        layout = initialize_layout(tmp_path / "ssl", template_dir=tmp_path / "nope")

    assert layout.db_dir.is_dir()
    assert not (layout.config_dir / "cert.yml").exists()
    assert "template directory not found" in caplog.text
