"""
Shared fixtures: an initialized CA home directory and a full
trusted identity -> root CA -> intermediate CA hierarchy on top of it.
"""

import pytest

from homelab_ca.authorities import issue_intermediate_ca, issue_root_ca, issue_trust_anchor
from homelab_ca.initialize import initialize_layout


@pytest.fixture
def layout(tmp_path):
    """Freshly initialized layout with unique_subject = yes."""
    return initialize_layout(tmp_path / "ssl", unique_subject=True)


@pytest.fixture
def hierarchy(layout):
    """Layout with trusted identity, root CA and intermediate CA issued."""
    issue_trust_anchor(layout)
    issue_root_ca(layout)
    issue_intermediate_ca(layout)
    return layout
