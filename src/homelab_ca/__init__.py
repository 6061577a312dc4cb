"""
homelab-ca: a small private certificate authority for home-lab use.

Trusted identity -> Root CA -> Intermediate CA -> server/client certificates,
all stored under one base directory (default ~/ssl).
"""

from .authorities import issue_intermediate_ca, issue_root_ca, issue_trust_anchor
from .certificates import issue_certificate
from .initialize import initialize_layout
from .layout import Layout
from .models import CertificateRole, KeyAlgorithm, LeafRequest, SanAlias
from .verify import verify_certificate_chain

__version__ = "2.5.0"

__all__ = [
    "CertificateRole",
    "KeyAlgorithm",
    "Layout",
    "LeafRequest",
    "SanAlias",
    "initialize_layout",
    "issue_certificate",
    "issue_intermediate_ca",
    "issue_root_ca",
    "issue_trust_anchor",
    "verify_certificate_chain",
]
