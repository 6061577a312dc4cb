from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class KeyAlgorithm(str, Enum):
    ECDSA = "ecdsa"     # NIST P-384 (secp384r1)
    RSA = "rsa"


class CertificateRole(str, Enum):
    TRUSTED_ID = "trusted_id"
    ROOT_CA = "root_ca"
    INTERMEDIATE_CA = "intermediate_ca"
    SERVER = "server"
    CLIENT = "client"

    @property
    def is_leaf(self) -> bool:
        return self in (CertificateRole.SERVER, CertificateRole.CLIENT)


class SanAlias(str, Enum):
    """Second DNS entry added to a server certificate's subjectAltName."""

    WWW = "www"             # DNS:www.<fqdn>
    WILDCARD = "wildcard"   # DNS:*.<fqdn>
    NONE = "none"


class CheckStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one `verify -CAfile chain cert` style check."""

    title: str
    cert_path: Path
    chain_path: Path
    status: CheckStatus
    reason: str = ""
    detail: str = ""

    @property
    def passed(self) -> bool:
        return self.status is CheckStatus.PASS


@dataclass(frozen=True)
class LeafRequest:
    """
    Operator input for a leaf certificate.

    Attributes:
        name (str): Subject Common Name and file stem (FQDN or e-mail style name).
        role (CertificateRole): SERVER or CLIENT.
        algorithm (KeyAlgorithm): ECDSA (P-384) or RSA.
        ipv4 (str | None): Optional IPv4 literal for server certificates,
            either "192.168.1.10" or ", IP:192.168.1.10".
        alias (SanAlias): Second DNS SAN for server certificates.
        dns_names (tuple[str, ...]): Optional DNS SANs for ECDSA client certificates.
    """

    name: str
    role: CertificateRole = CertificateRole.SERVER
    algorithm: KeyAlgorithm = KeyAlgorithm.ECDSA
    ipv4: str | None = None
    alias: SanAlias = SanAlias.WWW
    dns_names: tuple[str, ...] = ()


@dataclass
class IssuanceResult:
    """Paths and verification outcome of one issuance run."""

    role: CertificateRole
    name: str
    serial: int
    certificate: Path
    private_key: Path
    csr: Path | None = None
    chain_bundle: Path | None = None
    haproxy_bundle: Path | None = None
    exports: list[Path] = field(default_factory=list)
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return all(c.passed for c in self.checks)
