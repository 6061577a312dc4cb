"""
On-disk layout of a homelab CA.

All issuers and the verifier resolve their files through Layout so the naming
conventions live in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .errors import PreconditionError

# Relative directories created by the initializer
LAYOUT_DIRS = (
    "certs/root",
    "certs/intermediate",
    "certs/certificates",
    "private/root",
    "private/intermediate",
    "private/certificates",
    "csr",
    "extfiles",
    "newcerts",
    "crl",
    "crl-backup",
    "db",
    "log",
    "config",
    "tsa/certs",
    "tsa/private",
    "tsa/db",
)

TRUSTED_ID = "trusted_id"
ROOT_CA = "root_ca"
INTERMEDIATE_CA = "ca"


@dataclass(frozen=True)
class Layout:
    base: Path

    # ---- top level directories ----

    @property
    def certs_dir(self) -> Path:
        return self.base / "certs"

    @property
    def private_dir(self) -> Path:
        return self.base / "private"

    @property
    def csr_dir(self) -> Path:
        return self.base / "csr"

    @property
    def extfile_dir(self) -> Path:
        return self.base / "extfiles"

    @property
    def newcerts_dir(self) -> Path:
        return self.base / "newcerts"

    @property
    def db_dir(self) -> Path:
        return self.base / "db"

    @property
    def tsa_db_dir(self) -> Path:
        return self.base / "tsa" / "db"

    @property
    def log_dir(self) -> Path:
        return self.base / "log"

    @property
    def config_dir(self) -> Path:
        return self.base / "config"

    def db_dirs(self) -> list[Path]:
        """All database directories whose counters are refreshed together."""
        return [self.db_dir, self.tsa_db_dir]

    # ---- trust anchor ----

    @property
    def trusted_id_cert(self) -> Path:
        return self.certs_dir / "root" / f"{TRUSTED_ID}.pem"

    @property
    def trusted_id_key(self) -> Path:
        return self.private_dir / "root" / f"{TRUSTED_ID}.pem"

    # ---- root CA ----

    @property
    def root_ca_cert(self) -> Path:
        return self.certs_dir / "root" / f"{ROOT_CA}.pem"

    @property
    def root_ca_key(self) -> Path:
        return self.private_dir / "root" / f"{ROOT_CA}.pem"

    @property
    def root_ca_csr(self) -> Path:
        return self.csr_dir / f"{ROOT_CA}.pem"

    @property
    def root_ca_chain(self) -> Path:
        return self.certs_dir / "root" / f"{ROOT_CA}_chain_bundle.pem"

    # ---- intermediate CA ----

    @property
    def intermediate_cert(self) -> Path:
        return self.certs_dir / "intermediate" / f"{INTERMEDIATE_CA}.pem"

    @property
    def intermediate_key(self) -> Path:
        return self.private_dir / "intermediate" / f"{INTERMEDIATE_CA}.pem"

    @property
    def intermediate_csr(self) -> Path:
        return self.csr_dir / f"{INTERMEDIATE_CA}.pem"

    @property
    def intermediate_chain(self) -> Path:
        return self.certs_dir / "intermediate" / f"{INTERMEDIATE_CA}_chain_bundle.pem"

    # ---- leaf certificates ----

    def leaf_cert(self, name: str) -> Path:
        return self.certs_dir / "certificates" / f"{name}.pem"

    def leaf_key(self, name: str) -> Path:
        return self.private_dir / "certificates" / f"{name}.pem"

    def leaf_key_export(self, name: str) -> Path:
        return self.private_dir / "certificates" / f"{name}.key"

    def leaf_csr(self, name: str) -> Path:
        return self.csr_dir / f"{name}.pem"

    def leaf_chain(self, name: str) -> Path:
        return self.certs_dir / "certificates" / f"{name}_chain_bundle.pem"

    def leaf_haproxy(self, name: str) -> Path:
        return self.certs_dir / "certificates" / f"{name}_haproxy.pem"

    def leaf_extfile(self, name: str) -> Path:
        return self.extfile_dir / f"{name}.cnf"

    # ---- checks ----

    def require_initialized(self) -> None:
        """
        Ensure the initializer has run for this base path.

        Raises:
            PreconditionError: If the database directory or its attribute
                file is missing.
        """
        if not (self.db_dir / "index.txt.attr").is_file():
            raise PreconditionError(
                f"CA layout not initialized at {self.base} (run 'homelab-ca init' first)"
            )


def crt_path(pem_path: Path) -> Path:
    """Return the .crt/.key style export path next to a .pem file."""
    return pem_path.with_suffix(".crt")
