"""
Verifier: diagnostic sweep over a certificate and every ancestor.

Each check is the equivalent of `openssl verify -CAfile <chain> <cert>` and is
reported independently as PASS or FAIL. A failing check never stops the sweep,
and a missing input file is reported as FAIL("file not found") without
attempting the cryptographic check.

Which checks run depends on the certificate's role. The role is read from the
registry; the fixed CA file names are recognised even without a registry, and
any other name is treated as a leaf certificate.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .backend import CryptoBackend, load_cert
from .database import SerialDatabase
from .layout import INTERMEDIATE_CA, ROOT_CA, TRUSTED_ID, Layout
from .models import CertificateRole, CheckResult, CheckStatus

LOGGER = logging.getLogger(__name__)

FILE_NOT_FOUND = "file not found"

# (title, certificate path, chain path)
CheckSpec = tuple[str, Path, Path]

_CA_NAMES = {
    TRUSTED_ID: CertificateRole.TRUSTED_ID,
    "trusted-id": CertificateRole.TRUSTED_ID,
    ROOT_CA: CertificateRole.ROOT_CA,
    INTERMEDIATE_CA: CertificateRole.INTERMEDIATE_CA,
}

RESERVED_NAMES = frozenset(_CA_NAMES)


def _stem(name: str) -> str:
    for suffix in (".pem", ".crt"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def _chain_walk(result, backend: CryptoBackend) -> str:
    """Verbose text: one line per certificate in the walked path, then the target dump."""
    lines = []
    for depth, cert in enumerate(result.chain):
        lines.append(f"depth={depth} {cert.subject.rfc4514_string()}")
    if result.ok:
        lines.append("OK")
    else:
        lines.append(f"error at depth {result.depth}: {result.error}")
    if result.chain:
        lines.append(backend.describe(result.chain[0]))
    return "\n".join(lines)


def run_check(backend: CryptoBackend, title: str, cert_path: Path, chain_path: Path,
              verbose: bool = False) -> CheckResult:
    """
    Run one verification and capture the outcome.

    Args:
        backend (CryptoBackend): Crypto implementation.
        title (str): Section title for reporting.
        cert_path (Path): File whose first certificate is verified.
        chain_path (Path): File whose certificates form the trust store.
        verbose (bool): Attach the chain-walk dump to the result.

    Returns:
        CheckResult: PASS or FAIL with a reason.
    """
    missing = [p for p in (cert_path, chain_path) if not p.is_file()]
    if missing:
        LOGGER.debug("%s: %s (%s)", title, FILE_NOT_FOUND, ", ".join(map(str, missing)))
        return CheckResult(title, cert_path, chain_path, CheckStatus.FAIL, FILE_NOT_FOUND,
                           detail="\n".join(f"{p}: {FILE_NOT_FOUND}" for p in missing) if verbose else "")

    result = backend.verify_chain(cert_path, chain_path)
    detail = _chain_walk(result, backend) if verbose else ""
    if result.ok:
        return CheckResult(title, cert_path, chain_path, CheckStatus.PASS, "", detail)
    LOGGER.debug("%s failed: %s", title, result.error)
    return CheckResult(title, cert_path, chain_path, CheckStatus.FAIL, result.error, detail)


# ---------- check sets per role ----------

def trusted_id_checks(layout: Layout) -> list[CheckSpec]:
    anchor = layout.trusted_id_cert
    return [("Verify Trusted Identity against Trusted Identity", anchor, anchor)]


def root_ca_checks(layout: Layout) -> list[CheckSpec]:
    anchor = layout.trusted_id_cert
    return [
        ("Verify Root Certificate Authority against the Root Certificate Authority Chain",
         layout.root_ca_cert, layout.root_ca_chain),
        ("Verify Root Certificate Authority against Trusted Identity",
         layout.root_ca_cert, anchor),
        ("Verify Root Certificate Authority Chain against Trusted Identity",
         layout.root_ca_chain, anchor),
    ]


def intermediate_checks(layout: Layout) -> list[CheckSpec]:
    return [
        ("Verify Intermediate Certificate Authority against the Intermediate Certificate Authority Chain",
         layout.intermediate_cert, layout.intermediate_chain),
        ("Verify Intermediate Certificate Authority against the Root Certificate Authority Chain",
         layout.intermediate_cert, layout.root_ca_chain),
        ("Verify Intermediate Certificate Authority Chain against the Root Certificate Authority Chain",
         layout.intermediate_chain, layout.root_ca_chain),
    ]


def leaf_checks(layout: Layout, name: str, include_haproxy: bool = True) -> list[CheckSpec]:
    inter = layout.intermediate_chain
    specs = [
        ("Verify Certificate against the Certificate Chain",
         layout.leaf_cert(name), layout.leaf_chain(name)),
        ("Verify Certificate against the Intermediate Certificate Chain",
         layout.leaf_cert(name), inter),
        ("Verify Certificate Chain against the Intermediate Certificate Chain",
         layout.leaf_chain(name), inter),
    ]
    if include_haproxy:
        specs.append(("Verify HAProxy Certificate Chain against the Intermediate Certificate Chain",
                      layout.leaf_haproxy(name), inter))
    return specs


def checks_for_role(layout: Layout, role: Optional[CertificateRole], name: str) -> list[CheckSpec]:
    """
    Select the checks for a role, ancestors first.

    Args:
        layout (Layout): CA layout.
        role (CertificateRole | None): Role, or None for an unregistered leaf.
        name (str): Certificate file stem (leaf certificates only).
    """
    specs = trusted_id_checks(layout)
    if role is CertificateRole.TRUSTED_ID:
        return specs
    specs += root_ca_checks(layout)
    if role is CertificateRole.ROOT_CA:
        return specs
    specs += intermediate_checks(layout)
    if role is CertificateRole.INTERMEDIATE_CA:
        return specs
    # Registered client leaves have no HAProxy bundle; unknown leaves get the full sweep
    return specs + leaf_checks(layout, name, include_haproxy=role is not CertificateRole.CLIENT)


def resolve_role(layout: Layout, name: str) -> tuple[Optional[CertificateRole], str]:
    """
    Determine the role of a certificate name.

    Args:
        layout (Layout): CA layout.
        name (str): Name as typed by the operator, with or without .pem/.crt.

    Returns:
        tuple[CertificateRole | None, str]: Role (None for an unknown leaf) and file stem.
    """
    stem = _stem(name)
    if stem in _CA_NAMES:
        return _CA_NAMES[stem], stem
    db = SerialDatabase(layout.db_dir)
    if db.registry_path.is_file():
        record = db.lookup(stem)
        if record is not None:
            return record.role, stem
    return None, stem


def verify_certificate_chain(
    layout: Layout,
    name: str,
    *,
    verbose: bool = False,
    backend: Optional[CryptoBackend] = None,
) -> list[CheckResult]:
    """
    Run the verification sweep for a named certificate.

    Args:
        layout (Layout): CA layout.
        name (str): Certificate name, e.g. "trusted_id", "root_ca.pem", "ca" or "localhost".
        verbose (bool): Attach chain-walk dumps to each result.
        backend (CryptoBackend | None): Crypto implementation.

    Returns:
        list[CheckResult]: One result per check, in execution order.
    """
    backend = backend or CryptoBackend()
    role, stem = resolve_role(layout, name)
    LOGGER.info("Verifying %s as %s", stem, role.value if role else "certificate")
    return [
        run_check(backend, title, cert_path, chain_path, verbose)
        for title, cert_path, chain_path in checks_for_role(layout, role, stem)
    ]


def describe_certificate(layout: Layout, name: str, backend: Optional[CryptoBackend] = None) -> str:
    """
    Text dump of a named certificate.

    Raises:
        FileNotFoundError: If the certificate file does not exist.
    """
    backend = backend or CryptoBackend()
    role, stem = resolve_role(layout, name)
    path = {
        CertificateRole.TRUSTED_ID: layout.trusted_id_cert,
        CertificateRole.ROOT_CA: layout.root_ca_cert,
        CertificateRole.INTERMEDIATE_CA: layout.intermediate_cert,
    }.get(role, layout.leaf_cert(stem))
    if not path.is_file():
        raise FileNotFoundError(f"Certificate not found: {path}")
    return backend.describe(load_cert(path))
