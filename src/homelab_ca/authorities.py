"""
Certificate authority issuers: trusted identity, root CA and intermediate CA.

Each issuer follows the same sequence:

    1. Issuance Guard (uniqueness / overwrite confirmation)
    2. renew serial/CRL numbers
    3. generate an ECDSA P-384 key
    4. CSR + signature by the parent (the trusted identity is self-signed)
    5. chain bundle (certificate + parent chain)
    6. verification against the bundle and the parent
    7. .crt exports

Steps 1-5 run inside one database transaction under the database lock. A
failure there aborts the run; files already written stay on disk, the
registry entry is rolled back.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .backend import CryptoBackend, operation, pem_cert, pem_csr, pem_private_key
from .database import common_name
from .extensions import ca_extensions
from .files import write_file
from .guard import Confirm, IssuanceGuard
from .layout import INTERMEDIATE_CA, ROOT_CA, TRUSTED_ID, Layout, crt_path
from .models import CertificateRole, IssuanceResult, KeyAlgorithm
from .pipeline import (
    Authority,
    export_copy,
    load_authority,
    open_database,
    refresh_counters,
    run_checks,
    write_bundle,
    write_private,
)
from .profiles import load_profile
from .verify import intermediate_checks, root_ca_checks, trusted_id_checks

LOGGER = logging.getLogger(__name__)


def issue_trust_anchor(
    layout: Layout,
    *,
    confirm: Optional[Confirm] = None,
    backend: Optional[CryptoBackend] = None,
) -> IssuanceResult:
    """
    Create the self-signed trusted identity at the top of the hierarchy.

    Args:
        layout (Layout): Initialized CA layout.
        confirm (Confirm | None): Overwrite confirmation callback, only used
            when unique_subject = no and a trusted identity already exists.
        backend (CryptoBackend | None): Crypto implementation.

    Returns:
        IssuanceResult: Paths, serial and the self-verification outcome.

    Raises:
        PreconditionError: Layout or profile missing.
        UniquenessViolation: unique_subject = yes and the trusted identity exists.
        OperationAborted: Overwrite not confirmed.
        SubOperationError: Key generation, signing or export failed.
    """
    backend = backend or CryptoBackend()
    role = CertificateRole.TRUSTED_ID
    db = open_database(layout)
    profile = load_profile(layout.config_dir, role)
    subject = profile.subject_name()

    with db.transaction() as txn:
        IssuanceGuard(db, confirm).evaluate(role, profile.common_name, layout.trusted_id_cert)
        refresh_counters(layout)
        serial = txn.reserve_serial()

        with operation("generate ECDSA key for Trusted ID"):
            key = backend.generate_key(KeyAlgorithm.ECDSA)
            write_private(layout.trusted_id_key, pem_private_key(key))

        with operation("generate certificate for Trusted ID"):
            cert = backend.self_sign(
                key,
                subject,
                ca_extensions(role).extensions,
                profile.validity_days(),
                serial,
                profile.hash_algorithm("sha384"),
            )
            write_file(layout.trusted_id_cert, pem_cert(cert))

        txn.check_and_register_subject(cert, name=TRUSTED_ID, role=role)

    checks = run_checks(backend, trusted_id_checks(layout))
    exports = [export_copy(layout.trusted_id_cert, crt_path(layout.trusted_id_cert))]

    LOGGER.info("Certificate Authority process successfully completed.")
    return IssuanceResult(
        role=role,
        name=TRUSTED_ID,
        serial=cert.serial_number,
        certificate=layout.trusted_id_cert,
        private_key=layout.trusted_id_key,
        exports=exports,
        checks=checks,
    )


def _issue_subordinate(
    layout: Layout,
    role: CertificateRole,
    name: str,
    parent: Authority,
    *,
    key_path: Path,
    csr_path: Path,
    cert_path: Path,
    chain_path: Path,
    label: str,
    confirm: Optional[Confirm],
    backend: CryptoBackend,
) -> IssuanceResult:
    db = open_database(layout)
    profile = load_profile(layout.config_dir, role)
    subject = profile.subject_name()

    with db.transaction() as txn:
        IssuanceGuard(db, confirm).evaluate(role, profile.common_name, cert_path)
        refresh_counters(layout)
        serial = txn.reserve_serial()

        with operation(f"generate ECDSA key for {label}"):
            key = backend.generate_key(KeyAlgorithm.ECDSA)
            write_private(key_path, pem_private_key(key))

        with operation(f"generate CSR for {label}"):
            csr = backend.create_csr(key, subject)
            write_file(csr_path, pem_csr(csr))

        with operation(f"generate {label} certificate"):
            cert = backend.sign(
                csr,
                parent.key,
                parent.cert,
                ca_extensions(role).extensions,
                profile.validity_days(),
                serial,
                profile.hash_algorithm("sha384"),
            )
            write_file(cert_path, pem_cert(cert))

        with operation(f"create {label} chain bundle"):
            write_bundle(chain_path, [cert_path, parent.chain_path])

        txn.check_and_register_subject(cert, name=name, role=role)

    LOGGER.debug("%s issued: serial %x, CN=%s", label, cert.serial_number, common_name(cert.subject))
    return IssuanceResult(
        role=role,
        name=name,
        serial=cert.serial_number,
        certificate=cert_path,
        private_key=key_path,
        csr=csr_path,
        chain_bundle=chain_path,
    )


def issue_root_ca(
    layout: Layout,
    *,
    confirm: Optional[Confirm] = None,
    backend: Optional[CryptoBackend] = None,
) -> IssuanceResult:
    """
    Create the root CA, signed by the trusted identity.

    Produces root_ca.pem, root_ca_chain_bundle.pem (root + trusted identity)
    and runs three checks: root against its own bundle, root against the
    trusted identity, and the bundle against the trusted identity.

    Raises:
        PreconditionError: Trusted identity, layout or profile missing.
        UniquenessViolation: unique_subject = yes and the root CA exists.
        OperationAborted: Overwrite not confirmed.
        SubOperationError: A generation step failed.
    """
    backend = backend or CryptoBackend()
    parent = load_authority(
        "Trusted ID", layout.trusted_id_cert, layout.trusted_id_key, layout.trusted_id_cert
    )
    result = _issue_subordinate(
        layout,
        CertificateRole.ROOT_CA,
        ROOT_CA,
        parent,
        key_path=layout.root_ca_key,
        csr_path=layout.root_ca_csr,
        cert_path=layout.root_ca_cert,
        chain_path=layout.root_ca_chain,
        label="Root CA",
        confirm=confirm,
        backend=backend,
    )
    result.checks = run_checks(backend, root_ca_checks(layout))
    result.exports = [
        export_copy(layout.root_ca_cert, crt_path(layout.root_ca_cert)),
        export_copy(layout.root_ca_chain, crt_path(layout.root_ca_chain)),
    ]
    return result


def issue_intermediate_ca(
    layout: Layout,
    *,
    confirm: Optional[Confirm] = None,
    backend: Optional[CryptoBackend] = None,
) -> IssuanceResult:
    """
    Create the intermediate CA, signed by the root CA.

    Produces ca.pem and ca_chain_bundle.pem (intermediate + root chain) and
    runs the analogous three checks against the root CA chain.
    """
    backend = backend or CryptoBackend()
    parent = load_authority("Root CA", layout.root_ca_cert, layout.root_ca_key, layout.root_ca_chain)
    result = _issue_subordinate(
        layout,
        CertificateRole.INTERMEDIATE_CA,
        INTERMEDIATE_CA,
        parent,
        key_path=layout.intermediate_key,
        csr_path=layout.intermediate_csr,
        cert_path=layout.intermediate_cert,
        chain_path=layout.intermediate_chain,
        label="Intermediate CA",
        confirm=confirm,
        backend=backend,
    )
    result.checks = run_checks(backend, intermediate_checks(layout))
    result.exports = [
        export_copy(layout.intermediate_cert, crt_path(layout.intermediate_cert)),
        export_copy(layout.intermediate_chain, crt_path(layout.intermediate_chain)),
    ]
    return result
