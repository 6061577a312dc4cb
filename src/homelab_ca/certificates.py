"""
Leaf certificate issuer (server/client, ECDSA/RSA), signed by the intermediate CA.

Outputs for a certificate named <name>:

    private/certificates/<name>.pem          private key (0600)
    private/certificates/<name>.key          same key, conventional name (0600)
    csr/<name>.pem                           signing request
    extfiles/<name>.cnf                      extensions in openssl extfile syntax
    certs/certificates/<name>.pem / .crt     certificate
    certs/certificates/<name>_chain_bundle.pem / .crt
    certs/certificates/<name>_haproxy.pem    chain bundle + key, servers only (0600)
"""

from __future__ import annotations

import logging
from typing import Optional

from .backend import CryptoBackend, operation, pem_cert, pem_csr, pem_private_key
from .errors import PreconditionError
from .extensions import leaf_extensions, parse_ipv4
from .files import PRIVATE_MODE, write_file
from .guard import Confirm, IssuanceGuard
from .layout import Layout, crt_path
from .models import CertificateRole, IssuanceResult, LeafRequest
from .pipeline import (
    export_copy,
    load_authority,
    open_database,
    refresh_counters,
    run_checks,
    write_bundle,
    write_private,
)
from .profiles import load_profile
from .verify import RESERVED_NAMES, leaf_checks

LOGGER = logging.getLogger(__name__)


def validate_request(req: LeafRequest) -> None:
    """
    Reject requests that cannot be issued before anything is written.

    Raises:
        PreconditionError: Empty/unsafe/reserved name, non-leaf role, or an
            invalid IPv4 literal.
    """
    name = req.name.strip()
    if not name:
        raise PreconditionError("Certificate name must not be empty")
    if name != req.name or "/" in name or "\\" in name or name.startswith("."):
        raise PreconditionError(f"Invalid certificate name: {req.name!r}")
    if name in RESERVED_NAMES:
        raise PreconditionError(f"{name!r} is reserved for a certificate authority")
    if not req.role.is_leaf:
        raise PreconditionError(f"{req.role.value} is not a leaf certificate role")
    if req.ipv4 and req.role is not CertificateRole.SERVER:
        raise PreconditionError("An IP address can only be added to server certificates")
    try:
        parse_ipv4(req.ipv4)
    except ValueError as e:
        raise PreconditionError(f"Invalid IPv4 address {req.ipv4!r}: {e}") from e


def issue_certificate(
    layout: Layout,
    req: LeafRequest,
    *,
    confirm: Optional[Confirm] = None,
    backend: Optional[CryptoBackend] = None,
) -> IssuanceResult:
    """
    Issue a server or client certificate.

    Args:
        layout (Layout): Initialized CA layout with an intermediate CA.
        req (LeafRequest): Name, role, key algorithm and SAN options.
        confirm (Confirm | None): Overwrite confirmation callback, used when
            unique_subject = no and the name already exists.
        backend (CryptoBackend | None): Crypto implementation.

    Returns:
        IssuanceResult: Paths, serial and verification outcome (three checks
        for clients, four for servers).

    Raises:
        PreconditionError: Invalid request, missing intermediate CA, layout or profile.
        UniquenessViolation: unique_subject = yes and the Common Name exists.
        OperationAborted: Overwrite not confirmed.
        SubOperationError: A generation step failed.
    """
    backend = backend or CryptoBackend()
    validate_request(req)
    name = req.name
    algo = req.algorithm.value.upper()
    is_server = req.role is CertificateRole.SERVER

    parent = load_authority(
        "Intermediate CA", layout.intermediate_cert, layout.intermediate_key, layout.intermediate_chain
    )
    db = open_database(layout)
    profile = load_profile(layout.config_dir, req.role)
    subject = profile.subject_name(common_name=name)

    key_path = layout.leaf_key(name)
    csr_path = layout.leaf_csr(name)
    cert_path = layout.leaf_cert(name)
    chain_path = layout.leaf_chain(name)
    haproxy_path = layout.leaf_haproxy(name) if is_server else None

    with db.transaction() as txn:
        IssuanceGuard(db, confirm).evaluate(req.role, name, cert_path)
        refresh_counters(layout)
        serial = txn.reserve_serial()

        with operation(f"generate {algo} key"):
            key = backend.generate_key(req.algorithm)
            write_private(key_path, pem_private_key(key))

        with operation("create an extfile with all the alternative names"):
            ext = leaf_extensions(req, comment=profile.comment)
            write_file(layout.leaf_extfile(name), ext.render_extfile())

        with operation("generate Certificate Signing Request"):
            csr = backend.create_csr(key, subject, ext.sans)
            write_file(csr_path, pem_csr(csr))

        with operation("generate certificate"):
            cert = backend.sign(
                csr,
                parent.key,
                parent.cert,
                ext.extensions,
                profile.validity_days(),
                serial,
                profile.hash_algorithm("sha384"),
            )
            write_file(cert_path, pem_cert(cert))

        with operation("create certificate chain bundle"):
            write_bundle(chain_path, [cert_path, parent.chain_path])

        if haproxy_path is not None:
            with operation("create certificate chain bundle for HAProxy"):
                write_bundle(haproxy_path, [chain_path, key_path], mode=PRIVATE_MODE)

        txn.check_and_register_subject(cert, name=name, role=req.role)

    checks = run_checks(backend, leaf_checks(layout, name, include_haproxy=is_server))

    exports = [
        export_copy(cert_path, crt_path(cert_path)),
        export_copy(chain_path, crt_path(chain_path)),
        export_copy(key_path, layout.leaf_key_export(name), mode=PRIVATE_MODE),
    ]

    LOGGER.info("Certificate process successfully completed.")
    return IssuanceResult(
        role=req.role,
        name=name,
        serial=cert.serial_number,
        certificate=cert_path,
        private_key=key_path,
        csr=csr_path,
        chain_bundle=chain_path,
        haproxy_bundle=haproxy_path,
        exports=exports,
        checks=checks,
    )
